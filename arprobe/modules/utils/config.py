"""
Configuration manager.
Loads a YAML config over built-in defaults and provides typed access.

Features:
    - Deep merge of the file over DEFAULTS (missing keys keep defaults)
    - Schema validation for critical config fields (warnings only)
    - Dot-notation access
"""

import copy
import os
import logging

import yaml

from arprobe.core.errors import ConfigError

logger = logging.getLogger(__name__)

_BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))
_CONFIG_DIR = os.path.join(_BASE_DIR, "config")

DEFAULTS = {
    "inference": {
        "backend": "onnxruntime",
        "num_threads": 4,
    },
    "palm_detection": {
        "model_path": "models/palm_detection.onnx",
        "iou_threshold": 0.5,
        "use_weighted_merge": False,
        "decoder": {
            "min_score_thresh": 0.7,
        },
    },
    "hand_landmark": {
        "model_path": "models/hand_landmark.onnx",
    },
    "palm_tracker": {
        "handflag_threshold": 0.8,
        "ratio_pos": 0.6,
        "ratio_size": 0.4,
        "enforce_interval": 5,
        "lost_tolerance": 10,
    },
    "area_selector": {
        "trust_threshold": 0.9,
        "untrusted_limit": 10,
        "debounce_count": 5,
        "area_handflag_threshold": 0.8,
    },
    "object_tracker": {
        "max_lost_frames": 20,
        "large_area_ratio": 0.1,
        "large_tracker": "MEDIAN_FLOW",
        "small_tracker": "KCF",
        "max_width_ratio": 0.9,
    },
    "logging": {
        "level": "INFO",
        "file": None,
        "max_size_mb": 10,
        "backup_count": 3,
        "module_levels": {},
    },
}

# Schema: required sections and their expected types
_CONFIG_SCHEMA = {
    "inference": {
        "backend": str,
        "num_threads": int,
    },
    "palm_detection": {
        "model_path": str,
        "iou_threshold": float,
        "use_weighted_merge": bool,
    },
    "hand_landmark": {
        "model_path": str,
    },
    "palm_tracker": {
        "handflag_threshold": float,
        "ratio_pos": float,
        "ratio_size": float,
        "enforce_interval": int,
        "lost_tolerance": int,
    },
    "area_selector": {
        "trust_threshold": float,
        "debounce_count": int,
    },
    "object_tracker": {
        "max_lost_frames": int,
        "large_tracker": str,
        "small_tracker": str,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base dict."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Configuration for one pipeline."""

    def __init__(self, data: dict = None):
        self._data = _deep_merge(copy.deepcopy(DEFAULTS), data or {})

    @classmethod
    def load(cls, config_path: str = None) -> "Config":
        """Load configuration from a YAML file.

        A missing file falls back to defaults; a malformed one is fatal.

        Raises:
            ConfigError: The file is not valid YAML or not a mapping
        """
        config_path = config_path or os.path.join(_CONFIG_DIR, "config.yaml")
        try:
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
            logger.info("Loaded config from %s", config_path)
        except FileNotFoundError:
            logger.warning("Config file not found: %s, using defaults", config_path)
            data = {}
        except yaml.YAMLError as e:
            raise ConfigError("Invalid YAML in %s: %s" % (config_path, e)) from e

        if not isinstance(data, dict):
            raise ConfigError("Config root in %s must be a mapping" % config_path)

        config = cls(data)
        config.validate()
        return config

    def validate(self) -> list:
        """Validate critical config fields against schema.

        Returns:
            The list of warnings (also logged)
        """
        warnings = []
        for section_name, fields in _CONFIG_SCHEMA.items():
            section = self._data.get(section_name)
            if section is None:
                warnings.append(f"Missing config section: '{section_name}'")
                continue
            if not isinstance(section, dict):
                warnings.append(f"Section '{section_name}' should be a dict, got {type(section).__name__}")
                continue
            for field_name, expected_type in fields.items():
                if field_name in section:
                    value = section[field_name]
                    # Allow int where float is expected
                    if expected_type is float and isinstance(value, (int, float)) \
                            and not isinstance(value, bool):
                        continue
                    if not isinstance(value, expected_type):
                        warnings.append(
                            f"{section_name}.{field_name}: expected {expected_type.__name__}, "
                            f"got {type(value).__name__} ({value!r})"
                        )

        if warnings:
            for w in warnings:
                logger.warning("Config validation: %s", w)
        else:
            logger.debug("Config validation passed")
        return warnings

    def get(self, key_path: str, default=None):
        """Get nested config value using dot notation: 'palm_tracker.ratio_pos'."""
        keys = key_path.split(".")
        value = self._data
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def get_section(self, section: str) -> dict:
        """Get an entire config section."""
        return self._data.get(section, {})

    def resolve_path(self, path: str) -> str:
        """Resolve a model path relative to the project root."""
        if os.path.isabs(path):
            return path
        return os.path.join(_BASE_DIR, path)

    @property
    def data(self) -> dict:
        return copy.deepcopy(self._data)

    @property
    def base_dir(self) -> str:
        return _BASE_DIR
