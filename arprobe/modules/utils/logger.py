"""
Logging setup for the tracking pipeline.

Console output stays compact; the optional rotating file gets every DEBUG
record with the logger name, which is where per-frame decisions end up.
"""

import os
import logging
import logging.handlers
import time
from functools import wraps

CONSOLE_FORMAT = "%(asctime)s  %(levelname)-5s  %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)-40s | %(message)s"
DATE_FORMAT = "%H:%M:%S"


def _level(name, default=logging.INFO) -> int:
    if isinstance(name, int):
        return name
    return getattr(logging, str(name).upper(), default)


def _rotating_file_handler(log_file, max_size_mb, backup_count) -> logging.Handler:
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=int(max_size_mb * 1024 * 1024),
        backupCount=backup_count,
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(level="INFO", log_file=None, max_size_mb=10, backup_count=3,
                  module_levels=None):
    """Configure the root logger.

    Args:
        level: Root level name
        log_file: Optional rotating log file (created with its directory)
        max_size_mb: Rotate after this size
        backup_count: Rotated files to keep
        module_levels: {logger name: level} overrides, e.g. to trace
            only the palm tracker at DEBUG
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_level(level))
    root_logger.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console)

    if log_file:
        root_logger.addHandler(_rotating_file_handler(log_file, max_size_mb, backup_count))

    for name, module_level in (module_levels or {}).items():
        logging.getLogger(name).setLevel(_level(module_level))

    return root_logger


def setup_logging_from_config(section: dict):
    """setup_logging() driven by the 'logging' config section."""
    return setup_logging(
        level=section.get("level", "INFO"),
        log_file=section.get("file"),
        max_size_mb=section.get("max_size_mb", 10),
        backup_count=section.get("backup_count", 3),
        module_levels=section.get("module_levels"),
    )


class FrameLogAdapter(logging.LoggerAdapter):
    """Prefixes records with the frame number the pipeline is working on."""

    def __init__(self, logger: logging.Logger):
        super().__init__(logger, {"frame_id": 0})

    def set_frame(self, frame_id: int):
        self.extra["frame_id"] = frame_id

    def process(self, msg, kwargs):
        return "[frame %d] %s" % (self.extra["frame_id"], msg), kwargs


def log_timing(func=None, *, warn_above_ms=None):
    """Log how long each call takes.

    Usable bare (`@log_timing`) or with a threshold
    (`@log_timing(warn_above_ms=50)`), above which the call is logged
    as a warning instead of at debug level.
    """
    def decorate(fn):
        logger = logging.getLogger(fn.__module__)

        @wraps(fn)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            result = fn(*args, **kwargs)
            elapsed = (time.perf_counter() - start) * 1000
            if warn_above_ms is not None and elapsed > warn_above_ms:
                logger.warning("%s took %.2fms (limit %.0fms)", fn.__qualname__, elapsed, warn_above_ms)
            else:
                logger.debug("%s took %.2fms", fn.__qualname__, elapsed)
            return result

        return wrapper

    if func is not None:
        return decorate(func)
    return decorate
