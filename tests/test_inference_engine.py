"""
Tests for Inference Engines and Model Stages
=============================================
"""

import pytest
import numpy as np
import sys
from pathlib import Path
from unittest.mock import Mock

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from arprobe.core.errors import ConfigError, ConfigMismatch, InferenceError
from arprobe.core.types import OrientedRect
from arprobe.models.inference_engine import (
    InferenceEngine,
    OutputTensor,
    TensorSpec,
    create_engine,
    output_values,
)
from arprobe.models.onnx_engine import _resolve_shape
from arprobe.modules.detection.anchors import AnchorConfig
from arprobe.modules.detection.decoder import DecoderConfig
from arprobe.modules.detection.hand_landmark import HandLandmarkEstimator
from arprobe.modules.detection.palm_detector import PalmDetector, PalmDetectorConfig

# Anchor at grid cell (16, 16) of the stride-8 layer
CENTER_ANCHOR = (16 * 32 + 16) * 2


def mock_engine(outputs=None):
    engine = Mock(spec=InferenceEngine)
    engine.invoke.return_value = outputs or {}
    return engine


class TestTensors:
    """Test suite for TensorSpec and OutputTensor."""

    def test_spec_resolved(self):
        assert TensorSpec("input", (1, 256, 256, 3)).is_resolved
        assert not TensorSpec("input").is_resolved
        assert not TensorSpec("input", (-1, 256, 256, 3)).is_resolved

    def test_float_output_passthrough(self):
        data = np.array([1.5, -2.0], dtype=np.float32)
        np.testing.assert_array_equal(OutputTensor("out", data).as_float(), data)

    def test_dequantization(self):
        tensor = OutputTensor("out", np.array([0, 128, 255], dtype=np.uint8),
                              scale=0.5, zero_point=128)
        result = tensor.as_float()
        assert result.dtype == np.float32
        np.testing.assert_allclose(result, [-64.0, 0.0, 63.5])

    def test_dims_left_padded(self):
        assert OutputTensor("out", np.zeros((2944, 18))).dims == (1, 1, 2944, 18)
        assert OutputTensor("out", np.zeros((1, 2, 3, 4))).dims == (1, 2, 3, 4)

    def test_output_values(self):
        outputs = {"score": OutputTensor("score", np.array([[200]], dtype=np.uint8), scale=0.5, zero_point=100)}
        np.testing.assert_allclose(output_values(outputs, "score"), [[50.0]])

    def test_output_values_missing_or_empty(self):
        outputs = {"score": OutputTensor("score", np.zeros((1, 0), dtype=np.float32))}
        with pytest.raises(ConfigMismatch):
            output_values(outputs, "flag")
        with pytest.raises(ConfigMismatch):
            output_values(outputs, "score")

    def test_resolve_shape(self):
        assert _resolve_shape(None, ["batch", 256, 256, 3]) == (1, 256, 256, 3)
        assert _resolve_shape((2, -1, 256, 3), [None, 224, 256, 3]) == (2, 224, 256, 3)


class TestCreateEngine:
    """Test suite for create_engine()."""

    @pytest.mark.parametrize("backend", ["opencv", "OpenCV", "onnxruntime", "tensorrt"])
    def test_known_backends(self, backend):
        engine = create_engine(backend, num_threads=2)
        assert isinstance(engine, InferenceEngine)
        assert engine.name == backend.lower()
        assert not engine.is_initialized

    def test_unknown_backend(self):
        with pytest.raises(ConfigError):
            create_engine("tflite")

    @pytest.mark.parametrize("backend", ["opencv", "onnxruntime", "tensorrt"])
    def test_missing_model_is_config_error(self, backend, tmp_path):
        engine = create_engine(backend)
        with pytest.raises(ConfigError):
            engine.initialize(str(tmp_path / "missing.model"),
                              [TensorSpec("input", (1, 256, 256, 3))], [TensorSpec("out")])

    def test_invoke_before_initialize(self):
        with pytest.raises(InferenceError):
            create_engine("opencv").invoke({"input": np.zeros((1, 4))})

    def test_check_names(self):
        with pytest.raises(ConfigError):
            InferenceEngine._check_names("output", [TensorSpec("a"), TensorSpec("b")], ["a"])


class TestPalmDetector:
    """Test suite for PalmDetector with a mocked engine."""

    @staticmethod
    def palm_outputs(score_logit=10.0):
        raw_boxes = np.zeros((1, 2944, 18), dtype=np.float32)
        raw_boxes[0, CENTER_ANCHOR, 2] = 25.6    # w = 0.1
        raw_boxes[0, CENTER_ANCHOR, 3] = 25.6    # h = 0.1
        raw_boxes[0, CENTER_ANCHOR, 5] = 25.6    # wrist below the center
        raw_boxes[0, CENTER_ANCHOR, 9] = -25.6   # middle MCP above it
        raw_scores = np.full((1, 2944, 1), -10.0, dtype=np.float32)
        raw_scores[0, CENTER_ANCHOR, 0] = score_logit
        return {
            "regressors": OutputTensor("regressors", raw_boxes),
            "classificators": OutputTensor("classificators", raw_scores),
        }

    def test_initialize_builds_anchors(self):
        engine = mock_engine()
        detector = PalmDetector(engine)
        detector.initialize("palm.onnx")

        assert detector.anchors.shape == (2944, 4)
        model_path, inputs, outputs = engine.initialize.call_args[0]
        assert model_path == "palm.onnx"
        assert inputs[0].shape == (1, 256, 256, 3)
        assert [spec.name for spec in outputs] == ["regressors", "classificators"]

    def test_anchor_count_mismatch(self):
        config = PalmDetectorConfig(decoder=DecoderConfig(num_boxes=100))
        with pytest.raises(ConfigError):
            PalmDetector(mock_engine(), config).initialize()

    def test_bad_anchor_config(self):
        config = PalmDetectorConfig(anchors=AnchorConfig(num_layers=4))
        with pytest.raises(ConfigError):
            PalmDetector(mock_engine(), config).initialize()

    def test_preprocess(self):
        detector = PalmDetector(mock_engine())
        tensor = detector.preprocess(np.full((480, 640, 3), 255, dtype=np.uint8))
        assert tensor.shape == (1, 256, 256, 3)
        assert tensor.dtype == np.float32
        np.testing.assert_allclose(tensor, 1.0)

    def test_process_finds_upright_palm(self):
        detector = PalmDetector(mock_engine(self.palm_outputs()))
        detector.initialize()

        result = detector.process(np.zeros((480, 640, 3), dtype=np.uint8))

        assert len(result.palms) == 1
        palm = result.palms[0]
        assert palm.rotation == pytest.approx(0.0)
        assert palm.width == pytest.approx(64.0 * 2.6, rel=1e-4)
        cx, cy = palm.center
        assert cx == pytest.approx(330.0, rel=1e-4)
        assert cy == pytest.approx(247.5 - 24.0, rel=1e-4)
        assert set(result.timings) == {"pre_process", "inference", "post_process"}

    def test_process_no_palm(self):
        detector = PalmDetector(mock_engine(self.palm_outputs(score_logit=-10.0)))
        detector.initialize()
        result = detector.process(np.zeros((480, 640, 3), dtype=np.uint8))
        assert result.palms == []

    def test_engine_failure_propagates(self):
        engine = mock_engine()
        engine.invoke.side_effect = InferenceError("device lost")
        detector = PalmDetector(engine)
        detector.initialize()
        with pytest.raises(InferenceError):
            detector.process(np.zeros((480, 640, 3), dtype=np.uint8))

    def test_missing_output_is_mismatch(self):
        outputs = self.palm_outputs()
        del outputs["classificators"]
        detector = PalmDetector(mock_engine(outputs))
        detector.initialize()
        with pytest.raises(ConfigMismatch) as excinfo:
            detector.process(np.zeros((480, 640, 3), dtype=np.uint8))
        assert excinfo.value.expected == "classificators"


class TestHandLandmarkEstimator:
    """Test suite for HandLandmarkEstimator with a mocked engine."""

    @pytest.fixture
    def outputs(self):
        raw = np.full((1, 63), 128.0, dtype=np.float32)
        return {
            "ld_21_3d": OutputTensor("ld_21_3d", raw),
            "output_handflag": OutputTensor("output_handflag", np.array([[0.97]], dtype=np.float32)),
            "output_handedness": OutputTensor("output_handedness", np.array([[0.2]], dtype=np.float32)),
        }

    def test_process_projects_into_region(self, outputs):
        estimator = HandLandmarkEstimator(mock_engine(outputs))
        estimator.initialize()
        region = OrientedRect(x=100.0, y=100.0, width=200.0, height=200.0)

        result = estimator.process(np.zeros((480, 640, 3), dtype=np.uint8), region)

        landmark = result.landmark
        assert landmark.handflag == pytest.approx(0.97)
        assert landmark.handedness == pytest.approx(0.2)
        np.testing.assert_allclose(landmark.pos[:, 0], 200.0)
        np.testing.assert_allclose(landmark.pos[:, 1], 200.0)
        assert "inference" in result.timings

    @pytest.mark.parametrize("name, data", [
        ("ld_21_3d", np.zeros((1, 42), dtype=np.float32)),
        ("output_handflag", np.zeros((1, 0), dtype=np.float32)),
        ("output_handedness", None),
    ])
    def test_malformed_outputs_are_mismatch(self, outputs, name, data):
        if data is None:
            del outputs[name]
        else:
            outputs[name] = OutputTensor(name, data)
        estimator = HandLandmarkEstimator(mock_engine(outputs))
        region = OrientedRect(x=100.0, y=100.0, width=200.0, height=200.0)

        with pytest.raises(ConfigMismatch):
            estimator.process(np.zeros((480, 640, 3), dtype=np.uint8), region)

    def test_empty_region_skips_inference(self):
        engine = mock_engine()
        estimator = HandLandmarkEstimator(engine)
        result = estimator.process(np.zeros((480, 640, 3), dtype=np.uint8), OrientedRect())
        engine.invoke.assert_not_called()
        assert result.landmark.handflag == 0.0

    def test_crop_size(self):
        estimator = HandLandmarkEstimator(mock_engine())
        region = OrientedRect(x=10.0, y=20.0, width=50.0, height=40.0, rotation=0.3)
        crop = estimator.crop(np.zeros((480, 640, 3), dtype=np.uint8), region)
        assert crop.shape == (40, 50, 3)
