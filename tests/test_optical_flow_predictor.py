"""Tests for optical flow predictors."""

import numpy as np
import pytest

from vio_core.frontend import (
    CameraParams,
    OpticalFlowPredictorType,
    RotationalOpticalFlowPredictor,
    StaticOpticalFlowPredictor,
    make_optical_flow_predictor,
    rotation_from_rotvec,
)


@pytest.fixture
def prev_kps() -> np.ndarray:
    rng = np.random.default_rng(3)
    return np.column_stack(
        [rng.uniform(0.0, 752.0, 50), rng.uniform(0.0, 480.0, 50)]
    ).astype(np.float32)


class TestStaticOpticalFlowPredictor:
    """Test suite for the static predictor."""

    def test_returns_previous_keypoints(self, prev_kps: np.ndarray):
        success, next_kps = StaticOpticalFlowPredictor().predict_flow(prev_kps)

        assert success
        np.testing.assert_array_equal(next_kps, prev_kps)

    def test_returns_a_copy(self, prev_kps: np.ndarray):
        _, next_kps = StaticOpticalFlowPredictor().predict_flow(prev_kps)
        next_kps[0] = -1.0
        assert prev_kps[0, 0] != -1.0

    def test_empty(self):
        success, next_kps = StaticOpticalFlowPredictor().predict_flow(
            np.empty((0, 2), dtype=np.float32)
        )
        assert success
        assert next_kps.shape == (0, 2)


class TestRotationalOpticalFlowPredictor:
    """Test suite for the rotational predictor."""

    def test_identity_rotation_matches_static(
        self, camera_params: CameraParams, prev_kps: np.ndarray
    ):
        predictor = RotationalOpticalFlowPredictor(camera_params.K)
        success, next_kps = predictor.predict_flow(prev_kps)

        assert success
        np.testing.assert_allclose(next_kps, prev_kps, atol=1e-3)

    def test_prediction_follows_rotation(
        self, camera_params: CameraParams, prev_kps: np.ndarray
    ):
        cur_R_prev = rotation_from_rotvec(np.array([0.01, 0.03, -0.02]))
        predictor = RotationalOpticalFlowPredictor(camera_params.K)
        predictor.update_inter_frame_rotation(cur_R_prev)

        _, next_kps = predictor.predict_flow(prev_kps)

        # Rotate bearing vectors and project them with K
        K = camera_params.K
        bearings = np.linalg.inv(K) @ np.vstack([prev_kps.T, np.ones(len(prev_kps))])
        rotated = K @ (cur_R_prev @ bearings)
        expected = (rotated[:2] / rotated[2]).T
        np.testing.assert_allclose(next_kps, expected, atol=1e-2)

    def test_points_behind_camera_keep_previous_location(
        self, camera_params: CameraParams, prev_kps: np.ndarray
    ):
        predictor = RotationalOpticalFlowPredictor(camera_params.K)
        predictor.update_inter_frame_rotation(
            rotation_from_rotvec(np.array([0.0, np.pi, 0.0]))
        )

        success, next_kps = predictor.predict_flow(prev_kps)

        assert success
        np.testing.assert_allclose(next_kps, prev_kps, atol=1e-3)

    def test_last_rotation_wins(self, camera_params: CameraParams):
        predictor = RotationalOpticalFlowPredictor(camera_params.K)
        first = rotation_from_rotvec(np.array([0.1, 0.0, 0.0]))
        second = rotation_from_rotvec(np.array([0.0, 0.2, 0.0]))

        predictor.update_inter_frame_rotation(first)
        predictor.update_inter_frame_rotation(second)

        np.testing.assert_allclose(predictor.inter_frame_rotation, second)

    def test_invalid_inputs(self, camera_params: CameraParams):
        with pytest.raises(ValueError, match="K must be 3x3"):
            RotationalOpticalFlowPredictor(np.eye(2))
        predictor = RotationalOpticalFlowPredictor(camera_params.K)
        with pytest.raises(ValueError, match="Rotation must be 3x3"):
            predictor.update_inter_frame_rotation(np.eye(4))


class TestMakeOpticalFlowPredictor:
    """Test suite for the predictor factory."""

    def test_static(self):
        predictor = make_optical_flow_predictor(OpticalFlowPredictorType.STATIC)
        assert isinstance(predictor, StaticOpticalFlowPredictor)

    def test_rotational(self, camera_params: CameraParams):
        predictor = make_optical_flow_predictor(
            OpticalFlowPredictorType.ROTATIONAL, camera_params.K
        )
        assert isinstance(predictor, RotationalOpticalFlowPredictor)

    def test_rotational_requires_K(self):
        with pytest.raises(ValueError, match="requires K"):
            make_optical_flow_predictor(OpticalFlowPredictorType.ROTATIONAL)

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown OpticalFlowPredictorType"):
            make_optical_flow_predictor("STATIC")
