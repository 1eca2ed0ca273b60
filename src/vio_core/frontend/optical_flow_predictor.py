"""Optical flow predictors giving initial guesses for feature tracking.

The predicted location of every previous keypoint seeds the pyramidal
Lucas-Kanade refinement, narrowing its search window.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

import numpy as np


class OpticalFlowPredictorType(Enum):
    """Available optical flow predictors."""

    STATIC = "STATIC"
    ROTATIONAL = "ROTATIONAL"


class OpticalFlowPredictor(ABC):
    """Predicts where keypoints of the previous frame appear in the next one."""

    @abstractmethod
    def predict_flow(self, prev_kps: np.ndarray) -> tuple[bool, np.ndarray]:
        """Predict next-frame locations of `prev_kps`.

        Args:
            prev_kps: Nx2 keypoints in the previous (reference) image

        Returns:
            Tuple of (success, Nx2 predicted keypoints in the next image),
            index-aligned with `prev_kps`
        """


class StaticOpticalFlowPredictor(OpticalFlowPredictor):
    """Assumes the camera did not move: keypoints keep their pixel positions."""

    def predict_flow(self, prev_kps: np.ndarray) -> tuple[bool, np.ndarray]:
        return True, np.array(prev_kps, dtype=np.float32).reshape(-1, 2)


class RotationalOpticalFlowPredictor(OpticalFlowPredictor):
    """Predicts flow from an inter-frame rotation, assuming no translation.

    Under pure rotation pixels map through the infinite homography
    H = K @ R @ K^-1, where R takes bearing vectors from the previous
    camera frame to the current one (cur_R_prev).
    """

    def __init__(self, K: np.ndarray) -> None:
        """Initialize predictor with the camera intrinsic matrix."""
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3):
            raise ValueError(f"K must be 3x3, got {K.shape}")
        self._K = K
        self._K_inverse = np.linalg.inv(K)
        self._inter_frame_rotation = np.eye(3)

    def update_inter_frame_rotation(self, cur_R_prev: np.ndarray) -> None:
        """Set the rotation used by the next prediction (last write wins)."""
        cur_R_prev = np.asarray(cur_R_prev, dtype=np.float64)
        if cur_R_prev.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {cur_R_prev.shape}")
        self._inter_frame_rotation = cur_R_prev.copy()

    def predict_flow(self, prev_kps: np.ndarray) -> tuple[bool, np.ndarray]:
        prev_kps = np.asarray(prev_kps, dtype=np.float64).reshape(-1, 2)
        if len(prev_kps) == 0:
            return True, np.empty((0, 2), dtype=np.float32)

        H = self._K @ self._inter_frame_rotation @ self._K_inverse

        # Lift to homogeneous pixels, rotate, re-project
        p1 = np.hstack([prev_kps, np.ones((len(prev_kps), 1))])
        p2 = (H @ p1.T).T

        next_kps = prev_kps.copy()
        in_front = p2[:, 2] > 0.0
        next_kps[in_front] = p2[in_front, :2] / p2[in_front, 2:3]
        return True, next_kps.astype(np.float32)

    @property
    def inter_frame_rotation(self) -> np.ndarray:
        """Return the last rotation set."""
        return self._inter_frame_rotation.copy()


def make_optical_flow_predictor(
    predictor_type: OpticalFlowPredictorType, K: np.ndarray | None = None
) -> OpticalFlowPredictor:
    """Create an optical flow predictor.

    Args:
        predictor_type: Which predictor to build
        K: 3x3 intrinsic matrix, required by the rotational predictor

    Raises:
        ValueError: For an unknown type or a rotational predictor without K
    """
    if predictor_type == OpticalFlowPredictorType.STATIC:
        return StaticOpticalFlowPredictor()
    if predictor_type == OpticalFlowPredictorType.ROTATIONAL:
        if K is None:
            raise ValueError("Rotational optical flow predictor requires K")
        return RotationalOpticalFlowPredictor(K)
    raise ValueError(f"Unknown OpticalFlowPredictorType: {predictor_type!r}")
