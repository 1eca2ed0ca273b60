"""Geometric verification and pose recovery of loop closure candidates.

Place recognition only says two keyframes look alike. Verification
matches their descriptors, checks the bearing vectors against a 5-point
relative pose, and recovers the metric pose from the matched 3D points.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import cv2
import numpy as np

from ..frontend import (
    SE3,
    CentralRelativePoseProblem,
    PointCloudProblem,
    PointCloudTranslationProblem,
    Ransac,
    RansacResult,
)
from .definitions import LCDFrame, PoseRecoveryOption
from .params import LoopClosureDetectorParams

logger = logging.getLogger(__name__)

_MATCHER = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)


def match_descriptors(
    query_descriptors: np.ndarray,
    train_descriptors: np.ndarray,
    lowe_ratio: float = 0.7,
) -> list[cv2.DMatch]:
    """Match binary descriptors using Lowe's ratio test.

    Args:
        query_descriptors: (N, 32) uint8 descriptors (queryIdx side)
        train_descriptors: (M, 32) uint8 descriptors (trainIdx side)
        lowe_ratio: Best match must be closer than this fraction of the
            second best

    Returns:
        List of good matches
    """
    if len(query_descriptors) < 2 or len(train_descriptors) < 2:
        return []

    # K-NN matching with k=2 for ratio test
    knn_matches = _MATCHER.knnMatch(query_descriptors, train_descriptors, k=2)

    good_matches = []
    for match_pair in knn_matches:
        if len(match_pair) == 2:
            m, n = match_pair
            if m.distance < lowe_ratio * n.distance:
                good_matches.append(m)
    return good_matches


def compute_matches_between_frames(
    query_frame: LCDFrame,
    match_frame: LCDFrame,
    lowe_ratio: float = 0.7,
) -> tuple[np.ndarray, np.ndarray]:
    """Return index-aligned keypoint indices (query, match) of good matches."""
    matches = match_descriptors(
        query_frame.descriptors_mat, match_frame.descriptors_mat, lowe_ratio
    )
    query_indices = np.array([m.queryIdx for m in matches], dtype=np.int64)
    match_indices = np.array([m.trainIdx for m in matches], dtype=np.int64)
    return query_indices, match_indices


@dataclass
class VerificationResult:
    """Result of a verification or pose recovery stage.

    Attributes:
        is_valid: Whether the stage succeeded
        camMatch_Pose_camQuery: Query camera pose in the match camera frame
        num_inliers: RANSAC inliers
        num_input: Correspondences fed to RANSAC
        iterations: RANSAC iterations
        inliers: Indices of the inlier correspondences
    """

    is_valid: bool
    camMatch_Pose_camQuery: SE3 | None = None
    num_inliers: int = 0
    num_input: int = 0
    iterations: int = 0
    inliers: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.int64))

    @classmethod
    def from_ransac(
        cls, result: RansacResult, num_input: int, is_valid: bool
    ) -> VerificationResult:
        return cls(
            is_valid=is_valid,
            camMatch_Pose_camQuery=result.model if is_valid else None,
            num_inliers=result.num_inliers,
            num_input=num_input,
            iterations=result.iterations,
            inliers=result.inliers,
        )


class GeometricVerifier:
    """Runs the mono check and metric pose recovery between two LCDFrames."""

    def __init__(self, lcd_params: LoopClosureDetectorParams) -> None:
        self._params = lcd_params
        self._seed = None if lcd_params.ransac_randomize else 0

    def verify_mono(
        self,
        query_frame: LCDFrame,
        match_frame: LCDFrame,
        query_indices: np.ndarray,
        match_indices: np.ndarray,
    ) -> VerificationResult:
        """5-point RANSAC on matched bearing vectors (unit translation)."""
        num_input = len(query_indices)
        if num_input < CentralRelativePoseProblem.sample_size:
            return VerificationResult(is_valid=False, num_input=num_input)

        ransac = Ransac(
            threshold=self._params.ransac_threshold_mono,
            max_iterations=self._params.max_ransac_iterations_mono,
            probability=self._params.ransac_probability_mono,
            seed=self._seed,
        )
        result = ransac.run(
            CentralRelativePoseProblem(
                match_frame.versors[match_indices],
                query_frame.versors[query_indices],
            )
        )
        is_valid = (
            result.success
            and result.num_inliers >= self._params.ransac_inlier_threshold_mono
        )
        return VerificationResult.from_ransac(result, num_input, is_valid)

    def recover_pose(
        self,
        query_frame: LCDFrame,
        match_frame: LCDFrame,
        query_indices: np.ndarray,
        match_indices: np.ndarray,
        camMatch_Pose_camQuery_mono: SE3 | None = None,
    ) -> VerificationResult:
        """Recover the metric camera pose from matched 3D points.

        With RANSAC_ARUN the full pose comes from 3-point alignment; with
        GIVEN_ROT only the translation is estimated, using the rotation of
        the mono check. When `use_mono_rot` is set and a mono pose is
        available, the final rotation is taken from it.
        """
        num_input = len(query_indices)
        match_points = match_frame.keypoints_3d[match_indices]
        query_points = query_frame.keypoints_3d[query_indices]

        ransac = Ransac(
            threshold=self._params.ransac_threshold_stereo,
            max_iterations=self._params.max_ransac_iterations_stereo,
            probability=self._params.ransac_probability_stereo,
            seed=self._seed,
        )

        option = self._params.pose_recovery_option
        if option == PoseRecoveryOption.RANSAC_ARUN:
            problem = PointCloudProblem(match_points, query_points)
        elif option == PoseRecoveryOption.GIVEN_ROT:
            if camMatch_Pose_camQuery_mono is None:
                logger.warning("Pose recovery given rotation needs a mono estimate")
                return VerificationResult(is_valid=False, num_input=num_input)
            problem = PointCloudTranslationProblem(
                match_points, query_points, camMatch_Pose_camQuery_mono.rotation
            )
        else:
            raise ValueError(f"Unknown PoseRecoveryOption: {option!r}")

        if num_input < problem.sample_size:
            return VerificationResult(is_valid=False, num_input=num_input)

        result = ransac.run(problem)
        is_valid = (
            result.success
            and result.num_inliers >= self._params.ransac_inlier_threshold_stereo
        )
        verification = VerificationResult.from_ransac(result, num_input, is_valid)

        if (
            is_valid
            and self._params.use_mono_rot
            and camMatch_Pose_camQuery_mono is not None
        ):
            verification.camMatch_Pose_camQuery = SE3(
                rotation=camMatch_Pose_camQuery_mono.rotation,
                translation=result.model.translation,
            )
        return verification
