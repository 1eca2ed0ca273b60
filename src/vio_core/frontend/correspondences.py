"""Correspondence utilities shared by the tracker and the mapping stages.

Matches are ordered lists of (ref_index, cur_index) keypoint index pairs;
inlier sets are indices into such a list.
"""

from __future__ import annotations

import logging

import numpy as np

from .camera import StereoCamera
from .frame import INVALID_LANDMARK, Frame, KeypointStatus, StereoFrame

logger = logging.getLogger(__name__)

KeypointMatches = list[tuple[int, int]]


def find_outliers(matches: KeypointMatches, inliers: np.ndarray) -> list[int]:
    """Return indices of `matches` that are not in `inliers`.

    The result keeps the order of `matches`, so together with `inliers` it
    partitions range(len(matches)).
    """
    inlier_set = {int(i) for i in np.asarray(inliers, dtype=np.int64).flatten()}
    return [i for i in range(len(matches)) if i not in inlier_set]


def find_matching_keypoints(ref_frame: Frame, cur_frame: Frame) -> KeypointMatches:
    """Pair keypoints of two frames that observe the same landmark.

    Returns:
        (ref_index, cur_index) pairs ordered by cur_index
    """
    ref_index_of = {
        int(lmk): i
        for i, lmk in enumerate(ref_frame.landmarks)
        if lmk != INVALID_LANDMARK
    }

    matches: KeypointMatches = []
    for cur_index, lmk in enumerate(cur_frame.landmarks):
        if lmk == INVALID_LANDMARK:
            continue
        ref_index = ref_index_of.get(int(lmk))
        if ref_index is not None:
            matches.append((ref_index, cur_index))
    return matches


def find_matching_stereo_keypoints(
    ref_stereo_frame: StereoFrame,
    cur_stereo_frame: StereoFrame,
    matches_ref_cur_mono: KeypointMatches | None = None,
) -> KeypointMatches:
    """Landmark matches whose keypoints have a VALID stereo match in both frames.

    Args:
        ref_stereo_frame: Reference stereo frame
        cur_stereo_frame: Current stereo frame
        matches_ref_cur_mono: Precomputed mono matches to filter; computed
            from the left frames when omitted

    Returns:
        Subset of the mono matches, in the same order
    """
    if matches_ref_cur_mono is None:
        matches_ref_cur_mono = find_matching_keypoints(
            ref_stereo_frame.left_frame, cur_stereo_frame.left_frame
        )

    ref_status = ref_stereo_frame.right_keypoints_status
    cur_status = cur_stereo_frame.right_keypoints_status
    return [
        (ref_index, cur_index)
        for ref_index, cur_index in matches_ref_cur_mono
        if ref_status[ref_index] == KeypointStatus.VALID
        and cur_status[cur_index] == KeypointStatus.VALID
    ]


def compute_median_disparity(
    ref_keypoints: np.ndarray,
    cur_keypoints: np.ndarray,
    matches: KeypointMatches,
) -> float:
    """Median pixel displacement of matched keypoints.

    Returns 0.0 when there are no matches.
    """
    if len(matches) == 0:
        logger.warning("No matches to compute the median disparity")
        return 0.0

    ref_keypoints = np.asarray(ref_keypoints, dtype=np.float64).reshape(-1, 2)
    cur_keypoints = np.asarray(cur_keypoints, dtype=np.float64).reshape(-1, 2)
    index_pairs = np.asarray(matches, dtype=np.int64)
    displacement = (
        cur_keypoints[index_pairs[:, 1]] - ref_keypoints[index_pairs[:, 0]]
    )
    return float(np.median(np.linalg.norm(displacement, axis=1)))


def get_point3_and_covariance(
    stereo_frame: StereoFrame,
    stereo_camera: StereoCamera,
    point_id: int,
    stereo_pt_cov: np.ndarray,
    R: np.ndarray | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """3D point of a stereo keypoint and its covariance.

    The (uL, uR, v) measurement covariance is propagated through the
    back-projection Jacobian: cov = J @ stereo_pt_cov @ J.T.

    Args:
        stereo_frame: Frame holding the rectified keypoints and 3D points
        stereo_camera: Rectified stereo model used for the Jacobian
        point_id: Keypoint index in `stereo_frame`
        stereo_pt_cov: 3x3 covariance of the (uL, uR, v) measurement
        R: Optional rotation applied to both the point and its covariance

    Returns:
        Tuple of (point (3,), covariance (3, 3))
    """
    uL, v = stereo_frame.left_keypoints_rectified[point_id]
    uR = stereo_frame.right_keypoints_rectified[point_id][0]
    _point, jacobian = stereo_camera.backproject_with_jacobian(uL, uR, v)

    point = np.array(stereo_frame.keypoints_3d[point_id], dtype=np.float64)
    covariance = jacobian @ np.asarray(stereo_pt_cov, dtype=np.float64) @ jacobian.T

    if R is not None:
        R = np.asarray(R, dtype=np.float64)
        point = R @ point
        covariance = R @ covariance @ R.T
    return point, covariance
