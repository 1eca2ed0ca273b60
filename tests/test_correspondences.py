"""Tests for correspondence utilities."""

import logging

import numpy as np
import pytest

from conftest import make_frame, make_stereo_frame
from vio_core.frontend import (
    CameraParams,
    KeypointStatus,
    StereoCamera,
    Tracker,
    compute_median_disparity,
    find_matching_keypoints,
    find_matching_stereo_keypoints,
    find_outliers,
    get_point3_and_covariance,
    rotation_from_rotvec,
)


class TestFindOutliers:
    """Test suite for find_outliers."""

    def test_partition(self):
        matches = [(i, i + 10) for i in range(8)]
        inliers = np.array([6, 1, 3])

        outliers = find_outliers(matches, inliers)

        assert outliers == [0, 2, 4, 5, 7]
        assert sorted(outliers + inliers.tolist()) == list(range(len(matches)))

    def test_no_inliers(self):
        matches = [(0, 0), (1, 1)]
        assert find_outliers(matches, np.empty(0, dtype=np.int64)) == [0, 1]

    def test_all_inliers(self):
        matches = [(0, 0), (1, 1)]
        assert find_outliers(matches, np.array([0, 1])) == []

    def test_exposed_on_tracker(self):
        assert Tracker.find_outliers([(0, 0), (1, 1)], np.array([1])) == [0]


class TestFindMatchingKeypoints:
    """Test suite for mono and stereo landmark matching."""

    def test_matches_by_landmark_id(
        self, camera_params: CameraParams, scene_points: np.ndarray
    ):
        points = scene_points[:5]
        ref = make_frame(camera_params, 0, points, [10, 11, -1, 13, 14])
        cur = make_frame(camera_params, 1, points[::-1], [14, 13, 12, -1, 10])

        matches = find_matching_keypoints(ref, cur)

        # Ordered by current index; unassigned ids never match
        assert matches == [(4, 0), (3, 1), (0, 4)]

    def test_no_common_landmarks(
        self, camera_params: CameraParams, scene_points: np.ndarray
    ):
        ref = make_frame(camera_params, 0, scene_points[:3], [0, 1, 2])
        cur = make_frame(camera_params, 1, scene_points[:3], [3, 4, 5])
        assert find_matching_keypoints(ref, cur) == []

    def test_stereo_requires_valid_on_both_sides(
        self,
        camera_params: CameraParams,
        stereo_camera: StereoCamera,
        scene_points: np.ndarray,
    ):
        points = scene_points[:4]
        ref = make_stereo_frame(camera_params, stereo_camera, 0, points, [0, 1, 2, 3])
        cur = make_stereo_frame(camera_params, stereo_camera, 1, points, [0, 1, 2, 3])
        ref.right_keypoints_status[1] = KeypointStatus.NO_RIGHT_RECT
        cur.right_keypoints_status[2] = KeypointStatus.NO_DEPTH

        assert find_matching_stereo_keypoints(ref, cur) == [(0, 0), (3, 3)]

    def test_stereo_filters_precomputed_mono_matches(
        self,
        camera_params: CameraParams,
        stereo_camera: StereoCamera,
        scene_points: np.ndarray,
    ):
        points = scene_points[:4]
        ref = make_stereo_frame(camera_params, stereo_camera, 0, points, [0, 1, 2, 3])
        cur = make_stereo_frame(camera_params, stereo_camera, 1, points, [0, 1, 2, 3])
        cur.right_keypoints_status[0] = KeypointStatus.FAILED_ARUN

        matches = find_matching_stereo_keypoints(ref, cur, [(0, 0), (2, 2)])

        assert matches == [(2, 2)]


class TestComputeMedianDisparity:
    """Test suite for compute_median_disparity."""

    def test_median_of_displacements(self):
        ref = np.array([[0.0, 0.0], [10.0, 10.0], [20.0, 20.0]])
        cur = np.array([[3.0, 4.0], [10.0, 11.0], [20.0, 30.0]])
        assert compute_median_disparity(ref, cur, [(0, 0), (1, 1), (2, 2)]) == 5.0

    def test_uses_matched_indices(self):
        ref = np.array([[0.0, 0.0], [100.0, 100.0]])
        cur = np.array([[100.0, 102.0], [50.0, 50.0]])
        assert compute_median_disparity(ref, cur, [(1, 0)]) == pytest.approx(2.0)

    def test_no_matches(self, caplog: pytest.LogCaptureFixture):
        with caplog.at_level(logging.WARNING):
            disparity = compute_median_disparity(np.empty((0, 2)), np.empty((0, 2)), [])
        assert disparity == 0.0
        assert "No matches" in caplog.text


class TestGetPoint3AndCovariance:
    """Test suite for get_point3_and_covariance."""

    @pytest.fixture
    def stereo_frame(
        self,
        camera_params: CameraParams,
        stereo_camera: StereoCamera,
        scene_points: np.ndarray,
    ):
        return make_stereo_frame(
            camera_params, stereo_camera, 0, scene_points[:3], [0, 1, 2]
        )

    def test_point_and_covariance(self, stereo_frame, stereo_camera: StereoCamera):
        stereo_pt_cov = np.eye(3)
        point, covariance = get_point3_and_covariance(
            stereo_frame, stereo_camera, 1, stereo_pt_cov
        )

        np.testing.assert_allclose(point, stereo_frame.keypoints_3d[1])
        np.testing.assert_allclose(covariance, covariance.T)
        assert np.all(np.linalg.eigvalsh(covariance) >= -1e-12)
        # Depth is by far the least certain direction
        assert covariance[2, 2] > covariance[0, 0]
        assert covariance[2, 2] > covariance[1, 1]

    def test_covariance_grows_with_depth(
        self,
        camera_params: CameraParams,
        stereo_camera: StereoCamera,
    ):
        points = np.array([[0.0, 0.0, 2.0], [0.0, 0.0, 8.0]])
        frame = make_stereo_frame(camera_params, stereo_camera, 0, points, [0, 1])

        _, near = get_point3_and_covariance(frame, stereo_camera, 0, np.eye(3))
        _, far = get_point3_and_covariance(frame, stereo_camera, 1, np.eye(3))

        assert far[2, 2] > near[2, 2]

    def test_rotation_is_applied(self, stereo_frame, stereo_camera: StereoCamera):
        R = rotation_from_rotvec(np.array([0.2, -0.1, 0.3]))
        point, covariance = get_point3_and_covariance(
            stereo_frame, stereo_camera, 2, np.eye(3)
        )
        rotated_point, rotated_covariance = get_point3_and_covariance(
            stereo_frame, stereo_camera, 2, np.eye(3), R
        )

        np.testing.assert_allclose(rotated_point, R @ point)
        np.testing.assert_allclose(rotated_covariance, R @ covariance @ R.T)
