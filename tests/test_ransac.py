"""Tests for RANSAC and the sample-consensus problems."""

import numpy as np
import pytest

from vio_core.frontend import (
    SE3,
    CentralRelativePoseProblem,
    PointCloudProblem,
    PointCloudTranslationProblem,
    Ransac,
    RotationOnlyProblem,
    TranslationOnlyProblem,
    rotation_from_rotvec,
)


def _normalize(points: np.ndarray) -> np.ndarray:
    return points / np.linalg.norm(points, axis=1, keepdims=True)


@pytest.fixture
def cur_points(scene_points: np.ndarray, ref_Pose_cur: SE3) -> np.ndarray:
    """Scene points expressed in the current camera frame."""
    return ref_Pose_cur.inverse().transform_points(scene_points)


class TestRansac:
    """Test suite for the RANSAC driver."""

    def test_invalid_configuration(self):
        with pytest.raises(ValueError, match="threshold"):
            Ransac(threshold=0.0)
        with pytest.raises(ValueError, match="max_iterations"):
            Ransac(threshold=1.0, max_iterations=0)
        with pytest.raises(ValueError, match="probability"):
            Ransac(threshold=1.0, probability=1.0)

    def test_too_few_correspondences(self, scene_points: np.ndarray):
        problem = PointCloudProblem(scene_points[:2], scene_points[:2])
        result = Ransac(threshold=0.1).run(problem)

        assert not result.success
        assert result.model is None
        assert result.num_inliers == 0
        assert result.iterations == 0

    def test_adaptive_iterations_stop_early(
        self, scene_points: np.ndarray, cur_points: np.ndarray
    ):
        result = Ransac(threshold=0.01, max_iterations=1000, seed=0).run(
            PointCloudProblem(scene_points, cur_points)
        )

        assert result.success
        # All-inlier data: the first good sample ends the search
        assert result.iterations < 10

    def test_seeded_runs_are_reproducible(
        self, scene_points: np.ndarray, cur_points: np.ndarray
    ):
        noisy = cur_points.copy()
        noisy[::4] += 2.0
        problem = PointCloudProblem(scene_points, noisy)

        first = Ransac(threshold=0.1, seed=7).run(problem)
        second = Ransac(threshold=0.1, seed=7).run(problem)

        np.testing.assert_array_equal(first.inliers, second.inliers)
        assert first.iterations == second.iterations


class TestPointCloudProblem:
    """Test suite for 3-point Arun alignment."""

    def test_recovers_transform(
        self, scene_points: np.ndarray, cur_points: np.ndarray, ref_Pose_cur: SE3
    ):
        result = Ransac(threshold=0.01, seed=0).run(
            PointCloudProblem(scene_points, cur_points)
        )

        assert result.success
        assert result.model.is_close(ref_Pose_cur, 1e-9, 1e-9)
        np.testing.assert_array_equal(result.inliers, np.arange(len(scene_points)))

    def test_rejects_outliers(
        self, scene_points: np.ndarray, cur_points: np.ndarray, ref_Pose_cur: SE3
    ):
        rng = np.random.default_rng(1)
        outliers = np.arange(0, len(cur_points), 3)
        corrupted = cur_points.copy()
        corrupted[outliers] += 5.0 * _normalize(rng.normal(size=(len(outliers), 3)))

        result = Ransac(
            threshold=0.5, max_iterations=500, probability=0.9999, seed=0
        ).run(PointCloudProblem(scene_points, corrupted))

        assert result.success
        assert result.model.is_close(ref_Pose_cur, 1e-9, 1e-9)
        assert set(result.inliers) == set(range(len(cur_points))) - set(outliers)

    def test_collinear_sample_is_degenerate(self):
        points = np.array([[0.0, 0.0, 1.0], [0.0, 0.0, 2.0], [0.0, 0.0, 3.0]])
        problem = PointCloudProblem(points, points)
        assert problem.compute_models(np.arange(3)) == []

    def test_mismatched_lengths(self, scene_points: np.ndarray):
        with pytest.raises(ValueError, match="equal length"):
            PointCloudProblem(scene_points, scene_points[:-1])


class TestPointCloudTranslationProblem:
    """Test suite for 1-point translation given rotation."""

    def test_recovers_translation(
        self, scene_points: np.ndarray, cur_points: np.ndarray, ref_Pose_cur: SE3
    ):
        result = Ransac(threshold=0.01, seed=0).run(
            PointCloudTranslationProblem(scene_points, cur_points, ref_Pose_cur.rotation)
        )

        assert result.success
        np.testing.assert_allclose(
            result.model.translation, ref_Pose_cur.translation, atol=1e-9
        )
        np.testing.assert_allclose(result.model.rotation, ref_Pose_cur.rotation)


class TestRotationOnlyProblem:
    """Test suite for 2-point rotation between bearing vectors."""

    def test_recovers_rotation(self, scene_points: np.ndarray):
        ref_R_cur = rotation_from_rotvec(np.array([0.05, -0.1, 0.02]))
        ref_versors = _normalize(scene_points)
        cur_versors = (ref_R_cur.T @ ref_versors.T).T

        result = Ransac(threshold=1e-6, seed=0).run(
            RotationOnlyProblem(ref_versors, cur_versors)
        )

        assert result.success
        np.testing.assert_allclose(result.model.rotation, ref_R_cur, atol=1e-9)
        np.testing.assert_array_equal(result.model.translation, np.zeros(3))
        assert result.num_inliers == len(scene_points)


class TestTranslationOnlyProblem:
    """Test suite for 2-point translation direction given rotation."""

    def test_recovers_direction(
        self, scene_points: np.ndarray, cur_points: np.ndarray, ref_Pose_cur: SE3
    ):
        result = Ransac(threshold=1e-6, seed=0).run(
            TranslationOnlyProblem(
                _normalize(scene_points), _normalize(cur_points), ref_Pose_cur.rotation
            )
        )

        assert result.success
        assert result.num_inliers == len(scene_points)
        np.testing.assert_allclose(
            result.model.translation, ref_Pose_cur.translation_direction, atol=1e-6
        )


class TestCentralRelativePoseProblem:
    """Test suite for the 5-point relative pose."""

    def test_recovers_rotation_and_direction(
        self, scene_points: np.ndarray, cur_points: np.ndarray, ref_Pose_cur: SE3
    ):
        result = Ransac(threshold=1e-6, seed=0).run(
            CentralRelativePoseProblem(_normalize(scene_points), _normalize(cur_points))
        )

        assert result.success
        assert result.num_inliers == len(scene_points)
        np.testing.assert_allclose(result.model.rotation, ref_Pose_cur.rotation, atol=1e-6)
        np.testing.assert_allclose(
            result.model.translation_direction,
            ref_Pose_cur.translation_direction,
            atol=1e-5,
        )

    def test_residuals_vanish_for_true_model(
        self, scene_points: np.ndarray, cur_points: np.ndarray, ref_Pose_cur: SE3
    ):
        problem = CentralRelativePoseProblem(
            _normalize(scene_points), _normalize(cur_points)
        )
        assert np.all(problem.residuals(ref_Pose_cur) < 1e-12)
