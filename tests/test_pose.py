"""Tests for SE3 rigid transforms."""

import numpy as np
import pytest

from vio_core.frontend import SE3, rotation_from_rotvec, skew


@pytest.fixture
def pose() -> SE3:
    return SE3(
        rotation=rotation_from_rotvec(np.array([0.1, -0.2, 0.3])),
        translation=np.array([1.0, 2.0, -0.5]),
    )


class TestSE3:
    """Test suite for SE3."""

    def test_identity(self):
        T = SE3.identity()
        np.testing.assert_array_equal(T.to_matrix(), np.eye(4))
        assert T.rotation_angle == pytest.approx(0.0)

    def test_invalid_shapes(self):
        with pytest.raises(ValueError, match="Rotation must be 3x3"):
            SE3(rotation=np.eye(2), translation=np.zeros(3))
        with pytest.raises(ValueError, match="Translation must be"):
            SE3(rotation=np.eye(3), translation=np.zeros(4))
        with pytest.raises(ValueError, match="Transform must be 4x4"):
            SE3.from_matrix(np.eye(3))

    def test_inverse_composes_to_identity(self, pose: SE3):
        assert (pose @ pose.inverse()).is_close(SE3.identity(), 1e-12, 1e-12)
        assert pose.inverse().compose(pose).is_close(SE3.identity(), 1e-12, 1e-12)

    def test_matrix_round_trip(self, pose: SE3):
        assert SE3.from_matrix(pose.to_matrix()).is_close(pose, 1e-12, 1e-12)

    def test_transform_points_matches_matrix(self, pose: SE3):
        points = np.array([[1.0, 0.0, 0.0], [0.0, 2.0, 3.0]])
        expected = (pose.to_matrix() @ np.hstack([points, np.ones((2, 1))]).T).T
        np.testing.assert_allclose(pose.transform_points(points), expected[:, :3])
        np.testing.assert_allclose(pose.transform_point(points[1]), expected[1, :3])

    def test_between(self, pose: SE3):
        W_Pose_a = pose
        a_Pose_b = SE3(
            rotation=rotation_from_rotvec(np.array([0.0, 0.0, 0.5])),
            translation=np.array([0.2, 0.0, 0.0]),
        )
        W_Pose_b = W_Pose_a @ a_Pose_b
        assert W_Pose_a.between(W_Pose_b).is_close(a_Pose_b, 1e-12, 1e-12)

    def test_rotation_angle(self):
        T = SE3.from_Rt(rotation_from_rotvec(np.array([0.0, 0.4, 0.0])))
        assert T.rotation_angle == pytest.approx(0.4)

    def test_translation_direction(self):
        T = SE3.from_Rt(np.eye(3), np.array([0.0, 3.0, 4.0]))
        np.testing.assert_allclose(T.translation_direction, [0.0, 0.6, 0.8])
        np.testing.assert_array_equal(SE3.identity().translation_direction, np.zeros(3))

    def test_is_close_tolerances(self, pose: SE3):
        shifted = SE3(pose.rotation, pose.translation + np.array([0.01, 0.0, 0.0]))
        assert not pose.is_close(shifted, trans_tol=1e-3)
        assert pose.is_close(shifted, trans_tol=0.02)

    def test_skew_is_cross_product(self):
        a = np.array([1.0, -2.0, 0.5])
        b = np.array([0.3, 0.7, -1.1])
        np.testing.assert_allclose(skew(a) @ b, np.cross(a, b))
