"""SE(3) pose representation for relative and absolute rigid transforms."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial.transform import Rotation


def skew(v: np.ndarray) -> np.ndarray:
    """Create skew-symmetric matrix [v]x from a 3D vector."""
    v = np.asarray(v, dtype=np.float64).flatten()
    return np.array(
        [
            [0.0, -v[2], v[1]],
            [v[2], 0.0, -v[0]],
            [-v[1], v[0], 0.0],
        ],
        dtype=np.float64,
    )


def rotation_from_rotvec(rotvec: np.ndarray) -> np.ndarray:
    """Return the 3x3 rotation matrix for an axis-angle vector."""
    return Rotation.from_rotvec(np.asarray(rotvec, dtype=np.float64)).as_matrix()


@dataclass
class SE3:
    """Rigid body transformation (rotation + translation) in SE(3).

    Relative poses follow the `a_Pose_b` convention: the transform maps
    points expressed in frame b into frame a,

        p_a = R @ p_b + t

    so a tracker result `ref_Pose_cur` maps current-frame points into the
    reference frame.

    Attributes:
        rotation: 3x3 orthonormal rotation matrix (det = +1)
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector

    def __post_init__(self) -> None:
        """Validate and normalize inputs."""
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(
                f"Translation must be (3,), got {self.translation.shape}"
            )

    @classmethod
    def identity(cls) -> SE3:
        """Create identity transformation (no rotation, no translation)."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_Rt(cls, R: np.ndarray, t: np.ndarray | None = None) -> SE3:
        """Create SE3 from rotation matrix and (optional) translation vector."""
        if t is None:
            t = np.zeros(3)
        return cls(rotation=R, translation=t)

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Create SE3 from 4x4 homogeneous transformation matrix.

        Args:
            T: 4x4 transformation matrix of the form:
               [[R  t]
                [0  1]]
        """
        T = np.asarray(T)
        if T.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4, got {T.shape}")
        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    def to_matrix(self) -> np.ndarray:
        """Convert to 4x4 homogeneous transformation matrix."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def inverse(self) -> SE3:
        """Compute the inverse transformation.

        If T = a_Pose_b then T.inverse() = b_Pose_a. For T = [R, t] the
        inverse is [R^T, -R^T @ t].
        """
        R_inv = self.rotation.T
        return SE3(rotation=R_inv, translation=-R_inv @ self.translation)

    def compose(self, other: SE3) -> SE3:
        """Compose with another transformation: self @ other.

        Example:
            W_Pose_ref.compose(ref_Pose_cur) gives W_Pose_cur
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return SE3(rotation=R, translation=t)

    def between(self, other: SE3) -> SE3:
        """Return the relative transform self^-1 @ other.

        For W_Pose_a.between(W_Pose_b) this is a_Pose_b.
        """
        return self.inverse().compose(other)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Apply the transform to an Nx3 array of points."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)

        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")

        return (self.rotation @ points.T).T + self.translation

    def transform_point(self, point: np.ndarray) -> np.ndarray:
        """Apply the transform to a single 3D point."""
        point = np.asarray(point, dtype=np.float64).flatten()
        return self.rotation @ point + self.translation

    @property
    def rotation_angle(self) -> float:
        """Return the rotation angle in radians, in [0, pi]."""
        # atan2 keeps precision near zero, where arccos of the trace does not
        R = self.rotation
        sin_theta = 0.5 * np.linalg.norm(
            [R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]]
        )
        cos_theta = (np.trace(R) - 1.0) / 2.0
        return float(np.arctan2(sin_theta, cos_theta))

    @property
    def translation_direction(self) -> np.ndarray:
        """Return the unit translation direction (zeros if no translation).

        Monocular estimates only recover this direction; the scale is
        unobservable.
        """
        norm = np.linalg.norm(self.translation)
        if norm < 1e-12:
            return np.zeros(3)
        return self.translation / norm

    def is_close(
        self, other: SE3, rot_tol: float = 1e-6, trans_tol: float = 1e-6
    ) -> bool:
        """Return True if both transforms agree within tolerances."""
        delta = self.between(other)
        return (
            delta.rotation_angle <= rot_tol
            and float(np.linalg.norm(delta.translation)) <= trans_tol
        )

    def __repr__(self) -> str:
        """Return string representation."""
        t = self.translation
        return (
            f"SE3(angle={np.degrees(self.rotation_angle):.3f}deg, "
            f"t=[{t[0]:.3f}, {t[1]:.3f}, {t[2]:.3f}])"
        )

    def __matmul__(self, other: SE3) -> SE3:
        """Matrix multiplication operator for composition."""
        return self.compose(other)
