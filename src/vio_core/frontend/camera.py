"""Camera calibration parameters and rectified stereo projection math."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import cv2
import numpy as np
import yaml

from .pose import SE3


@dataclass
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model)."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )


@dataclass
class DistortionCoeffs:
    """Radial-tangential distortion coefficients."""

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0

    def to_array(self) -> np.ndarray:
        """Return distortion coefficients as (4,) array for OpenCV."""
        return np.array([self.k1, self.k2, self.p1, self.p2], dtype=np.float64)


@dataclass
class CameraParams:
    """Calibration of a single camera.

    Attributes:
        intrinsics: Pinhole intrinsics
        distortion: Radial-tangential distortion
        image_size: (width, height) in pixels
        body_Pose_cam: Camera pose in the body (IMU) frame
    """

    intrinsics: CameraIntrinsics
    distortion: DistortionCoeffs = field(default_factory=DistortionCoeffs)
    image_size: tuple[int, int] = (752, 480)
    body_Pose_cam: SE3 = field(default_factory=SE3.identity)

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> CameraParams:
        """Parse a EuRoC sensor.yaml calibration file.

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file format is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        # Parse intrinsics [fu, fv, cu, cv]
        intrinsics_list = data.get("intrinsics")
        if intrinsics_list is None or len(intrinsics_list) != 4:
            raise ValueError(f"Invalid intrinsics in {yaml_path}")

        # Parse distortion coefficients [k1, k2, p1, p2]
        distortion_list = data.get("distortion_coefficients")
        if distortion_list is None or len(distortion_list) != 4:
            raise ValueError(f"Invalid distortion coefficients in {yaml_path}")

        resolution = data.get("resolution")
        if resolution is None or len(resolution) != 2:
            raise ValueError(f"Invalid resolution in {yaml_path}")

        # Parse T_BS (camera-to-body transform)
        T_BS_data = data.get("T_BS", {}).get("data")
        if T_BS_data is None or len(T_BS_data) != 16:
            raise ValueError(f"Invalid T_BS transform in {yaml_path}")

        return cls(
            intrinsics=CameraIntrinsics(*(float(v) for v in intrinsics_list)),
            distortion=DistortionCoeffs(*(float(v) for v in distortion_list)),
            image_size=(int(resolution[0]), int(resolution[1])),
            body_Pose_cam=SE3.from_matrix(
                np.array(T_BS_data, dtype=np.float64).reshape(4, 4)
            ),
        )

    @property
    def K(self) -> np.ndarray:
        """Return 3x3 intrinsic matrix."""
        return self.intrinsics.to_matrix()

    def calibrate_pixels(self, pixels: np.ndarray) -> np.ndarray:
        """Undistort pixels and lift them to unit-norm bearing vectors.

        Args:
            pixels: Nx2 array of pixel coordinates

        Returns:
            Nx3 array of unit bearing vectors in the camera frame
        """
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
        if len(pixels) == 0:
            return np.empty((0, 3), dtype=np.float64)

        normalized = cv2.undistortPoints(
            pixels.reshape(-1, 1, 2), self.K, self.distortion.to_array()
        ).reshape(-1, 2)
        versors = np.hstack([normalized, np.ones((len(normalized), 1))])
        return versors / np.linalg.norm(versors, axis=1, keepdims=True)

    def calibrate_pixel(self, pixel: np.ndarray) -> np.ndarray:
        """Return the unit bearing vector of a single pixel."""
        return self.calibrate_pixels(np.asarray(pixel).reshape(1, 2))[0]


class StereoCamera:
    """Rectified stereo pair: projection, back-projection and Jacobians.

    Points are expressed in the rectified left camera frame. A stereo
    measurement is the triple (uL, uR, v): left column, right column and
    the shared row of a rectified pair.
    """

    def __init__(
        self,
        fx: float,
        fy: float,
        cx: float,
        cy: float,
        baseline: float,
        body_Pose_cam: SE3 | None = None,
    ) -> None:
        """Initialize stereo camera.

        Args:
            fx, fy: Rectified focal lengths (pixels)
            cx, cy: Rectified principal point (pixels)
            baseline: Distance between the camera centers (meters)
            body_Pose_cam: Rectified left camera pose in the body frame
        """
        if baseline <= 0.0:
            raise ValueError(f"Baseline must be positive, got {baseline}")
        self._fx = float(fx)
        self._fy = float(fy)
        self._cx = float(cx)
        self._cy = float(cy)
        self._baseline = float(baseline)
        self._body_Pose_cam = body_Pose_cam or SE3.identity()

    @classmethod
    def from_camera_params(
        cls, left: CameraParams, right: CameraParams
    ) -> StereoCamera:
        """Build the rectified stereo model from two calibrated cameras.

        The relative pose T_cam1_cam0 transforms points from cam0 frame to
        cam1 frame: T_cam1_cam0 = inv(T_BS_cam1) @ T_BS_cam0.
        """
        cam1_Pose_cam0 = right.body_Pose_cam.inverse().compose(left.body_Pose_cam)

        R1, _R2, P1, P2, _Q, _roi1, _roi2 = cv2.stereoRectify(
            cameraMatrix1=left.K,
            distCoeffs1=left.distortion.to_array(),
            cameraMatrix2=right.K,
            distCoeffs2=right.distortion.to_array(),
            imageSize=left.image_size,
            R=cam1_Pose_cam0.rotation,
            T=cam1_Pose_cam0.translation.reshape(3, 1),
            flags=cv2.CALIB_ZERO_DISPARITY,
            alpha=0,
        )

        # P2[0, 3] = -fx * baseline for a horizontal rectified pair
        baseline = abs(float(P2[0, 3] / P2[0, 0]))

        # R1 rotates cam0 points into the rectified left frame
        body_Pose_rect = left.body_Pose_cam.compose(SE3.from_Rt(R1.T))
        return cls(
            fx=P1[0, 0],
            fy=P1[1, 1],
            cx=P1[0, 2],
            cy=P1[1, 2],
            baseline=baseline,
            body_Pose_cam=body_Pose_rect,
        )

    def project(self, point: np.ndarray) -> np.ndarray:
        """Project a 3D point to a stereo measurement (uL, uR, v)."""
        X, Y, Z = np.asarray(point, dtype=np.float64).flatten()
        if Z <= 0.0:
            raise ValueError(f"Point is behind the camera (Z={Z})")
        uL = self._fx * X / Z + self._cx
        uR = self._fx * (X - self._baseline) / Z + self._cx
        v = self._fy * Y / Z + self._cy
        return np.array([uL, uR, v], dtype=np.float64)

    def backproject(self, uL: float, uR: float, v: float) -> np.ndarray:
        """Triangulate a rectified stereo measurement to a 3D point."""
        return self.backproject_with_jacobian(uL, uR, v)[0]

    def backproject_with_jacobian(
        self, uL: float, uR: float, v: float
    ) -> tuple[np.ndarray, np.ndarray]:
        """Triangulate a stereo measurement and return d(point)/d(uL, uR, v).

        Z = fx * b / d with disparity d = uL - uR; X and Y follow from the
        left pinhole model.

        Returns:
            Tuple of (point (3,), jacobian (3, 3))
        """
        disparity = float(uL - uR)
        if disparity <= 0.0:
            raise ValueError(f"Non-positive disparity {disparity}")

        b = self._baseline
        du = uL - self._cx
        dv = v - self._cy
        d2 = disparity * disparity

        point = np.array(
            [
                du * b / disparity,
                dv * self._fx * b / (self._fy * disparity),
                self._fx * b / disparity,
            ],
            dtype=np.float64,
        )

        ratio = self._fx / self._fy
        jacobian = np.array(
            [
                [b / disparity - du * b / d2, du * b / d2, 0.0],
                [-dv * ratio * b / d2, dv * ratio * b / d2, ratio * b / disparity],
                [-self._fx * b / d2, self._fx * b / d2, 0.0],
            ],
            dtype=np.float64,
        )
        return point, jacobian

    @property
    def K(self) -> np.ndarray:
        """Return the rectified 3x3 intrinsic matrix."""
        return np.array(
            [[self._fx, 0.0, self._cx], [0.0, self._fy, self._cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    @property
    def baseline(self) -> float:
        """Return baseline distance between cameras in meters."""
        return self._baseline

    @property
    def focal_length(self) -> float:
        """Return rectified focal length fx."""
        return self._fx

    @property
    def principal_point(self) -> tuple[float, float]:
        """Return rectified principal point (cx, cy)."""
        return (self._cx, self._cy)

    @property
    def body_Pose_cam(self) -> SE3:
        """Return the rectified left camera pose in the body frame."""
        return self._body_Pose_cam
