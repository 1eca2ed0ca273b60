"""Shared fixtures: a synthetic EuRoC-like stereo rig and scene."""

from __future__ import annotations

import cv2
import numpy as np
import pytest

from vio_core.frontend import (
    SE3,
    CameraIntrinsics,
    CameraParams,
    Frame,
    KeypointStatus,
    StereoCamera,
    StereoFrame,
)

FX = 458.0
FY = 458.0
CX = 376.0
CY = 240.0
BASELINE = 0.11
IMAGE_SIZE = (752, 480)  # (width, height)


def textured_image(seed: int) -> np.ndarray:
    """Blurred random texture, good for corners, KLT and ORB."""
    rng = np.random.default_rng(seed)
    image = rng.integers(0, 256, size=(IMAGE_SIZE[1], IMAGE_SIZE[0]), dtype=np.uint8)
    return cv2.GaussianBlur(image, (5, 5), 1.5)


def project_points(points: np.ndarray) -> np.ndarray:
    """Project Nx3 camera-frame points to Nx2 pixels."""
    points = np.asarray(points, dtype=np.float64)
    u = FX * points[:, 0] / points[:, 2] + CX
    v = FY * points[:, 1] / points[:, 2] + CY
    return np.column_stack([u, v])


def backproject_pixels(pixels: np.ndarray, depths: np.ndarray) -> np.ndarray:
    """Lift Nx2 pixels with depths to Nx3 camera-frame points."""
    pixels = np.asarray(pixels, dtype=np.float64)
    x = (pixels[:, 0] - CX) / FX * depths
    y = (pixels[:, 1] - CY) / FY * depths
    return np.column_stack([x, y, depths])


def make_frame(
    camera_params: CameraParams,
    frame_id: int,
    points: np.ndarray,
    landmarks: np.ndarray,
    image: np.ndarray | None = None,
) -> Frame:
    """Frame observing camera-frame `points` with the given landmark ids."""
    return Frame.from_keypoints(
        frame_id=frame_id,
        timestamp_ns=1_000_000 * frame_id,
        camera_params=camera_params,
        keypoints=project_points(points),
        landmarks=np.asarray(landmarks, dtype=np.int64),
        image=image,
    )


def make_stereo_frame(
    camera_params: CameraParams,
    stereo_camera: StereoCamera,
    frame_id: int,
    points: np.ndarray,
    landmarks: np.ndarray,
    image: np.ndarray | None = None,
) -> StereoFrame:
    """Stereo frame whose keypoints are all VALID projections of `points`."""
    points = np.asarray(points, dtype=np.float64)
    measurements = np.array([stereo_camera.project(p) for p in points])
    left_frame = make_frame(camera_params, frame_id, points, landmarks, image)
    return StereoFrame(
        left_frame=left_frame,
        stereo_camera=stereo_camera,
        left_keypoints_rectified=measurements[:, [0, 2]],
        right_keypoints_rectified=measurements[:, [1, 2]],
        right_keypoints_status=[KeypointStatus.VALID] * len(points),
        keypoints_depth=points[:, 2].copy(),
        keypoints_3d=points.copy(),
    )


@pytest.fixture
def camera_params() -> CameraParams:
    """Undistorted left camera with EuRoC-like intrinsics."""
    return CameraParams(
        intrinsics=CameraIntrinsics(fx=FX, fy=FY, cx=CX, cy=CY),
        image_size=IMAGE_SIZE,
    )


@pytest.fixture
def stereo_camera() -> StereoCamera:
    """Rectified stereo rig matching `camera_params`."""
    return StereoCamera(fx=FX, fy=FY, cx=CX, cy=CY, baseline=BASELINE)


@pytest.fixture
def scene_points() -> np.ndarray:
    """60 points 4-8 m in front of the reference camera."""
    rng = np.random.default_rng(42)
    n = 60
    return np.column_stack(
        [
            rng.uniform(-1.5, 1.5, n),
            rng.uniform(-1.0, 1.0, n),
            rng.uniform(4.0, 8.0, n),
        ]
    )


@pytest.fixture
def ref_Pose_cur() -> SE3:
    """Small rigid motion between reference and current camera."""
    return SE3(
        rotation=cv2.Rodrigues(np.array([0.01, -0.02, 0.015]))[0],
        translation=np.array([0.3, -0.05, 0.1]),
    )
