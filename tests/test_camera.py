"""Tests for camera calibration and stereo projection."""

from pathlib import Path

import numpy as np
import pytest

from vio_core.frontend import SE3, CameraParams, StereoCamera

EUROC_SENSOR_YAML = """\
sensor_type: camera
comment: VI-Sensor cam0 (MT9M034)
T_BS:
  cols: 4
  rows: 4
  data: [0.0148655429818, -0.999880929698, 0.00414029679422, -0.0216401454975,
         0.999557249008, 0.0149672133247, 0.025715529948, -0.064676986768,
        -0.0257744366974, 0.00375618835797, 0.999660727178, 0.00981073058949,
         0.0, 0.0, 0.0, 1.0]
rate_hz: 20
resolution: [752, 480]
camera_model: pinhole
intrinsics: [458.654, 457.296, 367.215, 248.375]
distortion_model: radial-tangential
distortion_coefficients: [-0.28340811, 0.07395907, 0.00019359, 1.76187114e-05]
"""


@pytest.fixture
def sensor_yaml(tmp_path: Path) -> Path:
    path = tmp_path / "sensor.yaml"
    path.write_text(EUROC_SENSOR_YAML)
    return path


class TestCameraParams:
    """Test suite for CameraParams."""

    def test_from_yaml(self, sensor_yaml: Path):
        params = CameraParams.from_yaml(sensor_yaml)

        assert params.intrinsics.fx == pytest.approx(458.654)
        assert params.intrinsics.cy == pytest.approx(248.375)
        assert params.distortion.k1 == pytest.approx(-0.28340811)
        assert params.image_size == (752, 480)
        assert params.body_Pose_cam.translation[0] == pytest.approx(-0.0216401454975)
        np.testing.assert_allclose(
            params.K,
            [[458.654, 0.0, 367.215], [0.0, 457.296, 248.375], [0.0, 0.0, 1.0]],
        )

    def test_from_yaml_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError, match="Calibration file not found"):
            CameraParams.from_yaml(tmp_path / "missing.yaml")

    def test_from_yaml_invalid_intrinsics(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text(EUROC_SENSOR_YAML.replace("457.296, ", ""))
        with pytest.raises(ValueError, match="Invalid intrinsics"):
            CameraParams.from_yaml(path)

    def test_calibrate_principal_point(self, camera_params: CameraParams):
        versor = camera_params.calibrate_pixel(np.array([376.0, 240.0]))
        np.testing.assert_allclose(versor, [0.0, 0.0, 1.0], atol=1e-12)

    def test_calibrate_pixels_are_unit_bearings(self, camera_params: CameraParams):
        pixels = np.array([[0.0, 0.0], [700.0, 400.0], [100.0, 450.0]])
        versors = camera_params.calibrate_pixels(pixels)

        np.testing.assert_allclose(np.linalg.norm(versors, axis=1), 1.0)
        # Re-projecting the bearing gives back the pixel
        reprojected = versors[:, :2] / versors[:, 2:3] * 458.0 + [376.0, 240.0]
        np.testing.assert_allclose(reprojected, pixels, atol=1e-6)

    def test_calibrate_empty(self, camera_params: CameraParams):
        assert camera_params.calibrate_pixels(np.empty((0, 2))).shape == (0, 3)


class TestStereoCamera:
    """Test suite for StereoCamera."""

    def test_invalid_baseline(self):
        with pytest.raises(ValueError, match="Baseline must be positive"):
            StereoCamera(fx=400.0, fy=400.0, cx=300.0, cy=200.0, baseline=0.0)

    def test_project_backproject_round_trip(self, stereo_camera: StereoCamera):
        point = np.array([0.4, -0.3, 5.0])
        uL, uR, v = stereo_camera.project(point)

        assert uL - uR == pytest.approx(458.0 * 0.11 / 5.0)
        np.testing.assert_allclose(stereo_camera.backproject(uL, uR, v), point)

    def test_project_behind_camera(self, stereo_camera: StereoCamera):
        with pytest.raises(ValueError, match="behind the camera"):
            stereo_camera.project(np.array([0.0, 0.0, -1.0]))

    def test_backproject_non_positive_disparity(self, stereo_camera: StereoCamera):
        with pytest.raises(ValueError, match="Non-positive disparity"):
            stereo_camera.backproject(300.0, 300.0, 200.0)

    def test_jacobian_matches_finite_differences(self, stereo_camera: StereoCamera):
        measurement = np.array([420.0, 405.0, 260.0])
        _point, jacobian = stereo_camera.backproject_with_jacobian(*measurement)

        eps = 1e-6
        numeric = np.zeros((3, 3))
        for i in range(3):
            delta = np.zeros(3)
            delta[i] = eps
            plus = stereo_camera.backproject(*(measurement + delta))
            minus = stereo_camera.backproject(*(measurement - delta))
            numeric[:, i] = (plus - minus) / (2 * eps)

        np.testing.assert_allclose(jacobian, numeric, rtol=1e-5, atol=1e-8)

    def test_properties(self, stereo_camera: StereoCamera):
        assert stereo_camera.baseline == pytest.approx(0.11)
        assert stereo_camera.focal_length == pytest.approx(458.0)
        assert stereo_camera.principal_point == (376.0, 240.0)
        assert stereo_camera.body_Pose_cam.is_close(
            stereo_camera.body_Pose_cam.identity()
        )

    def test_from_camera_params(self, camera_params: CameraParams):
        right = CameraParams(
            intrinsics=camera_params.intrinsics,
            image_size=camera_params.image_size,
            body_Pose_cam=SE3.from_Rt(np.eye(3), np.array([0.11, 0.0, 0.0])),
        )

        stereo = StereoCamera.from_camera_params(camera_params, right)

        assert stereo.baseline == pytest.approx(0.11)
        assert stereo.body_Pose_cam.is_close(SE3.identity(), rot_tol=1e-9)
