"""Feature tracking and geometric outlier rejection between frames."""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import cv2
import numpy as np
from scipy import linalg

from .camera import CameraParams
from .correspondences import (
    KeypointMatches,
    compute_median_disparity,
    find_matching_keypoints,
    find_matching_stereo_keypoints,
    find_outliers,
    get_point3_and_covariance,
)
from .frame import INVALID_LANDMARK, Frame, KeypointStatus, StereoFrame
from .optical_flow_predictor import (
    OpticalFlowPredictor,
    RotationalOpticalFlowPredictor,
    make_optical_flow_predictor,
)
from .params import TrackerParams
from .pose import SE3
from .ransac import (
    CentralRelativePoseProblem,
    PointCloudProblem,
    PointCloudTranslationProblem,
    Ransac,
    RansacResult,
    RotationOnlyProblem,
    SampleConsensusProblem,
    TranslationOnlyProblem,
)

logger = logging.getLogger(__name__)


class TrackingStatus(Enum):
    """Outcome of a geometric outlier rejection call."""

    VALID = "VALID"
    FEW_MATCHES = "FEW_MATCHES"  # Not enough correspondences or inliers
    INVALID = "INVALID"  # Estimation failed or was degenerate
    DISABLED = "DISABLED"  # Tracking turned off by configuration


@dataclass
class DebugTrackerInfo:
    """Counts and timings of the last tracker call.

    Every public `Tracker` entry point resets all fields before writing its
    own, so the snapshot never mixes values from earlier calls.
    """

    nr_detected_features: int = 0
    nr_tracked_features: int = 0
    nr_mono_putatives: int = 0
    nr_mono_inliers: int = 0
    mono_ransac_iters: int = 0
    nr_stereo_putatives: int = 0
    nr_stereo_inliers: int = 0
    stereo_ransac_iters: int = 0
    nr_valid_rkp: int = 0
    nr_no_left_rect_rkp: int = 0
    nr_no_right_rect_rkp: int = 0
    nr_no_depth_rkp: int = 0
    nr_failed_arun_rkp: int = 0
    feature_detection_ms: float = 0.0
    feature_tracking_ms: float = 0.0
    mono_ransac_ms: float = 0.0
    stereo_ransac_ms: float = 0.0

    def reset(self) -> None:
        """Restore every field to its default."""
        for f in dataclasses.fields(self):
            setattr(self, f.name, f.default)


class Tracker:
    """Detects, tracks and geometrically verifies features across frames.

    Landmark ids come from `landmark_count`, which only ever increases over
    the lifetime of the tracker. All frame mutation happens in place on the
    frames passed in by the caller; a tracker instance must not be shared
    between threads.
    """

    # Pure helpers, exposed on the class for callers holding a tracker
    find_outliers = staticmethod(find_outliers)
    find_matching_keypoints = staticmethod(find_matching_keypoints)
    find_matching_stereo_keypoints = staticmethod(find_matching_stereo_keypoints)
    compute_median_disparity = staticmethod(compute_median_disparity)
    get_point3_and_covariance = staticmethod(get_point3_and_covariance)

    def __init__(
        self,
        tracker_params: TrackerParams,
        camera_params: CameraParams,
        cam_mask: np.ndarray | None = None,
        output_images_path: str | Path | None = None,
    ) -> None:
        """Initialize tracker.

        Args:
            tracker_params: Detection, tracking and RANSAC configuration
            camera_params: Calibration of the tracked (left) camera
            cam_mask: uint8 detection mask (0 = never detect); all-255 of
                the image size when omitted
            output_images_path: Directory for `display_frame` output
        """
        if not isinstance(tracker_params, TrackerParams):
            raise TypeError("tracker_params must be a TrackerParams")
        if not isinstance(camera_params, CameraParams):
            raise TypeError("camera_params must be a CameraParams")

        self._params = tracker_params
        self._camera_params = camera_params
        self._output_images_path = (
            Path(output_images_path) if output_images_path is not None else None
        )

        width, height = camera_params.image_size
        if cam_mask is None:
            cam_mask = np.full((height, width), 255, dtype=np.uint8)
        cam_mask = np.asarray(cam_mask, dtype=np.uint8)
        if cam_mask.shape != (height, width):
            raise ValueError(
                f"cam_mask shape {cam_mask.shape} does not match image size "
                f"{(height, width)}"
            )
        self.cam_mask = cam_mask

        self.landmark_count = 0
        self.debug_info = DebugTrackerInfo()
        self._optical_flow_predictor = make_optical_flow_predictor(
            tracker_params.optical_flow_predictor_type, camera_params.K
        )
        self._stereo_pt_cov = np.eye(3) * tracker_params.stereo_point_sigma**2

    @property
    def tracker_params(self) -> TrackerParams:
        return self._params

    @property
    def camera_params(self) -> CameraParams:
        return self._camera_params

    @property
    def optical_flow_predictor(self) -> OpticalFlowPredictor:
        return self._optical_flow_predictor

    # ------------------------------------------------------------------
    # Detection and tracking
    # ------------------------------------------------------------------

    def detect_new_features(
        self,
        cur_frame: Frame,
        cam_mask: np.ndarray,
        need_n_corners: int,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Detect up to `need_n_corners` corners away from tracked keypoints.

        Does not modify `cur_frame`.

        Returns:
            Tuple of (Nx2 float32 keypoints, (N,) corner responses)
        """
        empty = (np.empty((0, 2), dtype=np.float32), np.empty(0, dtype=np.float64))
        # OpenCV treats maxCorners <= 0 as "no limit"
        if need_n_corners <= 0:
            return empty
        if cur_frame.image is None:
            raise ValueError(f"Frame {cur_frame.frame_id} has no image")

        image = cur_frame.image
        params = self._params

        mask = np.asarray(cam_mask, dtype=np.uint8).copy()
        if mask.shape != image.shape[:2]:
            raise ValueError("Detection mask and image sizes differ")
        radius = max(int(params.min_distance), 1)
        for x, y in cur_frame.keypoints[cur_frame.valid_landmark_mask]:
            cv2.circle(mask, (int(round(x)), int(round(y))), radius, 0, -1)

        corners = cv2.goodFeaturesToTrack(
            image,
            maxCorners=need_n_corners,
            qualityLevel=params.quality_level,
            minDistance=params.min_distance,
            mask=mask,
            blockSize=params.block_size,
            useHarrisDetector=params.use_harris_detector,
            k=params.k,
        )
        if corners is None or len(corners) == 0:
            return empty
        corners = corners.reshape(-1, 1, 2).astype(np.float32)

        if params.enable_subpixel_corner_finder:
            criteria = (
                cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER,
                params.subpixel_max_iter,
                params.subpixel_eps,
            )
            win = params.subpixel_win_size
            corners = cv2.cornerSubPix(image, corners, (win, win), (-1, -1), criteria)

        keypoints = corners.reshape(-1, 2)

        # Score by the minimum-eigenvalue corner response
        response = cv2.cornerMinEigenVal(image, params.block_size)
        h, w = response.shape
        cols = np.clip(np.round(keypoints[:, 0]).astype(int), 0, w - 1)
        rows = np.clip(np.round(keypoints[:, 1]).astype(int), 0, h - 1)
        scores = response[rows, cols].astype(np.float64)
        return keypoints, scores

    def feature_detection(self, cur_frame: Frame) -> int:
        """Top up `cur_frame` with new corners, each with a fresh landmark id.

        Returns:
            Number of new features added
        """
        self.debug_info.reset()
        t0 = time.perf_counter()
        need_n_corners = (
            self._params.max_features_per_frame - cur_frame.num_valid_landmarks
        )
        keypoints, scores = self.detect_new_features(
            cur_frame, self.cam_mask, need_n_corners
        )

        n_new = len(keypoints)
        landmarks = np.arange(
            self.landmark_count, self.landmark_count + n_new, dtype=np.int64
        )
        self.landmark_count += n_new
        cur_frame.add_keypoints(
            keypoints, landmarks, np.ones(n_new, dtype=np.int64), scores
        )

        self.debug_info.nr_detected_features = n_new
        self.debug_info.feature_detection_ms = (time.perf_counter() - t0) * 1000
        logger.debug(
            "Frame %d: detected %d new features (%d tracked)",
            cur_frame.frame_id,
            n_new,
            cur_frame.num_valid_landmarks - n_new,
        )
        return n_new

    def feature_tracking(
        self,
        ref_frame: Frame,
        cur_frame: Frame,
        ref_R_cur: np.ndarray | None = None,
    ) -> int:
        """Track landmarks of `ref_frame` into `cur_frame` with pyramidal KLT.

        Landmarks younger than `max_feature_age` are predicted with the
        optical flow predictor and refined with Lucas-Kanade. Successful
        tracks are appended to `cur_frame` with their age incremented;
        failed tracks are dropped.

        Args:
            ref_frame: Previous frame with landmarks
            cur_frame: Current frame receiving the tracked keypoints
            ref_R_cur: Optional inter-frame rotation (e.g. from the IMU) fed
                to a rotational predictor

        Returns:
            Number of tracked features
        """
        self.debug_info.reset()
        t0 = time.perf_counter()
        if ref_frame.image is None or cur_frame.image is None:
            raise ValueError("Feature tracking requires both images")

        if isinstance(self._optical_flow_predictor, RotationalOpticalFlowPredictor):
            # Re-armed on every call; no rotation means no motion prior
            cur_R_ref = (
                np.eye(3)
                if ref_R_cur is None
                else np.asarray(ref_R_cur, dtype=np.float64).T
            )
            self._optical_flow_predictor.update_inter_frame_rotation(cur_R_ref)

        params = self._params
        trackable = ref_frame.valid_landmark_mask & (
            ref_frame.landmarks_age < params.max_feature_age
        )
        ref_indices = np.flatnonzero(trackable)
        if len(ref_indices) == 0:
            self.debug_info.nr_tracked_features = 0
            self.debug_info.feature_tracking_ms = (time.perf_counter() - t0) * 1000
            return 0

        prev_kps = ref_frame.keypoints[ref_indices].astype(np.float32)
        _success, predicted = self._optical_flow_predictor.predict_flow(prev_kps)

        criteria = (
            cv2.TERM_CRITERIA_COUNT | cv2.TERM_CRITERIA_EPS,
            params.klt_max_iter,
            params.klt_eps,
        )
        next_kps, status, _err = cv2.calcOpticalFlowPyrLK(
            ref_frame.image,
            cur_frame.image,
            prev_kps.reshape(-1, 1, 2),
            predicted.reshape(-1, 1, 2).astype(np.float32).copy(),
            winSize=(params.klt_win_size, params.klt_win_size),
            maxLevel=params.klt_max_level,
            criteria=criteria,
            flags=cv2.OPTFLOW_USE_INITIAL_FLOW,
        )
        next_kps = next_kps.reshape(-1, 2)

        h, w = cur_frame.image.shape[:2]
        tracked = (
            (status.flatten() == 1)
            & (next_kps[:, 0] >= 0.0)
            & (next_kps[:, 0] < w)
            & (next_kps[:, 1] >= 0.0)
            & (next_kps[:, 1] < h)
        )
        kept = ref_indices[tracked]
        cur_frame.add_keypoints(
            next_kps[tracked],
            ref_frame.landmarks[kept],
            ref_frame.landmarks_age[kept] + 1,
            ref_frame.scores[kept],
        )

        n_tracked = int(np.count_nonzero(tracked))
        self.debug_info.nr_tracked_features = n_tracked
        self.debug_info.feature_tracking_ms = (time.perf_counter() - t0) * 1000
        logger.debug(
            "Frame %d: tracked %d/%d features",
            cur_frame.frame_id,
            n_tracked,
            len(ref_indices),
        )
        return n_tracked

    # ------------------------------------------------------------------
    # Geometric outlier rejection
    # ------------------------------------------------------------------

    def _run_ransac(
        self,
        problem: SampleConsensusProblem,
        threshold: float,
    ) -> RansacResult:
        ransac = Ransac(
            threshold=threshold,
            max_iterations=self._params.ransac_max_iterations,
            probability=self._params.ransac_probability,
            seed=None if self._params.ransac_randomize else 0,
        )
        return ransac.run(problem)

    def _mono_status(self, result: RansacResult) -> TrackingStatus:
        if not result.success:
            logger.warning("Mono RANSAC found no consensus")
            return TrackingStatus.INVALID
        if result.num_inliers < self._params.min_nr_mono_inliers:
            return TrackingStatus.FEW_MATCHES
        return TrackingStatus.VALID

    def _stereo_status(self, result: RansacResult) -> TrackingStatus:
        if not result.success:
            logger.warning("Stereo RANSAC found no consensus")
            return TrackingStatus.INVALID
        if result.num_inliers < self._params.min_nr_stereo_inliers:
            return TrackingStatus.FEW_MATCHES
        return TrackingStatus.VALID

    @staticmethod
    def _matched_rows(
        matches: KeypointMatches, ref: np.ndarray, cur: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        index_pairs = np.asarray(matches, dtype=np.int64).reshape(-1, 2)
        return ref[index_pairs[:, 0]], cur[index_pairs[:, 1]]

    def geometric_outlier_rejection_mono(
        self, ref_frame: Frame, cur_frame: Frame
    ) -> tuple[TrackingStatus, SE3]:
        """Estimate ref_Pose_cur (unit translation) with 5-point RANSAC.

        When the median disparity is below `disparity_threshold` the
        translation is unobservable, and a 2-point rotation-only model is
        fitted instead (zero translation).

        On VALID, outlier landmarks are unassigned in both frames. Otherwise
        the frames are left untouched and the pose is identity.
        """
        self.debug_info.reset()
        t0 = time.perf_counter()
        matches = find_matching_keypoints(ref_frame, cur_frame)
        self.debug_info.nr_mono_putatives = len(matches)

        if len(matches) < CentralRelativePoseProblem.sample_size:
            logger.debug("Mono rejection: only %d matches", len(matches))
            self.debug_info.nr_mono_inliers = 0
            self.debug_info.mono_ransac_iters = 0
            return TrackingStatus.FEW_MATCHES, SE3.identity()

        ref_versors, cur_versors = self._matched_rows(
            matches, ref_frame.versors, cur_frame.versors
        )
        disparity = compute_median_disparity(
            ref_frame.keypoints, cur_frame.keypoints, matches
        )
        if disparity < self._params.disparity_threshold:
            problem: SampleConsensusProblem = RotationOnlyProblem(
                ref_versors, cur_versors
            )
        else:
            problem = CentralRelativePoseProblem(ref_versors, cur_versors)

        result = self._run_ransac(problem, self._params.ransac_threshold_mono)
        status = self._mono_status(result)
        pose = SE3.identity()
        if status == TrackingStatus.VALID:
            self.remove_outliers_mono(
                matches, result.inliers, ref_frame, cur_frame, result.iterations
            )
            pose = result.model
        else:
            self.debug_info.nr_mono_inliers = result.num_inliers
            self.debug_info.mono_ransac_iters = result.iterations

        self.debug_info.mono_ransac_ms = (time.perf_counter() - t0) * 1000
        logger.debug(
            "Mono rejection: %s, %d/%d inliers, disparity %.2f px",
            status.name,
            result.num_inliers,
            len(matches),
            disparity,
        )
        return status, pose

    def geometric_outlier_rejection_mono_given_rotation(
        self, ref_frame: Frame, cur_frame: Frame, ref_R_cur: np.ndarray
    ) -> tuple[TrackingStatus, SE3]:
        """Estimate the translation direction with 2-point RANSAC given ref_R_cur.

        If the rotation alone explains the bearings (median rotation-only
        residual within threshold), the translation is unobservable and
        the result has zero translation.
        """
        self.debug_info.reset()
        t0 = time.perf_counter()
        ref_R_cur = np.asarray(ref_R_cur, dtype=np.float64)
        if ref_R_cur.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {ref_R_cur.shape}")

        matches = find_matching_keypoints(ref_frame, cur_frame)
        self.debug_info.nr_mono_putatives = len(matches)
        if len(matches) < TranslationOnlyProblem.sample_size:
            self.debug_info.nr_mono_inliers = 0
            self.debug_info.mono_ransac_iters = 0
            return TrackingStatus.FEW_MATCHES, SE3.identity()

        ref_versors, cur_versors = self._matched_rows(
            matches, ref_frame.versors, cur_frame.versors
        )
        threshold = self._params.ransac_threshold_mono
        rotation_residuals = 1.0 - np.sum(
            ref_versors * (ref_R_cur @ cur_versors.T).T, axis=1
        )
        if np.median(rotation_residuals) <= threshold:
            inliers = np.flatnonzero(rotation_residuals <= threshold)
            result = RansacResult(
                success=len(inliers) > 0,
                model=SE3.from_Rt(ref_R_cur),
                inliers=inliers,
                iterations=0,
                residual=float(rotation_residuals[inliers].sum()),
            )
        else:
            result = self._run_ransac(
                TranslationOnlyProblem(ref_versors, cur_versors, ref_R_cur), threshold
            )

        status = self._mono_status(result)
        pose = SE3.identity()
        if status == TrackingStatus.VALID:
            self.remove_outliers_mono(
                matches, result.inliers, ref_frame, cur_frame, result.iterations
            )
            pose = result.model
        else:
            self.debug_info.nr_mono_inliers = result.num_inliers
            self.debug_info.mono_ransac_iters = result.iterations

        self.debug_info.mono_ransac_ms = (time.perf_counter() - t0) * 1000
        logger.debug(
            "Mono rejection given rotation: %s, %d/%d inliers",
            status.name,
            result.num_inliers,
            len(matches),
        )
        return status, pose

    def geometric_outlier_rejection_stereo(
        self, ref_stereo_frame: StereoFrame, cur_stereo_frame: StereoFrame
    ) -> tuple[TrackingStatus, SE3]:
        """Estimate metric ref_Pose_cur from 3D-3D matches with Arun RANSAC."""
        self.debug_info.reset()
        if not self._params.use_stereo_tracking:
            return TrackingStatus.DISABLED, SE3.identity()

        t0 = time.perf_counter()
        matches = find_matching_stereo_keypoints(ref_stereo_frame, cur_stereo_frame)
        self.debug_info.nr_stereo_putatives = len(matches)
        if len(matches) < PointCloudProblem.sample_size:
            self.debug_info.nr_stereo_inliers = 0
            self.debug_info.stereo_ransac_iters = 0
            return TrackingStatus.FEW_MATCHES, SE3.identity()

        ref_points, cur_points = self._matched_rows(
            matches, ref_stereo_frame.keypoints_3d, cur_stereo_frame.keypoints_3d
        )
        result = self._run_ransac(
            PointCloudProblem(ref_points, cur_points),
            self._params.ransac_threshold_stereo,
        )

        status = self._stereo_status(result)
        pose = SE3.identity()
        if status == TrackingStatus.VALID:
            self.remove_outliers_stereo(
                matches,
                result.inliers,
                ref_stereo_frame,
                cur_stereo_frame,
                result.iterations,
            )
            pose = result.model
        else:
            self.debug_info.nr_stereo_inliers = result.num_inliers
            self.debug_info.stereo_ransac_iters = result.iterations

        self.debug_info.stereo_ransac_ms = (time.perf_counter() - t0) * 1000
        logger.debug(
            "Stereo rejection: %s, %d/%d inliers",
            status.name,
            result.num_inliers,
            len(matches),
        )
        return status, pose

    def geometric_outlier_rejection_stereo_given_rotation(
        self,
        ref_stereo_frame: StereoFrame,
        cur_stereo_frame: StereoFrame,
        ref_R_cur: np.ndarray,
    ) -> tuple[TrackingStatus, SE3, np.ndarray]:
        """Estimate the metric translation given ref_R_cur, with its covariance.

        A 1-point RANSAC selects inliers; the translation is then the
        information-weighted mean of the per-inlier translations
        t_i = p_ref - R @ p_cur, with cov_i = cov_ref + R @ cov_cur @ R.T
        propagated from the stereo measurement noise.

        Returns:
            Tuple of (status, pose, 3x3 translation covariance). The
            covariance is zero unless the status is VALID.
        """
        self.debug_info.reset()
        ref_R_cur = np.asarray(ref_R_cur, dtype=np.float64)
        if ref_R_cur.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {ref_R_cur.shape}")
        no_covariance = np.zeros((3, 3))
        if not self._params.use_stereo_tracking:
            return TrackingStatus.DISABLED, SE3.identity(), no_covariance

        t0 = time.perf_counter()
        matches = find_matching_stereo_keypoints(ref_stereo_frame, cur_stereo_frame)
        self.debug_info.nr_stereo_putatives = len(matches)
        if len(matches) < PointCloudTranslationProblem.sample_size:
            self.debug_info.nr_stereo_inliers = 0
            self.debug_info.stereo_ransac_iters = 0
            return TrackingStatus.FEW_MATCHES, SE3.identity(), no_covariance

        ref_points, cur_points = self._matched_rows(
            matches, ref_stereo_frame.keypoints_3d, cur_stereo_frame.keypoints_3d
        )
        result = self._run_ransac(
            PointCloudTranslationProblem(ref_points, cur_points, ref_R_cur),
            self._params.ransac_threshold_stereo,
        )

        status = self._stereo_status(result)
        if status != TrackingStatus.VALID:
            self.debug_info.nr_stereo_inliers = result.num_inliers
            self.debug_info.stereo_ransac_iters = result.iterations
            self.debug_info.stereo_ransac_ms = (time.perf_counter() - t0) * 1000
            return status, SE3.identity(), no_covariance

        information_sum = np.zeros((3, 3))
        weighted_sum = np.zeros(3)
        for i in result.inliers:
            ref_index, cur_index = matches[i]
            p_ref, cov_ref = get_point3_and_covariance(
                ref_stereo_frame,
                ref_stereo_frame.stereo_camera,
                ref_index,
                self._stereo_pt_cov,
            )
            p_cur, cov_cur = get_point3_and_covariance(
                cur_stereo_frame,
                cur_stereo_frame.stereo_camera,
                cur_index,
                self._stereo_pt_cov,
                ref_R_cur,
            )
            information = linalg.inv(cov_ref + cov_cur)
            information_sum += information
            weighted_sum += information @ (p_ref - p_cur)

        covariance = linalg.inv(information_sum)
        translation = covariance @ weighted_sum

        self.remove_outliers_stereo(
            matches, result.inliers, ref_stereo_frame, cur_stereo_frame, result.iterations
        )
        self.debug_info.stereo_ransac_ms = (time.perf_counter() - t0) * 1000
        logger.debug(
            "Stereo rejection given rotation: %d/%d inliers",
            result.num_inliers,
            len(matches),
        )
        return status, SE3(rotation=ref_R_cur, translation=translation), covariance

    # ------------------------------------------------------------------
    # Outlier removal and bookkeeping
    # ------------------------------------------------------------------

    def remove_outliers_mono(
        self,
        matches: KeypointMatches,
        inliers: np.ndarray,
        ref_frame: Frame,
        cur_frame: Frame,
        iterations: int = 0,
    ) -> None:
        """Unassign the landmark of every outlier match in both frames."""
        for i in find_outliers(matches, inliers):
            ref_index, cur_index = matches[i]
            ref_frame.landmarks[ref_index] = INVALID_LANDMARK
            cur_frame.landmarks[cur_index] = INVALID_LANDMARK
        self.debug_info.nr_mono_inliers = len(inliers)
        self.debug_info.mono_ransac_iters = iterations

    def remove_outliers_stereo(
        self,
        matches: KeypointMatches,
        inliers: np.ndarray,
        ref_stereo_frame: StereoFrame,
        cur_stereo_frame: StereoFrame,
        iterations: int = 0,
    ) -> None:
        """Unassign outlier landmarks in both frames and mark them FAILED_ARUN.

        Their depth and 3D point are cleared as well.
        """
        for i in find_outliers(matches, inliers):
            ref_index, cur_index = matches[i]
            for stereo_frame, index in (
                (ref_stereo_frame, ref_index),
                (cur_stereo_frame, cur_index),
            ):
                stereo_frame.left_frame.landmarks[index] = INVALID_LANDMARK
                stereo_frame.right_keypoints_status[index] = KeypointStatus.FAILED_ARUN
                stereo_frame.keypoints_depth[index] = 0.0
                stereo_frame.keypoints_3d[index] = 0.0
        self.debug_info.nr_stereo_inliers = len(inliers)
        self.debug_info.stereo_ransac_iters = iterations

    def check_status_right_keypoints(
        self, right_keypoints_status: list[KeypointStatus]
    ) -> dict[KeypointStatus, int]:
        """Count right keypoints per stereo status and store the counts."""
        self.debug_info.reset()
        counts = {status: 0 for status in KeypointStatus}
        for status in right_keypoints_status:
            counts[status] += 1

        self.debug_info.nr_valid_rkp = counts[KeypointStatus.VALID]
        self.debug_info.nr_no_left_rect_rkp = counts[KeypointStatus.NO_LEFT_RECT]
        self.debug_info.nr_no_right_rect_rkp = counts[KeypointStatus.NO_RIGHT_RECT]
        self.debug_info.nr_no_depth_rkp = counts[KeypointStatus.NO_DEPTH]
        self.debug_info.nr_failed_arun_rkp = counts[KeypointStatus.FAILED_ARUN]
        return counts

    # ------------------------------------------------------------------
    # Visualization
    # ------------------------------------------------------------------

    def display_frame(
        self,
        ref_frame: Frame,
        cur_frame: Frame,
        write_frame: bool = False,
        img_title: str = "",
        extra_corners_gray: np.ndarray | None = None,
        extra_corners_blue: np.ndarray | None = None,
    ) -> np.ndarray:
        """Draw feature tracks of `cur_frame` over its image.

        Tracked keypoints are green with a line to their reference
        location, newly detected ones red.

        Returns:
            BGR image with the overlay
        """
        if cur_frame.image is None:
            raise ValueError(f"Frame {cur_frame.frame_id} has no image")
        if cur_frame.image.ndim == 2:
            canvas = cv2.cvtColor(cur_frame.image, cv2.COLOR_GRAY2BGR)
        else:
            canvas = cur_frame.image.copy()

        ref_location = {
            int(lmk): ref_frame.keypoints[i]
            for i, lmk in enumerate(ref_frame.landmarks)
            if lmk != INVALID_LANDMARK
        }

        def _pt(p: np.ndarray) -> tuple[int, int]:
            return (int(round(float(p[0]))), int(round(float(p[1]))))

        for kp, lmk, age in zip(
            cur_frame.keypoints, cur_frame.landmarks, cur_frame.landmarks_age
        ):
            if lmk == INVALID_LANDMARK:
                continue
            if age == 1:
                cv2.circle(canvas, _pt(kp), 4, (0, 0, 255), 2)
                continue
            cv2.circle(canvas, _pt(kp), 4, (0, 255, 0), 2)
            ref_kp = ref_location.get(int(lmk))
            if ref_kp is not None:
                cv2.arrowedLine(canvas, _pt(ref_kp), _pt(kp), (0, 255, 0), 1)

        for corners, color in (
            (extra_corners_gray, (180, 180, 180)),
            (extra_corners_blue, (255, 0, 0)),
        ):
            if corners is None:
                continue
            for kp in np.asarray(corners).reshape(-1, 2):
                cv2.circle(canvas, _pt(kp), 4, color, 2)

        if write_frame:
            if self._output_images_path is None:
                raise ValueError("output_images_path is not set")
            self._output_images_path.mkdir(parents=True, exist_ok=True)
            title = img_title or "tracks"
            path = self._output_images_path / f"{title}_{cur_frame.frame_id}.png"
            cv2.imwrite(str(path), canvas)
            logger.debug("Wrote %s", path)
        return canvas
