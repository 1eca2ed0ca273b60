"""Loop closure detection over keyframes.

Each keyframe becomes an `LCDFrame` and is checked against older frames:

1. Place recognition: candidates at least `dist_local` frames older
2. Score normalization by the NSS factor and thresholding
3. Grouping of candidates into islands and choice of the best island
4. Temporal consistency with the previous queries
5. Geometric verification (5-point RANSAC on bearing vectors)
6. Metric pose recovery (3D-3D RANSAC) in the body frame

Any stage may reject the query with its `LCDStatus`; a rejection simply
means no constraint is added for this keyframe.
"""

from __future__ import annotations

import logging

import cv2
import numpy as np

from ..frontend import SE3, StereoFrame
from .definitions import (
    GeomVerifOption,
    LCDFrame,
    LCDStatus,
    LcdDebugInfo,
    LoopClosureDetectorInputPayload,
    LoopClosureDetectorOutputPayload,
    LoopClosureFactor,
    LoopResult,
    NoiseModel,
    OdometryFactor,
)
from .geometric_verification import GeometricVerifier, compute_matches_between_frames
from .islands import TemporalConstraint, compute_islands
from .keyframe_database import (
    DescriptorPlaceRecognizer,
    KeyframeDatabase,
    PlaceRecognizer,
)
from .params import LoopClosureDetectorParams

logger = logging.getLogger(__name__)


class LoopClosureDetector:
    """Detects revisited places and emits pose graph factors.

    Queries are resolved one at a time; the detector is not thread-safe.
    """

    def __init__(
        self,
        lcd_params: LoopClosureDetectorParams,
        place_recognizer: PlaceRecognizer | None = None,
        body_Pose_cam: SE3 | None = None,
    ) -> None:
        """Initialize loop closure detector.

        Args:
            lcd_params: Detector configuration
            place_recognizer: Similarity scoring collaborator; a
                descriptor-matching recognizer when omitted
            body_Pose_cam: Rectified left camera pose in the body frame;
                taken from the first stereo frame when omitted
        """
        if not isinstance(lcd_params, LoopClosureDetectorParams):
            raise TypeError("lcd_params must be a LoopClosureDetectorParams")
        if place_recognizer is None:
            place_recognizer = DescriptorPlaceRecognizer(lcd_params.lowe_ratio)
        if not isinstance(place_recognizer, PlaceRecognizer):
            raise TypeError("place_recognizer must implement add, query and score")

        self._params = lcd_params
        self._place_recognizer = place_recognizer
        self._body_Pose_cam = body_Pose_cam

        self._orb = cv2.ORB_create(
            nfeatures=lcd_params.nfeatures,
            scaleFactor=lcd_params.scale_factor,
            nlevels=lcd_params.nlevels,
            edgeThreshold=lcd_params.edge_threshold,
            firstLevel=lcd_params.first_level,
            WTA_K=lcd_params.wta_k,
            scoreType=cv2.ORB_HARRIS_SCORE,
            patchSize=lcd_params.patch_size,
            fastThreshold=lcd_params.fast_threshold,
        )

        self._db = KeyframeDatabase()
        self._verifier = GeometricVerifier(lcd_params)
        self._temporal_constraint = TemporalConstraint(
            min_temporal_matches=lcd_params.min_temporal_matches,
            max_distance_between_groups=lcd_params.max_distance_between_groups,
            max_distance_between_queries=lcd_params.max_distance_between_queries,
        )

        self._odom_noise = NoiseModel.from_precisions(
            lcd_params.odom_rot_precision, lcd_params.odom_trans_precision
        )
        self._lc_noise = NoiseModel.from_precisions(
            lcd_params.lc_rot_precision, lcd_params.lc_trans_precision
        )

        # Pose graph input accumulated across keyframes
        self._states: dict[int, SE3] = {}
        self._factors: list[OdometryFactor | LoopClosureFactor] = []

        self.debug_info = LcdDebugInfo()

    @property
    def lcd_params(self) -> LoopClosureDetectorParams:
        return self._params

    @property
    def keyframe_database(self) -> KeyframeDatabase:
        return self._db

    @property
    def num_loop_closures(self) -> int:
        """Return number of loop closure factors emitted."""
        return sum(isinstance(f, LoopClosureFactor) for f in self._factors)

    def spin_once(
        self, input_payload: LoopClosureDetectorInputPayload
    ) -> LoopClosureDetectorOutputPayload:
        """Process one keyframe: emit its odometry factor and look for a loop."""
        cur_kf_id = input_payload.cur_kf_id
        self._states[cur_kf_id] = input_payload.W_Pose_Blkf
        self._factors.append(
            OdometryFactor(
                cur_key=cur_kf_id,
                W_Pose_Blkf=input_payload.W_Pose_Blkf,
                noise=self._odom_noise,
            )
        )

        frame_id = self.process_and_add_frame(input_payload.stereo_frame, cur_kf_id)
        loop_result = self.detect_loop(frame_id)
        self.debug_info.timestamp_ns = input_payload.timestamp_kf

        if not loop_result.is_loop():
            self._update_pgo_debug_info()
            return LoopClosureDetectorOutputPayload(
                is_loop_closure=False,
                timestamp_kf=input_payload.timestamp_kf,
                states=dict(self._states),
                nfg=list(self._factors),
            )

        query_frame = self._db.get(loop_result.query_id)
        match_frame = self._db.get(loop_result.match_id)
        self._factors.append(
            LoopClosureFactor(
                ref_key=match_frame.id_kf,
                cur_key=query_frame.id_kf,
                ref_Pose_cur=loop_result.relative_pose,
                noise=self._lc_noise,
            )
        )
        self._update_pgo_debug_info()

        return LoopClosureDetectorOutputPayload(
            is_loop_closure=True,
            timestamp_kf=input_payload.timestamp_kf,
            timestamp_query=query_frame.timestamp_ns,
            timestamp_match=match_frame.timestamp_ns,
            id_match=match_frame.id_kf,
            id_recent=query_frame.id_kf,
            relative_pose=loop_result.relative_pose,
            states=dict(self._states),
            nfg=list(self._factors),
        )

    def _update_pgo_debug_info(self) -> None:
        self.debug_info.pgo_size = len(self._factors)
        self.debug_info.pgo_lc_count = self.num_loop_closures
        # Every emitted loop closure is kept: no outlier rejection runs here
        self.debug_info.pgo_lc_inliers = self.num_loop_closures

    def process_and_add_frame(
        self, stereo_frame: StereoFrame, id_kf: int | None = None
    ) -> int:
        """Describe the stereo-valid keypoints of a keyframe and store it.

        Args:
            stereo_frame: Keyframe with its left image
            id_kf: Frontend keyframe id (defaults to the frame id)

        Returns:
            Database id of the new LCDFrame
        """
        left_frame = stereo_frame.left_frame
        if left_frame.image is None:
            raise ValueError(f"Frame {left_frame.frame_id} has no image")
        if self._body_Pose_cam is None:
            self._body_Pose_cam = stereo_frame.stereo_camera.body_Pose_cam

        # class_id keeps track of the keypoints ORB drops near the border
        valid_indices = np.flatnonzero(stereo_frame.valid_stereo_mask)
        cv_keypoints = [
            cv2.KeyPoint(
                float(left_frame.keypoints[i, 0]),
                float(left_frame.keypoints[i, 1]),
                float(self._params.patch_size),
                -1.0,
                0.0,
                0,
                int(i),
            )
            for i in valid_indices
        ]
        cv_keypoints, descriptors = self._orb.compute(left_frame.image, cv_keypoints)
        if descriptors is None or len(cv_keypoints) == 0:
            cv_keypoints = []
            descriptors = np.empty((0, 32), dtype=np.uint8)

        kept = np.array([kp.class_id for kp in cv_keypoints], dtype=np.int64)
        frame = LCDFrame(
            timestamp_ns=left_frame.timestamp_ns,
            id=self._db.next_id,
            id_kf=left_frame.frame_id if id_kf is None else id_kf,
            keypoints=np.array([kp.pt for kp in cv_keypoints], dtype=np.float64),
            keypoints_3d=stereo_frame.keypoints_3d[kept],
            descriptors_vec=tuple(descriptors),
            descriptors_mat=descriptors,
            versors=left_frame.versors[kept],
        )

        self._db.append(frame)
        self._place_recognizer.add(frame)
        logger.debug(
            "LCD frame %d (keyframe %d): %d descriptors",
            frame.id,
            frame.id_kf,
            frame.num_keypoints,
        )
        return frame.id

    def detect_loop(self, frame_id: int) -> LoopResult:
        """Run the rejection pipeline for a stored frame against older ones."""
        params = self._params
        query_frame = self._db.get(frame_id)
        self.debug_info = LcdDebugInfo(
            timestamp_ns=query_frame.timestamp_ns,
            pgo_size=self.debug_info.pgo_size,
            pgo_lc_count=self.debug_info.pgo_lc_count,
            pgo_lc_inliers=self.debug_info.pgo_lc_inliers,
        )

        result = self._detect_loop(query_frame, params)
        self.debug_info.loop_result = result
        if result.is_loop():
            logger.info(
                "Loop detected: frame %d matches frame %d", frame_id, result.match_id
            )
        else:
            logger.debug("Frame %d: %s", frame_id, LoopResult.as_string(result.status))
        return result

    def _detect_loop(
        self, query_frame: LCDFrame, params: LoopClosureDetectorParams
    ) -> LoopResult:
        frame_id = query_frame.id
        max_id = frame_id - params.dist_local
        if max_id < 0:
            return LoopResult(LCDStatus.NO_MATCHES, query_id=frame_id)

        candidates = self._place_recognizer.query(
            query_frame, params.max_db_results, max_id
        )
        if not candidates:
            return LoopResult(LCDStatus.NO_MATCHES, query_id=frame_id)

        nss_factor = 1.0
        if params.use_nss:
            nss_factor = 0.0
            if frame_id > 0:
                nss_factor = self._place_recognizer.score(
                    query_frame, self._db.get(frame_id - 1)
                )
            if nss_factor < params.min_nss_factor:
                return LoopResult(LCDStatus.LOW_NSS_FACTOR, query_id=frame_id)

        alpha_threshold = params.alpha * nss_factor
        candidates = [c for c in candidates if c[1] >= alpha_threshold]
        if not candidates:
            return LoopResult(LCDStatus.LOW_SCORE, query_id=frame_id)

        islands = compute_islands(
            candidates, params.min_matches_per_group, params.max_intragroup_gap
        )
        if not islands:
            return LoopResult(LCDStatus.NO_GROUPS, query_id=frame_id)

        best_island = max(islands)
        match_id = best_island.best_id

        if not self._temporal_constraint.check(frame_id, best_island):
            return LoopResult(
                LCDStatus.FAILED_TEMPORAL_CONSTRAINT,
                query_id=frame_id,
                match_id=match_id,
            )

        match_frame = self._db.get(match_id)
        query_indices, match_indices = compute_matches_between_frames(
            query_frame, match_frame, params.lowe_ratio
        )

        camMatch_Pose_camQuery_mono = None
        if params.geom_check == GeomVerifOption.NISTER:
            if len(query_indices) < params.min_correspondences:
                self.debug_info.mono_input_size = len(query_indices)
                return LoopResult(
                    LCDStatus.FAILED_GEOM_VERIFICATION,
                    query_id=frame_id,
                    match_id=match_id,
                )
            mono = self._verifier.verify_mono(
                query_frame, match_frame, query_indices, match_indices
            )
            self.debug_info.mono_input_size = mono.num_input
            self.debug_info.mono_inliers = mono.num_inliers
            self.debug_info.mono_iter = mono.iterations
            if not mono.is_valid:
                return LoopResult(
                    LCDStatus.FAILED_GEOM_VERIFICATION,
                    query_id=frame_id,
                    match_id=match_id,
                )
            camMatch_Pose_camQuery_mono = mono.camMatch_Pose_camQuery
            query_indices = query_indices[mono.inliers]
            match_indices = match_indices[mono.inliers]

        stereo = self._verifier.recover_pose(
            query_frame,
            match_frame,
            query_indices,
            match_indices,
            camMatch_Pose_camQuery_mono,
        )
        self.debug_info.stereo_input_size = stereo.num_input
        self.debug_info.stereo_inliers = stereo.num_inliers
        self.debug_info.stereo_iter = stereo.iterations
        if not stereo.is_valid:
            logger.warning(
                "Loop candidate %d -> %d rejected at pose recovery",
                frame_id,
                match_id,
            )
            return LoopResult(
                LCDStatus.FAILED_POSE_RECOVERY, query_id=frame_id, match_id=match_id
            )

        return LoopResult(
            LCDStatus.LOOP_DETECTED,
            query_id=frame_id,
            match_id=match_id,
            relative_pose=self._to_body_frame(stereo.camMatch_Pose_camQuery),
        )

    def _to_body_frame(self, camMatch_Pose_camQuery: SE3) -> SE3:
        """Express a camera-frame relative pose between body frames."""
        body_Pose_cam = self._body_Pose_cam or SE3.identity()
        return body_Pose_cam.compose(camMatch_Pose_camQuery).compose(
            body_Pose_cam.inverse()
        )
