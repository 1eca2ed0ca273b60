"""Data types exchanged by the loop closure detector.

Relative poses follow the a_Pose_b convention of `SE3`: a loop result's
`relative_pose` is match_Pose_query, which becomes the `ref_Pose_cur` of
a `LoopClosureFactor` with `ref_key` the matched keyframe and `cur_key`
the query keyframe.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from ..frontend import SE3, StereoFrame


class LCDStatus(Enum):
    """Terminal status of a loop closure query, in pipeline order.

    Each failure status is only reachable once every earlier stage passed.
    """

    NO_MATCHES = "NO_MATCHES"
    LOW_NSS_FACTOR = "LOW_NSS_FACTOR"
    LOW_SCORE = "LOW_SCORE"
    NO_GROUPS = "NO_GROUPS"
    FAILED_TEMPORAL_CONSTRAINT = "FAILED_TEMPORAL_CONSTRAINT"
    FAILED_GEOM_VERIFICATION = "FAILED_GEOM_VERIFICATION"
    FAILED_POSE_RECOVERY = "FAILED_POSE_RECOVERY"
    LOOP_DETECTED = "LOOP_DETECTED"


class GeomVerifOption(Enum):
    """Geometric verification run before pose recovery."""

    NISTER = "NISTER"  # 5-point RANSAC on bearing vectors
    NONE = "NONE"


class PoseRecoveryOption(Enum):
    """How the metric relative pose of a loop is recovered."""

    RANSAC_ARUN = "RANSAC_ARUN"  # 3-point 3D-3D alignment
    GIVEN_ROT = "GIVEN_ROT"  # Translation only, rotation from verification


def _frozen_array(value: np.ndarray, dtype: type, shape: tuple[int, ...]) -> np.ndarray:
    array = np.array(value, dtype=dtype).reshape(shape)
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class LCDFrame:
    """Snapshot of a keyframe's loop closure content. Never mutated.

    Per-keypoint fields are index-aligned.

    Attributes:
        timestamp_ns: Keyframe timestamp in nanoseconds
        id: Sequential id in the loop closure database
        id_kf: Keyframe id assigned by the frontend
        keypoints: (N, 2) pixel coordinates in the left image
        keypoints_3d: (N, 3) points in the rectified left camera frame
        descriptors_vec: N ORB descriptors, one (32,) uint8 row each
        descriptors_mat: (N, 32) uint8 packed descriptors
        versors: (N, 3) unit bearing vectors
    """

    timestamp_ns: int
    id: int
    id_kf: int
    keypoints: np.ndarray
    keypoints_3d: np.ndarray
    descriptors_vec: tuple[np.ndarray, ...]
    descriptors_mat: np.ndarray
    versors: np.ndarray

    def __post_init__(self) -> None:
        n = len(self.keypoints)
        descriptors_mat = np.asarray(self.descriptors_mat, dtype=np.uint8)
        width = descriptors_mat.shape[1] if descriptors_mat.ndim == 2 else 32

        # frozen dataclass: normalize through object.__setattr__
        object.__setattr__(
            self, "keypoints", _frozen_array(self.keypoints, np.float64, (n, 2))
        )
        object.__setattr__(
            self, "keypoints_3d", _frozen_array(self.keypoints_3d, np.float64, (-1, 3))
        )
        object.__setattr__(
            self, "versors", _frozen_array(self.versors, np.float64, (-1, 3))
        )
        object.__setattr__(
            self,
            "descriptors_mat",
            _frozen_array(descriptors_mat, np.uint8, (-1, width)),
        )
        object.__setattr__(
            self,
            "descriptors_vec",
            tuple(_frozen_array(d, np.uint8, (-1,)) for d in self.descriptors_vec),
        )

        for name in ("keypoints_3d", "versors", "descriptors_mat", "descriptors_vec"):
            if len(getattr(self, name)) != n:
                raise ValueError(
                    f"LCDFrame {self.id}: {name} has {len(getattr(self, name))} "
                    f"entries, expected {n}"
                )

    @property
    def num_keypoints(self) -> int:
        return len(self.keypoints)


@dataclass
class MatchIsland:
    """Contiguous range of candidate keyframe ids scoring against a query.

    Islands order by `island_score` only: `<` and `>` compare scores, so
    sorting is stable for islands with equal scores.

    Attributes:
        start_id: First candidate id of the range
        end_id: Last candidate id of the range (inclusive)
        island_score: Aggregate score of the members
        best_id: Best-scoring member
        best_score: Score of the best member
    """

    start_id: int = 0
    end_id: int = 0
    island_score: float = 0.0
    best_id: int = 0
    best_score: float = 0.0

    def __post_init__(self) -> None:
        if self.end_id < self.start_id:
            raise ValueError(
                f"Island end_id {self.end_id} precedes start_id {self.start_id}"
            )

    def __lt__(self, other: MatchIsland) -> bool:
        return self.island_score < other.island_score

    def __gt__(self, other: MatchIsland) -> bool:
        return self.island_score > other.island_score

    @property
    def size(self) -> int:
        """Return number of ids in the range."""
        return self.end_id - self.start_id + 1

    def clear(self) -> None:
        self.start_id = 0
        self.end_id = 0
        self.island_score = 0.0
        self.best_id = 0
        self.best_score = 0.0


@dataclass
class LoopResult:
    """Outcome of one loop closure query.

    Attributes:
        status: Terminal status of the query
        query_id: Database id of the query frame
        match_id: Database id of the candidate match
        relative_pose: match_Pose_query in the body frame, only set when a
            loop was detected
    """

    status: LCDStatus
    query_id: int = 0
    match_id: int = 0
    relative_pose: SE3 | None = None

    def __post_init__(self) -> None:
        if self.relative_pose is not None and not self.is_loop():
            raise ValueError(f"{self.status.name} result cannot carry a pose")

    def is_loop(self) -> bool:
        """Return True if the query detected a loop."""
        return self.status == LCDStatus.LOOP_DETECTED

    @staticmethod
    def as_string(status: LCDStatus) -> str:
        """Return the display name of a status."""
        return status.name


@dataclass
class LcdDebugInfo:
    """Bookkeeping of the last loop closure query (overwritten per query)."""

    timestamp_ns: int = 0
    loop_result: LoopResult = field(
        default_factory=lambda: LoopResult(status=LCDStatus.NO_MATCHES)
    )

    mono_input_size: int = 0
    mono_inliers: int = 0
    mono_iter: int = 0

    stereo_input_size: int = 0
    stereo_inliers: int = 0
    stereo_iter: int = 0

    pgo_size: int = 0
    pgo_lc_count: int = 0
    pgo_lc_inliers: int = 0


@dataclass(frozen=True, eq=False)
class NoiseModel:
    """Diagonal Gaussian noise on a pose, rotation (rad) first then translation.

    Attributes:
        sigmas: (6,) standard deviations [rx, ry, rz, tx, ty, tz]
    """

    sigmas: np.ndarray

    def __post_init__(self) -> None:
        sigmas = _frozen_array(self.sigmas, np.float64, (-1,))
        if sigmas.shape != (6,):
            raise ValueError(f"Expected 6 sigmas, got {sigmas.shape}")
        if np.any(sigmas <= 0.0):
            raise ValueError("Sigmas must be positive")
        object.__setattr__(self, "sigmas", sigmas)

    @classmethod
    def from_precisions(
        cls, rotation_precision: float, translation_precision: float
    ) -> NoiseModel:
        """Create an isotropic-per-block model from precisions (1 / variance)."""
        if rotation_precision <= 0.0 or translation_precision <= 0.0:
            raise ValueError("Precisions must be positive")
        rotation_sigma = 1.0 / np.sqrt(rotation_precision)
        translation_sigma = 1.0 / np.sqrt(translation_precision)
        return cls(
            sigmas=np.array([rotation_sigma] * 3 + [translation_sigma] * 3)
        )

    @property
    def covariance(self) -> np.ndarray:
        """Return the 6x6 covariance."""
        return np.diag(self.sigmas**2)

    @property
    def information(self) -> np.ndarray:
        """Return the 6x6 information matrix."""
        return np.diag(1.0 / self.sigmas**2)


@dataclass(frozen=True, eq=False)
class OdometryFactor:
    """Keyframe pose estimate from odometry, for the pose graph.

    Attributes:
        cur_key: Keyframe id
        W_Pose_Blkf: Body pose of the keyframe in the world frame
        noise: Uncertainty of the pose
    """

    cur_key: int
    W_Pose_Blkf: SE3
    noise: NoiseModel


@dataclass(frozen=True, eq=False)
class LoopClosureFactor:
    """Relative pose constraint between two keyframes closing a loop.

    Attributes:
        ref_key: Id of the matched (older) keyframe
        cur_key: Id of the query keyframe
        ref_Pose_cur: Body pose of the query keyframe in the matched one
        noise: Uncertainty of the constraint
    """

    ref_key: int
    cur_key: int
    ref_Pose_cur: SE3
    noise: NoiseModel


@dataclass(frozen=True, eq=False)
class LoopClosureDetectorInputPayload:
    """Keyframe handed to the loop closure detector."""

    timestamp_kf: int
    cur_kf_id: int
    stereo_frame: StereoFrame
    W_Pose_Blkf: SE3


@dataclass(frozen=True, eq=False)
class LoopClosureDetectorOutputPayload:
    """Result of one detector step, with the accumulated pose graph input.

    Attributes:
        is_loop_closure: True if this keyframe closed a loop
        timestamp_kf: Timestamp of the processed keyframe
        timestamp_query: Timestamp of the query frame (0 without a loop)
        timestamp_match: Timestamp of the matched frame (0 without a loop)
        id_match: Keyframe id of the match
        id_recent: Keyframe id of the query
        relative_pose: match_Pose_query in the body frame
        W_Pose_Map: Map frame in the world frame (identity: no optimizer
            runs here, so the map frame coincides with the world frame)
        states: Keyframe id -> W_Pose_Blkf of every keyframe received
        nfg: Every factor emitted so far, in emission order
    """

    is_loop_closure: bool = False
    timestamp_kf: int = 0
    timestamp_query: int = 0
    timestamp_match: int = 0
    id_match: int = 0
    id_recent: int = 0
    relative_pose: SE3 = field(default_factory=SE3.identity)
    W_Pose_Map: SE3 = field(default_factory=SE3.identity)
    states: dict[int, SE3] = field(default_factory=dict)
    nfg: list[OdometryFactor | LoopClosureFactor] = field(default_factory=list)
