"""Loop closure detector configuration."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import ClassVar

from ..frontend.params import load_yaml_params
from .definitions import GeomVerifOption, PoseRecoveryOption


@dataclass
class LoopClosureDetectorParams:
    """Parameters of candidate search, verification and pose recovery.

    Attributes:
        use_nss: Normalize candidate scores by the similarity between the
            query and the previous frame
        alpha: Candidates scoring below alpha * nss are discarded
        min_temporal_matches: Consecutive consistent queries required
            (strictly more than this many)
        dist_local: Candidates must be at least this many frames older
        max_db_results: Maximum candidates returned by place recognition
        min_nss_factor: Queries with a lower nss factor are rejected
        min_matches_per_group: Minimum island length
        max_intragroup_gap: Candidates closer than this join one island
        max_distance_between_groups: Maximum gap between islands of
            consecutive queries to count as temporally consistent
        max_distance_between_queries: Frames between consecutive queries
            beyond which the temporal count restarts
        geom_check: Geometric verification method
        min_correspondences: Descriptor matches required for verification
        lowe_ratio: Lowe ratio test threshold of descriptor matching
        ransac_threshold_mono: 5-point inlier threshold (1 - cos angle)
        ransac_inlier_threshold_mono: Inliers required to pass verification
        max_ransac_iterations_mono: Iteration cap of the 5-point RANSAC
        ransac_probability_mono: Confidence of the 5-point RANSAC
        pose_recovery_option: Metric pose recovery method
        use_mono_rot: Keep the verification rotation in the final pose
        ransac_threshold_stereo: 3D inlier threshold (m)
        ransac_inlier_threshold_stereo: Inliers required for pose recovery
        max_ransac_iterations_stereo: Iteration cap of the 3D RANSAC
        ransac_probability_stereo: Confidence of the 3D RANSAC
        ransac_randomize: If False, RANSAC sampling is seeded
        nfeatures, scale_factor, nlevels, edge_threshold, first_level,
            wta_k, patch_size, fast_threshold: ORB settings
        odom_rot_precision, odom_trans_precision: Odometry factor noise
        lc_rot_precision, lc_trans_precision: Loop closure factor noise
    """

    use_nss: bool = True
    alpha: float = 0.1
    min_temporal_matches: int = 3
    dist_local: int = 20
    max_db_results: int = 50
    min_nss_factor: float = 0.005
    min_matches_per_group: int = 1
    max_intragroup_gap: int = 3
    max_distance_between_groups: int = 3
    max_distance_between_queries: int = 2

    geom_check: GeomVerifOption = GeomVerifOption.NISTER
    min_correspondences: int = 12
    lowe_ratio: float = 0.7
    ransac_threshold_mono: float = 1e-6
    ransac_inlier_threshold_mono: int = 10
    max_ransac_iterations_mono: int = 500
    ransac_probability_mono: float = 0.99

    pose_recovery_option: PoseRecoveryOption = PoseRecoveryOption.RANSAC_ARUN
    use_mono_rot: bool = True
    ransac_threshold_stereo: float = 0.15
    ransac_inlier_threshold_stereo: int = 10
    max_ransac_iterations_stereo: int = 500
    ransac_probability_stereo: float = 0.995
    ransac_randomize: bool = True

    # ORB
    nfeatures: int = 500
    scale_factor: float = 1.2
    nlevels: int = 8
    edge_threshold: int = 31
    first_level: int = 0
    wta_k: int = 2
    patch_size: int = 31
    fast_threshold: int = 20

    # Pose graph noise
    odom_rot_precision: float = 1.0
    odom_trans_precision: float = 1.0
    lc_rot_precision: float = 1.0
    lc_trans_precision: float = 1.0

    _ENUM_FIELDS: ClassVar[dict[str, type[Enum]]] = {
        "geom_check": GeomVerifOption,
        "pose_recovery_option": PoseRecoveryOption,
    }

    def __post_init__(self) -> None:
        self.validate()

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> LoopClosureDetectorParams:
        """Load loop closure parameters from a YAML file."""
        return load_yaml_params(cls, yaml_path, cls._ENUM_FIELDS)

    def validate(self) -> None:
        """Check parameter ranges.

        Raises:
            ValueError: If a parameter is out of range
        """
        if not isinstance(self.geom_check, GeomVerifOption):
            raise ValueError(f"Unknown geometric verification {self.geom_check!r}")
        if not isinstance(self.pose_recovery_option, PoseRecoveryOption):
            raise ValueError(
                f"Unknown pose recovery option {self.pose_recovery_option!r}"
            )
        if self.alpha < 0.0 or self.min_nss_factor < 0.0:
            raise ValueError("alpha and min_nss_factor must be >= 0")
        if self.dist_local < 1:
            raise ValueError("dist_local must be >= 1")
        if self.max_db_results < 1:
            raise ValueError("max_db_results must be >= 1")
        if self.min_temporal_matches < 0 or self.min_matches_per_group < 1:
            raise ValueError("Invalid island parameters")
        if self.max_intragroup_gap < 1:
            raise ValueError("max_intragroup_gap must be >= 1")
        if not 0.0 < self.lowe_ratio <= 1.0:
            raise ValueError("lowe_ratio must be in (0, 1]")
        if self.ransac_threshold_mono <= 0.0 or self.ransac_threshold_stereo <= 0.0:
            raise ValueError("RANSAC thresholds must be positive")
        if self.max_ransac_iterations_mono < 1 or self.max_ransac_iterations_stereo < 1:
            raise ValueError("RANSAC iteration caps must be >= 1")
        for probability in (self.ransac_probability_mono, self.ransac_probability_stereo):
            if not 0.0 < probability < 1.0:
                raise ValueError("RANSAC probabilities must be in (0, 1)")
        if self.nfeatures < 1 or self.nlevels < 1 or self.scale_factor <= 1.0:
            raise ValueError("Invalid ORB parameters")
        for precision in (
            self.odom_rot_precision,
            self.odom_trans_precision,
            self.lc_rot_precision,
            self.lc_trans_precision,
        ):
            if precision <= 0.0:
                raise ValueError("Precisions must be positive")
