"""Tracker configuration."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, TypeVar

import yaml

from .optical_flow_predictor import OpticalFlowPredictorType

ParamsT = TypeVar("ParamsT")


def load_yaml_params(
    cls: type[ParamsT],
    yaml_path: str | Path,
    enum_fields: dict[str, type[Enum]],
) -> ParamsT:
    """Build a params dataclass from a flat YAML mapping.

    Enum-valued keys accept the member name (e.g. "ROTATIONAL").

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: For unknown keys or enum names
    """
    path = Path(yaml_path)
    if not path.exists():
        raise FileNotFoundError(f"Parameter file not found: {yaml_path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping in {yaml_path}")

    known = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown parameters in {yaml_path}: {unknown}")

    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        enum_type = enum_fields.get(key)
        if enum_type is not None and not isinstance(value, enum_type):
            try:
                value = enum_type[str(value).upper()]
            except KeyError:
                raise ValueError(
                    f"Invalid value {value!r} for {key}, expected one of "
                    f"{[m.name for m in enum_type]}"
                ) from None
        kwargs[key] = value

    return cls(**kwargs)


@dataclass
class TrackerParams:
    """Parameters of feature detection, tracking and outlier rejection.

    Attributes:
        klt_win_size: Lucas-Kanade search window size (pixels)
        klt_max_iter: Lucas-Kanade iterations per pyramid level
        klt_max_level: Number of pyramid levels above the base image
        klt_eps: Lucas-Kanade convergence threshold
        max_feature_age: Landmarks tracked this many frames are dropped
        max_features_per_frame: Target number of tracked keypoints
        quality_level: Corner quality relative to the best corner
        min_distance: Minimum spacing between corners (pixels)
        block_size: Corner detector neighbourhood size
        use_harris_detector: Harris instead of Shi-Tomasi corners
        k: Harris detector free parameter
        enable_subpixel_corner_finder: Refine corners to sub-pixel accuracy
        subpixel_win_size: Half window of the sub-pixel refinement
        subpixel_max_iter: Sub-pixel refinement iterations
        subpixel_eps: Sub-pixel refinement convergence threshold
        disparity_threshold: Median pixel disparity under which mono
            rejection assumes rotation-only motion
        ransac_threshold_mono: Mono inlier threshold, expressed as
            1 - cos(angle) between a bearing and its epipolar plane
        ransac_threshold_stereo: Stereo inlier threshold on 3D distance (m)
        ransac_max_iterations: Iteration cap of every RANSAC run
        ransac_probability: Confidence for the adaptive iteration count
        ransac_randomize: If False, RANSAC sampling is seeded for
            reproducible results
        min_nr_mono_inliers: Inliers required for a VALID mono result
        min_nr_stereo_inliers: Inliers required for a VALID stereo result
        stereo_point_sigma: Pixel noise of (uL, uR, v) stereo measurements
        optical_flow_predictor_type: Predictor seeding feature tracking
        use_stereo_tracking: If False, stereo rejection reports DISABLED
    """

    # Tracking
    klt_win_size: int = 24
    klt_max_iter: int = 30
    klt_max_level: int = 4
    klt_eps: float = 0.1
    max_feature_age: int = 25

    # Detection
    max_features_per_frame: int = 400
    quality_level: float = 0.001
    min_distance: float = 10.0
    block_size: int = 3
    use_harris_detector: bool = False
    k: float = 0.04
    enable_subpixel_corner_finder: bool = True
    subpixel_win_size: int = 10
    subpixel_max_iter: int = 40
    subpixel_eps: float = 0.001

    # Outlier rejection
    disparity_threshold: float = 0.5
    ransac_threshold_mono: float = 1e-6
    ransac_threshold_stereo: float = 1.0
    ransac_max_iterations: int = 100
    ransac_probability: float = 0.995
    ransac_randomize: bool = True
    min_nr_mono_inliers: int = 10
    min_nr_stereo_inliers: int = 5
    stereo_point_sigma: float = 1.0

    optical_flow_predictor_type: OpticalFlowPredictorType = (
        OpticalFlowPredictorType.STATIC
    )
    use_stereo_tracking: bool = True

    _ENUM_FIELDS: ClassVar[dict[str, type[Enum]]] = {
        "optical_flow_predictor_type": OpticalFlowPredictorType,
    }

    def __post_init__(self) -> None:
        self.validate()

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> TrackerParams:
        """Load tracker parameters from a YAML file."""
        return load_yaml_params(cls, yaml_path, cls._ENUM_FIELDS)

    def validate(self) -> None:
        """Check parameter ranges.

        Raises:
            ValueError: If a parameter is out of range
        """
        if self.klt_win_size < 3 or self.klt_max_iter < 1 or self.klt_max_level < 0:
            raise ValueError("Invalid Lucas-Kanade parameters")
        if self.max_feature_age < 1:
            raise ValueError("max_feature_age must be >= 1")
        if self.max_features_per_frame < 0:
            raise ValueError("max_features_per_frame must be >= 0")
        if not 0.0 < self.quality_level < 1.0:
            raise ValueError("quality_level must be in (0, 1)")
        if self.min_distance < 0.0 or self.block_size < 1:
            raise ValueError("Invalid corner detector parameters")
        if self.ransac_threshold_mono <= 0.0 or self.ransac_threshold_stereo <= 0.0:
            raise ValueError("RANSAC thresholds must be positive")
        if self.ransac_max_iterations < 1:
            raise ValueError("ransac_max_iterations must be >= 1")
        if not 0.0 < self.ransac_probability < 1.0:
            raise ValueError("ransac_probability must be in (0, 1)")
        if self.stereo_point_sigma <= 0.0:
            raise ValueError("stereo_point_sigma must be positive")
        if not isinstance(self.optical_flow_predictor_type, OpticalFlowPredictorType):
            raise ValueError(
                f"Unknown optical flow predictor {self.optical_flow_predictor_type!r}"
            )
