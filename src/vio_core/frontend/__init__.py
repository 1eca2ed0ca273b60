"""Frontend: frames, optical flow prediction, tracking and outlier rejection."""

from .camera import CameraIntrinsics, CameraParams, DistortionCoeffs, StereoCamera
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
    OpticalFlowPredictorType,
    RotationalOpticalFlowPredictor,
    StaticOpticalFlowPredictor,
    make_optical_flow_predictor,
)
from .params import TrackerParams, load_yaml_params
from .pose import SE3, rotation_from_rotvec, skew
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
from .tracker import DebugTrackerInfo, Tracker, TrackingStatus

__all__ = [
    # Geometry
    "SE3",
    "skew",
    "rotation_from_rotvec",
    # Cameras
    "CameraIntrinsics",
    "DistortionCoeffs",
    "CameraParams",
    "StereoCamera",
    # Frames
    "Frame",
    "StereoFrame",
    "KeypointStatus",
    "INVALID_LANDMARK",
    # Optical flow prediction
    "OpticalFlowPredictor",
    "OpticalFlowPredictorType",
    "StaticOpticalFlowPredictor",
    "RotationalOpticalFlowPredictor",
    "make_optical_flow_predictor",
    # RANSAC
    "Ransac",
    "RansacResult",
    "SampleConsensusProblem",
    "CentralRelativePoseProblem",
    "RotationOnlyProblem",
    "TranslationOnlyProblem",
    "PointCloudProblem",
    "PointCloudTranslationProblem",
    # Correspondences
    "KeypointMatches",
    "find_outliers",
    "find_matching_keypoints",
    "find_matching_stereo_keypoints",
    "compute_median_disparity",
    "get_point3_and_covariance",
    # Tracking
    "Tracker",
    "TrackerParams",
    "TrackingStatus",
    "DebugTrackerInfo",
    "load_yaml_params",
]
