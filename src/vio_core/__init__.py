"""VIO core - feature tracking, outlier rejection and loop closure detection."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .frontend import (
    SE3,
    CameraParams,
    Frame,
    KeypointStatus,
    OpticalFlowPredictorType,
    StereoCamera,
    StereoFrame,
    Tracker,
    TrackerParams,
    TrackingStatus,
)
from .loop_closure import (
    LCDFrame,
    LCDStatus,
    LoopClosureDetector,
    LoopClosureDetectorParams,
    LoopResult,
    MatchIsland,
)

__all__ = [
    "__version__",
    # Frontend
    "SE3",
    "CameraParams",
    "StereoCamera",
    "Frame",
    "StereoFrame",
    "KeypointStatus",
    "OpticalFlowPredictorType",
    "Tracker",
    "TrackerParams",
    "TrackingStatus",
    # Loop closure
    "LCDFrame",
    "LCDStatus",
    "LoopClosureDetector",
    "LoopClosureDetectorParams",
    "LoopResult",
    "MatchIsland",
]
