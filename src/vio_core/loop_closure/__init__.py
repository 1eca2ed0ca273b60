"""Loop closure detection for visual-inertial odometry.

Detects when the camera revisits a place and packages the result as
pose graph factors for an external optimizer.

Key components:
- LCDFrame, MatchIsland, LoopResult: Candidate data model
- KeyframeDatabase / PlaceRecognizer: Storage and similarity scoring
- GeometricVerifier: 5-point check and 3D-3D pose recovery
- LoopClosureDetector: Main detection pipeline
"""

from .definitions import (
    GeomVerifOption,
    LCDFrame,
    LCDStatus,
    LcdDebugInfo,
    LoopClosureDetectorInputPayload,
    LoopClosureDetectorOutputPayload,
    LoopClosureFactor,
    LoopResult,
    MatchIsland,
    NoiseModel,
    OdometryFactor,
    PoseRecoveryOption,
)
from .geometric_verification import (
    GeometricVerifier,
    VerificationResult,
    compute_matches_between_frames,
    match_descriptors,
)
from .islands import TemporalConstraint, compute_islands
from .keyframe_database import (
    DescriptorPlaceRecognizer,
    KeyframeDatabase,
    PlaceRecognizer,
)
from .loop_closure_detector import LoopClosureDetector
from .params import LoopClosureDetectorParams

__all__ = [
    # Data model
    "LCDStatus",
    "GeomVerifOption",
    "PoseRecoveryOption",
    "LCDFrame",
    "MatchIsland",
    "LoopResult",
    "LcdDebugInfo",
    "NoiseModel",
    "OdometryFactor",
    "LoopClosureFactor",
    "LoopClosureDetectorInputPayload",
    "LoopClosureDetectorOutputPayload",
    # Islands
    "compute_islands",
    "TemporalConstraint",
    # Database
    "KeyframeDatabase",
    "PlaceRecognizer",
    "DescriptorPlaceRecognizer",
    # Geometric Verification
    "GeometricVerifier",
    "VerificationResult",
    "match_descriptors",
    "compute_matches_between_frames",
    # Detector
    "LoopClosureDetector",
    "LoopClosureDetectorParams",
]
