"""Mono and stereo frame containers shared by the tracker and loop closure.

A frame keeps per-keypoint arrays that are index-aligned: keypoint i has
pixel coordinates `keypoints[i]`, landmark id `landmarks[i]` (-1 when
unassigned), tracking age `landmarks_age[i]`, detector score `scores[i]`
and unit bearing vector `versors[i]`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from .camera import CameraParams, StereoCamera

INVALID_LANDMARK = -1


class KeypointStatus(Enum):
    """Stereo status of a left keypoint's right-image counterpart."""

    VALID = "VALID"
    NO_LEFT_RECT = "NO_LEFT_RECT"  # Left keypoint falls outside the rectified image
    NO_RIGHT_RECT = "NO_RIGHT_RECT"  # No match found in the right image
    NO_DEPTH = "NO_DEPTH"  # Depth outside the valid range
    FAILED_ARUN = "FAILED_ARUN"  # Rejected by 3D-3D outlier rejection


@dataclass
class Frame:
    """Keypoints of one image with their landmark associations.

    Attributes:
        frame_id: Sequential frame identifier
        timestamp_ns: Frame timestamp in nanoseconds
        camera_params: Calibration used to compute bearing vectors
        image: Grayscale image (uint8), None for headless use
        keypoints: (N, 2) pixel coordinates
        landmarks: (N,) landmark ids, -1 when unassigned
        landmarks_age: (N,) number of frames each landmark has been tracked
        scores: (N,) detector response of each keypoint
        versors: (N, 3) unit bearing vectors
    """

    frame_id: int
    timestamp_ns: int
    camera_params: CameraParams
    image: np.ndarray | None = None
    keypoints: np.ndarray = field(
        default_factory=lambda: np.empty((0, 2), dtype=np.float32)
    )
    landmarks: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.int64))
    landmarks_age: np.ndarray = field(
        default_factory=lambda: np.empty(0, dtype=np.int64)
    )
    scores: np.ndarray = field(default_factory=lambda: np.empty(0, dtype=np.float64))
    versors: np.ndarray = field(
        default_factory=lambda: np.empty((0, 3), dtype=np.float64)
    )

    def __post_init__(self) -> None:
        """Normalize array types and check index alignment."""
        self.keypoints = np.asarray(self.keypoints, dtype=np.float32).reshape(-1, 2)
        self.landmarks = np.asarray(self.landmarks, dtype=np.int64).flatten()
        self.landmarks_age = np.asarray(self.landmarks_age, dtype=np.int64).flatten()
        self.scores = np.asarray(self.scores, dtype=np.float64).flatten()
        self.versors = np.asarray(self.versors, dtype=np.float64).reshape(-1, 3)

        n = len(self.keypoints)
        for name in ("landmarks", "landmarks_age", "scores", "versors"):
            if len(getattr(self, name)) != n:
                raise ValueError(
                    f"Frame {self.frame_id}: {name} has {len(getattr(self, name))} "
                    f"entries, expected {n}"
                )

    @classmethod
    def from_keypoints(
        cls,
        frame_id: int,
        timestamp_ns: int,
        camera_params: CameraParams,
        keypoints: np.ndarray,
        landmarks: np.ndarray | None = None,
        image: np.ndarray | None = None,
    ) -> Frame:
        """Create a frame from pixel keypoints, computing bearing vectors.

        Ages start at 1 and scores at 0.
        """
        keypoints = np.asarray(keypoints, dtype=np.float32).reshape(-1, 2)
        n = len(keypoints)
        if landmarks is None:
            landmarks = np.full(n, INVALID_LANDMARK, dtype=np.int64)
        return cls(
            frame_id=frame_id,
            timestamp_ns=timestamp_ns,
            camera_params=camera_params,
            image=image,
            keypoints=keypoints,
            landmarks=landmarks,
            landmarks_age=np.ones(n, dtype=np.int64),
            scores=np.zeros(n, dtype=np.float64),
            versors=camera_params.calibrate_pixels(keypoints),
        )

    def add_keypoints(
        self,
        keypoints: np.ndarray,
        landmarks: np.ndarray,
        ages: np.ndarray,
        scores: np.ndarray,
    ) -> None:
        """Append keypoints (and their bearing vectors) to the frame."""
        keypoints = np.asarray(keypoints, dtype=np.float32).reshape(-1, 2)
        if len(keypoints) == 0:
            return
        self.keypoints = np.vstack([self.keypoints, keypoints])
        self.landmarks = np.concatenate(
            [self.landmarks, np.asarray(landmarks, dtype=np.int64)]
        )
        self.landmarks_age = np.concatenate(
            [self.landmarks_age, np.asarray(ages, dtype=np.int64)]
        )
        self.scores = np.concatenate(
            [self.scores, np.asarray(scores, dtype=np.float64)]
        )
        self.versors = np.vstack(
            [self.versors, self.camera_params.calibrate_pixels(keypoints)]
        )

    @property
    def num_keypoints(self) -> int:
        """Return number of keypoints (tracked or not)."""
        return len(self.keypoints)

    @property
    def valid_landmark_mask(self) -> np.ndarray:
        """Return boolean mask of keypoints with an assigned landmark."""
        return self.landmarks != INVALID_LANDMARK

    @property
    def num_valid_landmarks(self) -> int:
        """Return number of keypoints with an assigned landmark."""
        return int(np.count_nonzero(self.valid_landmark_mask))

    def __len__(self) -> int:
        return self.num_keypoints


@dataclass
class StereoFrame:
    """A left frame plus its rectified stereo correspondences.

    Per-keypoint arrays are index-aligned with `left_frame.keypoints`.

    Attributes:
        left_frame: Frame of the left camera (owns the landmark ids)
        stereo_camera: Rectified stereo model of the rig
        right_image: Right grayscale image, None for headless use
        left_keypoints_rectified: (N, 2) rectified left pixel coordinates
        right_keypoints_rectified: (N, 2) rectified right pixel coordinates
        right_keypoints_status: Stereo status of each keypoint
        keypoints_depth: (N,) depth of each keypoint (0 when not VALID)
        keypoints_3d: (N, 3) points in the rectified left camera frame
    """

    left_frame: Frame
    stereo_camera: StereoCamera
    right_image: np.ndarray | None = None
    left_keypoints_rectified: np.ndarray = field(
        default_factory=lambda: np.empty((0, 2), dtype=np.float64)
    )
    right_keypoints_rectified: np.ndarray = field(
        default_factory=lambda: np.empty((0, 2), dtype=np.float64)
    )
    right_keypoints_status: list[KeypointStatus] = field(default_factory=list)
    keypoints_depth: np.ndarray = field(
        default_factory=lambda: np.empty(0, dtype=np.float64)
    )
    keypoints_3d: np.ndarray = field(
        default_factory=lambda: np.empty((0, 3), dtype=np.float64)
    )

    def __post_init__(self) -> None:
        """Normalize array types and check index alignment."""
        self.left_keypoints_rectified = np.asarray(
            self.left_keypoints_rectified, dtype=np.float64
        ).reshape(-1, 2)
        self.right_keypoints_rectified = np.asarray(
            self.right_keypoints_rectified, dtype=np.float64
        ).reshape(-1, 2)
        self.right_keypoints_status = list(self.right_keypoints_status)
        self.keypoints_depth = np.asarray(self.keypoints_depth, dtype=np.float64).flatten()
        self.keypoints_3d = np.asarray(self.keypoints_3d, dtype=np.float64).reshape(-1, 3)

        n = self.left_frame.num_keypoints
        for name in (
            "left_keypoints_rectified",
            "right_keypoints_rectified",
            "right_keypoints_status",
            "keypoints_depth",
            "keypoints_3d",
        ):
            if len(getattr(self, name)) != n:
                raise ValueError(
                    f"StereoFrame {self.frame_id}: {name} has "
                    f"{len(getattr(self, name))} entries, expected {n}"
                )

    @property
    def frame_id(self) -> int:
        return self.left_frame.frame_id

    @property
    def timestamp_ns(self) -> int:
        return self.left_frame.timestamp_ns

    @property
    def valid_stereo_mask(self) -> np.ndarray:
        """Return boolean mask of keypoints with a VALID stereo match."""
        return np.array(
            [s == KeypointStatus.VALID for s in self.right_keypoints_status],
            dtype=bool,
        )

    @property
    def num_valid_stereo(self) -> int:
        """Return number of keypoints with a VALID stereo match."""
        return int(np.count_nonzero(self.valid_stereo_mask))
