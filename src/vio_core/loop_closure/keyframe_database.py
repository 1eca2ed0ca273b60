"""Keyframe storage and place recognition for loop closure queries."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np

from .definitions import LCDFrame
from .geometric_verification import match_descriptors


class KeyframeDatabase:
    """Append-only store of LCDFrames keyed by their sequential id.

    Frames are never mutated or removed once appended, so readers may hold
    references freely.
    """

    def __init__(self) -> None:
        self._frames: list[LCDFrame] = []

    def append(self, frame: LCDFrame) -> None:
        """Append a frame whose id must equal the current size."""
        if not isinstance(frame, LCDFrame):
            raise TypeError(f"Expected LCDFrame, got {type(frame).__name__}")
        if frame.id != len(self._frames):
            raise ValueError(
                f"Frame id {frame.id} does not follow the database size "
                f"{len(self._frames)}"
            )
        self._frames.append(frame)

    def get(self, frame_id: int) -> LCDFrame:
        """Return the frame with the given id.

        Raises:
            KeyError: For an unknown id
        """
        if not 0 <= frame_id < len(self._frames):
            raise KeyError(frame_id)
        return self._frames[frame_id]

    @property
    def next_id(self) -> int:
        """Return the id the next appended frame must have."""
        return len(self._frames)

    def __contains__(self, frame_id: object) -> bool:
        return isinstance(frame_id, (int, np.integer)) and 0 <= frame_id < len(
            self._frames
        )

    def __len__(self) -> int:
        return len(self._frames)


@runtime_checkable
class PlaceRecognizer(Protocol):
    """Similarity scoring between keyframes (e.g. a bag-of-words database)."""

    def add(self, frame: LCDFrame) -> None:
        """Index a frame for future queries."""
        ...

    def query(
        self, frame: LCDFrame, max_results: int, max_id: int
    ) -> list[tuple[int, float]]:
        """Return up to `max_results` (frame_id, score) pairs, best first,
        among indexed frames with id <= `max_id`."""
        ...

    def score(self, frame_a: LCDFrame, frame_b: LCDFrame) -> float:
        """Return the similarity of two frames in [0, 1]."""
        ...


class DescriptorPlaceRecognizer:
    """Scores frames by the fraction of descriptors passing the ratio test.

    A brute-force stand-in for a vocabulary-based database: the score of
    a candidate is the fraction of the query's descriptors with a good
    Hamming match in it.
    """

    def __init__(self, lowe_ratio: float = 0.7) -> None:
        self._lowe_ratio = lowe_ratio
        self._frames: dict[int, LCDFrame] = {}

    def add(self, frame: LCDFrame) -> None:
        self._frames[frame.id] = frame

    def score(self, frame_a: LCDFrame, frame_b: LCDFrame) -> float:
        if frame_a.num_keypoints == 0:
            return 0.0
        matches = match_descriptors(
            frame_a.descriptors_mat, frame_b.descriptors_mat, self._lowe_ratio
        )
        return len(matches) / frame_a.num_keypoints

    def query(
        self, frame: LCDFrame, max_results: int, max_id: int
    ) -> list[tuple[int, float]]:
        results = [
            (frame_id, self.score(frame, candidate))
            for frame_id, candidate in self._frames.items()
            if frame_id <= max_id
        ]
        results = [r for r in results if r[1] > 0.0]
        results.sort(key=lambda r: r[1], reverse=True)
        return results[:max_results]

    def __len__(self) -> int:
        return len(self._frames)
