"""Grouping of place recognition candidates into temporal islands."""

from __future__ import annotations

from .definitions import MatchIsland


def compute_islands(
    candidates: list[tuple[int, float]],
    min_matches_per_group: int,
    max_intragroup_gap: int,
) -> list[MatchIsland]:
    """Group scored candidates into islands of nearby frame ids.

    Candidates whose ids differ by less than `max_intragroup_gap` join the
    same island. Islands shorter than `min_matches_per_group` ids are
    dropped, except when there is a single candidate.

    Args:
        candidates: (frame_id, score) pairs in any order
        min_matches_per_group: Minimum island length (in ids)
        max_intragroup_gap: Maximum id gap (exclusive) inside an island

    Returns:
        Islands in ascending id order
    """
    if not candidates:
        return []

    if len(candidates) == 1:
        frame_id, score = candidates[0]
        return [MatchIsland(frame_id, frame_id, score, frame_id, score)]

    ordered = sorted(candidates, key=lambda c: c[0])
    islands: list[MatchIsland] = []

    group = [ordered[0]]
    for candidate in ordered[1:]:
        if candidate[0] - group[-1][0] < max_intragroup_gap:
            group.append(candidate)
            continue
        _close_group(group, min_matches_per_group, islands)
        group = [candidate]
    _close_group(group, min_matches_per_group, islands)
    return islands


def _close_group(
    group: list[tuple[int, float]],
    min_matches_per_group: int,
    islands: list[MatchIsland],
) -> None:
    start_id = group[0][0]
    end_id = group[-1][0]
    if end_id - start_id + 1 < min_matches_per_group:
        return
    best_id, best_score = max(group, key=lambda c: c[1])
    islands.append(
        MatchIsland(
            start_id=start_id,
            end_id=end_id,
            island_score=sum(score for _, score in group),
            best_id=best_id,
            best_score=best_score,
        )
    )


class TemporalConstraint:
    """Requires consecutive queries to match temporally consistent islands.

    A query is consistent with the previous one when their best islands
    overlap or lie within `max_distance_between_groups` ids, and the
    queries themselves are at most `max_distance_between_queries` frames
    apart. The check passes once more than `min_temporal_matches`
    consecutive consistent queries have been seen.
    """

    def __init__(
        self,
        min_temporal_matches: int,
        max_distance_between_groups: int,
        max_distance_between_queries: int,
    ) -> None:
        self._min_temporal_matches = min_temporal_matches
        self._max_distance_between_groups = max_distance_between_groups
        self._max_distance_between_queries = max_distance_between_queries

        self.temporal_entries = 0
        self.latest_matched_island = MatchIsland()
        self.latest_query_id = 0

    def check(self, query_id: int, island: MatchIsland) -> bool:
        """Register the best island of a query and test consistency."""
        if (
            self.temporal_entries == 0
            or query_id - self.latest_query_id > self._max_distance_between_queries
        ):
            self.temporal_entries = 1
        else:
            a1 = self.latest_matched_island.start_id
            a2 = self.latest_matched_island.end_id
            b1 = island.start_id
            b2 = island.end_id

            overlap = (b1 <= a1 <= b2) or (a1 <= b1 <= a2)
            gap_is_small = False
            if not overlap:
                gap = max(a1 - b2, b1 - a2)
                gap_is_small = gap <= self._max_distance_between_groups

            if overlap or gap_is_small:
                self.temporal_entries += 1
            else:
                self.temporal_entries = 1

        self.latest_matched_island = MatchIsland(
            island.start_id,
            island.end_id,
            island.island_score,
            island.best_id,
            island.best_score,
        )
        self.latest_query_id = query_id
        return self.temporal_entries > self._min_temporal_matches
