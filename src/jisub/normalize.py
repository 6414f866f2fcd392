from __future__ import annotations

from dataclasses import dataclass

from .models import Caption

__all__ = [
    "DEFAULT_MAX_LOOKBEHIND",
    "DEFAULT_MIN_OVERLAP_RATIO",
    "DEFAULT_MIN_OVERLAP_SECONDS",
    "OverlapPolicy",
    "assign_lanes",
    "is_overlapping",
    "merge_duplicates",
    "normalize_captions",
    "sort_captions",
]

DEFAULT_MIN_OVERLAP_SECONDS = 0.2
DEFAULT_MIN_OVERLAP_RATIO = 0.3
# Lane-shadowed predecessors tolerated before the backward scan gives up.
DEFAULT_MAX_LOOKBEHIND = 5


@dataclass(frozen=True, slots=True)
class OverlapPolicy:
    """
    Thresholds deciding when two captions count as overlapping.

    Both comparisons are strict: an intersection of exactly
    ``min_overlap_seconds`` (or a ratio of exactly ``min_overlap_ratio``) is
    not an overlap.
    """

    min_overlap_seconds: float = DEFAULT_MIN_OVERLAP_SECONDS
    min_overlap_ratio: float = DEFAULT_MIN_OVERLAP_RATIO
    max_lookbehind: int = DEFAULT_MAX_LOOKBEHIND


DEFAULT_POLICY = OverlapPolicy()


def is_overlapping(earlier: Caption, later: Caption, policy: OverlapPolicy = DEFAULT_POLICY) -> bool:
    intersection = min(earlier.end_time, later.end_time) - max(earlier.start_time, later.start_time)
    if intersection <= 0:
        return False
    if intersection > policy.min_overlap_seconds:
        return True
    duration = later.end_time - later.start_time
    if duration <= 0:
        return False
    return intersection / duration > policy.min_overlap_ratio


def sort_captions(captions: list[Caption]) -> None:
    captions.sort(key=lambda caption: (caption.start_time, caption.end_time))


def merge_duplicates(captions: list[Caption], policy: OverlapPolicy = DEFAULT_POLICY) -> int:
    """
    Fold adjacent identical-text captions that overlap into the later one.

    The list must already be time sorted. Returns the number of removed
    captions; running it again on its own output removes nothing.
    """
    duplicate_indexes: list[int] = []
    for idx in range(len(captions) - 1):
        caption = captions[idx]
        following = captions[idx + 1]
        if caption.text != following.text or not is_overlapping(caption, following, policy):
            continue
        following.start_time = min(caption.start_time, following.start_time)
        following.end_time = max(caption.end_time, following.end_time)
        duplicate_indexes.append(idx)
    for idx in reversed(duplicate_indexes):
        del captions[idx]
    return len(duplicate_indexes)


def _taken_lanes(captions: list[Caption], index: int, policy: OverlapPolicy) -> set[int]:
    current = captions[index]
    seen_lanes: set[int] = set()
    taken: set[int] = set()
    misses = 0
    for prev_index in range(index - 1, -1, -1):
        previous = captions[prev_index]
        lane = previous.lane if previous.lane is not None else 0
        if lane in seen_lanes:
            misses += 1
            if misses > policy.max_lookbehind:
                break
            continue
        seen_lanes.add(lane)
        if is_overlapping(previous, current, policy):
            taken.add(lane)
    return taken


def assign_lanes(captions: list[Caption], policy: OverlapPolicy = DEFAULT_POLICY) -> None:
    """
    Give every caption the lowest lane not used by an overlapping predecessor.

    Only the most recent caption of each lane is consulted; the scan stops
    after ``policy.max_lookbehind`` lane-shadowed predecessors, which keeps the
    pass near linear for dense tracks at the cost of rare cosmetic
    mis-stacking.
    """
    for index, caption in enumerate(captions):
        taken = _taken_lanes(captions, index, policy)
        lane = 0
        while lane in taken:
            lane += 1
        caption.lane = lane


def normalize_captions(captions: list[Caption], policy: OverlapPolicy = DEFAULT_POLICY) -> list[Caption]:
    sort_captions(captions)
    merge_duplicates(captions, policy)
    assign_lanes(captions, policy)
    return captions
