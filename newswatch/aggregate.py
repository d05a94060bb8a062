"""Merge per-segment detections into per-label time intervals."""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Sequence, Set

from .schemas import Interval, SegmentResult

CONFIDENCE_THRESHOLD = 90.0
GAP_TOLERANCE_SEC = 3


def _max_score(candidates: Iterable[dict]) -> float:
    best = 0.0
    for candidate in candidates:
        try:
            best = max(best, float(candidate.get("score") or 0.0))
        except (TypeError, ValueError, AttributeError):
            continue
    return best


def collect_hits(
    segments: Sequence[SegmentResult],
    threshold: float = CONFIDENCE_THRESHOLD,
) -> Dict[str, Set[int]]:
    """Map every label to the job-absolute seconds where it was detected.

    Segments are walked in index order; a segment's local second ``s`` lands
    at ``floor(cursor + s)`` where ``cursor`` is the summed duration of all
    earlier segments.
    """

    hits: Dict[str, Set[int]] = {}
    cursor = 0.0
    for segment in sorted(segments, key=lambda item: item.index):
        labels = segment.results.label_dict
        for label in labels.values():
            hits.setdefault(label, set())

        for local_second, frame in segment.results.detections.items():
            try:
                local = float(local_second)
            except (TypeError, ValueError):
                continue
            absolute = int(math.floor(cursor + local))
            for label_id, candidates in frame.items():
                label = labels.get(str(label_id), str(label_id))
                bucket = hits.setdefault(label, set())
                if _max_score(candidates) > threshold:
                    bucket.add(absolute)

        cursor += float(segment.duration)
    return hits


def merge_seconds(seconds: Iterable[int], gap: int = GAP_TOLERANCE_SEC) -> List[Interval]:
    """Sweep sorted hit seconds into ``(start, end)`` runs that tolerate ``gap``."""

    intervals: List[Interval] = []
    start = end = None
    for second in sorted(set(seconds)):
        if start is None:
            start = end = second
        elif second - end <= gap:
            end = second
        else:
            intervals.append((start, end))
            start = end = second
    if start is not None:
        intervals.append((start, end))
    return intervals


def aggregate(
    segments: Sequence[SegmentResult],
    threshold: float = CONFIDENCE_THRESHOLD,
    gap: int = GAP_TOLERANCE_SEC,
) -> Dict[str, List[Interval]]:
    """Return merged intervals per label; an empty list means "not found"."""

    hits = collect_hits(segments, threshold)
    return {label: merge_seconds(seconds, gap) for label, seconds in hits.items()}
