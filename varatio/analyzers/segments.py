"""Ratio classifier — turns sorted samples into merged aspect-ratio segments."""

from collections import Counter
from dataclasses import replace

from varatio.config import AnalysisConfig
from varatio.models import AspectRatioSegment, Sample

KNOWN_RATIOS: tuple[tuple[float, str], ...] = (
    (2.76, "2.76:1"), (2.55, "2.55:1"), (2.39, "2.39:1"), (2.35, "2.35:1"),
    (2.20, "2.20:1"), (2.00, "2.00:1"), (1.90, "1.90:1"), (1.85, "1.85:1"),
    (1.78, "1.78:1"), (1.66, "1.66:1"), (1.50, "1.50:1"), (1.43, "1.43:1"),
    (1.37, "1.37:1"), (1.33, "1.33:1"),
)

LABEL_TOLERANCE = 0.08


def label_for(ratio: float) -> str:
    """Map a raw ratio to the nearest common theatrical/TV label."""
    known, label = min(KNOWN_RATIOS, key=lambda entry: abs(ratio - entry[0]))
    if abs(ratio - known) < LABEL_TOLERANCE:
        return label
    return f"{ratio:.2f}:1"


def dominant_ratio(samples: list[Sample]) -> float | None:
    """Mean raw ratio of the most common label among known samples.

    Ties go to the label seen first. None if no sample is known.
    """
    known = [s.ratio for s in samples if s.known]
    if not known:
        return None

    counts = Counter(label_for(r) for r in known)
    top_label = counts.most_common(1)[0][0]
    group = [r for r in known if label_for(r) == top_label]
    return sum(group) / len(group)


def fill_unknown(samples: list[Sample]) -> list[Sample] | None:
    """Give every unknown sample the dominant ratio."""
    dominant = dominant_ratio(samples)
    if dominant is None:
        return None
    return [s if s.known else replace(s, ratio=dominant) for s in samples]


def _segment(start: float, end: float, ratio: float) -> AspectRatioSegment:
    return AspectRatioSegment(start=start, end=end, ratio=ratio, label=label_for(ratio))


def build_segments(
    samples: list[Sample], duration: float, tolerance: float
) -> list[AspectRatioSegment]:
    """Split [0, duration] wherever the ratio jumps by more than ``tolerance``.

    ``samples`` must be sorted by time and fully known.
    """
    if not samples:
        return []

    segments: list[AspectRatioSegment] = []
    current = samples[0].ratio
    seg_start = 0.0

    for s in samples[1:]:
        # Timestamps past the probed duration cannot open a segment
        if s.time >= duration:
            break
        if abs(s.ratio - current) > tolerance:
            if s.time <= seg_start:
                # Same timestamp as the open segment's start: the later sample wins
                current = s.ratio
                continue
            segments.append(_segment(seg_start, s.time, current))
            current = s.ratio
            seg_start = s.time

    segments.append(_segment(seg_start, duration, current))
    return segments


def merge_short_segments(
    segments: list[AspectRatioSegment], min_duration: float, tolerance: float
) -> list[AspectRatioSegment]:
    """Absorb segments shorter than ``min_duration``, then join near-equal neighbours.

    Short segments extend the previous segment, or the next one when they
    come first. The last surviving segment is never removed.
    """
    segs = list(segments)
    if len(segs) <= 1:
        return segs

    changed = True
    while changed and len(segs) > 1:
        changed = False
        for i in range(len(segs) - 1, -1, -1):
            if len(segs) <= 1:
                break
            if segs[i].duration >= min_duration and segs[i].duration > 0:
                continue
            if i > 0:
                segs[i - 1] = replace(segs[i - 1], end=segs[i].end)
            else:
                segs[i + 1] = replace(segs[i + 1], start=segs[i].start)
            del segs[i]
            changed = True

    # Only ever lengthens segments, so nothing can become short again
    merged = [segs[0]]
    for seg in segs[1:]:
        if abs(seg.ratio - merged[-1].ratio) <= tolerance:
            merged[-1] = replace(merged[-1], end=seg.end)
        else:
            merged.append(seg)
    return merged


def classify(
    samples: list[Sample], duration: float, config: AnalysisConfig
) -> list[AspectRatioSegment]:
    """Fill unknowns, build segments and merge them. Empty if there is no signal."""
    filled = fill_unknown(samples)
    if filled is None:
        return []

    segments = build_segments(filled, duration, config.ratio_tolerance)
    return merge_short_segments(
        segments, config.min_segment_duration, config.ratio_tolerance
    )
