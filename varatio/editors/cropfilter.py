"""Crop filter editor — turns a timeline into a time-gated ffmpeg crop chain."""

import math

from varatio.models import VarTimeline

# Switch slightly early so a frame-boundary rounding never shows one stale frame
ENABLE_EPSILON = 0.0005


def crop_geometry(
    frame_width: int, frame_height: int, ratio: float
) -> tuple[int, int] | None:
    """Return the (height, y) of a full-width centre crop at ``ratio``.

    The height is even and never taller than the frame. None if the ratio
    cannot be expressed.
    """
    if ratio <= 0:
        return None

    desired = min(frame_width / ratio, frame_height)
    height = int(math.floor(desired / 2.0 + 0.5)) * 2
    if height > frame_height:
        height -= 2
    if height <= 0:
        return None

    y = max((frame_height - height) // 2, 0)
    return height, y


def _enable_expr(start: float, next_start: float | None) -> str:
    s = max(start - ENABLE_EPSILON, 0.0)
    if next_start is None:
        return f"enable='gte(t,{s:.6f})'"
    e = max(next_start - ENABLE_EPSILON, s)
    return f"enable='between(t,{s:.6f},{e:.6f})'"


def build_crop_filter(timeline: VarTimeline) -> str:
    """Build a comma-joined chain of crop filters, one per segment.

    Example output for a 2.39 then 1.78 timeline in a 1920x1080 frame::

        crop=1920:804:0:138:enable='between(t,0.000000,3121.499500)',
        crop=1920:1078:0:1:enable='gte(t,3121.499500)'

    Returns an empty string when no segment yields a usable crop.
    """
    w = timeline.frame_width
    h = timeline.frame_height
    segments = timeline.segments
    parts: list[str] = []

    for i, seg in enumerate(segments):
        geometry = crop_geometry(w, h, seg.aspect_ratio)
        if geometry is None:
            continue
        crop_h, y = geometry

        next_start = segments[i + 1].start if i + 1 < len(segments) else None
        parts.append(f"crop={w}:{crop_h}:0:{y}:{_enable_expr(seg.start, next_start)}")

    return ",".join(parts)
