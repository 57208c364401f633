"""Sidecar editor — writes, parses and caches ``.var`` aspect-ratio timelines.

File layout::

    [VARatio v2]
    FrameWidth: 1920
    FrameHeight: 1080
    SourceFile: movie.mkv

    1
    Time: 0.000000
    2.39:1

    2
    Time: 3121.500000
    1.43:1

Version 1 files carry ``HH:MM:SS.mmm`` start times instead of raw seconds.
Both are accepted on read, with or without the ``Time:`` prefix.
"""

import logging
import math
import os
import re
import tempfile
import threading
from pathlib import Path

from varatio.models import AnalysisResult, VarSegment, VarTimeline

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = ".var"

_ORDINAL_RE = re.compile(r"[0-9]+")
_TIME_PREFIX_RE = re.compile(r"^time:\s*", re.IGNORECASE)
_CLOCK_RE = re.compile(r"(?P<h>[0-9]+):(?P<m>[0-9]{1,2}):(?P<s>[0-9]+(?:\.[0-9]+)?)")


def sidecar_path(media_path: str | Path) -> Path:
    """The sidecar lives next to the media file with the same stem."""
    media_path = Path(media_path)
    return media_path.with_name(media_path.stem + SIDECAR_SUFFIX)


def _format_clock_time(seconds: float) -> str:
    total_ms = int(round(seconds * 1000))
    h, rem = divmod(total_ms, 3_600_000)
    m, rem = divmod(rem, 60_000)
    s, ms = divmod(rem, 1000)
    return f"{h:02d}:{m:02d}:{s:02d}.{ms:03d}"


def _format_seconds(seconds: float) -> str:
    return f"{seconds:.6f}"


def format_sidecar(result: AnalysisResult, source_name: str, version: int = 2) -> str:
    """Render an analysis result as sidecar text."""
    if version == 1:
        fmt_time = _format_clock_time
    elif version == 2:
        fmt_time = _format_seconds
    else:
        raise ValueError(f"Unsupported sidecar version {version}")

    lines: list[str] = [
        f"[VARatio v{version}]",
        f"FrameWidth: {result.frame_width}",
        f"FrameHeight: {result.frame_height}",
        f"SourceFile: {source_name}",
        "",
    ]
    for i, seg in enumerate(result.segments, 1):
        if i > 1:
            lines.append("")
        lines.append(str(i))
        lines.append(f"Time: {fmt_time(seg.start)}")
        lines.append(seg.label)
    return "\n".join(lines) + "\n"


def write_sidecar(
    media_path: str | Path, result: AnalysisResult, version: int = 2
) -> Path | None:
    """Write the sidecar for ``media_path``. Uniform results are not written.

    The file is replaced in one step so readers never see a partial timeline.
    """
    if not result.has_variable_ratios:
        return None

    media_path = Path(media_path)
    path = sidecar_path(media_path)
    text = format_sidecar(result, media_path.name, version)

    fd, tmp_name = tempfile.mkstemp(
        dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info("Wrote VARatio v%d file: %s", version, path)
    return path


def parse_start_time(value: str) -> float | None:
    """Parse ``12.5``, ``Time: 12.5`` or ``00:00:12.500`` into seconds."""
    value = _TIME_PREFIX_RE.sub("", value.strip())

    m = _CLOCK_RE.fullmatch(value)
    if m:
        return int(m.group("h")) * 3600 + int(m.group("m")) * 60 + float(m.group("s"))

    try:
        seconds = float(value)
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds


def parse_aspect_ratio(label: str) -> float | None:
    """Parse ``2.39`` or ``2.39:1`` / ``16:9`` into a positive ratio."""
    label = label.strip()
    if not label:
        return None

    try:
        ratio = float(label)
    except ValueError:
        num, sep, den = label.partition(":")
        if not sep:
            return None
        try:
            n, d = float(num), float(den)
        except ValueError:
            return None
        if d == 0:
            return None
        ratio = n / d

    return ratio if math.isfinite(ratio) and ratio > 0 else None


def _header_int(line: str) -> int | None:
    value = line.split(":", 1)[1].strip()
    try:
        return int(value)
    except ValueError:
        return None


def parse_sidecar_text(text: str) -> VarTimeline | None:
    """Parse sidecar text. Malformed segment blocks are skipped.

    Returns None when frame size is missing or no segment survives.
    """
    lines = [line.strip() for line in text.splitlines()]
    frame_width = frame_height = 0
    segments: list[VarSegment] = []

    i = 0
    while i < len(lines):
        line = lines[i]
        lowered = line.lower()

        if lowered.startswith("framewidth:"):
            frame_width = _header_int(line) or 0
        elif lowered.startswith("frameheight:"):
            frame_height = _header_int(line) or 0
        elif _ORDINAL_RE.fullmatch(line) and i + 2 < len(lines):
            start = parse_start_time(lines[i + 1])
            ratio = parse_aspect_ratio(lines[i + 2])
            if start is not None and ratio is not None:
                segments.append(VarSegment(start=start, aspect_ratio=ratio))
                i += 2
            else:
                logger.debug("Skipping malformed segment block at line %d", i + 1)
        i += 1

    if frame_width <= 0 or frame_height <= 0 or not segments:
        return None

    segments.sort(key=lambda s: s.start)
    return VarTimeline(
        frame_width=frame_width,
        frame_height=frame_height,
        segments=tuple(segments),
    )


def parse_sidecar(path: str | Path) -> VarTimeline | None:
    """Read and parse a sidecar file; None if it is unreadable or unusable."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning("Cannot read sidecar %s: %s", path, e)
        return None

    timeline = parse_sidecar_text(text)
    if timeline is None:
        logger.warning("No usable timeline in %s", path)
    return timeline


class TimelineCache:
    """Parsed sidecars keyed by path, invalidated by modification time.

    Keys are case-insensitive. Entries are never evicted except when the
    file disappears or stops parsing.

    Each key holds one ``(timeline, mtime)`` pair that is replaced whole when
    the modification time no longer matches. The lock only guards dict
    access; parsing happens outside it, so racing misses on one key each
    store a complete pair and a stale one is reparsed on the next get.
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[VarTimeline, int]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, path: str | Path) -> VarTimeline | None:
        path = Path(path)
        key = str(path).casefold()

        try:
            mtime = path.stat().st_mtime_ns
        except OSError:
            with self._lock:
                self._entries.pop(key, None)
            return None

        with self._lock:
            cached = self._entries.get(key)
        if cached is not None and cached[1] == mtime:
            return cached[0]

        timeline = parse_sidecar(path)
        with self._lock:
            if timeline is None:
                self._entries.pop(key, None)
            else:
                self._entries[key] = (timeline, mtime)
        return timeline

    def for_media(self, media_path: str | Path) -> VarTimeline | None:
        return self.get(sidecar_path(media_path))
