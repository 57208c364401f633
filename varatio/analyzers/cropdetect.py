"""Frame sampler — runs ffmpeg cropdetect and classifies each measurement."""

import logging
import re
import threading
from pathlib import Path
from typing import Callable

from varatio import ffutil
from varatio.config import AnalysisConfig
from varatio.models import Sample, VideoInfo

logger = logging.getLogger(__name__)

CROP_RE = re.compile(
    r"t:(?P<t>[\d.]+)\s.*?crop=(?P<w>\d+):(?P<h>\d+):(?P<x>\d+):(?P<y>\d+)"
)

MIN_CROP_PIXELS = 32
MIN_HEIGHT_FRACTION = 0.15
EDGE_FRACTION = 0.95
MIN_AREA_FRACTION = 0.40
PROGRESS_INTERVAL = 30.0


def classify_crop(time: float, width: int, height: int, info: VideoInfo) -> Sample | None:
    """Turn one detected crop rectangle into a sample.

    Returns None for near-black frames that should not be sampled at all.
    """
    if width < MIN_CROP_PIXELS or height < MIN_CROP_PIXELS:
        return None

    # Very short crop: almost certainly a title card
    if height < info.height * MIN_HEIGHT_FRACTION:
        return Sample(time=time)

    # Windowboxed: the picture touches neither pair of frame edges
    if width < info.width * EDGE_FRACTION and height < info.height * EDGE_FRACTION:
        return Sample(time=time)

    if width * height < info.width * info.height * MIN_AREA_FRACTION:
        return Sample(time=time)

    return Sample(time=time, ratio=round(width / height, 2))


def _progress_reporter(
    info: VideoInfo, on_progress: Callable[[float], None] | None
) -> Callable[[float], None]:
    """Return a callback that logs and reports every >30s of media time."""
    last_report = 0.0

    def report(t: float) -> None:
        nonlocal last_report
        if t - last_report <= PROGRESS_INTERVAL:
            return
        logger.info(
            "  analyzed up to %.1fs / %.1fs (%.1f%%)",
            t, info.duration, t / info.duration * 100,
        )
        if on_progress:
            on_progress(min(t / info.duration, 1.0))
        last_report = t

    return report


def parse_crop_samples(
    stderr: str,
    info: VideoInfo,
    on_progress: Callable[[float], None] | None = None,
) -> list[Sample]:
    """Parse cropdetect lines from ffmpeg stderr into samples, in emission order."""
    samples: list[Sample] = []
    report = _progress_reporter(info, on_progress) if on_progress else None

    for m in CROP_RE.finditer(stderr):
        t = float(m.group("t"))
        if report is not None:
            report(t)

        sample = classify_crop(t, int(m.group("w")), int(m.group("h")), info)
        if sample is not None:
            samples.append(sample)

    return samples


def cropdetect_command(config: AnalysisConfig, input_path: Path) -> list[str]:
    """Arguments for a full-file cropdetect pass (ffmpeg executable excluded)."""
    args = ["-nostdin"]
    if config.hwaccel:
        args += ["-hwaccel", config.hwaccel]
    args += [
        "-skip_frame", "noref",
        "-i", str(input_path),
        "-an", "-sn", "-dn",
        "-vf", f"format=yuv420p,cropdetect=limit={config.cropdetect_limit}:round=2:reset=1",
        "-f", "null", "-",
    ]
    return args


def sample_frames(
    input_path: Path,
    info: VideoInfo,
    config: AnalysisConfig,
    cancel: threading.Event | None = None,
    on_progress: Callable[[float], None] | None = None,
) -> list[Sample]:
    """Run cropdetect over the whole file and return samples sorted by time.

    An empty list means the scan produced nothing usable. Progress is
    reported while ffmpeg is still running.
    """
    report = _progress_reporter(info, on_progress)

    def on_line(line: str) -> None:
        m = CROP_RE.search(line)
        if m:
            report(float(m.group("t")))

    stderr = ffutil.run_tool(
        config.ffmpeg,
        cropdetect_command(config, input_path),
        cancel=cancel,
        want="stderr",
        on_line=on_line,
    )
    if not stderr.strip():
        return []

    samples = parse_crop_samples(stderr, info)
    # Restarts can emit timestamps out of order
    samples.sort(key=lambda s: s.time)
    return samples
