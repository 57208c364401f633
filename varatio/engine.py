"""Orchestrator — probes, samples and classifies media files."""

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from varatio import ffutil
from varatio.analyzers.cropdetect import sample_frames
from varatio.analyzers.segments import classify
from varatio.config import AnalysisConfig
from varatio.editors.sidecar import sidecar_path, write_sidecar
from varatio.models import AnalysisResult

logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    processed: int = 0
    skipped: int = 0
    written: list[Path] = field(default_factory=list)
    uniform: int = 0
    failed: list[Path] = field(default_factory=list)


def analyze(
    input_path: Path,
    config: AnalysisConfig,
    cancel: threading.Event | None = None,
    on_progress: Callable[[str, float], None] | None = None,
) -> AnalysisResult:
    """Detect aspect-ratio segments in one media file.

    Returns an empty result when the tools fail or the file has a single
    aspect ratio. AnalysisCancelled propagates.

    Args:
        input_path: Media file to analyze.
        config: Thresholds and tool paths.
        cancel: Event that aborts the running tool when set.
        on_progress: Optional callback(stage_name, fraction_complete).
    """

    def _progress(stage: str, frac: float) -> None:
        if on_progress:
            on_progress(stage, frac)

    name = input_path.name

    _progress("Probing video metadata", 0.0)
    try:
        info = ffutil.probe(input_path, config, cancel=cancel)
    except ffutil.ToolError as e:
        logger.error("Failed to probe %s: %s", input_path, e)
        return AnalysisResult()
    if info is None:
        logger.error("Failed to probe %s", input_path)
        return AnalysisResult()

    logger.info(
        "Probed %s: %dx%d, %.1fs (%.0f min)",
        name, info.width, info.height, info.duration, info.duration / 60.0,
    )

    _progress("Scanning frames", 0.05)
    started = time.monotonic()
    try:
        samples = sample_frames(
            input_path,
            info,
            config,
            cancel=cancel,
            on_progress=lambda frac: _progress("Scanning frames", 0.05 + frac * 0.9),
        )
    except ffutil.ToolError as e:
        logger.error("Frame scan failed for %s: %s", input_path, e)
        return AnalysisResult()

    logger.info(
        "Collected %d samples in %.1fs", len(samples), time.monotonic() - started
    )
    if not samples:
        logger.warning("No valid samples for %s", input_path)
        return AnalysisResult()

    _progress("Building segments", 0.95)
    segments = classify(samples, info.duration, config)
    if not segments:
        logger.warning("No non-windowboxed samples found for %s", input_path)
        return AnalysisResult()

    _progress("Done", 1.0)
    if len(segments) <= 1:
        logger.info("Uniform aspect ratio in %s", name)
        return AnalysisResult()

    logger.info("%s: %d aspect ratio segments detected", name, len(segments))
    return AnalysisResult(
        segments=segments,
        frame_width=info.width,
        frame_height=info.height,
    )


def find_media_files(root: Path, extensions: Iterable[str]) -> list[Path]:
    """Recursively list media files under ``root``, sorted by path."""
    wanted = {e.lower() for e in extensions}
    return sorted(
        p for p in root.rglob("*")
        if p.is_file() and p.suffix.lower() in wanted and not p.name.startswith(".")
    )


def analyze_library(
    paths: Iterable[Path],
    config: AnalysisConfig,
    cancel: threading.Event | None = None,
    force: bool = False,
    on_progress: Callable[[Path, float], None] | None = None,
) -> BatchReport:
    """Analyze many files, writing a sidecar for each variable-ratio file.

    Files that already have a sidecar are skipped unless ``force`` is set.
    Errors in one file are logged and do not stop the batch; cancellation
    does.
    """
    paths = list(paths)
    report = BatchReport()
    total = len(paths)

    logger.info("Found %d files to analyze", total)

    for index, path in enumerate(paths, 1):
        if cancel is not None and cancel.is_set():
            raise ffutil.AnalysisCancelled("Library analysis cancelled")

        if not force and sidecar_path(path).exists():
            logger.debug("Skipping %s: sidecar already exists", path.name)
            report.skipped += 1
        else:
            try:
                logger.info("Analyzing: %s", path.name)
                result = analyze(path, config, cancel=cancel)
                written = write_sidecar(path, result, config.sidecar_version)
                if written is not None:
                    report.written.append(written)
                    logger.info(
                        "Found %d aspect ratio segments in %s",
                        len(result.segments), path.name,
                    )
                else:
                    report.uniform += 1
                    logger.info("No variable aspect ratios in %s", path.name)
            except ffutil.AnalysisCancelled:
                raise
            except Exception:
                logger.exception("Error analyzing %s", path)
                report.failed.append(path)
            report.processed += 1

        if on_progress:
            on_progress(path, index / total)

    logger.info(
        "Analysis complete. Processed %d files, wrote %d sidecar files",
        report.processed, len(report.written),
    )
    return report
