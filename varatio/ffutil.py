"""FFmpeg/ffprobe subprocess helpers."""

import logging
import os
import shutil
import signal
import subprocess
import threading
from pathlib import Path
from typing import Callable, TextIO

from varatio.config import AnalysisConfig
from varatio.models import VideoInfo

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1
_DRAIN_JOIN_TIMEOUT = 5.0


class ToolError(RuntimeError):
    """An external tool could not be run or produced no usable output."""


class ToolNotFoundError(ToolError):
    pass


class AnalysisCancelled(Exception):
    """Raised when an in-flight tool run is cancelled by its caller."""


def check_tools(config: AnalysisConfig) -> None:
    """Raise ToolNotFoundError if ffmpeg/ffprobe cannot be resolved."""
    for cmd in (config.ffmpeg, config.ffprobe):
        if shutil.which(cmd) is None:
            raise ToolNotFoundError(f"{cmd} not found on PATH")


def _drain(stream: TextIO, sink: Callable[[str], None] | None) -> None:
    try:
        for line in stream:
            if sink is not None:
                sink(line)
    except (OSError, ValueError):
        # Pipe closed underneath us after the process tree was killed.
        return


def process_group_kwargs() -> dict:
    """Popen options that put the child in its own group, for kill_tree."""
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def kill_tree(proc: subprocess.Popen) -> None:
    """Kill the process and everything it spawned.

    On POSIX the whole process group is killed even when the leader has
    already exited, so orphaned children holding our pipes die too.
    """
    if os.name == "nt":
        if proc.poll() is not None:
            return
        subprocess.run(
            ["taskkill", "/F", "/T", "/PID", str(proc.pid)],
            capture_output=True,
        )
    else:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            # Group already gone
            pass


def run_tool(
    executable: str,
    args: list[str],
    cancel: threading.Event | None = None,
    want: str = "stdout",
    on_line: Callable[[str], None] | None = None,
) -> str:
    """Run an external tool and return the text of one of its output streams.

    The other stream is drained and discarded so the child never blocks on a
    full pipe. The exit status is ignored; callers treat empty output as
    failure. If ``cancel`` is set while the tool runs, the whole process tree
    is killed and AnalysisCancelled is raised.

    ``on_line`` is called from a reader thread with each line of the wanted
    stream as it arrives. If it raises, it is not called again, the stream
    is still drained, and the first error is re-raised once the tool exits.
    """
    if want not in ("stdout", "stderr"):
        raise ValueError(f"want must be 'stdout' or 'stderr', got {want!r}")
    if cancel is not None and cancel.is_set():
        raise AnalysisCancelled(f"{executable} cancelled before start")

    cmd = [executable, *args]

    logger.debug("Run: %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            **process_group_kwargs(),
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError(f"{executable} not found") from e

    chunks: list[str] = []
    callback_errors: list[Exception] = []

    def collect(line: str) -> None:
        chunks.append(line)
        if on_line is None or callback_errors:
            return
        try:
            on_line(line)
        except Exception as e:
            # Keep draining so the child never stalls; re-raised after the run
            callback_errors.append(e)

    wanted, other = (proc.stdout, proc.stderr) if want == "stdout" else (proc.stderr, proc.stdout)
    readers = [
        threading.Thread(target=_drain, args=(wanted, collect), daemon=True),
        threading.Thread(target=_drain, args=(other, None), daemon=True),
    ]

    try:
        for reader in readers:
            reader.start()

        while True:
            if cancel is not None and cancel.is_set():
                kill_tree(proc)
                raise AnalysisCancelled(f"{executable} cancelled")
            try:
                proc.wait(timeout=_POLL_INTERVAL)
            except subprocess.TimeoutExpired:
                continue
            alive = [r for r in readers if r.is_alive()]
            if not alive:
                break
            # Children of the tool can keep the pipes open after it exits
            alive[0].join(timeout=_POLL_INTERVAL)
    finally:
        kill_tree(proc)
        proc.wait()
        for reader in readers:
            if reader.is_alive():
                reader.join(timeout=_DRAIN_JOIN_TIMEOUT)
        proc.stdout.close()
        proc.stderr.close()

    if callback_errors:
        raise callback_errors[0]
    return "".join(chunks)


def _to_int(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


def _to_float(value: str) -> float | None:
    try:
        return float(value)
    except ValueError:
        return None


def parse_probe_output(output: str) -> VideoInfo | None:
    """Parse ffprobe csv output into a VideoInfo.

    Expected shape is a ``width,height,duration`` stream line followed by a
    bare container duration line. The stream duration wins when both are
    present; ``N/A`` fields are ignored.
    """
    width = height = 0
    duration = 0.0

    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            continue

        parts = [p.strip() for p in line.split(",")]
        w = _to_int(parts[0])
        h = _to_int(parts[1]) if len(parts) >= 2 else None
        if w is not None and h is not None:
            if width == 0 and height == 0:
                width, height = w, h
                if len(parts) >= 3:
                    stream_duration = _to_float(parts[2])
                    if stream_duration is not None:
                        duration = stream_duration
            continue

        container_duration = _to_float(line.strip(","))
        if container_duration is not None and duration <= 0:
            duration = container_duration

    if width <= 0 or height <= 0 or not duration > 0:
        return None
    return VideoInfo(width=width, height=height, duration=duration)


def probe(
    input_path: Path,
    config: AnalysisConfig,
    cancel: threading.Event | None = None,
) -> VideoInfo | None:
    """Extract frame size and duration via ffprobe; None if unusable."""
    args = [
        "-v", "error",
        "-select_streams", "v:0",
        "-show_entries", "stream=width,height,duration:format=duration",
        "-of", "csv=p=0:s=,",
        str(input_path),
    ]
    output = run_tool(config.ffprobe, args, cancel=cancel)
    if not output.strip():
        return None
    return parse_probe_output(output)


def stream_command(
    config: AnalysisConfig, input_path: Path, crop_filter: str
) -> list[str]:
    """Build an ffmpeg command that transcodes to fragmented MP4 on stdout."""
    if not crop_filter:
        raise ValueError("stream_command called with an empty crop filter")

    return [
        config.ffmpeg,
        "-nostdin",
        "-i", str(input_path),
        "-map", "0:v:0",
        "-map", "0:a?",
        "-vf", crop_filter,
        "-c:v", "libx264",
        "-preset", "veryfast",
        "-crf", "18",
        "-c:a", "copy",
        "-movflags", "+frag_keyframe+empty_moov+default_base_moof",
        "-f", "mp4",
        "-",
    ]
