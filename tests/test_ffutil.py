"""Unit tests for ffutil — the tool runner, probe parsing and command shapes."""

import os
import sys
import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from varatio.config import AnalysisConfig
from varatio.ffutil import (
    AnalysisCancelled,
    ToolError,
    ToolNotFoundError,
    check_tools,
    parse_probe_output,
    probe,
    run_tool,
    stream_command,
)
from varatio.models import VideoInfo

PY = sys.executable


# ---------------------------------------------------------------------------
# run_tool (real subprocesses running the current interpreter)
# ---------------------------------------------------------------------------

class TestRunTool:
    def test_returns_stdout_while_draining_large_stderr(self):
        script = "import sys; sys.stderr.write('e' * 500000); print('hello')"
        assert run_tool(PY, ["-c", script]) == "hello\n"

    def test_returns_stderr_while_draining_large_stdout(self):
        script = "import sys; sys.stdout.write('o' * 500000); sys.stderr.write('diag')"
        assert run_tool(PY, ["-c", script], want="stderr") == "diag"

    def test_nonzero_exit_is_ignored(self):
        script = "import sys; print('partial'); sys.exit(3)"
        assert run_tool(PY, ["-c", script]) == "partial\n"

    def test_on_line_sees_each_line(self):
        script = "print('one'); print('two')"
        seen: list[str] = []
        assert run_tool(PY, ["-c", script], on_line=seen.append) == "one\ntwo\n"
        assert seen == ["one\n", "two\n"]

    def test_empty_output(self):
        assert run_tool(PY, ["-c", "pass"]) == ""

    def test_missing_tool(self, tmp_path: Path):
        with pytest.raises(ToolNotFoundError, match="not found"):
            run_tool(str(tmp_path / "no-such-tool"), [])

    def test_missing_tool_is_a_tool_error(self, tmp_path: Path):
        with pytest.raises(ToolError):
            run_tool(str(tmp_path / "no-such-tool"), [])

    def test_invalid_stream_name(self):
        with pytest.raises(ValueError, match="want"):
            run_tool(PY, ["-c", "pass"], want="both")

    def test_cancel_before_start(self):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(AnalysisCancelled):
            run_tool(PY, ["-c", "print('never')"], cancel=cancel)

    def test_cancel_kills_running_tool(self):
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        script = "import time; print('started', flush=True); time.sleep(60)"

        started = time.monotonic()
        timer.start()
        try:
            with pytest.raises(AnalysisCancelled):
                run_tool(PY, ["-c", script], cancel=cancel)
        finally:
            timer.cancel()
        assert time.monotonic() - started < 15

    @pytest.mark.skipif(os.name == "nt", reason="process groups are POSIX-only")
    def test_cancel_kills_children_holding_the_pipe(self):
        # The tool exits at once but leaves a child sleeping on its stdout
        script = (
            "import subprocess, sys; "
            "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(20)']); "
            "print('leader done', flush=True)"
        )
        cancel = threading.Event()
        timer = threading.Timer(0.5, cancel.set)

        started = time.monotonic()
        timer.start()
        try:
            with pytest.raises(AnalysisCancelled):
                run_tool(PY, ["-c", script], cancel=cancel)
        finally:
            timer.cancel()
        assert time.monotonic() - started < 10

    def test_failing_line_callback_does_not_stall_the_tool(self):
        script = "for i in range(20000): print('x' * 100)"
        cancel = threading.Event()
        timer = threading.Timer(20, cancel.set)
        calls: list[str] = []

        def on_line(line: str) -> None:
            calls.append(line)
            raise ValueError("bad progress line")

        timer.start()
        try:
            with pytest.raises(ValueError, match="bad progress line"):
                run_tool(PY, ["-c", script], cancel=cancel, on_line=on_line)
        finally:
            timer.cancel()
        assert not cancel.is_set()
        assert len(calls) == 1

    def test_cancellation_is_not_a_tool_error(self):
        assert not issubclass(AnalysisCancelled, ToolError)


# ---------------------------------------------------------------------------
# parse_probe_output (pure parsing)
# ---------------------------------------------------------------------------

class TestParseProbeOutput:
    def test_stream_duration(self):
        info = parse_probe_output("1920,1080,5400.250000\n5400.300000\n")
        assert info == VideoInfo(width=1920, height=1080, duration=5400.25)

    def test_container_duration_fallback(self):
        info = parse_probe_output("1920,800,N/A\n7200.5\n")
        assert info == VideoInfo(width=1920, height=800, duration=7200.5)

    def test_container_line_with_trailing_comma(self):
        info = parse_probe_output("1920,800\n7200.5,\n")
        assert info == VideoInfo(width=1920, height=800, duration=7200.5)

    def test_first_geometry_line_wins(self):
        info = parse_probe_output("1920,1080,60.0\n1280,720,30.0\n")
        assert info == VideoInfo(width=1920, height=1080, duration=60.0)

    def test_whitespace_is_tolerated(self):
        info = parse_probe_output("  1920 , 1080 , 42.0  \r\n")
        assert info == VideoInfo(width=1920, height=1080, duration=42.0)

    def test_missing_duration(self):
        assert parse_probe_output("1920,1080,N/A\nN/A\n") is None

    def test_zero_duration(self):
        assert parse_probe_output("1920,1080,0.0\n") is None

    def test_missing_geometry(self):
        assert parse_probe_output("5400.0\n") is None

    def test_empty(self):
        assert parse_probe_output("") is None


# ---------------------------------------------------------------------------
# probe (mocked runner)
# ---------------------------------------------------------------------------

class TestProbe:
    @patch("varatio.ffutil.run_tool")
    def test_basic(self, mock_run):
        mock_run.return_value = "1920,1080,60.0\n60.0\n"
        info = probe(Path("video.mkv"), AnalysisConfig(ffprobe_path="/opt/ffprobe"))

        assert info == VideoInfo(width=1920, height=1080, duration=60.0)
        exe, args = mock_run.call_args[0]
        assert exe == "/opt/ffprobe"
        assert args[-1] == "video.mkv"
        assert "csv=p=0:s=," in args

    @patch("varatio.ffutil.run_tool")
    def test_whitespace_output_is_failure(self, mock_run):
        mock_run.return_value = "  \n"
        assert probe(Path("video.mkv"), AnalysisConfig()) is None

    @patch("varatio.ffutil.run_tool")
    def test_passes_cancel_through(self, mock_run):
        mock_run.return_value = ""
        cancel = threading.Event()
        probe(Path("video.mkv"), AnalysisConfig(), cancel=cancel)
        assert mock_run.call_args.kwargs["cancel"] is cancel


# ---------------------------------------------------------------------------
# check_tools / stream_command
# ---------------------------------------------------------------------------

class TestCheckTools:
    @patch("varatio.ffutil.shutil.which", return_value="/usr/bin/tool")
    def test_all_present(self, mock_which):
        check_tools(AnalysisConfig())
        assert mock_which.call_count == 2

    @patch("varatio.ffutil.shutil.which", return_value=None)
    def test_missing(self, mock_which):
        with pytest.raises(ToolNotFoundError, match="ffmpeg not found"):
            check_tools(AnalysisConfig())


class TestStreamCommand:
    def test_shape(self):
        cmd = stream_command(AnalysisConfig(), Path("in.mkv"), "crop=1920:800:0:140")
        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-vf") + 1] == "crop=1920:800:0:140"
        assert cmd[cmd.index("-f") + 1] == "mp4"
        assert cmd[-1] == "-"

    def test_empty_filter_raises(self):
        with pytest.raises(ValueError, match="empty crop filter"):
            stream_command(AnalysisConfig(), Path("in.mkv"), "")
