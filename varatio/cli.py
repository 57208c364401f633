"""Thin CLI entry point — builds an AnalysisConfig and calls the engine."""

import argparse
import dataclasses
import logging
import sys
import threading
from pathlib import Path

from varatio import ffutil
from varatio.config import AnalysisConfig, load_config
from varatio.editors.cropfilter import build_crop_filter
from varatio.editors.sidecar import parse_sidecar, sidecar_path, write_sidecar
from varatio.engine import analyze, analyze_library, find_media_files


def _add_analysis_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", "-c", type=Path, help="Path to a JSON config file")
    p.add_argument("--black-threshold", type=int, help="Black level 0-255 (default 16)")
    p.add_argument("--tolerance", type=float, help="Ratio tolerance (default 0.05)")
    p.add_argument("--min-duration", type=float, help="Minimum segment duration in seconds (default 1)")
    p.add_argument("--sidecar-version", type=int, choices=[1, 2], help="Sidecar start-time format")
    p.add_argument("--force", action="store_true", help="Re-analyze even if a sidecar exists")


def _build_config(args: argparse.Namespace) -> AnalysisConfig:
    config = load_config(args.config) if getattr(args, "config", None) else AnalysisConfig()
    overrides = {
        "black_threshold": getattr(args, "black_threshold", None),
        "ratio_tolerance": getattr(args, "tolerance", None),
        "min_segment_duration": getattr(args, "min_duration", None),
        "sidecar_version": getattr(args, "sidecar_version", None),
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    return dataclasses.replace(config, **overrides) if overrides else config


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="varatio",
        description="VARatio — detect variable aspect ratios and build crop filters.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    an = sub.add_parser("analyze", help="Analyze one video file")
    an.add_argument("video", type=Path, help="Input video file")
    _add_analysis_options(an)

    scan = sub.add_parser("scan", help="Analyze every video under a directory")
    scan.add_argument("directory", type=Path, help="Library root")
    _add_analysis_options(scan)

    flt = sub.add_parser("filter", help="Print the crop filter for a video with a sidecar")
    flt.add_argument("video", type=Path, help="Video file (its .var sidecar is read)")

    serve = sub.add_parser("serve", help="Launch the web API")
    serve.add_argument("media_root", type=Path, help="Directory served by the API")
    serve.add_argument("--config", "-c", type=Path, help="Path to a JSON config file")
    serve.add_argument("--port", type=int, default=8321, help="Port to listen on")
    serve.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind to")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "filter":
        timeline = parse_sidecar(sidecar_path(args.video))
        if timeline is None:
            print(f"Error: no usable sidecar for {args.video}", file=sys.stderr)
            sys.exit(1)
        expr = build_crop_filter(timeline)
        if not expr:
            print("Error: no crop possible for this timeline", file=sys.stderr)
            sys.exit(1)
        print(expr)
        return

    try:
        config = _build_config(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.command == "serve":
        from varatio.web import create_app
        app = create_app(args.media_root, config)
        print(f"VARatio API: http://{args.host}:{args.port}")
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
        return

    try:
        ffutil.check_tools(config)
    except ffutil.ToolNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    cancel = threading.Event()

    if args.command == "analyze":
        if not args.force and sidecar_path(args.video).exists():
            print(f"Sidecar already exists: {sidecar_path(args.video)} (use --force)")
            return

        def on_progress(stage: str, frac: float) -> None:
            print(f"  [{frac:3.0%}] {stage}")

        try:
            result = analyze(args.video, config, cancel=cancel, on_progress=on_progress)
        except KeyboardInterrupt:
            cancel.set()
            print("Cancelled.", file=sys.stderr)
            sys.exit(130)

        print()
        if not result.has_variable_ratios:
            print(f"No variable aspect ratios in {args.video.name}")
            return
        for seg in result.segments:
            print(f"  {seg.start:10.3f}s - {seg.end:10.3f}s  {seg.label}")
        written = write_sidecar(args.video, result, config.sidecar_version)
        print(f"Done! Sidecar: {written}")
        return

    if args.command == "scan":
        files = find_media_files(args.directory, config.extensions)
        try:
            report = analyze_library(files, config, cancel=cancel, force=args.force)
        except (KeyboardInterrupt, ffutil.AnalysisCancelled):
            cancel.set()
            print("Cancelled.", file=sys.stderr)
            sys.exit(130)

        print()
        print(f"Done! Processed {report.processed} files, skipped {report.skipped}")
        print(f"  Sidecars written: {len(report.written)}")
        print(f"  Uniform: {report.uniform}")
        if report.failed:
            print(f"  Failed: {len(report.failed)}")
            for path in report.failed:
                print(f"    {path}")
