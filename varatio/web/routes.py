"""Web API routes for VARatio."""

import json
import logging
import queue
import subprocess
import threading
import uuid
from pathlib import Path

from flask import Blueprint, Response, current_app, jsonify, request

from varatio import ffutil
from varatio.editors.cropfilter import build_crop_filter
from varatio.editors.sidecar import sidecar_path, write_sidecar
from varatio.engine import analyze

logger = logging.getLogger(__name__)

bp = Blueprint("api", __name__)

STREAM_CHUNK = 64 * 1024

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}


def _resolve_media(rel_path: str | None) -> Path | None:
    """Map a request path onto a file inside MEDIA_ROOT, or None."""
    if not rel_path:
        return None
    root: Path = current_app.config["MEDIA_ROOT"]
    candidate = (root / rel_path).resolve()
    if not candidate.is_relative_to(root) or not candidate.is_file():
        return None
    return candidate


@bp.route("/api/timeline")
def timeline_data():
    media = _resolve_media(request.args.get("path"))
    if media is None:
        return jsonify({"error": "Item not found"}), 404

    var_path = sidecar_path(media)
    if not var_path.is_file():
        logger.info("No sidecar at %s", var_path)
        return jsonify({"error": "VARatio data not found for this item"}), 404

    logger.info("Serving sidecar %s", var_path)
    return Response(var_path.read_text(encoding="utf-8"), mimetype="text/plain")


@bp.route("/api/filter")
def crop_filter():
    media = _resolve_media(request.args.get("path"))
    if media is None:
        return jsonify({"error": "Item not found"}), 404

    timeline = current_app.config["TIMELINE_CACHE"].for_media(media)
    if timeline is None:
        return jsonify({"error": "VARatio data not found for this item"}), 404

    expr = build_crop_filter(timeline)
    if not expr:
        return jsonify({"error": "No crop possible for this item"}), 404

    return jsonify({
        "filter": expr,
        "frame_width": timeline.frame_width,
        "frame_height": timeline.frame_height,
        "segments": [
            {"start": s.start, "aspect_ratio": s.aspect_ratio}
            for s in timeline.segments
        ],
    })


@bp.route("/api/stream")
def stream():
    media = _resolve_media(request.args.get("path"))
    if media is None:
        return jsonify({"error": "Item not found"}), 404

    timeline = current_app.config["TIMELINE_CACHE"].for_media(media)
    expr = build_crop_filter(timeline) if timeline is not None else ""
    if not expr:
        return jsonify({"error": "No crop possible for this item"}), 404

    config = current_app.config["ANALYSIS_CONFIG"]
    cmd = ffutil.stream_command(config, media, expr)
    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            **ffutil.process_group_kwargs(),
        )
    except FileNotFoundError:
        logger.error("%s not found", cmd[0])
        return jsonify({"error": "ffmpeg not available"}), 503

    logger.info("Starting ffmpeg stream for %s", media)

    def generate():
        yield from iter(lambda: proc.stdout.read(STREAM_CHUNK), b"")

    def cleanup():
        ffutil.kill_tree(proc)
        proc.wait()
        proc.stdout.close()

    resp = Response(generate(), mimetype="video/mp4")
    resp.headers["Cache-Control"] = "no-store"
    # Runs even if the body is never read
    resp.call_on_close(cleanup)
    return resp


@bp.route("/api/analyze", methods=["POST"])
def start_analysis():
    body = request.get_json(silent=True) or {}
    media = _resolve_media(body.get("path"))
    if media is None:
        return jsonify({"error": "Item not found"}), 404

    force = bool(body.get("force", False))
    if not force and sidecar_path(media).exists():
        return jsonify({"status": "exists"})

    config = current_app.config["ANALYSIS_CONFIG"]
    job_id = uuid.uuid4().hex[:12]
    progress_queue: queue.Queue = queue.Queue()
    cancel = threading.Event()
    job = {
        "path": media,
        "status": "processing",
        "progress_queue": progress_queue,
        "cancel": cancel,
        "error": None,
    }
    _jobs[job_id] = job

    def run():
        try:
            def on_progress(stage: str, frac: float):
                progress_queue.put({"stage": stage, "progress": round(frac, 3)})

            result = analyze(media, config, cancel=cancel, on_progress=on_progress)
            written = write_sidecar(media, result, config.sidecar_version)
            job["result"] = {
                "variable": result.has_variable_ratios,
                "segments": len(result.segments),
                "sidecar": str(written) if written else None,
            }
            job["status"] = "done"
        except ffutil.AnalysisCancelled:
            job["status"] = "cancelled"
        except Exception as e:
            logger.exception("Analysis job %s failed", job_id)
            job["status"] = "error"
            job["error"] = str(e)
        finally:
            progress_queue.put(None)  # sentinel

    threading.Thread(target=run, daemon=True).start()
    return jsonify({"status": "started", "job_id": job_id})


@bp.route("/api/jobs/<job_id>/cancel", methods=["POST"])
def cancel_job(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    if job["status"] != "processing":
        return jsonify({"error": f"Job is already {job['status']}"}), 409

    job["cancel"].set()
    return jsonify({"status": "cancelling"})


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    q = job["progress_queue"]

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                if job["status"] == "error":
                    data = json.dumps({"error": job["error"]})
                elif job["status"] == "cancelled":
                    data = json.dumps({"stage": "cancelled"})
                else:
                    data = json.dumps({
                        "stage": "complete",
                        "progress": 1.0,
                        "result": job.get("result"),
                    })
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    if job_id not in _jobs:
        return jsonify({"error": "Job not found"}), 404

    job = _jobs[job_id]
    resp = {"status": job["status"], "path": str(job["path"])}
    if job["status"] == "done":
        resp["result"] = job.get("result")
    if job["status"] == "error":
        resp["error"] = job.get("error")
    return jsonify(resp)
