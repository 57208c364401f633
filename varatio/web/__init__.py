"""Flask application factory for the VARatio web API."""

from pathlib import Path

from flask import Flask, jsonify

from varatio.config import AnalysisConfig
from varatio.editors.sidecar import TimelineCache


def create_app(media_root: Path, config: AnalysisConfig | None = None) -> Flask:
    app = Flask(__name__)
    app.config["MEDIA_ROOT"] = Path(media_root).resolve()
    app.config["ANALYSIS_CONFIG"] = config or AnalysisConfig()
    app.config["TIMELINE_CACHE"] = TimelineCache()

    from varatio.web.routes import bp
    app.register_blueprint(bp)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not found"}), 404

    return app
