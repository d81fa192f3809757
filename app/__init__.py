from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from flask import Flask, jsonify
from dotenv import load_dotenv

from config.settings import Settings, get_settings
from models import configure, init_db

from .cors import init_cors
from .jobs.queue import JobQueue, build_job_queue

logger = logging.getLogger(__name__)

_ENV_LOADED = False


def _ensure_env_loaded() -> None:
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    base_dir = Path(__file__).resolve().parent.parent
    env_path = base_dir / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=False)
    else:
        load_dotenv(override=False)

    _ENV_LOADED = True


def create_app(
    settings: Optional[Settings] = None,
    *,
    queue: Optional[JobQueue] = None,
) -> Flask:
    """Build the API application.

    ``settings`` defaults to the environment; ``queue`` defaults to the
    transport named by ``JOB_QUEUE_PROVIDER``.
    """
    _ensure_env_loaded()
    settings = settings or get_settings()

    configure(settings.DATABASE_URL)
    init_db()

    app = Flask(__name__)
    app.json.sort_keys = False
    app.extensions["textjobs"] = {
        "settings": settings,
        "queue": queue or build_job_queue(settings),
    }
    logger.info(
        "TextJobs API configured (queue provider: %s)",
        settings.JOB_QUEUE_PROVIDER,
    )

    init_cors(app)

    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return jsonify({"error": "Method not allowed"}), 405

    from .routes import bp as core_bp

    app.register_blueprint(core_bp)

    return app
