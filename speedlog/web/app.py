"""Flask application factory and HTTP routes."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from flask import Flask, Response, jsonify, request
from werkzeug.middleware.proxy_fix import ProxyFix

from ..config import AppConfig
from ..errors import StorageError
from ..log_store import LogStore
from ..measurements.models import TestSize
from ..measurements.orchestrator import RunOrchestrator
from ..scheduler import SchedulerService

LOGGER = logging.getLogger(__name__)


def create_web_app(
    config: AppConfig,
    orchestrator: RunOrchestrator,
    log_store: LogStore,
    scheduler: Optional[SchedulerService] = None,
) -> Flask:
    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.web.secret_key

    if config.web.reverse_proxy_headers:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)  # type: ignore

    @app.get("/api/status")
    def api_status():
        return jsonify(
            {
                "run": orchestrator.snapshot.to_dict(),
                "server_base_url": config.server.base_url,
                "scheduler": scheduler.status() if scheduler else None,
            }
        )

    @app.post("/api/run")
    def api_start_run():
        size = _parse_size(request.args.get("size"))
        if size is None:
            return jsonify({"error": f"size must be one of {[int(s) for s in TestSize]}"}), 400
        if not orchestrator.start(size):
            return jsonify({"status": "busy", "run": orchestrator.snapshot.to_dict()}), 409
        LOGGER.info("Speed test started from API (%s)", size.display_title)
        return jsonify({"status": "started", "test_size_mb": int(size)}), 202

    @app.post("/api/run/cancel")
    def api_cancel_run():
        orchestrator.cancel()
        return jsonify({"status": "cancelled", "run": orchestrator.snapshot.to_dict()})

    @app.get("/api/logs")
    def api_logs():
        limit = request.args.get("limit", type=int)
        if limit is not None and limit < 0:
            return jsonify({"error": "limit cannot be negative"}), 400
        try:
            records = log_store.read_recent(limit=limit)
        except StorageError as exc:
            LOGGER.error("Failed to read run log: %s", exc)
            return jsonify({"error": str(exc)}), 500
        return jsonify([record.to_dict() for record in records])

    @app.get("/api/export/csv")
    def api_export_csv():
        try:
            log_store.ensure_exists()
            content = log_store.path.read_text(encoding="utf-8")
        except (StorageError, OSError) as exc:
            LOGGER.error("Failed to export run log: %s", exc)
            return jsonify({"error": str(exc)}), 500
        filename = f"speedtest_logs-{datetime.utcnow().strftime('%Y%m%dT%H%M%S')}.csv"
        return Response(
            content,
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )

    return app


def _parse_size(raw: Optional[str]) -> Optional[TestSize]:
    if raw is None:
        return TestSize.MB5
    try:
        return TestSize(int(raw))
    except ValueError:
        return None
