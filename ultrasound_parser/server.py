"""
HTTP Microservice
=================
Flask-based HTTP API for the report pipeline.

Endpoints:
    GET    /                  → API info
    GET    /health            → Storage / database health
    POST   /upload            → Upload and process a report PDF
    GET    /reports           → List reports (pagination + filters)
    GET    /reports/stats     → Report statistics
    GET    /reports/<id>      → Get a report
    DELETE /reports/<id>      → Soft-delete a report
    GET    /uploads/<path>    → Serve stored PDFs and images
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from flask import Blueprint, Flask, current_app, jsonify, request, send_from_directory
from flask_cors import CORS
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from . import __version__
from .database import ReportStore, get_db_path
from .engine import PipelineConfig, ReportPipeline
from .errors import UploadProcessingError, ValidationError
from .extraction import create_engine
from .image_extractor import format_bytes
from .models import ReportStatus, utc_now_iso
from .storage import FileObjectStore, get_storage_dir
from .validator import (
    is_valid_uuid,
    validate_pagination_params,
    validate_search_params,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "ultrasound-report-parser"

# Multipart framing on top of the file itself
_MULTIPART_OVERHEAD = 1024 * 1024

reports_bp = Blueprint("reports", __name__)


def create_app(
    config: dict = None,
    pipeline: Optional[ReportPipeline] = None,
    store: Optional[ReportStore] = None,
    object_store: Optional[FileObjectStore] = None,
) -> Flask:
    """
    Create and configure the Flask app.

    Collaborators not passed in are built from configuration:
    ``STORAGE_DIR``, ``DB_PATH``, ``BASE_URL`` and ``PIPELINE_CONFIG``.
    """
    app = Flask(__name__)
    CORS(app)

    if config:
        app.config.update(config)

    app.config.setdefault("STORAGE_DIR", get_storage_dir())
    app.config.setdefault("DB_PATH", get_db_path())
    app.config.setdefault("BASE_URL", os.environ.get("REPORT_BASE_URL", ""))
    app.config.setdefault("PIPELINE_CONFIG", PipelineConfig.from_env())

    pipeline_config: PipelineConfig = app.config["PIPELINE_CONFIG"]
    app.config.setdefault("DEBUG_ERRORS", pipeline_config.debug)
    app.config.setdefault(
        "MAX_CONTENT_LENGTH", pipeline_config.max_file_size + _MULTIPART_OVERHEAD
    )

    # Initialize persistence layer
    if object_store is None:
        object_store = FileObjectStore(app.config["STORAGE_DIR"], app.config["BASE_URL"])
        object_store.init()
    if store is None:
        store = ReportStore(app.config["DB_PATH"])
        store.init()
    if pipeline is None:
        pipeline = ReportPipeline(
            pipeline_config, object_store, store, create_engine()
        )

    app.extensions["report_store"] = store
    app.extensions["object_store"] = object_store
    app.extensions["pipeline"] = pipeline

    app.register_blueprint(reports_bp)
    _register_error_handlers(app)
    return app


def _store() -> ReportStore:
    return current_app.extensions["report_store"]


def _error(error: str, status: int, **extra):
    body = {"success": False, "error": error}
    body.update({k: v for k, v in extra.items() if v is not None})
    return jsonify(body), status


# ─── Info / Health ────────────────────────────────────────────────────────────


@reports_bp.route("/", methods=["GET"])
def index():
    """API info."""
    return jsonify({
        "name": SERVICE_NAME,
        "version": __version__,
        "status": "running",
        "description": "Processes veterinary ultrasound report PDFs",
        "endpoints": {
            "POST /upload": "Upload and process a report PDF",
            "GET /reports": "List reports",
            "GET /reports/<id>": "Get a report by id",
            "GET /reports/stats": "Report statistics",
            "DELETE /reports/<id>": "Delete a report",
            "GET /health": "Service health",
        },
    })


@reports_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    object_store = current_app.extensions["object_store"]
    try:
        storage_ok = object_store.exists()
    except Exception as e:
        logger.error(f"Storage health check failed: {e}")
        storage_ok = False
    database_ok = _store().check_health()

    healthy = storage_ok and database_ok
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "services": {
            "storage": "ok" if storage_ok else "error",
            "database": "ok" if database_ok else "error",
        },
        "timestamp": utc_now_iso(),
    }), 200 if healthy else 503


# ─── Upload ───────────────────────────────────────────────────────────────────


@reports_bp.route("/upload", methods=["POST"])
def upload_report():
    """
    Process a new ultrasound report.

    Accepts a multipart upload in the ``report`` (or ``file``) field.
    """
    file = request.files.get("report") or request.files.get("file")
    if file is None or not file.filename:
        return _error("No file was provided", 400)

    data = file.read()
    logger.info(f"Upload received: {file.filename} ({format_bytes(len(data))})")

    pipeline: ReportPipeline = current_app.extensions["pipeline"]
    try:
        report = pipeline.process_upload(data, file.filename, file.mimetype)
    except ValidationError as e:
        return _error(str(e), 400)
    except UploadProcessingError as e:
        logger.error(f"Upload failed at {e.step}: {e.detail}")
        message = e.detail if current_app.config["DEBUG_ERRORS"] else "Contact the administrator"
        return _error("Internal server error", 500, message=message)

    wire = report.to_wire()
    return jsonify({
        "success": True,
        "message": "Report processed successfully",
        "data": {
            "id": wire["id"],
            "patient": wire["patient"],
            "owner": wire["owner"],
            "veterinarian": wire["veterinarian"],
            "clinical": wire["clinical"],
            "files": wire.get("files"),
            "imagesCount": len(wire["images"]),
            "processingTime": f"{wire.get('processingTime', 0)}ms",
            "createdAt": wire.get("createdAt"),
        },
    }), 201


# ─── Reports ──────────────────────────────────────────────────────────────────


@reports_bp.route("/reports", methods=["GET"])
def list_reports():
    """List reports with pagination and filters."""
    pagination = validate_pagination_params(request.args)
    search = validate_search_params(request.args)

    page = _store().query(
        filters=search,
        limit=pagination["limit"],
        start_after=pagination["start_after"],
    )
    return jsonify({
        "success": True,
        "data": page.items,
        "pagination": {
            "count": page.count,
            "hasMore": page.has_more,
            "lastId": page.last_id,
        },
    })


@reports_bp.route("/reports/stats", methods=["GET"])
def report_statistics():
    return jsonify({"success": True, "data": _store().statistics()})


@reports_bp.route("/reports/<report_id>", methods=["GET"])
def get_report(report_id: str):
    if not is_valid_uuid(report_id):
        return _error("Invalid report id", 400)

    report = _store().get_by_id(report_id)
    if not report:
        return _error("Report not found", 404)
    if report.get("status") == ReportStatus.DELETED.value:
        return _error("This report has been deleted", 410)

    return jsonify({"success": True, "data": report})


@reports_bp.route("/reports/<report_id>", methods=["DELETE"])
def delete_report(report_id: str):
    """Soft delete."""
    if not is_valid_uuid(report_id):
        return _error("Invalid report id", 400)

    if not _store().delete(report_id):
        return _error("Report not found", 404)

    return jsonify({"success": True, "message": "Report deleted successfully"})


# ─── Stored Files ─────────────────────────────────────────────────────────────


@reports_bp.route("/uploads/<path:object_path>", methods=["GET"])
def serve_upload(object_path: str):
    """Serve files from the object store (PDFs, images)."""
    abs_path = current_app.extensions["object_store"].resolve(object_path)
    if not abs_path:
        logger.warning(f"Object NOT FOUND: {object_path}")
        return _error("File not found", 404, path=object_path)

    target = Path(abs_path)
    return send_from_directory(str(target.parent), target.name)


# ─── Error Handling ───────────────────────────────────────────────────────────


def _register_error_handlers(app: Flask):

    @app.errorhandler(404)
    def not_found(e):
        return _error("Endpoint not found", 404, path=request.path)

    @app.errorhandler(RequestEntityTooLarge)
    def too_large(e):
        limit = app.config["PIPELINE_CONFIG"].max_file_size
        return _error(
            f"File exceeds the maximum allowed size ({limit / 1024 / 1024:g} MB)",
            400,
            code="FILE_TOO_LARGE",
        )

    @app.errorhandler(Exception)
    def unhandled(e):
        if isinstance(e, HTTPException):
            return _error(e.description or e.name, e.code or 500)
        logger.error(f"Unhandled error: {e}", exc_info=True)
        return _error(
            "Internal server error",
            500,
            message=str(e) if app.config["DEBUG_ERRORS"] else None,
        )


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
):
    """Create the app and run the development server."""
    app = create_app()
    if debug:
        app.config["DEBUG_ERRORS"] = True
    logger.info(f"Database path: {app.config['DB_PATH']}")
    logger.info(f"Storage dir: {app.config['STORAGE_DIR']}")
    logger.info(f"Starting server on {host}:{port}")
    app.run(host=host, port=port, debug=debug)
