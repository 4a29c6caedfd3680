import io
import logging
import os
import time
import traceback
from collections import OrderedDict
from datetime import datetime, timezone

from flask import Flask, jsonify, request, send_file, send_from_directory
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename

from . import config
from .enrichment import enrich_document
from .errors import ExportError, UploadValidationError
from .exporter import PageRasterizer, export_html
from .models import Page
from .pipeline import render_document

logger = logging.getLogger(__name__)

PDF_MIMETYPE = "application/pdf"


def _settings():
    return {
        "UPLOAD_DIR": config.UPLOAD_DIR,
        "PUBLIC_DIR": config.PUBLIC_DIR,
        "MAX_CONTENT_LENGTH": int(max(config.MAX_UPLOAD_MB, config.MAX_JSON_MB) * 1024 * 1024),
        "MAX_UPLOAD_BYTES": int(config.MAX_UPLOAD_MB * 1024 * 1024),
        "APP_ENV": config.APP_ENV,
    }


def _pdf_upload():
    f = request.files.get("pdf")
    if f is None or not f.filename:
        return None
    if f.mimetype != PDF_MIMETYPE:
        raise UploadValidationError("Only PDF files are allowed")
    return f


def _pdf_response(data: bytes, filename):
    return send_file(io.BytesIO(data), mimetype=PDF_MIMETYPE, as_attachment=True, download_name=filename)


def create_app(overrides=None, ocr_engine=None):
    app = Flask(__name__, static_folder=None)
    app.config.update(_settings())
    if overrides:
        app.config.update(overrides)
    app.extensions["ocr_engine"] = ocr_engine
    app.extensions["rasterizer"] = PageRasterizer()
    app.config.setdefault("STARTED_AT", time.monotonic())
    CORS(app, resources={r"/api/*": {"origins": "*"}}, methods=["GET", "POST", "OPTIONS"],
         allow_headers=["Content-Type"], expose_headers=["Content-Type", "Content-Disposition"])
    os.makedirs(app.config["UPLOAD_DIR"], exist_ok=True)

    # ============ Routes ============

    @app.post("/api/upload")
    def upload():
        f = _pdf_upload()
        if f is None:
            return jsonify({"error": "No PDF file uploaded"}), 400
        if request.content_length and request.content_length > app.config["MAX_UPLOAD_BYTES"]:
            raise UploadValidationError(f"File exceeds {config.MAX_UPLOAD_MB:.0f}MB limit")

        filename = f"{int(time.time() * 1000)}-{secure_filename(f.filename) or 'upload.pdf'}"
        pdf_path = os.path.join(app.config["UPLOAD_DIR"], filename)
        f.save(pdf_path)
        logger.info("Processing PDF: %s", pdf_path)
        try:
            return jsonify(enrich_document(pdf_path, app.extensions["ocr_engine"]))
        except Exception as e:
            logger.error("Error processing PDF: %s", e)
            return jsonify({"error": "Failed to process PDF"}), 500
        finally:
            try: os.unlink(pdf_path)
            except OSError as e: logger.error("Error deleting temporary file: %s", e)

    @app.post("/api/convert")
    def convert():
        f = _pdf_upload()
        if f is None:
            return jsonify({"error": "No PDF file uploaded"}), 400
        pages = render_document(f.read())
        return jsonify(OrderedDict([("pages", [p.to_dict() for p in pages]), ("pageCount", len(pages))]))

    @app.post("/api/export")
    def export():
        payload = request.get_json(silent=True) or {}
        html_content = payload.get("htmlContent")
        if not html_content:
            return jsonify({"error": "No HTML content provided"}), 400
        return _pdf_response(export_html(html_content), "exported.pdf")

    @app.post("/api/export/pages")
    def export_pages():
        payload = request.get_json(silent=True) or {}
        pages = [Page.from_dict(p) for p in payload.get("pages") or []]
        if not pages:
            return jsonify({"error": "No pages provided"}), 400
        return _pdf_response(app.extensions["rasterizer"].export_pages(pages), config.DOWNLOAD_NAME)

    @app.get("/api/health")
    def health():
        return jsonify({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": time.monotonic() - app.config["STARTED_AT"],
        }), 200

    @app.get("/", defaults={"path": "index.html"})
    @app.get("/<path:path>")
    def static_files(path):
        return send_from_directory(app.config["PUBLIC_DIR"], path)

    # ============ Errors ============

    @app.errorhandler(Exception)
    def handle_error(err):
        if isinstance(err, HTTPException):
            status, message = err.code, err.description
        else:
            status = getattr(err, "status", 500)
            message = str(err) or "Internal Server Error"
        if status >= 500:
            logger.error("Server error: %s", err, exc_info=not isinstance(err, (HTTPException, ExportError)))
        body = {"error": message}
        if app.config["APP_ENV"] == "development":
            body["details"] = "".join(traceback.format_exception(type(err), err, err.__traceback__))
        return jsonify(body), status

    return app
