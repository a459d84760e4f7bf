"""
HTTP interface for the sign-up store.

A Flask application factory over `SignupService`. Each route validates the
JSON body through the service and maps the error taxonomy onto status codes:
validation 400, duplicate 409, not found 404, busy 503, resource 507 and any
other fatal store failure 500.

Usage:
    from signup_store.web import create_app

    app = create_app(SignupService.from_settings(get_settings()))
    app.run(host="0.0.0.0", port=10000, threaded=True)
"""

from __future__ import annotations

import time
from typing import Any, Dict, Tuple

from flask import Flask, Response, g, jsonify, request

from signup_store.errors import (
    BusyError,
    FatalStoreError,
    ResourceError,
    SignupStoreError,
    ValidationError,
)
from signup_store.service import SignupService
from signup_store.utils.logging import get_logger

log = get_logger(__name__)

DOWNLOAD_NAME = "customers.csv"


def _body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _error(message: str, status: int, **fields: Any) -> Tuple[Response, int]:
    return jsonify({"success": False, "error": message, **fields}), status


def create_app(service: SignupService) -> Flask:
    """
    Build the Flask app bound to `service`.

    The service must already be started (`service.start()`); the app does
    not own its lifecycle.
    """
    app = Flask(__name__)
    app.config["SIGNUP_SERVICE"] = service

    @app.before_request
    def _start_timer() -> None:
        g.started = time.perf_counter()

    @app.after_request
    def _log_request(response: Response) -> Response:
        started = g.get("started")
        duration_ms = (time.perf_counter() - started) * 1000 if started is not None else None
        log.info(
            f"[HTTP] {request.method} {request.path} {response.status_code}",
            extra={
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response

    @app.errorhandler(ValidationError)
    def _validation(exc: ValidationError):
        return _error(str(exc), 400, field=exc.field)

    @app.errorhandler(BusyError)
    def _busy(exc: BusyError):
        return _error(str(exc), 503)

    @app.errorhandler(ResourceError)
    def _resource(exc: ResourceError):
        log.error("[HTTP] storage unavailable", extra={"error": str(exc)})
        return _error(str(exc), 507)

    @app.errorhandler(FatalStoreError)
    def _fatal(exc: FatalStoreError):
        log.error("[HTTP] fatal store error", extra={"error": str(exc)})
        return _error("Failed to save data", 500)

    @app.errorhandler(SignupStoreError)
    def _store(exc: SignupStoreError):
        log.error("[HTTP] unhandled store error", extra={"error": str(exc)})
        return _error(str(exc), 500)

    @app.route("/health", methods=["GET"])
    def health():
        status = service.status()
        return jsonify({"status": "ok", "dirty": status["dirty"], "phase": status["phase"]})

    @app.route("/submit", methods=["POST"])
    def submit():
        body = _body()
        result = service.submit(body.get("name"), body.get("email"), body.get("phone"))
        if not result["ok"]:
            field = result["duplicate_field"]
            label = "email and phone" if field == "both" else field
            return _error(
                f"Details already exist with this {label}. One entry per customer!",
                409,
                duplicateField=field,
            )
        payload: Dict[str, Any] = {"success": True, "name": result["name"]}
        if result["warning"]:
            payload["warning"] = result["warning"]
        return jsonify(payload)

    @app.route("/save-prize", methods=["POST"])
    def save_prize():
        body = _body()
        result = service.update_prize(body.get("email"), body.get("prize"))
        if not result["found"]:
            return _error("Email not found", 404)
        payload: Dict[str, Any] = {"success": True}
        if result["warning"]:
            payload["warning"] = result["warning"]
        return jsonify(payload)

    @app.route("/delete", methods=["POST"])
    def delete():
        body = _body()
        result = service.delete(email=body.get("email"), phone=body.get("phone"))
        if not result["found"]:
            return _error("No matching record", 404, found=False, removed=0)
        payload: Dict[str, Any] = {
            "success": True,
            "found": True,
            "removed": result["removed"],
        }
        if result["warning"]:
            payload["warning"] = result["warning"]
        return jsonify(payload)

    @app.route("/download", methods=["GET"])
    def download():
        data = service.export_snapshot()
        return Response(
            data,
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={DOWNLOAD_NAME}"},
        )

    @app.route("/records", methods=["GET"])
    def records():
        rows = service.list_records()
        return jsonify([record.model_dump() for record in rows])

    return app


__all__ = ["create_app", "DOWNLOAD_NAME"]
