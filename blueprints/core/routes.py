from __future__ import annotations
import json, logging
from datetime import datetime, UTC

from flask import g, jsonify, request
from werkzeug.wrappers.response import Response

from . import bp                 # используем bp из __init__.py

# поля extra, которые попадают в JSON-строку лога
LOG_EXTRA_KEYS = (
    "event", "path", "method", "status", "duration_ms",
    "refresh_intent_id", "booking_id", "conflict_id", "impact_type", "conflict_flag",
)

class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in LOG_EXTRA_KEYS:
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        return json.dumps(payload, ensure_ascii=False, default=str)

def setup_structured_logging(app):
    logger = app.logger
    has_json = any(
        isinstance(h, logging.StreamHandler)
        and isinstance(getattr(h, "formatter", None), JSONFormatter)
        for h in logger.handlers
    )
    if not has_json:
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        # сервисные логгеры (blueprints.*) пишут тем же форматом
        svc_logger = logging.getLogger("blueprints")
        svc_logger.addHandler(handler)
        svc_logger.setLevel(logging.INFO)

@bp.before_app_request
def _start_timer():
    g._req_start = datetime.now(UTC)

@bp.after_app_request
def _log_request(response: Response):
    try:
        duration_ms = int((datetime.now(UTC) - g._req_start).total_seconds() * 1000)
    except AttributeError:
        duration_ms = None
    extra = {
        "event": "http_request",
        "path": request.path,
        "method": request.method,
        "status": response.status_code,
        "duration_ms": duration_ms,
    }
    logging.getLogger("blueprints.core").info("request handled", extra=extra)
    return response

@bp.record_once
def _on_register(state):
    setup_structured_logging(state.app)

@bp.get("/health")
def health():
    return jsonify({
        "status": "ok",
        "ts": datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
    })
