from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Dict

from flask import Flask, g, request
from flask.signals import got_request_exception

REQUEST_ID_HEADER = "X-Request-ID"

# Worker threads started by the nonraid package are named with this prefix
BACKGROUND_THREAD_PREFIX = "nonraid-"


def current_request_id() -> str | None:
    """Return the request ID of the active request, if any."""

    try:
        return getattr(g, "request_id", None)
    except RuntimeError:
        return None


class JsonRequestFormatter(logging.Formatter):
    """One JSON object per log line, tagged with the request ID when known."""

    default_time_format = "%Y-%m-%dT%H:%M:%S"
    default_msec_format = "%s.%03dZ"

    EXTRA_FIELDS = ("method", "path", "status_code", "duration_ms", "step", "slot", "disk", "progress")

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - base class contract
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.default_time_format),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None) or current_request_id()
        if request_id:
            payload["request_id"] = request_id

        # Provisioning and parity check records arrive from their own threads
        if record.threadName and record.threadName.startswith(BACKGROUND_THREAD_PREFIX):
            payload["thread"] = record.threadName

        for name in self.EXTRA_FIELDS:
            if hasattr(record, name):
                payload[name] = getattr(record, name)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True)


def init_logging(app: Flask, level: str = "INFO") -> None:
    """Send app and domain logs through the JSON formatter and trace requests."""

    log_level = getattr(logging, level.upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(JsonRequestFormatter())

    # Flask's default handler would print every record twice.
    app.logger.handlers.clear()
    app.logger.addHandler(handler)
    app.logger.setLevel(log_level)
    app.logger.propagate = False

    # Background threads of the nonraid package log outside any request.
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.addHandler(handler)
        root_logger.setLevel(log_level)
    logging.getLogger("nonraid").setLevel(log_level)

    @app.before_request
    def _inject_request_id() -> None:  # pragma: no cover - flask runtime hook
        g.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        g.request_started = time.time()

    @app.after_request
    def _log_request(response):  # pragma: no cover - flask runtime hook
        request_id = current_request_id()
        if request_id:
            response.headers[REQUEST_ID_HEADER] = request_id

        extra = {
            "request_id": request_id,
            "method": request.method,
            "path": request.path,
            "status_code": response.status_code,
        }
        started = getattr(g, "request_started", None)
        if isinstance(started, (int, float)):
            extra["duration_ms"] = round((time.time() - started) * 1000, 2)

        # Progress polling would drown everything else at INFO.
        if request.path.endswith("/progress"):
            app.logger.debug("request complete", extra=extra)
        else:
            app.logger.info("request complete", extra=extra)
        return response

    @got_request_exception.connect_via(app)
    def _log_exception(sender, exception, **kwargs):  # pragma: no cover - runtime hook
        extra = {
            "request_id": current_request_id(),
            "method": getattr(request, "method", None),
            "path": getattr(request, "path", None),
        }
        exc_info = (type(exception), exception, exception.__traceback__)
        app.logger.error("request error", exc_info=exc_info, extra=extra)
