"""Structured logging with per-request analysis context.

Every record emitted while a request is in flight (including the engine's
solver and contingency loggers) is tagged with the request ID and the name
of the analysis being run, so a slow N-1 scan can be traced back to the
request that triggered it.
"""

from __future__ import annotations

import contextvars
import json
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextvars import ContextVar
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
analysis_var: ContextVar[str] = ContextVar("analysis", default="")

# Last path segment of an analysis endpoint -> analysis name in the logs
ANALYSIS_ROUTES = {
    "short-circuit": "short_circuit",
    "network-fault": "network_fault",
    "load-flow": "load_flow",
}

# Extra record attributes copied into the JSON entry when present
EXTRA_FIELDS = (
    "method",
    "path",
    "status_code",
    "duration_ms",
    "client_ip",
    "state",
    "iterations",
    "critical_outages",
)


class RequestContextFilter(logging.Filter):
    """Stamp request_id and analysis onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("") or "-"
        record.analysis = analysis_var.get("") or "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; context fields only when set."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in ("request_id", "analysis"):
            val = getattr(record, key, "-")
            if val != "-":
                entry[key] = val

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        return json.dumps(entry, default=str)


class ContextThreadPoolExecutor(ThreadPoolExecutor):
    """Thread pool whose tasks run in a copy of the submitter's context.

    Each task gets its own copy, so records logged by worker threads keep
    the request_id and analysis of the request that scheduled them.
    """

    def submit(self, fn, /, *args, **kwargs):
        ctx = contextvars.copy_context()
        return super().submit(ctx.run, fn, *args, **kwargs)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Set the analysis context, echo X-Request-ID and log request timing."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex[:8]
        segment = request.url.path.rstrip("/").rsplit("/", 1)[-1]
        rid_token = request_id_var.set(rid)
        analysis_token = analysis_var.set(ANALYSIS_ROUTES.get(segment, ""))

        try:
            start = time.perf_counter()
            response: Response = await call_next(request)
            duration_ms = round((time.perf_counter() - start) * 1000, 1)
            response.headers["X-Request-ID"] = rid

            if response.status_code >= 500:
                level = logging.ERROR
            elif response.status_code >= 400:
                level = logging.WARNING
            else:
                level = logging.INFO
            logging.getLogger("sparkgrid.access").log(
                level,
                "%s %s -> %s (%.1fms)",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": str(request.url.path),
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                    "client_ip": request.client.host if request.client else "unknown",
                },
            )
        finally:
            analysis_var.reset(analysis_token)
            request_id_var.reset(rid_token)

        return response


def setup_logging(json_format: bool = False, debug: bool = False) -> None:
    """Configure the root handler; ``debug`` enables per-iteration solver logs."""
    handler = logging.StreamHandler()
    handler.addFilter(RequestContextFilter())
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-8s [%(name)s] [%(request_id)s %(analysis)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    root = logging.getLogger()
    root.setLevel(logging.INFO)
    root.handlers.clear()
    root.addHandler(handler)

    logging.getLogger("sparkgrid").setLevel(logging.DEBUG if debug else logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
