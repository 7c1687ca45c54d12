import json
import logging
import os
import time
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Awaitable, Callable, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from prometheus_fastapi_instrumentator import Instrumentator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
trace_id_var: ContextVar[str] = ContextVar("trace_id", default="")

_UNLOGGED_PATHS = frozenset({"/metrics"})
_access_logger = logging.getLogger("http.access")


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra_fields`` from the log call are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "service": os.getenv("SERVICE_NAME", "commitment-service"),
            "environment": os.getenv("ENVIRONMENT", "local"),
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": correlation_id_var.get() or None,
            "request_id": request_id_var.get() or None,
            "trace_id": trace_id_var.get() or None,
        }
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update(extra_fields)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(
            {key: value for key, value in payload.items() if value is not None}, default=str
        )


@dataclass(frozen=True)
class RequestContext:
    correlation_id: str
    request_id: str
    trace_id: str

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        return cls(
            correlation_id=request.headers.get("X-Correlation-Id") or f"corr_{uuid4().hex[:12]}",
            request_id=request.headers.get("X-Request-Id") or f"req_{uuid4().hex[:12]}",
            trace_id=trace_id_from_traceparent(request.headers.get("traceparent"))
            or uuid4().hex,
        )

    def stamp(self, response: Response) -> None:
        response.headers.setdefault("X-Correlation-Id", self.correlation_id)
        response.headers["X-Request-Id"] = self.request_id
        response.headers["X-Trace-Id"] = self.trace_id
        response.headers["traceparent"] = f"00-{self.trace_id}-0000000000000001-01"


def trace_id_from_traceparent(traceparent: Optional[str]) -> Optional[str]:
    """Extract the W3C trace id, or None when the header is absent or malformed."""
    if not traceparent:
        return None
    parts = traceparent.split("-")
    if len(parts) >= 4 and len(parts[1]) == 32:
        return parts[1]
    return None


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)


def setup_observability(app: FastAPI) -> None:
    configure_logging()
    Instrumentator().instrument(app).expose(app)

    @app.middleware("http")
    async def _request_context_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        context = RequestContext.from_request(request)
        tokens = (
            correlation_id_var.set(context.correlation_id),
            request_id_var.set(context.request_id),
            trace_id_var.set(context.trace_id),
        )
        started = time.perf_counter()
        status_code: Optional[int] = None
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            if request.url.path not in _UNLOGGED_PATHS:
                _log_access(request, status_code=status_code, started=started)
            for var, token in zip((correlation_id_var, request_id_var, trace_id_var), tokens):
                var.reset(token)
        context.stamp(response)
        return response


def _log_access(request: Request, *, status_code: Optional[int], started: float) -> None:
    _access_logger.info(
        "request.completed",
        extra={
            "extra_fields": {
                "http_method": request.method,
                "endpoint": request.url.path,
                "status_code": status_code,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            }
        },
    )
