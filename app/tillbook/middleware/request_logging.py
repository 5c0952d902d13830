"""Trace ids and the structured access log.

Every request gets a trace id (taken from ``X-Trace-ID`` or ``X-Request-ID``
when the register sends one) and produces exactly one JSON log line with the
route, status, latency and database time spent serving it.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.tillbook.core.db_timing import QueryTimer, start_db_timer, stop_db_timer
from app.tillbook.core.logging import log_json
from app.tillbook.core.metrics import metrics

logger = logging.getLogger("tillbook.request")

TRACE_HEADER = "X-Trace-ID"
TRACE_HEADER_FALLBACKS = ("X-Request-ID",)
MAX_TRACE_ID_LENGTH = 64


def resolve_trace_id(request: Request) -> str:
    for header in (TRACE_HEADER, *TRACE_HEADER_FALLBACKS):
        value = (request.headers.get(header) or "").strip()
        if value:
            return value[:MAX_TRACE_ID_LENGTH]
    return str(uuid.uuid4())


def access_log_entry(request: Request, response: Response | None, latency_ms: float, timer: QueryTimer) -> dict:
    scope_route = request.scope.get("route")
    route = getattr(scope_route, "path", None) or request.url.path
    state = request.state
    return {
        "event": "http_request",
        "trace_id": getattr(state, "trace_id", ""),
        "business_id": getattr(state, "business_id", None),
        "user_id": getattr(state, "user_id", None),
        "checkout_session_id": request.path_params.get("session_id"),
        "route": route,
        "method": request.method,
        "status_code": response.status_code if response is not None else 500,
        "latency_ms": round(latency_ms, 2),
        "db_time_ms": round(timer.elapsed_ms, 2),
        "db_queries": timer.queries,
        "error_code": getattr(state, "error_code", None),
        "error_class": getattr(state, "error_class", None),
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        trace_id = resolve_trace_id(request)
        request.state.trace_id = trace_id
        started = time.perf_counter()
        timer, token = start_db_timer()
        response: Response | None = None
        try:
            response = await call_next(request)
            response.headers[TRACE_HEADER] = trace_id
            return response
        finally:
            latency_ms = (time.perf_counter() - started) * 1000
            stop_db_timer(token)
            entry = access_log_entry(request, response, latency_ms, timer)
            log_json(logger, entry, level=logging.ERROR if entry["status_code"] >= 500 else logging.INFO)
            metrics.record_http_request(
                route=entry["route"],
                method=entry["method"],
                status_code=entry["status_code"],
                latency_ms=latency_ms,
            )
