import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

TRACE_ID_CTX_VAR: ContextVar[str] = ContextVar("trace_id", default="")

logger = logging.getLogger("healthwallet")


class TracingMiddleware(BaseHTTPMiddleware):
    """
    Give every request a trace id, reusing the caller's ``x-trace-id`` when sent.
    The id lives in a context variable so log lines and error bodies carry it.
    """
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        incoming = (request.headers.get("x-trace-id") or "").strip()
        trace_id = incoming[:64] if incoming else str(uuid.uuid4())
        TRACE_ID_CTX_VAR.set(trace_id)
        request.state.trace_id = trace_id
        started = time.perf_counter()

        response = await call_next(request)

        logger.info({
            "function": "request",
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 1),
        })
        response.headers["x-trace-id"] = trace_id
        return response
