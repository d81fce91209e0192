"""
Observability Middleware.

Adds correlation IDs and structured logging context to requests, and sets up
process-wide logging for the API and the rollover scripts.
"""

import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Configure structured logger
logger = logging.getLogger("venue_ledger")


def configure_logging(level: str = "INFO") -> None:
    """Single stream handler on the root logger; safe to call more than once."""
    root = logging.getLogger()
    if not any(getattr(h, "_venue_ledger", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        handler._venue_ledger = True
        root.addHandler(handler)
    root.setLevel(level.upper())


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        # 1. Generate or extract Correlation ID
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))

        start_time = time.perf_counter()
        response = await call_next(request)
        process_time = (time.perf_counter() - start_time) * 1000  # ms

        # 2. Propagate to caller
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = f"{process_time:.2f}"

        log_data = {
            "correlation_id": correlation_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(process_time, 2),
            "ip": request.client.host if request.client else "unknown"
        }

        # Log level based on status
        if response.status_code >= 500:
            logger.error("Request failed %s %s", request.method, request.url.path, extra=log_data)
        elif response.status_code >= 400:
            logger.warning("Request rejected %s %s", request.method, request.url.path, extra=log_data)
        else:
            logger.info("Request %s %s", request.method, request.url.path, extra=log_data)

        return response
