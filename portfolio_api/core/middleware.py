import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("portfolio_api.latency")

# Latency budgets in seconds; dispatch includes SMTP round trips and retries
SLO_THRESHOLDS = {
    "/api/contact": 15.0,
    "/health": 0.200,
}


class LatencyMonitorMiddleware(BaseHTTPMiddleware):
    """
    Adds X-Process-Time and logs a warning when a path exceeds its budget.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        response = await call_next(request)

        process_time = time.perf_counter() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        budget = SLO_THRESHOLDS.get(request.url.path.rstrip("/") or "/")
        if budget is not None and process_time > budget:
            logger.warning(
                "SLO_BREACH | Endpoint: %s | Duration: %.4fs | Budget: %.3fs",
                request.url.path,
                process_time,
                budget,
            )

        return response


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Propagates or creates an X-Request-ID for each request.

    The id is stored on ``request.state.request_id`` and echoed in the
    response headers.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        logger.info(
            "REQUEST | id=%s | method=%s | path=%s",
            request_id,
            request.method,
            request.url.path,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
