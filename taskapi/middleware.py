"""
HTTP middleware: request rate cap and request logging.
"""

import time
from typing import Callable

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .models import ErrorResponse

logger = structlog.get_logger()

GLOBAL_BUCKET = "global"


def describe_rate_limit(rate_limit: str) -> str:
    """Human readable form of a rate limit string, e.g. '50 requests per second'."""
    item = parse(rate_limit)
    unit = item.GRANULARITY.name
    if item.multiples > 1:
        return f"{item.amount} requests per {item.multiples} {unit}s"
    return f"{item.amount} requests per {unit}"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Fixed window request cap for routes under path_prefix.

    By default every client shares one bucket, so the limit is a
    service-wide ceiling. With per_client=True each client host gets
    its own bucket.
    """

    def __init__(
        self,
        app: ASGIApp,
        rate_limit: str = "50/second",
        per_client: bool = False,
        path_prefix: str = "/api",
    ):
        super().__init__(app)
        self.item = parse(rate_limit)
        self.per_client = per_client
        self.path_prefix = path_prefix
        self.limiter = FixedWindowRateLimiter(MemoryStorage())
        self.message = f"Rate limit exceeded. Maximum {describe_rate_limit(rate_limit)}."

    def _applies_to(self, path: str) -> bool:
        return path == self.path_prefix or path.startswith(self.path_prefix + "/")

    def _bucket(self, request: Request) -> str:
        if self.per_client and request.client:
            return request.client.host
        return GLOBAL_BUCKET

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self._applies_to(request.url.path):
            return await call_next(request)

        bucket = self._bucket(request)
        if not self.limiter.hit(self.item, self.path_prefix, bucket):
            stats = self.limiter.get_window_stats(self.item, self.path_prefix, bucket)
            retry_after = max(1, int(stats.reset_time - time.time()))
            logger.warning(
                "rate_limit_exceeded",
                path=request.url.path,
                bucket=bucket,
            )
            return JSONResponse(
                status_code=429,
                content=ErrorResponse(error=self.message).model_dump(),
                headers={"Retry-After": str(retry_after)},
            )

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log one line per request with status and duration."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        client = request.client.host if request.client else None

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                client=client,
                error=str(e),
                duration_ms=int((time.perf_counter() - start_time) * 1000),
            )
            raise

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            client=client,
            status_code=response.status_code,
            duration_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return response
