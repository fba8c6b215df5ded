"""In-process fixed-window rate limiting for the HTTP write path.

Buckets live in process memory, so limits are per worker. That is fine for the
single-node deployment this service targets.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from ..core.identity import request_user_id

logger = logging.getLogger(__name__)

KeyFunc = Callable[[Request], Optional[str]]

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
TOO_MANY_REQUESTS_DETAIL = "Too many requests, slow down"
PRUNE_THRESHOLD = 10_000


@dataclass(slots=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int | None = None


@dataclass
class _Bucket:
    count: int
    window_start: float


class RateLimiter:
    """Count requests per key in discrete, non-overlapping windows."""

    def __init__(
        self,
        window_ms: int,
        max_requests: int,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window = window_ms / 1000
        self.max_requests = max_requests
        self._clock = clock
        self._buckets: Dict[str, _Bucket] = {}

    def check(self, key: str) -> RateLimitDecision:
        now = self._clock()
        bucket = self._buckets.get(key)
        if bucket is None or now - bucket.window_start >= self.window:
            if bucket is None and len(self._buckets) >= PRUNE_THRESHOLD:
                self.prune()
            self._buckets[key] = _Bucket(count=1, window_start=now)
            return RateLimitDecision(allowed=True)
        if bucket.count < self.max_requests:
            bucket.count += 1
            return RateLimitDecision(allowed=True)
        retry_after = math.ceil(bucket.window_start + self.window - now)
        return RateLimitDecision(allowed=False, retry_after=retry_after)

    def prune(self) -> int:
        """Drop buckets whose window has already closed."""

        now = self._clock()
        stale = [key for key, bucket in self._buckets.items() if now - bucket.window_start >= self.window]
        for key in stale:
            self._buckets.pop(key, None)
        return len(stale)

    def reset(self) -> None:
        self._buckets.clear()

    def __len__(self) -> int:
        return len(self._buckets)


def _client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def api_key(request: Request) -> str:
    user_id = request_user_id(request)
    return f"u:{user_id}" if user_id else f"ip:{_client_address(request)}"


def message_key(request: Request) -> str:
    user_id = request_user_id(request)
    return f"msg:{user_id}" if user_id else f"msgip:{_client_address(request)}"


def evaluate(limiter: RateLimiter, request: Request, key_func: KeyFunc) -> RateLimitDecision:
    """Run the limiter for a request; any internal failure lets the request through."""

    try:
        key = key_func(request) or f"ip:{_client_address(request)}"
        return limiter.check(key)
    except Exception:  # noqa: BLE001 - rate limiting must never block delivery
        logger.exception("Rate limiter failed; allowing request")
        return RateLimitDecision(allowed=True)


def too_many_requests(decision: RateLimitDecision) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": TOO_MANY_REQUESTS_DETAIL},
        headers={"Retry-After": str(decision.retry_after or 1)},
    )


class WriteRateLimitMiddleware(BaseHTTPMiddleware):
    """Apply the global limiter to every non-read HTTP request."""

    def __init__(self, app, *, limiter: RateLimiter, key_func: KeyFunc = api_key) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.key_func = key_func

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method in SAFE_METHODS:
            return await call_next(request)
        decision = evaluate(self.limiter, request, self.key_func)
        if not decision.allowed:
            logger.info("Write rate limit hit for %s %s", request.method, request.url.path)
            return too_many_requests(decision)
        return await call_next(request)


async def enforce_message_rate_limit(request: Request) -> None:
    """FastAPI dependency guarding message-send endpoints with the strict limiter."""

    limiter: RateLimiter = request.app.state.message_limiter
    decision = evaluate(limiter, request, message_key)
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=TOO_MANY_REQUESTS_DETAIL,
            headers={"Retry-After": str(decision.retry_after or 1)},
        )
