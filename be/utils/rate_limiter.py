"""
Rate Limiter Utility

Sliding-window, in-memory request limiting for the AEBF budget endpoints.
Limits are tracked per client IP and endpoint group; suitable for a single
API instance.

Usage:
    from utils.rate_limiter import enforce_rate_limit

    @router.post("/divisional-html-budget-data")
    def budget_data(request: Request, ...):
        enforce_rate_limit(request, "budget_query")
"""

import time
from collections import defaultdict
from threading import Lock
from typing import Dict, Optional

from fastapi import HTTPException, Request, status


class RateLimitExceeded(HTTPException):
    """Exception raised when rate limit is exceeded."""
    def __init__(self, retry_after: int):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many requests. Please try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)}
        )


class InMemoryRateLimiter:
    """Thread-safe sliding window limiter keyed by "{endpoint}:{identifier}"."""

    def __init__(self, cleanup_interval: int = 300):
        self._requests: Dict[str, list] = defaultdict(list)
        self._lock = Lock()
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = time.time()

    def _cleanup_expired(self, current_time: float, max_window: int = 3600) -> None:
        if current_time - self._last_cleanup < self._cleanup_interval:
            return
        cutoff = current_time - max_window
        for key in list(self._requests):
            self._requests[key] = [t for t in self._requests[key] if t > cutoff]
            if not self._requests[key]:
                del self._requests[key]
        self._last_cleanup = current_time

    def check_rate_limit(self, identifier: str, endpoint: str, max_requests: int = 10, window_seconds: int = 60) -> bool:
        """
        Record one request and raise RateLimitExceeded when the window is full.
        """
        current_time = time.time()
        key = f"{endpoint}:{identifier}"

        with self._lock:
            self._cleanup_expired(current_time)

            cutoff = current_time - window_seconds
            timestamps = [t for t in self._requests[key] if t > cutoff]

            if len(timestamps) >= max_requests:
                retry_after = int(min(timestamps) + window_seconds - current_time) + 1
                raise RateLimitExceeded(retry_after=max(1, retry_after))

            timestamps.append(current_time)
            self._requests[key] = timestamps

        return True

    def reset(self, identifier: Optional[str] = None, endpoint: Optional[str] = None) -> None:
        with self._lock:
            if identifier is None and endpoint is None:
                self._requests.clear()
                return
            for key in list(self._requests):
                key_endpoint, _, key_identifier = key.partition(":")
                if endpoint is not None and key_endpoint != endpoint:
                    continue
                if identifier is not None and key_identifier != identifier:
                    continue
                del self._requests[key]


# Global rate limiter instance
rate_limiter = InMemoryRateLimiter()


# Limits per endpoint group
RATE_LIMITS = {
    "budget_query": {"max_requests": 120, "window_seconds": 60},   # form data / pricing reads
    "budget_export": {"max_requests": 30, "window_seconds": 60},   # HTML generation
    "budget_write": {"max_requests": 30, "window_seconds": 60},    # save / delete / pricing writes
    "budget_import": {"max_requests": 10, "window_seconds": 60},   # HTML uploads
}


def get_client_ip(request: Request) -> str:
    """Extract client IP from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(request: Request, endpoint: str) -> bool:
    config = RATE_LIMITS.get(endpoint, RATE_LIMITS["budget_query"])
    return rate_limiter.check_rate_limit(
        identifier=get_client_ip(request),
        endpoint=endpoint,
        max_requests=config["max_requests"],
        window_seconds=config["window_seconds"]
    )
