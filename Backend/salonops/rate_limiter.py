"""
Rate Limiting

Sliding-window limits per client IP, grouped into named presets so that
every endpoint sharing a preset shares one budget.

Presets:
- booking:       30 requests per 5 minutes (public booking requests)
- staff_auth:    10 requests per 15 minutes (staff auth provisioning)
- status_update: 50 requests per minute (booking status changes)
- general:       200 requests per minute

Usage:
    from .rate_limiter import rate_limit

    @router.post("/api/booking-requests", dependencies=[Depends(rate_limit("booking"))])
    async def create_request(...):
        ...
"""

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from fastapi import HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPreset:
    max_requests: int
    window_seconds: int


RATE_LIMIT_PRESETS: Dict[str, RateLimitPreset] = {
    "booking": RateLimitPreset(max_requests=30, window_seconds=5 * 60),
    "staff_auth": RateLimitPreset(max_requests=10, window_seconds=15 * 60),
    "status_update": RateLimitPreset(max_requests=50, window_seconds=60),
    "general": RateLimitPreset(max_requests=200, window_seconds=60),
}


# ────────────────────────────────────────────────────────────────
# In-Memory Rate Limiter
# ────────────────────────────────────────────────────────────────

class RateLimiter:
    """
    In-memory sliding-window rate limiter.

    State is per process; behind several workers each one keeps its own
    counters.
    """

    def __init__(self, cleanup_interval: int = 300):
        # {(bucket, ip_address): [timestamp, ...]}
        self.requests: Dict[Tuple[str, str], list] = defaultdict(list)
        self.cleanup_interval = cleanup_interval
        self.last_cleanup = time.time()

    @staticmethod
    def get_client_ip(request: Request) -> str:
        """First X-Forwarded-For hop, else the socket peer."""
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"

    def _cleanup_old_requests(self, now: float):
        if now - self.last_cleanup < self.cleanup_interval:
            return

        longest_window = max(p.window_seconds for p in RATE_LIMIT_PRESETS.values())
        cutoff = now - longest_window
        for key in list(self.requests.keys()):
            self.requests[key] = [ts for ts in self.requests[key] if ts > cutoff]
            if not self.requests[key]:
                del self.requests[key]

        self.last_cleanup = now
        logger.debug(f"Rate limiter cleanup: {len(self.requests)} buckets tracked")

    def check(self, bucket: str, client_ip: str, preset: RateLimitPreset) -> Tuple[bool, dict]:
        """
        Record a hit for (bucket, client_ip) if it fits in the window.

        Returns:
            (is_allowed, metadata); metadata has limit, remaining, reset_time
            and total_requests
        """
        now = time.time()
        self._cleanup_old_requests(now)

        key = (bucket, client_ip)
        window_start = now - preset.window_seconds
        recent = [ts for ts in self.requests[key] if ts > window_start]
        self.requests[key] = recent

        is_allowed = len(recent) < preset.max_requests
        reset_time = (min(recent) if recent else now) + preset.window_seconds

        if is_allowed:
            recent.append(now)

        metadata = {
            "limit": preset.max_requests,
            "remaining": max(0, preset.max_requests - len(recent)),
            "reset_time": int(reset_time),
            "total_requests": len(recent),
            "window_seconds": preset.window_seconds,
        }
        return is_allowed, metadata


_rate_limiter = RateLimiter()


# ────────────────────────────────────────────────────────────────
# FastAPI Dependencies
# ────────────────────────────────────────────────────────────────

def rate_limit(preset_name: str):
    """
    Build a dependency enforcing the named preset.

    Raises:
        KeyError: unknown preset (at import time, not per request)
    """
    preset = RATE_LIMIT_PRESETS[preset_name]

    async def dependency(request: Request):
        client_ip = _rate_limiter.get_client_ip(request)
        is_allowed, metadata = _rate_limiter.check(preset_name, client_ip, preset)

        if not is_allowed:
            retry_after = max(1, metadata["reset_time"] - int(time.time()))
            reset_at = datetime.fromtimestamp(metadata["reset_time"], tz=timezone.utc)
            logger.warning(
                f"[RATE_LIMIT] Blocked {preset_name} request from {client_ip} "
                f"to {request.url.path}: {metadata['total_requests']}/{metadata['limit']} "
                f"in {metadata['window_seconds']}s window"
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "error": "Rate limit exceeded",
                    "message": "Too many requests. Please try again later.",
                    "retry_after": retry_after,
                    "reset_time": reset_at.isoformat(),
                },
                headers={
                    "Retry-After": str(retry_after),
                    "X-RateLimit-Limit": str(preset.max_requests),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(metadata["reset_time"]),
                },
            )

        request.state.rate_limit_headers = {
            "X-RateLimit-Limit": str(metadata["limit"]),
            "X-RateLimit-Remaining": str(metadata["remaining"]),
            "X-RateLimit-Reset": str(metadata["reset_time"]),
        }

    return dependency


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    """Copy the headers stored by `rate_limit` onto the response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        headers = getattr(request.state, "rate_limit_headers", None)
        if headers:
            for header, value in headers.items():
                response.headers[header] = value
        return response


def clear_rate_limits(ip_address: Optional[str] = None):
    """Clear counters for one IP, or all of them."""
    if ip_address:
        for key in [k for k in _rate_limiter.requests if k[1] == ip_address]:
            del _rate_limiter.requests[key]
        logger.info(f"Cleared rate limits for IP: {ip_address}")
    else:
        _rate_limiter.requests.clear()
        logger.info("Cleared all rate limits")
