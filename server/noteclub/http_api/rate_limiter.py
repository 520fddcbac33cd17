import os
import time
from collections import defaultdict
from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import logging

logger = logging.getLogger(__name__)

# Per client IP, per rolling minute
rate_limit_data = defaultdict(lambda: {"count": 0, "reset_time": time.time() + 60})

RATE_LIMIT_EXEMPT_PATHS = {
    "/api/v1/health",
}


def requests_per_minute() -> int:
    return int(os.getenv("RATE_LIMIT_PER_MINUTE", "120"))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Reject clients that exceed the per-minute request budget with a 429"""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in RATE_LIMIT_EXEMPT_PATHS:
            return await call_next(request)

        try:
            self._check_rate_limit(request)
        except HTTPException as e:
            logger.warning(f"⛔ Rate limit exceeded for IP: {self._client_ip(request)}")
            return JSONResponse(
                status_code=e.status_code,
                content={"detail": e.detail}
            )

        return await call_next(request)

    @staticmethod
    def _client_ip(request: Request) -> str:
        return request.client.host if request.client else "unknown"

    def _check_rate_limit(self, request: Request):
        ip = self._client_ip(request)
        now = time.time()
        record = rate_limit_data[ip]

        if now > record["reset_time"]:
            record["count"] = 0
            record["reset_time"] = now + 60

        if record["count"] >= requests_per_minute():
            raise HTTPException(
                status_code=429,
                detail="Rate limit exceeded. Try again later."
            )

        record["count"] += 1


def reset_rate_limits():
    rate_limit_data.clear()
