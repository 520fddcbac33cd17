import time
import logging
import traceback
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

# Query parameters never written to the request log
REDACTED_PARAMS = {"token"}


def loggable_query(request: Request) -> str:
    pairs = [
        f"{key}=***" if key in REDACTED_PARAMS else f"{key}={value}"
        for key, value in request.query_params.multi_items()
    ]
    return f"?{'&'.join(pairs)}" if pairs else ""


class LoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request with status and timing; tracebacks on failure"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        target = f"{request.method} {request.url.path}{loggable_query(request)}"

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = (time.time() - start_time) * 1000
            logger.error(
                f"❌ {target} failed after {process_time:.2f}ms: {e}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )
            raise

        process_time = (time.time() - start_time) * 1000
        log = logger.warning if response.status_code >= 500 else logger.info
        log(f"{target} -> {response.status_code} in {process_time:.2f}ms")
        return response
