import time
import uuid
import json
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from walletpass.services.dispatcher import detect_platform

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One JSON log line per request; echoes or assigns X-Request-ID"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                "Request %s %s failed after %sms: %s",
                request.method,
                request.url.path,
                round(duration_ms, 2),
                str(e)
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        user_agent = request.headers.get("user-agent", "")

        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "platform": detect_platform(user_agent),
            "remote_addr": request.client.host if request.client else None
        }
        logger.info(json.dumps(log_data))

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
