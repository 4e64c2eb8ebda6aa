import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("storycard.api.middleware")


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Never log the bearer value; it may carry a refresh token
        has_auth = "authorization" in request.headers
        logger.info(f"Request: {request.method} {request.url.path} | Authorization: {'present' if has_auth else '<none>'}")
        started = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000)
        logger.info(
            f"Response: {request.method} {request.url.path} | Status: {response.status_code} | {elapsed_ms} ms"
        )
        return response
