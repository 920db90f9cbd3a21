from fastapi import Request
import logging
import time
import uuid
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

        path = request.url.path
        query_string = request.url.query
        method = request.method

        logger.info(f"[{request_id}] Request: {method} {path} {query_string}")

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(f"[{request_id}] Response: {response.status_code} in {process_time:.4f}s")
        response.headers["X-Request-ID"] = request_id
        return response
