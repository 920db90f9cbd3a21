from fastapi import Request
import logging
from starlette.middleware.base import BaseHTTPMiddleware

from marketindex.core.config import settings

logger = logging.getLogger(__name__)

# Everything under the API prefix needs a bearer token except these
PUBLIC_PATHS = (
    f"{settings.API_V1_STR}/auth/firebase-signin",
    f"{settings.API_V1_STR}/media/",
    f"{settings.API_V1_STR}/openapi.json",
)

class AuthLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if not request.headers.get("Authorization"):
            protected = path.startswith(settings.API_V1_STR) and not path.startswith(PUBLIC_PATHS)
            if protected and request.method != "OPTIONS":
                logger.warning(f"Protected endpoint {path} accessed without auth header")

        response = await call_next(request)

        if response.status_code in [401, 403]:
            logger.warning(f"Auth error: {response.status_code} on {path}")

        return response
