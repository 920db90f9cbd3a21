from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exception_handlers import http_exception_handler, request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging

from marketindex.core.config import settings
from marketindex.core.exceptions import LifecycleError, PartialFailure, StorageError
from marketindex.core.subscriptions import SubscriptionScope
from marketindex.middleware.request_logging import RequestLoggingMiddleware
from marketindex.middleware.auth_logging import AuthLoggingMiddleware
from marketindex.modules.auth.api.router import router as auth_router
from marketindex.modules.user_management.api.router import router as user_router
from marketindex.modules.relationships.api.router import router as relationships_router
from marketindex.modules.content.api.router import router as content_router
from marketindex.modules.media.router import router as media_router
from marketindex.modules.groups.api.router import router as groups_router
from marketindex.modules.notifications.api.router import router as notifications_router
from marketindex.modules.notifications.services.dispatcher import event_dispatcher, log_event
from marketindex.db.init_db import create_all_tables

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize the FastAPI application
app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    exception_handlers={
        RequestValidationError: request_validation_exception_handler,
        HTTPException: http_exception_handler,
    },
    debug=settings.DEBUG,
    description="Ephemeral market tips, signals and stories shared between friends",
    version=settings.VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    swagger_ui_parameters={"defaultModelsExpandDepth": -1},
)

@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

@app.exception_handler(PartialFailure)
async def partial_failure_handler(request: Request, exc: PartialFailure):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "user_id": exc.user_id, "failed_steps": exc.failed_steps},
    )

@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"Storage error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Media storage unavailable, try again"})

@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting server in {settings.ENVIRONMENT} mode")
    logger.info(f"BASE_URL: {settings.BASE_URL}")

    create_all_tables()

    scope = SubscriptionScope("app")
    scope.add(event_dispatcher.subscribe(log_event))
    app.state.subscriptions = scope

@app.on_event("shutdown")
async def shutdown_event():
    scope = getattr(app.state, "subscriptions", None)
    if scope is not None:
        scope.dispose()

# Add middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(AuthLoggingMiddleware)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API routers
app.include_router(auth_router, prefix=f"{settings.API_V1_STR}/auth", tags=["authentication"])
app.include_router(user_router, prefix=f"{settings.API_V1_STR}/users", tags=["users"])
app.include_router(relationships_router, prefix=f"{settings.API_V1_STR}/friends", tags=["friends"])
app.include_router(content_router, prefix=f"{settings.API_V1_STR}/content", tags=["content"])
app.include_router(media_router, prefix=f"{settings.API_V1_STR}/media", tags=["media"])
app.include_router(groups_router, prefix=f"{settings.API_V1_STR}/groups", tags=["groups"])
app.include_router(notifications_router, prefix=f"{settings.API_V1_STR}/notifications", tags=["notifications"])

@app.get("/")
async def root():
    return {
        "message": "Welcome to MarketIndex",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "documentation": "/docs" if settings.DEBUG else None,
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("marketindex.main:app", host="0.0.0.0", port=8000, reload=True)
