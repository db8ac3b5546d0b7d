"""
FastAPI Application Entry Point for the Review Notification Service

This module builds the FastAPI application that carries the real-time
notification layer of the review app:

- Lifespan that connects MongoDB, builds the notification components and
  starts the registry and heartbeat, then closes every live channel on
  shutdown
- WebSocket ingress at ``/ws/notifications``
- REST routes for the inbox and device token registration
- Exception handlers that return the standard JSON error envelope
"""

import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from review_notify.app.api.middleware.request_context import RequestContextMiddleware
from review_notify.app.api.routes import device_tokens, notifications, websocket
from review_notify.app.core.components import NotificationComponents
from review_notify.app.core.database import MongoDBManager
from review_notify.app.core.exceptions import (
    BaseCustomException,
    ConfigurationError,
    ErrorCode,
    get_exception_response_data
)
from review_notify.app.utils.logging import (
    get_correlation_id,
    get_logger,
    initialize_logging_from_settings
)
from review_notify.config.settings import Settings, get_settings

# Initialize logging as early as possible
initialize_logging_from_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager for startup and shutdown procedures.

    Components injected through ``create_application`` are started as-is;
    otherwise they are built on a fresh MongoDB connection.
    """
    settings: Settings = app.state.settings
    components: Optional[NotificationComponents] = app.state.injected_components
    mongodb: Optional[MongoDBManager] = None

    logger.info("=== Review Notification Service Starting Up ===")

    try:
        # 1. Validate configuration
        errors = settings.validate_configuration()
        if errors:
            raise ConfigurationError(
                "Invalid configuration",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_section=", ".join(sorted(errors)),
                config_value=errors
            )
        logger.info("Configuration loaded successfully", environment=settings.environment, debug_mode=settings.debug)

        # 2. Connect MongoDB and build components
        if components is None:
            logger.info("Initializing database connection...")
            mongodb = MongoDBManager(settings.database)
            await mongodb.connect()
            components = NotificationComponents.from_database(mongodb.get_database(), settings, mongodb)

        # 3. Start registry and heartbeat
        logger.info("Starting notification components...")
        await components.start()
        app.state.components = components

        logger.info("=== Review Notification Service Started Successfully ===")

        yield

    except Exception as e:
        logger.error("Failed to start application", error=str(e), traceback=traceback.format_exc())
        raise

    finally:
        logger.info("=== Review Notification Service Shutting Down ===")

        if components is not None:
            try:
                await components.stop()
                logger.info("Notification components stopped")
            except Exception as e:
                logger.error("Error stopping notification components", error=str(e))

        if mongodb is not None:
            await mongodb.disconnect()

        app.state.components = None
        logger.info("=== Review Notification Service Shutdown Complete ===")


def create_application(
    settings: Optional[Settings] = None,
    components: Optional[NotificationComponents] = None
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings (defaults to the cached settings)
        components: Pre-built components, used instead of connecting MongoDB

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or (components.settings if components else get_settings())

    app = FastAPI(
        title=settings.app_name,
        description="Real-time notification delivery for the review app",
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.injected_components = components
    app.state.components = None

    app.add_middleware(RequestContextMiddleware)

    configure_routes(app)
    configure_exception_handlers(app)

    return app


def configure_routes(app: FastAPI) -> None:
    """Configure application routes."""

    @app.get("/health", tags=["system"])
    async def health_check(request: Request):
        components: Optional[NotificationComponents] = request.app.state.components
        if components is None:
            return JSONResponse(status_code=503, content={"status": "starting"})

        health = await components.health()
        database_status = health["mongodb"].get("status")
        health["status"] = "healthy" if database_status in ("healthy", "not_configured") else "degraded"
        return health

    @app.get("/", tags=["system"], include_in_schema=False)
    async def root(request: Request):
        settings: Settings = request.app.state.settings
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "websocket": "/ws/notifications/{user_id}",
            "docs": "/docs",
        }

    app.include_router(
        notifications.router,
        prefix="/api/v1/notifications",
        tags=["notifications"]
    )

    app.include_router(
        device_tokens.router,
        prefix="/api/v1/device-tokens",
        tags=["device-tokens"]
    )

    app.include_router(
        websocket.router,
        prefix="/ws",
        tags=["websocket"]
    )


def configure_exception_handlers(app: FastAPI) -> None:
    """Configure global exception handlers."""

    @app.exception_handler(BaseCustomException)
    async def custom_exception_handler(request: Request, exc: BaseCustomException):
        """Handle custom application exceptions."""
        exc.correlation_id = exc.correlation_id or get_correlation_id()

        log = logger.error if exc.http_status_code >= 500 else logger.warning
        log(
            "Request failed",
            error_code=exc.error_code.value,
            message=exc.message,
            path=request.url.path,
            method=request.method
        )

        return JSONResponse(
            status_code=exc.http_status_code,
            content=get_exception_response_data(exc)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors."""
        logger.warning(
            "Request validation failed",
            path=request.url.path,
            method=request.method,
            errors=str(exc.errors())
        )

        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": {
                    "code": ErrorCode.VALIDATION_FAILED.value,
                    "message": "Request validation failed",
                    "details": {"field_errors": jsonable_errors(exc)}
                },
                "correlation_id": get_correlation_id()
            }
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions."""
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            path=request.url.path,
            method=request.method,
            detail=exc.detail
        )

        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": {
                    "code": f"HTTP_{exc.status_code}",
                    "message": exc.detail,
                    "details": {}
                },
                "correlation_id": get_correlation_id()
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error(
            "Unexpected exception occurred",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            traceback=traceback.format_exc()
        )

        settings: Settings = request.app.state.settings
        error_detail = str(exc) if settings.debug else "Internal server error"

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": {
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": error_detail,
                    "details": {}
                },
                "correlation_id": get_correlation_id()
            }
        )


def jsonable_errors(exc: RequestValidationError):
    """Validation errors without the raw input objects, which may not serialise."""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


# Create the application instance
app = create_application()


# Development server entry point
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    logger.info("Starting review notification development server...")

    uvicorn.run(
        "review_notify.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        access_log=True
    )
