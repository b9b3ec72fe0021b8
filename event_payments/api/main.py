"""
FastAPI application for event registration and Paystack payments.

``create_app`` wires middleware, error mapping and routers; the module-level
``app`` is what uvicorn serves.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from event_payments import __version__
from event_payments.config import Settings, get_settings
from event_payments.database.connection import close_db, init_db
from event_payments.exceptions import EventPaymentsError
from event_payments.monitoring.logging import setup_logging

from .dependencies import close_dependencies
from .routes import (
    admin_router,
    event_router,
    monitoring_router,
    payment_router,
    receipt_router,
)

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def error_body(error: str, message: str) -> dict[str, Any]:
    return {"success": False, "error": error, "message": message}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """Create tables on startup; release the Paystack client and engine on shutdown."""
    settings: Settings = app.state.settings
    logger.info(
        "application_startup",
        version=__version__,
        paystack_test_mode=settings.is_test_mode,
    )
    await init_db()

    yield

    await close_dependencies()
    await close_db()
    logger.info("application_shutdown")


async def bind_request_context(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """
    Tag every log line of a request with its ID, method and path.

    An upstream ``X-Request-ID`` is kept so traces line up across proxies.
    """
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )
    started = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception:
        logger.exception("request_crashed", duration_seconds=time.perf_counter() - started)
        raise

    response.headers[REQUEST_ID_HEADER] = request_id
    logger.info(
        "request_completed",
        status_code=response.status_code,
        duration_seconds=round(time.perf_counter() - started, 4),
    )
    return response


async def handle_service_error(request: Request, exc: EventPaymentsError) -> JSONResponse:
    """Translate a service exception into its HTTP status and error body."""
    if exc.status_code >= 500:
        logger.error("request_failed", error_type=type(exc).__name__, error=exc.message)
    else:
        logger.info("request_rejected", error_type=type(exc).__name__, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code, content=error_body(type(exc).__name__, exc.message)
    )


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed input is a 400 in the same shape as every other rejection."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("InvalidRequestError", f"{field}: {message}" if field else message),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", error_type=type(exc).__name__, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("InternalServerError", "An unexpected error occurred"),
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API application."""
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="Event Payments API",
        description="Event registration with Paystack payment verification and receipts",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.middleware("http")(bind_request_context)

    app.add_exception_handler(EventPaymentsError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    for router in (event_router, payment_router, receipt_router, admin_router, monitoring_router):
        app.include_router(router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        return {
            "service": settings.app_name,
            "version": __version__,
            "environment": settings.app_env,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "event_payments.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
        log_level=settings.log_level.lower(),
    )
