"""FastAPI main application module."""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from ...domain.exceptions import (
    AmbiguousRuleError,
    BookingError,
    BookingNotFound,
    InvalidRequest,
    InvalidStatusTransition,
    NoMatchingRuleError,
    PersistenceError,
    SlotNoLongerAvailable,
)
from ...infrastructure.logging import LoggingConfig, get_logger
from ...infrastructure.services import initialize_services, shutdown_services
from .routes import health, bookings
from .config import get_settings
from .middleware import RequestResponseLoggingMiddleware


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    # Startup
    configure_logging()
    logger.info("Starting Tour Booking Core API")
    await initialize_services()

    yield

    # Shutdown
    logger.info("Shutting down Tour Booking Core API")
    await shutdown_services()


def _error_body(exc: BookingError, detail: str) -> dict:
    return {"detail": detail, "type": exc.code, "retryable": exc.retryable}


def add_exception_handlers(app: FastAPI) -> None:
    """Add custom exception handlers to the FastAPI application."""

    @app.exception_handler(InvalidRequest)
    async def invalid_request_handler(request: Request, exc: InvalidRequest):
        """Handle malformed booking input and horizon violations."""
        logger.warning(f"Invalid booking request on {request.url.path}: {exc}")
        return JSONResponse(status_code=400, content=_error_body(exc, str(exc)))

    @app.exception_handler(SlotNoLongerAvailable)
    async def slot_taken_handler(request: Request, exc: SlotNoLongerAvailable):
        """Lost a race for a slot; the client should re-check availability."""
        logger.info(f"Slot no longer available on {request.url.path}: {exc}")
        return JSONResponse(status_code=409, content=_error_body(exc, str(exc)))

    @app.exception_handler(InvalidStatusTransition)
    async def status_transition_handler(request: Request, exc: InvalidStatusTransition):
        logger.warning(f"Invalid status transition on {request.url.path}: {exc}")
        return JSONResponse(status_code=409, content=_error_body(exc, str(exc)))

    @app.exception_handler(BookingNotFound)
    async def not_found_handler(request: Request, exc: BookingNotFound):
        return JSONResponse(status_code=404, content=_error_body(exc, str(exc)))

    @app.exception_handler(AmbiguousRuleError)
    async def ambiguous_rule_handler(request: Request, exc: AmbiguousRuleError):
        """Rule configuration defect; details stay in the operator log."""
        logger.critical(
            f"Pricing unavailable on {request.url.path}: ambiguous rule configuration",
            extra={"rule_ids": exc.rule_ids, "priority": exc.priority, "specificity": exc.specificity},
        )
        return JSONResponse(
            status_code=503,
            content=_error_body(exc, "Pricing is temporarily unavailable for this request"),
        )

    @app.exception_handler(NoMatchingRuleError)
    async def no_matching_rule_handler(request: Request, exc: NoMatchingRuleError):
        logger.error(f"No pricing rule on {request.url.path}: {exc}")
        return JSONResponse(status_code=422, content=_error_body(exc, str(exc)))

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        """Commit failed and was rolled back; the client may retry from scratch."""
        logger.error(f"Persistence error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content=_error_body(exc, "The booking could not be saved; nothing was reserved"),
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        """Handle validation errors from business logic."""
        logger.warning(f"Validation error on {request.url.path}: {str(exc)}")
        return JSONResponse(
            status_code=400,
            content={
                "detail": str(exc),
                "type": "validation_error"
            }
        )

    @app.exception_handler(RuntimeError)
    async def runtime_error_handler(request: Request, exc: RuntimeError):
        """Handle runtime errors from business logic."""
        logger.error(f"Runtime error on {request.url.path}: {str(exc)}")
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error occurred",
                "type": "runtime_error"
            }
        )


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Tour Booking Core",
        description="Availability, pricing and booking commits for tour operations",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # Add custom exception handlers
    add_exception_handlers(app)

    app.add_middleware(RequestResponseLoggingMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=settings.allowed_methods,
        allow_headers=settings.allowed_headers,
    )

    # Include routers
    app.include_router(health.router, tags=["health"])
    app.include_router(
        bookings.router,
        prefix=f"{settings.api_prefix}/bookings",
        tags=["bookings"]
    )

    return app


def configure_logging() -> None:
    """Configure structured logging from settings."""
    settings = get_settings()
    LoggingConfig(log_level=settings.log_level, enable_file=not settings.debug).setup_logging()


# Create app instance
app = create_app()
