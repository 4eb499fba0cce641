"""FastAPI application factory.

Creates and configures the FastAPI application with middleware,
exception handlers, and route registration.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from kudos import __version__
from kudos.api.dependencies import get_control_plane, reset_dependencies, set_control_plane
from kudos.api.models.errors import ErrorBody, ErrorDetail, ErrorResponse
from kudos.api.routes import register_routes
from kudos.bootstrap import ControlPlane
from kudos.config import get_settings
from kudos.errors import AdmissionDeniedError, ErrorCode, KudosError
from kudos.observability.logging import get_logger, setup_logging
from kudos.observability.middleware import LoggingContextMiddleware

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    control_plane = get_control_plane()
    if control_plane.settings.jobs.run_worker:
        await control_plane.start_background()
    logger.info("app_started", backend=control_plane.settings.storage.backend)
    try:
        yield
    finally:
        await reset_dependencies()
        logger.info("app_stopped")


def create_app(control_plane: ControlPlane | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        control_plane: Pre-built components; built from settings when omitted

    Returns:
        Configured FastAPI application
    """
    if control_plane is not None:
        set_control_plane(control_plane)
    settings = control_plane.settings if control_plane is not None else get_settings()

    log_config = settings.observability.logging
    setup_logging(
        level=log_config.level,
        format=log_config.format,
        redact_pii=log_config.redact_pii,
    )

    app = FastAPI(
        title="Kudos API",
        description="Write-path control plane for peer recognitions",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "Idempotent-Replayed",
            "Retry-After",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "X-Request-ID",
        ],
    )
    app.add_middleware(LoggingContextMiddleware)

    _register_exception_handlers(app)
    metrics = settings.observability.metrics
    register_routes(app, metrics_path=metrics.path if metrics.enabled else None)

    logger.info("app_created", debug=settings.debug, cors_origins=settings.api.cors_origins)
    return app


def _admission_headers(exc: AdmissionDeniedError) -> dict[str, str]:
    headers = {"X-RateLimit-Remaining": str(exc.remaining)}
    if exc.reset_at is not None:
        headers["X-RateLimit-Reset"] = str(int(exc.reset_at.timestamp()))
    if exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)
    return headers


def _validation_details(errors: list) -> list[ErrorDetail]:
    return [
        ErrorDetail(field=".".join(str(loc) for loc in error["loc"]), message=error["msg"])
        for error in errors
    ]


def _register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(KudosError)
    async def kudos_error_handler(request: Request, exc: KudosError) -> JSONResponse:
        """Handle KudosError and its subclasses."""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "api_error",
            error_code=exc.error_code.value,
            message=exc.message,
            path=request.url.path,
        )

        metadata = exc.to_metadata()
        body = ErrorBody(
            code=exc.error_code,
            message=exc.message,
            metadata=metadata or None,
        )
        field = getattr(exc, "field", None)
        if field:
            body.details = [ErrorDetail(field=field, message=exc.message)]

        headers = _admission_headers(exc) if isinstance(exc, AdmissionDeniedError) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=body).model_dump(mode="json"),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle FastAPI request validation errors."""
        logger.warning("validation_error", errors=exc.errors(), path=request.url.path)

        body = ErrorBody(
            code=ErrorCode.INVALID_REQUEST,
            message="Request validation failed",
            details=_validation_details(list(exc.errors())),
        )
        return JSONResponse(status_code=400, content=ErrorResponse(error=body).model_dump(mode="json"))

    @app.exception_handler(ValidationError)
    async def pydantic_validation_error_handler(
        request: Request, exc: ValidationError
    ) -> JSONResponse:
        """Handle Pydantic validation errors."""
        logger.warning("pydantic_validation_error", errors=exc.errors(), path=request.url.path)

        body = ErrorBody(
            code=ErrorCode.INVALID_REQUEST,
            message="Data validation failed",
            details=_validation_details(exc.errors()),
        )
        return JSONResponse(status_code=400, content=ErrorResponse(error=body).model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception(
            "unexpected_error",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )

        body = ErrorBody(code=ErrorCode.INTERNAL_ERROR, message="An unexpected error occurred")
        return JSONResponse(status_code=500, content=ErrorResponse(error=body).model_dump(mode="json"))
