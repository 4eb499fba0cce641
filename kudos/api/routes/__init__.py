"""API route registration."""

from fastapi import APIRouter, FastAPI

from kudos.observability.logging import get_logger

logger = get_logger(__name__)


def create_v1_router() -> APIRouter:
    """Create the v1 API router with all routes."""
    router = APIRouter(prefix="/v1")

    from kudos.api.routes.abuse import router as abuse_router
    from kudos.api.routes.operations import router as operations_router
    from kudos.api.routes.quotas import router as quotas_router
    from kudos.api.routes.recognitions import router as recognitions_router

    router.include_router(recognitions_router, tags=["Recognitions"])
    router.include_router(quotas_router, tags=["Quotas"])
    router.include_router(abuse_router, tags=["Abuse Review"])
    router.include_router(operations_router, tags=["Operations"])
    return router


def register_routes(app: FastAPI, metrics_path: str | None = "/metrics") -> None:
    """Register all routes with the FastAPI application.

    Args:
        app: FastAPI application instance
        metrics_path: Where to expose Prometheus metrics (None disables)
    """
    app.include_router(create_v1_router())

    from kudos.api.routes.health import create_health_router

    app.include_router(create_health_router(metrics_path), tags=["Health"])

    logger.info("routes_registered", metrics_path=metrics_path)
