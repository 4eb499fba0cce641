"""Health check and metrics endpoints."""

import time
from datetime import UTC, datetime

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from kudos import __version__
from kudos.api.dependencies import ControlPlaneDep
from kudos.api.models.health import ComponentHealth, HealthResponse
from kudos.breaker.models import HealthStatus
from kudos.observability.logging import get_logger

logger = get_logger(__name__)


def create_health_router(metrics_path: str | None = "/metrics") -> APIRouter:
    """Build the root-level health router.

    Args:
        metrics_path: Path of the Prometheus endpoint (None disables it)
    """
    router = APIRouter()

    @router.get("/health", response_model=HealthResponse)
    async def health_check(control_plane: ControlPlaneDep) -> JSONResponse:
        """Check store reachability and circuit breaker health.

        Returns 503 when the store cannot be reached, 200 otherwise;
        open breakers mark the service as degraded.
        """
        start = time.perf_counter()
        reachable = await control_plane.store.ping()
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        store = ComponentHealth(
            name="store",
            status="healthy" if reachable else "unhealthy",
            latency_ms=latency_ms,
            message=None if reachable else "Store unreachable",
        )

        breakers = control_plane.breakers.health()
        if not reachable:
            status = "unhealthy"
        elif breakers.status == HealthStatus.DEGRADED:
            status = "degraded"
        else:
            status = "healthy"

        response = HealthResponse(
            status=status,
            version=__version__,
            components=[store],
            breakers=breakers,
            timestamp=datetime.now(UTC),
        )
        logger.debug("health_check_completed", status=status)
        return JSONResponse(
            status_code=503 if status == "unhealthy" else 200,
            content=response.model_dump(mode="json"),
        )

    if metrics_path:

        @router.get(metrics_path)
        async def get_metrics() -> Response:
            """Prometheus metrics in text exposition format."""
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return router
