"""Operator endpoints for breakers and the job queue."""

from fastapi import APIRouter

from kudos.api.dependencies import ControlPlaneDep
from kudos.breaker.models import CircuitBreakerStatus
from kudos.jobs.models import Job, QueueStats
from kudos.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/breakers", response_model=dict[str, CircuitBreakerStatus])
async def list_breakers(control_plane: ControlPlaneDep) -> dict[str, CircuitBreakerStatus]:
    return control_plane.breakers.status()


@router.post("/breakers/{name}/reset", response_model=CircuitBreakerStatus)
async def reset_breaker(name: str, control_plane: ControlPlaneDep) -> CircuitBreakerStatus:
    """Force a breaker back to CLOSED."""
    await control_plane.breakers.reset(name)
    logger.info("breaker_reset_requested", dependency=name)
    return control_plane.breakers.get(name).status()


@router.get("/jobs/stats", response_model=QueueStats)
async def job_stats(control_plane: ControlPlaneDep) -> QueueStats:
    return await control_plane.jobs.stats()


@router.post("/jobs/{job_id}/requeue", response_model=Job)
async def requeue_job(job_id: str, control_plane: ControlPlaneDep) -> Job:
    """Move a dead-lettered job back to pending."""
    return await control_plane.jobs.requeue_dead_letter(job_id)
