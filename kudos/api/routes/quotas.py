"""Organization quota endpoints."""

from fastapi import APIRouter

from kudos.api.dependencies import ActorDep, ControlPlaneDep
from kudos.api.models.quotas import QuotaIncreaseCreate, QuotaIncreaseReview
from kudos.observability.logging import get_logger
from kudos.quota.models import QuotaIncreaseRequest, QuotaRecord, QuotaStatusReport

logger = get_logger(__name__)

router = APIRouter()


@router.get("/organizations/{organization_id}/quotas", response_model=QuotaStatusReport)
async def get_quota_status(
    organization_id: str,
    control_plane: ControlPlaneDep,
) -> QuotaStatusReport:
    """Usage, ceilings, and threshold alerts for every configured quota."""
    return await control_plane.quotas.get_status(organization_id)


@router.post(
    "/organizations/{organization_id}/quota-requests",
    response_model=QuotaIncreaseRequest,
    status_code=201,
)
async def request_quota_increase(
    organization_id: str,
    body: QuotaIncreaseCreate,
    actor: ActorDep,
    control_plane: ControlPlaneDep,
) -> QuotaIncreaseRequest:
    return await control_plane.quotas.request_increase(
        organization_id,
        body.action_type,
        body.requested_ceiling,
        body.justification,
        requested_by=actor.actor_id,
    )


@router.post("/quota-requests/{request_id}/review", response_model=QuotaIncreaseRequest)
async def review_quota_increase(
    request_id: str,
    body: QuotaIncreaseReview,
    actor: ActorDep,
    control_plane: ControlPlaneDep,
) -> QuotaIncreaseRequest:
    return await control_plane.quotas.review_increase(
        request_id, body.decision, reviewer=actor.actor_id, note=body.note
    )


@router.post("/quota-requests/{request_id}/apply", response_model=QuotaRecord)
async def apply_quota_increase(
    request_id: str,
    control_plane: ControlPlaneDep,
) -> QuotaRecord:
    """Raise the ceiling named by an approved request."""
    return await control_plane.quotas.apply_approved_ceiling(request_id)
