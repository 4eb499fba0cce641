"""Abuse review endpoints."""

from fastapi import APIRouter

from kudos.abuse.models import AbuseFlag, FlagStatus
from kudos.abuse.review import AbuseReviewService
from kudos.api.dependencies import ActorDep, ControlPlaneDep
from kudos.api.models.abuse import FlagDismiss, FlagResolve

router = APIRouter(prefix="/abuse-flags")


async def _claim(reviews: AbuseReviewService, flag_id: str, reviewer: str) -> None:
    # A decision on a PENDING flag implicitly starts the review
    flag = await reviews.get_flag(flag_id)
    if flag.status == FlagStatus.PENDING:
        await reviews.start_review(flag_id, reviewer)


@router.get("", response_model=list[AbuseFlag])
async def list_pending_flags(control_plane: ControlPlaneDep) -> list[AbuseFlag]:
    """Flags awaiting a reviewer decision, oldest first."""
    return await control_plane.reviews.list_pending()


@router.post("/{flag_id}/resolve", response_model=AbuseFlag)
async def resolve_flag(
    flag_id: str,
    body: FlagResolve,
    actor: ActorDep,
    control_plane: ControlPlaneDep,
) -> AbuseFlag:
    await _claim(control_plane.reviews, flag_id, actor.actor_id)
    return await control_plane.reviews.resolve(
        flag_id, actor.actor_id, adjusted_weight=body.adjusted_weight, note=body.note
    )


@router.post("/{flag_id}/dismiss", response_model=AbuseFlag)
async def dismiss_flag(
    flag_id: str,
    body: FlagDismiss,
    actor: ActorDep,
    control_plane: ControlPlaneDep,
) -> AbuseFlag:
    await _claim(control_plane.reviews, flag_id, actor.actor_id)
    return await control_plane.reviews.dismiss(flag_id, actor.actor_id, note=body.note)
