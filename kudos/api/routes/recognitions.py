"""Recognition endpoints."""

from fastapi import APIRouter, Response

from kudos.api.dependencies import ActorDep, ControlPlaneDep, IdempotencyKeyDep
from kudos.api.models.recognitions import RecognitionCreate, RecognitionVerify
from kudos.errors import ValidationError
from kudos.observability.logging import get_logger
from kudos.recognition.models import (
    CreateRecognitionCommand,
    CreateRecognitionResult,
    Recognition,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/recognitions")

REPLAY_HEADER = "Idempotent-Replayed"


@router.post("", response_model=CreateRecognitionResult, status_code=201)
async def create_recognition(
    body: RecognitionCreate,
    response: Response,
    actor: ActorDep,
    control_plane: ControlPlaneDep,
    idempotency_key: IdempotencyKeyDep,
) -> CreateRecognitionResult:
    """Create a recognition from the calling actor.

    A request repeating an Idempotency-Key that already succeeded returns
    the stored response unchanged, marked with the Idempotent-Replayed header.
    """
    if not actor.organization_id:
        raise ValidationError("X-Organization-ID header is required", field="organization_id")

    command = CreateRecognitionCommand(
        giver_id=actor.actor_id,
        giver_role=actor.role,
        organization_id=actor.organization_id,
        recipient_id=body.recipient_id,
        reason=body.reason,
        tags=body.tags,
        visibility=body.visibility,
        evidence_ids=body.evidence_ids,
        source=actor.source,
        client_token=idempotency_key,
    )
    result = await control_plane.recognitions.create_recognition(command)
    if result.replayed:
        response.headers[REPLAY_HEADER] = "true"
        logger.info("recognition_replayed", recognition_id=result.recognition.id)
    return result


@router.get("/{recognition_id}", response_model=Recognition)
async def get_recognition(
    recognition_id: str,
    control_plane: ControlPlaneDep,
) -> Recognition:
    return await control_plane.recognitions.get_recognition(recognition_id)


@router.post("/{recognition_id}/verify", response_model=Recognition)
async def verify_recognition(
    recognition_id: str,
    body: RecognitionVerify,
    actor: ActorDep,
    control_plane: ControlPlaneDep,
) -> Recognition:
    """Record the manager's verification decision."""
    return await control_plane.recognitions.verify(recognition_id, actor.actor_id, body.approved)
