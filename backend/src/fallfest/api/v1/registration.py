"""Registration API v1 endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, Field

from fallfest.api.dependencies import get_pending_referral, get_referral_service
from fallfest.api.v1.schemas import ParticipantResponse
from fallfest.auth.middleware import require_auth
from fallfest.logging_config import get_logger
from fallfest.referral.models import Identity, Participant
from fallfest.referral.pending import REFERRAL_STORAGE_KEY, PendingReferral
from fallfest.referral.service import ReferralService

logger = get_logger(__name__)

router = APIRouter(prefix="/registrations", tags=["registrations"])


class RegistrationRequest(BaseModel):
    """Registration form fields relevant to the referral program."""
    full_name: str = Field(..., min_length=1, max_length=255)
    institution: str | None = Field(default=None, max_length=255)
    referral_code: str | None = Field(default=None, max_length=64)


class RegistrationResponse(BaseModel):
    participant: ParticipantResponse
    created: bool
    referral_applied: bool
    referral_error: str | None = None
    referral_message: str | None = None


@router.post("", response_model=RegistrationResponse)
async def register(
    body: RegistrationRequest,
    request: Request,
    response: Response,
    identity: Identity = Depends(require_auth),
    service: ReferralService = Depends(get_referral_service),
    pending: PendingReferral = Depends(get_pending_referral),
):
    """Register the signed-in user.

    The referral code comes from the form, else the ``ref`` URL parameter,
    else the code remembered from an earlier page visit.
    """
    referral_code = body.referral_code or pending.resolve(request.query_params)
    result = await service.register(
        identity,
        full_name=body.full_name,
        institution=body.institution,
        referral_code=referral_code,
    )

    if result.referrer is not None:
        response.delete_cookie(REFERRAL_STORAGE_KEY)

    return RegistrationResponse(
        participant=ParticipantResponse.from_participant(result.participant),
        created=result.created,
        referral_applied=result.referrer is not None,
        referral_error=result.attribution_error.value if result.attribution_error else None,
        referral_message=result.attribution_message,
    )


@router.get("/me", response_model=ParticipantResponse)
async def get_my_registration(
    identity: Identity = Depends(require_auth),
    service: ReferralService = Depends(get_referral_service),
):
    """Get the signed-in user's registration."""
    participant = await service.get_participant(identity)
    if not isinstance(participant, Participant):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Not registered",
        )
    return ParticipantResponse.from_participant(participant)
