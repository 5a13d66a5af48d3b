"""Referral API v1 endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel

from fallfest.api.dependencies import (
    get_leaderboard,
    get_leaderboard_feed,
    get_pending_referral,
    get_referral_service,
)
from fallfest.api.errors import error_response
from fallfest.api.rate_limit import VALIDATE_CODE_LIMIT, limiter
from fallfest.api.v1.schemas import (
    CodeRequest,
    LeaderboardEntryResponse,
    ParticipantResponse,
    ReferredUserResponse,
)
from fallfest.auth.middleware import require_auth
from fallfest.logging_config import get_logger
from fallfest.referral.leaderboard import Leaderboard, LeaderboardFeed
from fallfest.referral.models import Identity
from fallfest.referral.pending import REFERRAL_STORAGE_KEY, PendingReferral
from fallfest.referral.service import ReferralService

logger = get_logger(__name__)

router = APIRouter(prefix="/referral", tags=["referral"])


# ==================== MODELS ====================


class ReferralSummaryResponse(BaseModel):
    """Everything the referral page shows."""
    code: str
    link: str
    referrer_code: str | None = None
    referral_locked: bool
    total_referrals: int
    referred_users: list[ReferredUserResponse]


class ApplyReferralResponse(BaseModel):
    participant: ParticipantResponse
    referrer_code: str


class ValidateCodeResponse(BaseModel):
    valid: bool
    referrer_name: str | None = None


class ReferralCountResponse(BaseModel):
    participant_id: int
    count: int


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntryResponse]


# ==================== ENDPOINTS ====================


@router.get("/me", response_model=ReferralSummaryResponse)
async def get_referral_summary(
    identity: Identity = Depends(require_auth),
    service: ReferralService = Depends(get_referral_service),
):
    """Get the signed-in participant's code, referrer and referred users."""
    summary = await service.get_summary(identity.user_id)
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Complete your registration first to access the referral program",
        )

    return ReferralSummaryResponse(
        code=summary.participant.referral_code,
        link=summary.link,
        referrer_code=summary.referrer_code,
        referral_locked=summary.participant.is_locked,
        total_referrals=summary.total_referrals,
        referred_users=[
            ReferredUserResponse(
                id=p.id,
                full_name=p.full_name,
                institution=p.institution,
                created_at=p.created_at,
            )
            for p in summary.referred
        ],
    )


@router.post("/apply", response_model=ApplyReferralResponse)
async def apply_referral_code(
    body: CodeRequest,
    request: Request,
    response: Response,
    identity: Identity = Depends(require_auth),
    service: ReferralService = Depends(get_referral_service),
    pending: PendingReferral = Depends(get_pending_referral),
):
    """Apply a friend's referral code.

    Once applied, the code is locked and cannot be changed.
    """
    code = body.code or pending.resolve(request.query_params)
    actor = await service.get_participant(identity)
    result = await service.apply_referral(actor, code)

    if not result.ok:
        return error_response(result.error, result.message)

    response.delete_cookie(REFERRAL_STORAGE_KEY)
    return ApplyReferralResponse(
        participant=ParticipantResponse.from_participant(result.participant),
        referrer_code=result.referrer.referral_code,
    )


@router.post("/validate", response_model=ValidateCodeResponse)
@limiter.limit(VALIDATE_CODE_LIMIT)
async def validate_referral_code(
    request: Request,
    body: CodeRequest,
    service: ReferralService = Depends(get_referral_service),
):
    """Check that a referral code exists.

    Used by the registration form to show who invited the user.
    """
    code = body.code.strip()
    referrer = await service.store.get_by_code(code) if code else None
    if referrer is None:
        return ValidateCodeResponse(valid=False)

    # First name only for privacy
    name = referrer.full_name.split()[0] if referrer.full_name else None
    return ValidateCodeResponse(valid=True, referrer_name=name)


@router.get("/count/{participant_id}", response_model=ReferralCountResponse)
async def get_referral_count(
    participant_id: int,
    leaderboard: Leaderboard = Depends(get_leaderboard),
):
    """Number of participants referred by ``participant_id``."""
    count = await leaderboard.count_referrals(participant_id)
    return ReferralCountResponse(participant_id=participant_id, count=count)


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard_entries(
    limit: int | None = Query(default=None, ge=0, le=100),
    leaderboard: Leaderboard = Depends(get_leaderboard),
    feed: LeaderboardFeed | None = Depends(get_leaderboard_feed),
):
    """Top referrers, most referrals first."""
    if feed is not None and feed.running and feed.refreshed_at is not None and limit in (None, feed.limit):
        entries = feed.snapshot
    else:
        entries = await leaderboard.top_referrers(limit)

    return LeaderboardResponse(
        entries=[
            LeaderboardEntryResponse.from_entry(rank, entry)
            for rank, entry in enumerate(entries, start=1)
        ]
    )
