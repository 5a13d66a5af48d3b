"""Response and request models shared by the v1 routers."""

from datetime import datetime

from pydantic import BaseModel, Field

from fallfest.referral.models import LeaderboardEntry, Participant


class ParticipantResponse(BaseModel):
    """Public view of a registration row."""
    id: int
    referral_code: str
    full_name: str | None = None
    institution: str | None = None
    referred_by: int | None = None
    referral_locked: bool = False
    created_at: datetime | None = None

    @classmethod
    def from_participant(cls, participant: Participant) -> "ParticipantResponse":
        return cls(
            id=participant.id,
            referral_code=participant.referral_code,
            full_name=participant.full_name,
            institution=participant.institution,
            referred_by=participant.referred_by,
            referral_locked=participant.is_locked,
            created_at=participant.created_at,
        )


class ReferredUserResponse(BaseModel):
    id: int
    full_name: str | None = None
    institution: str | None = None
    created_at: datetime | None = None


class LeaderboardEntryResponse(BaseModel):
    rank: int
    id: int
    full_name: str
    institution: str | None = None
    count: int

    @classmethod
    def from_entry(cls, rank: int, entry: LeaderboardEntry) -> "LeaderboardEntryResponse":
        return cls(
            rank=rank,
            id=entry.participant.id,
            full_name=entry.participant.display_name,
            institution=entry.participant.institution,
            count=entry.count,
        )


class CodeRequest(BaseModel):
    """Referral code typed by the user."""
    code: str = Field(default="", max_length=64)
