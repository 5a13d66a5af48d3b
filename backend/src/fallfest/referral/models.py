"""Participant types used by the referral engine."""

from dataclasses import dataclass, field
from datetime import datetime

from fallfest.referral.errors import ReferralErrorCode

# Values legacy rows use to mean "no referrer"
UNSET_REFERRED_BY = ("", "-")


def parse_referred_by(raw: object) -> int | None:
    """Normalise a stored ``referred_by`` value to a participant id.

    Only the canonical decimal form of an id (``"5"``, not ``"05"`` or
    ``" 5"``) is a reference, so every value parsed here also matches the
    store's ``referred_by == str(id)`` equality count.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    value = str(raw)
    if not (value.isascii() and value.isdigit()) or value != str(int(value)):
        return None
    return int(value)


def is_unset_referred_by(raw: object) -> bool:
    """True when a stored ``referred_by`` value may still be written.

    Compared verbatim, exactly like the stores' conditional-update predicate.
    """
    return raw is None or (isinstance(raw, str) and raw in UNSET_REFERRED_BY)


@dataclass(frozen=True)
class Identity:
    """Authenticated user as reported by the identity provider."""
    user_id: str
    email: str | None = None


@dataclass(frozen=True)
class Unregistered:
    """Signed-in user without a registration row yet."""
    user_id: str
    email: str | None = None
    pending_code: str | None = None


@dataclass(frozen=True)
class Participant:
    """Registered participant.

    ``referred_by`` is the referrer's id once attributed. ``locked`` also
    covers stored values that are set but not a valid id.
    """
    id: int
    user_id: str
    referral_code: str
    email: str | None = None
    full_name: str | None = None
    institution: str | None = None
    referred_by: int | None = None
    locked: bool = False
    created_at: datetime | None = field(default=None, compare=False)

    @property
    def is_locked(self) -> bool:
        return self.locked or self.referred_by is not None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "Unknown"


@dataclass(frozen=True)
class NewParticipant:
    """Row about to be inserted."""
    user_id: str
    referral_code: str
    email: str | None = None
    full_name: str | None = None
    institution: str | None = None
    referred_by: int | None = None


@dataclass(frozen=True)
class LeaderboardEntry:
    participant: Participant
    count: int


@dataclass
class ReferralSummary:
    """What the referral page shows for one participant."""
    participant: Participant
    link: str
    referrer_code: str | None
    referred: list[Participant]

    @property
    def total_referrals(self) -> int:
        return len(self.referred)


@dataclass
class AttributionResult:
    """Outcome of applying a referral code."""
    participant: Participant | None = None
    referrer: Participant | None = None
    error: ReferralErrorCode | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RegistrationResult:
    """Outcome of registering; attribution failure does not block registration."""
    participant: Participant
    created: bool
    referrer: Participant | None = None
    attribution_error: ReferralErrorCode | None = None
    attribution_message: str | None = None

