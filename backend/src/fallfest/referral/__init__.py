"""Referral program: codes, attribution and leaderboard.

- Every participant gets one unique 8-character code at registration
- A participant can be attributed to one referrer, once, never to themselves
- Counts and the leaderboard are derived from the stored attributions
"""

from fallfest.referral.codes import CodeGenerator
from fallfest.referral.errors import ReferralError, ReferralErrorCode
from fallfest.referral.leaderboard import Leaderboard, LeaderboardFeed
from fallfest.referral.models import (
    AttributionResult,
    Identity,
    LeaderboardEntry,
    Participant,
    RegistrationResult,
    Unregistered,
)
from fallfest.referral.pending import PendingReferral
from fallfest.referral.service import ReferralService

__all__ = [
    "AttributionResult",
    "CodeGenerator",
    "Identity",
    "Leaderboard",
    "LeaderboardEntry",
    "LeaderboardFeed",
    "Participant",
    "PendingReferral",
    "ReferralError",
    "ReferralErrorCode",
    "ReferralService",
    "RegistrationResult",
    "Unregistered",
]
