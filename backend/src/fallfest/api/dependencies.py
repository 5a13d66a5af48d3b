"""Request-scoped access to the services created at startup."""

from fastapi import Request

from fallfest.referral.leaderboard import Leaderboard, LeaderboardFeed
from fallfest.referral.pending import PendingReferral
from fallfest.referral.service import ReferralService


def get_referral_service(request: Request) -> ReferralService:
    return request.app.state.referral_service


def get_leaderboard(request: Request) -> Leaderboard:
    return request.app.state.leaderboard


def get_leaderboard_feed(request: Request) -> LeaderboardFeed | None:
    return getattr(request.app.state, "leaderboard_feed", None)


def get_pending_referral(request: Request) -> PendingReferral:
    """Pending referral backed by a copy of the request cookies."""
    return PendingReferral(dict(request.cookies))
