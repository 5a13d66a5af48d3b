"""Referral counts and the referrer leaderboard."""

import asyncio
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timezone

from fallfest.logging_config import get_logger
from fallfest.referral.errors import ReferralError
from fallfest.referral.models import LeaderboardEntry, Participant, parse_referred_by
from fallfest.referral.store import ParticipantStore
from fallfest.settings import settings

logger = get_logger(__name__)

Snapshot = list[LeaderboardEntry]


class Leaderboard:
    """Read-only aggregation over stored attribution edges."""

    def __init__(self, store: ParticipantStore):
        self.store = store

    async def count_referrals(self, participant_id: int) -> int:
        """Number of participants whose ``referred_by`` is ``participant_id``."""
        return await self.store.count_referred_by(participant_id)

    async def referral_counts(self) -> Counter[int]:
        """Referral count per referrer id.

        Values that are not a participant id, or point at a row that does
        not exist, are dropped.
        """
        counts, _ = await self._counts_with_referrers()
        return counts

    async def _counts_with_referrers(self) -> tuple[Counter[int], list[Participant]]:
        counts: Counter[int] = Counter()
        skipped = 0
        for raw in await self.store.list_referral_edges():
            referrer_id = parse_referred_by(raw)
            if referrer_id is None:
                skipped += 1
                continue
            counts[referrer_id] += 1

        referrers = await self.store.get_many(counts)
        known = {p.id for p in referrers}
        for referrer_id in list(counts):
            if referrer_id not in known:
                skipped += counts.pop(referrer_id)

        if skipped:
            logger.debug("referral_edges_skipped", count=skipped)
        return counts, referrers

    async def top_referrers(self, limit: int | None = None) -> Snapshot:
        """Participants with at least one referral, most referrals first.

        Ties keep registration order.
        """
        limit = settings.leaderboard_limit if limit is None else limit
        if limit < 0:
            raise ValueError("limit must be non-negative")
        if limit == 0:
            return []

        counts, referrers = await self._counts_with_referrers()
        entries = [LeaderboardEntry(participant=p, count=counts[p.id]) for p in referrers]
        entries.sort(key=lambda e: (-e.count, _registration_order(e.participant)))
        return entries[:limit]


def _registration_order(participant: Participant) -> tuple[float, int]:
    created = participant.created_at.timestamp() if participant.created_at else float("inf")
    return (created, participant.id)


class LeaderboardFeed:
    """Keeps a leaderboard snapshot fresh.

    Refreshes on a fixed interval and whenever ``notify_change`` is called
    (e.g. right after an attribution). Both paths run the same query, so the
    latest completed refresh is the current snapshot.
    """

    def __init__(
        self,
        leaderboard: Leaderboard,
        limit: int | None = None,
        interval: float | None = None,
    ):
        self.leaderboard = leaderboard
        self.limit = settings.leaderboard_limit if limit is None else limit
        self.interval = settings.leaderboard_refresh_seconds if interval is None else interval
        self.snapshot: Snapshot = []
        self.refreshed_at: datetime | None = None
        self._subscribers: list[Callable[[Snapshot], None]] = []
        self._changed = asyncio.Event()
        self._task: asyncio.Task | None = None

    def subscribe(self, callback: Callable[[Snapshot], None]) -> None:
        self._subscribers.append(callback)

    def notify_change(self, *_args) -> None:
        """Request an immediate refresh. Accepts and ignores listener arguments."""
        self._changed.set()

    async def refresh(self) -> Snapshot:
        snapshot = await self.leaderboard.top_referrers(self.limit)
        self.snapshot = snapshot
        self.refreshed_at = datetime.now(timezone.utc)
        for callback in self._subscribers:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("leaderboard_subscriber_failed", subscriber=repr(callback))
        logger.debug("leaderboard_refreshed", entries=len(snapshot))
        return snapshot

    async def run(self) -> None:
        """Refresh until cancelled."""
        while True:
            self._changed.clear()
            try:
                await self.refresh()
            except ReferralError as e:
                # Keep the last snapshot; next tick tries again
                logger.warning("leaderboard_refresh_failed", error=e.message)
            except Exception:
                logger.exception("leaderboard_refresh_crashed")
            try:
                await asyncio.wait_for(self._changed.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
