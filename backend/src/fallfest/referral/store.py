"""Participant store interface.

The referral engine only needs a handful of primitives from the backing
store: equality lookups, inserts, an exact count and a conditional update
of ``referred_by``. Implementations live in ``fallfest.storage``.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable

from fallfest.referral.models import NewParticipant, Participant


class ParticipantStore(ABC):
    """Async access to the registrations table."""

    @abstractmethod
    async def code_exists(self, code: str) -> bool:
        """Check whether any participant already owns ``code``."""

    @abstractmethod
    async def get_by_id(self, participant_id: int) -> Participant | None:
        """Get participant by internal id."""

    @abstractmethod
    async def get_by_user_id(self, user_id: str) -> Participant | None:
        """Get participant by identity-provider user id."""

    @abstractmethod
    async def get_by_code(self, code: str) -> Participant | None:
        """Get participant whose referral code equals ``code`` exactly."""

    @abstractmethod
    async def get_many(self, participant_ids: Iterable[int]) -> list[Participant]:
        """Get participants by id. Unknown ids are skipped."""

    @abstractmethod
    async def insert(self, participant: NewParticipant) -> Participant:
        """Insert a new row.

        Raises:
            DuplicateParticipant: user id or referral code already taken
        """

    @abstractmethod
    async def set_referred_by_if_unset(self, participant_id: int, referrer_id: int) -> bool:
        """Set ``referred_by`` only while it is still unset.

        Returns:
            True if this call performed the write, False if the row was
            missing or already attributed
        """

    @abstractmethod
    async def count_referred_by(self, participant_id: int) -> int:
        """Count rows whose ``referred_by`` equals ``participant_id``."""

    @abstractmethod
    async def list_referred_by(self, participant_id: int) -> list[Participant]:
        """List participants attributed to ``participant_id``."""

    @abstractmethod
    async def list_referral_edges(self) -> list[str]:
        """Raw ``referred_by`` values of every row that has a non-sentinel value."""

    async def close(self) -> None:
        """Release any held connections."""
