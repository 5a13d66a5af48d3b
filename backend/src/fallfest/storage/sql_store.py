"""SQLAlchemy-backed participant store."""

from collections.abc import Iterable

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from fallfest.logging_config import get_logger
from fallfest.referral.errors import DuplicateParticipant, StoreUnavailable
from fallfest.referral.models import (
    UNSET_REFERRED_BY,
    NewParticipant,
    Participant,
    is_unset_referred_by,
    parse_referred_by,
)
from fallfest.referral.store import ParticipantStore
from fallfest.storage.db import Database
from fallfest.storage.models import Registration

logger = get_logger(__name__)


def to_participant(row: Registration) -> Participant:
    """Convert a registration row to the domain type."""
    return Participant(
        id=row.id,
        user_id=row.user_id,
        referral_code=row.referral_code,
        email=row.email,
        full_name=row.full_name,
        institution=row.institution,
        referred_by=parse_referred_by(row.referred_by),
        locked=not is_unset_referred_by(row.referred_by),
        created_at=row.created_at,
    )


def _unset_clause():
    return or_(
        Registration.referred_by.is_(None),
        Registration.referred_by.in_(UNSET_REFERRED_BY),
    )


class SqlParticipantStore(ParticipantStore):
    """Participant store on a relational database.

    Each call runs in its own session; the conditional update is a single
    ``UPDATE ... WHERE referred_by IS NULL`` statement, so concurrent
    attributions cannot both succeed.
    """

    def __init__(self, database: Database):
        self.db = database

    async def code_exists(self, code: str) -> bool:
        try:
            with self.db.session() as session:
                found = session.scalar(
                    select(Registration.id).where(Registration.referral_code == code).limit(1)
                )
                return found is not None
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e

    async def get_by_id(self, participant_id: int) -> Participant | None:
        try:
            with self.db.session() as session:
                row = session.get(Registration, participant_id)
                return to_participant(row) if row else None
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e

    async def get_by_user_id(self, user_id: str) -> Participant | None:
        try:
            with self.db.session() as session:
                row = session.scalar(select(Registration).where(Registration.user_id == user_id))
                return to_participant(row) if row else None
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e

    async def get_by_code(self, code: str) -> Participant | None:
        try:
            with self.db.session() as session:
                row = session.scalar(select(Registration).where(Registration.referral_code == code))
                return to_participant(row) if row else None
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e

    async def get_many(self, participant_ids: Iterable[int]) -> list[Participant]:
        ids = list(set(participant_ids))
        if not ids:
            return []
        try:
            with self.db.session() as session:
                rows = session.scalars(
                    select(Registration).where(Registration.id.in_(ids)).order_by(Registration.id)
                )
                return [to_participant(row) for row in rows]
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e

    async def insert(self, participant: NewParticipant) -> Participant:
        row = Registration(
            user_id=participant.user_id,
            email=participant.email,
            full_name=participant.full_name,
            institution=participant.institution,
            referral_code=participant.referral_code,
            referred_by=str(participant.referred_by) if participant.referred_by is not None else None,
        )
        try:
            with self.db.session() as session:
                session.add(row)
                session.flush()
                session.refresh(row)
                result = to_participant(row)
        except IntegrityError as e:
            logger.warning("registration_insert_conflict", user_id=participant.user_id)
            raise DuplicateParticipant(participant.user_id) from e
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e

        logger.info(
            "registration_created",
            participant_id=result.id,
            code=result.referral_code,
            referred_by=result.referred_by,
        )
        return result

    async def set_referred_by_if_unset(self, participant_id: int, referrer_id: int) -> bool:
        try:
            with self.db.session() as session:
                result = session.execute(
                    update(Registration)
                    .where(Registration.id == participant_id, _unset_clause())
                    .values(referred_by=str(referrer_id))
                )
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e

    async def count_referred_by(self, participant_id: int) -> int:
        try:
            with self.db.session() as session:
                return session.scalar(
                    select(func.count())
                    .select_from(Registration)
                    .where(Registration.referred_by == str(participant_id))
                ) or 0
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e

    async def list_referred_by(self, participant_id: int) -> list[Participant]:
        try:
            with self.db.session() as session:
                rows = session.scalars(
                    select(Registration)
                    .where(Registration.referred_by == str(participant_id))
                    .order_by(Registration.created_at, Registration.id)
                )
                return [to_participant(row) for row in rows]
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e

    async def list_referral_edges(self) -> list[str]:
        try:
            with self.db.session() as session:
                return list(
                    session.scalars(
                        select(Registration.referred_by).where(
                            Registration.referred_by.is_not(None),
                            Registration.referred_by.not_in(UNSET_REFERRED_BY),
                        )
                    )
                )
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e

    async def close(self) -> None:
        self.db.dispose()
