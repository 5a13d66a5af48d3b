"""Participant storage backends."""

from fallfest.referral.store import ParticipantStore
from fallfest.settings import settings


def build_store(backend: str | None = None) -> ParticipantStore:
    """Create the participant store configured in settings."""
    backend = backend or settings.store_backend
    if backend == "rest":
        from fallfest.storage.rest_store import RestParticipantStore
        return RestParticipantStore()

    from fallfest.storage.db import Database
    from fallfest.storage.sql_store import SqlParticipantStore
    database = Database()
    database.create_tables()
    return SqlParticipantStore(database)
