import pytest

from fallfest.referral.leaderboard import Leaderboard
from fallfest.referral.service import ReferralService
from fallfest.storage.db import Database
from fallfest.storage.sql_store import SqlParticipantStore


@pytest.fixture
def database():
    database = Database("sqlite://")
    database.create_tables()
    yield database
    database.drop_tables()
    database.dispose()


@pytest.fixture
def store(database):
    return SqlParticipantStore(database)


@pytest.fixture
def service(store):
    return ReferralService(store)


@pytest.fixture
def leaderboard(store):
    return Leaderboard(store)
