import pytest
from fastapi.testclient import TestClient
from jose import jwt

from fallfest.api.main import create_app
from fallfest.referral.leaderboard import Leaderboard, LeaderboardFeed
from fallfest.referral.pending import REFERRAL_STORAGE_KEY
from fallfest.settings import settings

from tests.factories import add_participant


def auth_headers(user_id, email=None):
    token = jwt.encode(
        {"sub": user_id, "email": email or f"{user_id}@example.edu", "aud": settings.jwt_audience},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(store, monkeypatch):
    monkeypatch.setattr(settings, "leaderboard_refresh_seconds", 0)
    with TestClient(create_app(store)) as client:
        yield client


def register(client, user_id, name=None, **extra):
    return client.post(
        "/api/v1/registrations",
        json={"full_name": name or user_id.title(), **extra},
        headers=auth_headers(user_id),
    )


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["x-frame-options"] == "DENY"


def test_requires_auth(client):
    assert client.get("/api/v1/referral/me").status_code == 401
    assert client.get("/api/v1/referral/me", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_register_and_fetch(client):
    response = register(client, "alice", institution="IIT Madras")

    assert response.status_code == 200
    body = response.json()
    assert body["created"] is True
    assert body["referral_applied"] is False
    assert len(body["participant"]["referral_code"]) == 8

    me = client.get("/api/v1/registrations/me", headers=auth_headers("alice"))
    assert me.status_code == 200
    assert me.json()["referral_code"] == body["participant"]["referral_code"]


def test_unregistered_me_is_404(client):
    assert client.get("/api/v1/registrations/me", headers=auth_headers("ghost")).status_code == 404
    assert client.get("/api/v1/referral/me", headers=auth_headers("ghost")).status_code == 404


def test_ref_param_is_remembered_until_registration(client):
    alice_code = register(client, "alice").json()["participant"]["referral_code"]

    landing = client.get(f"/health?ref={alice_code}")
    assert landing.status_code == 200
    assert client.cookies.get(REFERRAL_STORAGE_KEY) == alice_code

    response = register(client, "bob")

    body = response.json()
    assert body["referral_applied"] is True
    assert client.cookies.get(REFERRAL_STORAGE_KEY) is None

    summary = client.get("/api/v1/referral/me", headers=auth_headers("alice")).json()
    assert summary["total_referrals"] == 1
    assert summary["referred_users"][0]["full_name"] == "Bob"


def test_register_with_invalid_code_reports_error(client):
    response = register(client, "bob", referral_code="NOPE0000")

    body = response.json()
    assert response.status_code == 200
    assert body["created"] is True
    assert body["referral_applied"] is False
    assert body["referral_error"] == "invalid_code"


def test_apply_referral_flow(client):
    alice_code = register(client, "alice").json()["participant"]["referral_code"]
    carol_code = register(client, "carol").json()["participant"]["referral_code"]
    bob_code = register(client, "bob").json()["participant"]["referral_code"]

    own = client.post("/api/v1/referral/apply", json={"code": bob_code}, headers=auth_headers("bob"))
    assert own.status_code == 400
    assert own.json()["error"] == "self_referral"

    invalid = client.post("/api/v1/referral/apply", json={"code": "DOESNOTEXIST"}, headers=auth_headers("bob"))
    assert invalid.status_code == 400
    assert invalid.json()["error"] == "invalid_code"

    empty = client.post("/api/v1/referral/apply", json={"code": "  "}, headers=auth_headers("bob"))
    assert empty.json()["error"] == "empty_code"

    applied = client.post("/api/v1/referral/apply", json={"code": alice_code}, headers=auth_headers("bob"))
    assert applied.status_code == 200
    assert applied.json()["referrer_code"] == alice_code
    assert applied.json()["participant"]["referral_locked"] is True

    again = client.post("/api/v1/referral/apply", json={"code": carol_code}, headers=auth_headers("bob"))
    assert again.status_code == 409
    assert again.json()["error"] == "already_locked"

    summary = client.get("/api/v1/referral/me", headers=auth_headers("bob")).json()
    assert summary["referrer_code"] == alice_code
    assert summary["referral_locked"] is True
    assert summary["link"].endswith(f"/register?ref={bob_code}")


def test_apply_before_registration_creates_row(client):
    alice_code = register(client, "alice").json()["participant"]["referral_code"]

    response = client.post("/api/v1/referral/apply", json={"code": alice_code}, headers=auth_headers("dave"))

    assert response.status_code == 200
    me = client.get("/api/v1/registrations/me", headers=auth_headers("dave")).json()
    assert me["referral_locked"] is True


def test_validate_code(client):
    alice_code = register(client, "alice", name="Alice Liddell").json()["participant"]["referral_code"]

    assert client.post("/api/v1/referral/validate", json={"code": alice_code}).json() == {
        "valid": True,
        "referrer_name": "Alice",
    }
    assert client.post("/api/v1/referral/validate", json={"code": "NOPE"}).json()["valid"] is False


async def test_count_and_leaderboard(client, store):
    alice = await add_participant(store, "alice", full_name="Alice")
    bob = await add_participant(store, "bob", full_name="Bob")
    await add_participant(store, "c1", referred_by=alice.id)
    await add_participant(store, "c2", referred_by=alice.id)
    await add_participant(store, "c3", referred_by=bob.id)

    count = client.get(f"/api/v1/referral/count/{alice.id}").json()
    assert count == {"participant_id": alice.id, "count": 2}

    board = client.get("/api/v1/referral/leaderboard").json()["entries"]
    assert [(e["rank"], e["full_name"], e["count"]) for e in board] == [(1, "Alice", 2), (2, "Bob", 1)]

    top_one = client.get("/api/v1/referral/leaderboard", params={"limit": 1}).json()["entries"]
    assert [e["full_name"] for e in top_one] == ["Alice"]

    assert client.get("/api/v1/referral/leaderboard", params={"limit": -1}).status_code == 422


async def test_leaderboard_ignores_snapshot_of_stopped_feed(client, store):
    alice = await add_participant(store, "alice", full_name="Alice")
    feed = LeaderboardFeed(Leaderboard(store), limit=settings.leaderboard_limit, interval=60)
    await feed.refresh()
    client.app.state.leaderboard_feed = feed
    await add_participant(store, "c1", referred_by=alice.id)

    board = client.get("/api/v1/referral/leaderboard").json()["entries"]

    assert not feed.running
    assert feed.snapshot == []
    assert [(e["full_name"], e["count"]) for e in board] == [("Alice", 1)]
