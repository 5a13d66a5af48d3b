import asyncio

import pytest

from fallfest.referral.errors import ReferralErrorCode
from fallfest.referral.models import Identity, Participant, Unregistered
from fallfest.referral.service import ReferralService, share_link
from fallfest.storage.models import Registration
from fallfest.storage.sql_store import SqlParticipantStore

from tests.factories import add_participant, add_raw_row


async def test_happy_path(service, store, leaderboard):
    alice = await add_participant(store, "alice", code="ABC12345")
    bob = await add_participant(store, "bob")

    result = await service.apply_referral(bob, "ABC12345")

    assert result.ok
    assert result.referrer.id == alice.id
    assert result.participant.referred_by == alice.id
    assert result.participant.is_locked
    assert (await store.get_by_id(bob.id)).referred_by == alice.id
    assert await leaderboard.count_referrals(alice.id) == 1


async def test_code_is_trimmed(service, store):
    alice = await add_participant(store, "alice", code="ABC12345")
    bob = await add_participant(store, "bob")

    result = await service.apply_referral(bob, "  ABC12345\n")

    assert result.ok
    assert result.referrer.id == alice.id


@pytest.mark.parametrize("code", ["", "   ", None])
async def test_empty_code(service, store, code):
    bob = await add_participant(store, "bob")

    result = await service.apply_referral(bob, code)

    assert result.error == ReferralErrorCode.EMPTY_CODE
    assert (await store.get_by_id(bob.id)).referred_by is None


async def test_own_code_is_self_referral(service, store):
    bob = await add_participant(store, "bob")

    result = await service.apply_referral(bob, bob.referral_code)

    assert result.error == ReferralErrorCode.SELF_REFERRAL
    assert not (await store.get_by_id(bob.id)).is_locked


async def test_same_identity_is_self_referral(service, store):
    bob = await add_participant(store, "bob", code="BOB00001")
    # Another record claiming the same identity, e.g. a stale client copy
    other_record = Participant(id=bob.id + 100, user_id="bob", referral_code="ZZZ99999")

    result = await service.apply_referral(other_record, "BOB00001")

    assert result.error == ReferralErrorCode.SELF_REFERRAL


async def test_unregistered_user_cannot_refer_themselves(service, store):
    await add_participant(store, "bob", code="BOB00001")

    result = await service.apply_referral(Unregistered(user_id="bob"), "BOB00001")

    assert result.error == ReferralErrorCode.SELF_REFERRAL


async def test_unknown_code_is_invalid(service, store):
    bob = await add_participant(store, "bob")

    result = await service.apply_referral(bob, "DOESNOTEXIST")

    assert result.error == ReferralErrorCode.INVALID_CODE
    assert result.participant == bob
    assert (await store.get_by_id(bob.id)).referred_by is None


async def test_code_match_is_exact(service, store):
    await add_participant(store, "alice", code="ABC12345")
    bob = await add_participant(store, "bob")

    result = await service.apply_referral(bob, "abc12345")

    assert result.error == ReferralErrorCode.INVALID_CODE


async def test_second_apply_is_locked(service, store):
    alice = await add_participant(store, "alice")
    carol = await add_participant(store, "carol")
    bob = await add_participant(store, "bob")

    first = await service.apply_referral(bob, alice.referral_code)
    second = await service.apply_referral(first.participant, carol.referral_code)

    assert first.ok
    assert second.error == ReferralErrorCode.ALREADY_LOCKED
    assert (await store.get_by_id(bob.id)).referred_by == alice.id


async def test_lock_is_checked_before_code(service, store):
    alice = await add_participant(store, "alice")
    bob = await add_participant(store, "bob", referred_by=alice.id)

    result = await service.apply_referral(bob, "")

    assert result.error == ReferralErrorCode.ALREADY_LOCKED


async def test_stale_actor_is_rejected_by_reread(service, store):
    alice = await add_participant(store, "alice")
    carol = await add_participant(store, "carol")
    bob = await add_participant(store, "bob")
    await service.apply_referral(bob, alice.referral_code)

    # ``bob`` still holds the pre-attribution state
    result = await service.apply_referral(bob, carol.referral_code)

    assert result.error == ReferralErrorCode.ALREADY_LOCKED
    assert (await store.get_by_id(bob.id)).referred_by == alice.id


async def test_conditional_write_rejects_tampering(store):
    alice = await add_participant(store, "alice")
    carol = await add_participant(store, "carol")
    bob = await add_participant(store, "bob", referred_by=alice.id)

    assert await store.set_referred_by_if_unset(bob.id, carol.id) is False
    assert (await store.get_by_id(bob.id)).referred_by == alice.id


async def test_sentinel_values_count_as_unset(service, store, database):
    alice = await add_participant(store, "alice")
    legacy_id = add_raw_row(database, "legacy", "-")
    legacy = await store.get_by_id(legacy_id)
    assert not legacy.is_locked

    result = await service.apply_referral(legacy, alice.referral_code)

    assert result.ok
    assert (await store.get_by_id(legacy_id)).referred_by == alice.id


async def test_malformed_value_is_never_overwritten(service, store, database):
    alice = await add_participant(store, "alice")
    row_id = add_raw_row(database, "garbled", "abc")
    garbled = await store.get_by_id(row_id)

    result = await service.apply_referral(garbled, alice.referral_code)

    assert garbled.is_locked
    assert result.error == ReferralErrorCode.ALREADY_LOCKED


@pytest.mark.parametrize("value", [" ", " - ", "\t"])
async def test_whitespace_value_is_locked_like_the_store_sees_it(service, store, database, value):
    alice = await add_participant(store, "alice")
    row_id = add_raw_row(database, "spaced", value)
    spaced = await store.get_by_id(row_id)

    result = await service.apply_referral(spaced, alice.referral_code)

    assert spaced.is_locked
    assert result.error == ReferralErrorCode.ALREADY_LOCKED
    assert await store.set_referred_by_if_unset(row_id, alice.id) is False
    with database.session() as session:
        assert session.get(Registration, row_id).referred_by == value


async def test_locked_row_behind_placeholder_is_checked_before_code(service, store):
    alice = await add_participant(store, "alice")
    await add_participant(store, "bob", referred_by=alice.id)

    result = await service.apply_referral(Unregistered(user_id="bob"), "NOPE0000")

    assert result.error == ReferralErrorCode.ALREADY_LOCKED


async def test_unregistered_actor_gets_row_with_attribution(service, store):
    alice = await add_participant(store, "alice")

    result = await service.apply_referral(
        Unregistered(user_id="dave", email="dave@example.edu"), alice.referral_code
    )

    assert result.ok
    dave = await store.get_by_user_id("dave")
    assert dave.referred_by == alice.id
    assert len(dave.referral_code) == 8
    assert dave.referral_code != alice.referral_code


async def test_unregistered_placeholder_for_registered_user_uses_row(service, store):
    alice = await add_participant(store, "alice")
    carol = await add_participant(store, "carol")
    await add_participant(store, "bob", referred_by=alice.id)

    result = await service.apply_referral(Unregistered(user_id="bob"), carol.referral_code)

    assert result.error == ReferralErrorCode.ALREADY_LOCKED


class InterleavingStore(SqlParticipantStore):
    """Yields to the event loop between reads and writes."""

    async def get_by_id(self, participant_id):
        await asyncio.sleep(0)
        return await super().get_by_id(participant_id)

    async def set_referred_by_if_unset(self, participant_id, referrer_id):
        await asyncio.sleep(0)
        return await super().set_referred_by_if_unset(participant_id, referrer_id)


async def test_concurrent_applies_only_one_wins(database):
    store = InterleavingStore(database)
    service = ReferralService(store)
    alice = await add_participant(store, "alice")
    carol = await add_participant(store, "carol")
    bob = await add_participant(store, "bob")

    results = await asyncio.gather(
        service.apply_referral(bob, alice.referral_code),
        service.apply_referral(bob, carol.referral_code),
    )

    assert sorted(r.ok for r in results) == [False, True]
    loser = next(r for r in results if not r.ok)
    winner = next(r for r in results if r.ok)
    assert loser.error == ReferralErrorCode.ALREADY_LOCKED
    assert (await store.get_by_id(bob.id)).referred_by == winner.referrer.id


async def test_listeners_fire_on_success_only(store):
    seen = []
    service = ReferralService(store, on_attributed=lambda p, r: seen.append((p.id, r.id)))
    alice = await add_participant(store, "alice")
    bob = await add_participant(store, "bob")

    await service.apply_referral(bob, "NOPE0000")
    await service.apply_referral(bob, alice.referral_code)

    assert seen == [(bob.id, alice.id)]


async def test_register_mints_code_and_attributes(service, store):
    alice = await add_participant(store, "alice")

    result = await service.register(
        Identity(user_id="erin", email="erin@example.edu"),
        full_name="Erin Example",
        institution="IIT",
        referral_code=alice.referral_code,
    )

    assert result.created
    assert result.referrer.id == alice.id
    assert result.attribution_error is None
    assert result.participant.referred_by == alice.id
    assert result.participant.full_name == "Erin Example"


async def test_register_with_bad_code_still_registers(service, store):
    result = await service.register(Identity(user_id="erin"), referral_code="NOPE0000")

    assert result.created
    assert result.participant.referred_by is None
    assert result.attribution_error == ReferralErrorCode.INVALID_CODE
    assert await store.get_by_user_id("erin") is not None


async def test_register_is_idempotent(service, store):
    first = await service.register(Identity(user_id="erin"), full_name="Erin")
    second = await service.register(Identity(user_id="erin"), full_name="Someone Else")

    assert second.created is False
    assert second.participant.id == first.participant.id
    assert second.participant.referral_code == first.participant.referral_code


async def test_get_participant_variants(service, store):
    await add_participant(store, "alice")

    assert isinstance(await service.get_participant(Identity(user_id="alice")), Participant)
    assert await service.get_participant(Identity(user_id="zed", email="z@x")) == Unregistered(
        user_id="zed", email="z@x"
    )


async def test_summary(service, store):
    alice = await add_participant(store, "alice")
    bob = await add_participant(store, "bob", referred_by=alice.id)
    await add_participant(store, "carol", referred_by=bob.id)
    await add_participant(store, "dave", referred_by=bob.id)

    summary = await service.get_summary("bob")

    assert summary.referrer_code == alice.referral_code
    assert summary.total_referrals == 2
    assert [p.user_id for p in summary.referred] == ["carol", "dave"]
    assert summary.link == share_link(bob.referral_code)
    assert await service.get_summary("nobody") is None


def test_share_link():
    assert share_link("ABC12345", "https://fallfest.example/") == (
        "https://fallfest.example/register?ref=ABC12345"
    )


async def test_unregistered_pending_code_is_used_when_none_typed(service, store):
    alice = await add_participant(store, "alice")

    result = await service.apply_referral(
        Unregistered(user_id="dave", pending_code=alice.referral_code), ""
    )

    assert result.ok
    assert result.referrer.id == alice.id
