from fallfest.referral.pending import REFERRAL_STORAGE_KEY, PendingReferral


def test_capture_persists_ref():
    storage = {}
    pending = PendingReferral(storage)

    assert pending.capture({"ref": "ABC12345"}) == "ABC12345"
    assert storage == {REFERRAL_STORAGE_KEY: "ABC12345"}


def test_capture_without_ref_keeps_storage():
    storage = {REFERRAL_STORAGE_KEY: "OLD00000"}
    pending = PendingReferral(storage)

    assert pending.capture({"page": "2"}) is None
    assert pending.capture({"ref": "  "}) is None
    assert pending.get() == "OLD00000"


def test_url_takes_priority_over_stored_value():
    pending = PendingReferral({REFERRAL_STORAGE_KEY: "OLD00000"})

    assert pending.resolve({"ref": "NEW00000"}) == "NEW00000"
    assert pending.get() == "NEW00000"


def test_falls_back_to_stored_value():
    pending = PendingReferral({REFERRAL_STORAGE_KEY: "OLD00000"})

    assert pending.resolve({}) == "OLD00000"
    assert pending.resolve() == "OLD00000"


def test_clear():
    pending = PendingReferral({REFERRAL_STORAGE_KEY: "OLD00000"})

    pending.clear()
    pending.clear()

    assert pending.get() is None
