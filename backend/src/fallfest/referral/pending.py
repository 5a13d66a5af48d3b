"""Pending referral code captured from the ``ref`` URL parameter.

The code is seen on whatever page the visitor lands on, persisted in
client-side storage and read once when they register. Priority is the URL
parameter, then the stored value.
"""

from collections.abc import Mapping, MutableMapping

REFERRAL_QUERY_PARAM = "ref"
REFERRAL_STORAGE_KEY = "referralCode"


class PendingReferral:
    """Lifecycle of a pending referral code over a key-value storage."""

    def __init__(self, storage: MutableMapping[str, str]):
        self.storage = storage

    def capture(self, query_params: Mapping[str, str]) -> str | None:
        """Persist the ``ref`` parameter if present and return it."""
        ref = (query_params.get(REFERRAL_QUERY_PARAM) or "").strip()
        if not ref:
            return None
        self.storage[REFERRAL_STORAGE_KEY] = ref
        return ref

    def get(self) -> str | None:
        return self.storage.get(REFERRAL_STORAGE_KEY) or None

    def resolve(self, query_params: Mapping[str, str] | None = None) -> str | None:
        """URL parameter first, previously stored value otherwise."""
        if query_params is not None:
            captured = self.capture(query_params)
            if captured:
                return captured
        return self.get()

    def clear(self) -> None:
        self.storage.pop(REFERRAL_STORAGE_KEY, None)
