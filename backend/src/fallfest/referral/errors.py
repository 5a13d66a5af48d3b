"""Referral error taxonomy."""

from enum import Enum


class ReferralErrorCode(str, Enum):
    """Stable error codes surfaced to the registration and referral pages."""
    EMPTY_CODE = "empty_code"
    INVALID_CODE = "invalid_code"
    SELF_REFERRAL = "self_referral"
    ALREADY_LOCKED = "already_locked"
    STORE_UNAVAILABLE = "store_unavailable"
    COLLISION = "collision"


class ReferralError(Exception):
    """Base class for referral failures."""

    code: ReferralErrorCode
    default_message = "Referral operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class EmptyCode(ReferralError):
    code = ReferralErrorCode.EMPTY_CODE
    default_message = "Please enter a referral code."


class InvalidCode(ReferralError):
    code = ReferralErrorCode.INVALID_CODE
    default_message = "The referral code you entered is invalid."


class SelfReferral(ReferralError):
    code = ReferralErrorCode.SELF_REFERRAL
    default_message = "You cannot use your own referral code."


class AlreadyLocked(ReferralError):
    code = ReferralErrorCode.ALREADY_LOCKED
    default_message = "You have already applied a referral code. It cannot be changed."


class StoreUnavailable(ReferralError):
    """Raised when the backing store cannot be reached or answers with an error."""
    code = ReferralErrorCode.STORE_UNAVAILABLE
    default_message = "The registration service is unavailable. Please try again."


class CodeCollision(ReferralError):
    """Raised when every draw of the code generator collided with an existing code."""
    code = ReferralErrorCode.COLLISION
    default_message = "Could not generate a unique referral code."


class DuplicateParticipant(Exception):
    """Raised by stores when a row for the same user or code already exists."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Participant for user {user_id} already exists")
