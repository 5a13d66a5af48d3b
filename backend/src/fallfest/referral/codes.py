"""Referral code generation."""

import secrets
import string
from collections.abc import Callable

from fallfest.logging_config import get_logger
from fallfest.referral.errors import CodeCollision
from fallfest.referral.store import ParticipantStore
from fallfest.settings import settings

logger = get_logger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


def draw_code(length: int = 8) -> str:
    """Draw a random code from ``A-Z0-9``. Format: ABC12XYZ"""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


class CodeGenerator:
    """Draws referral codes until one is not taken in the store."""

    def __init__(
        self,
        store: ParticipantStore,
        length: int | None = None,
        max_attempts: int | None = None,
        draw: Callable[[int], str] = draw_code,
    ):
        self.store = store
        self.length = length or settings.referral_code_length
        self.max_attempts = max_attempts or settings.max_code_attempts
        self.draw = draw

    async def generate_unique_code(self) -> str:
        """Generate a code no participant owns yet.

        Returns:
            Fresh referral code

        Raises:
            CodeCollision: every attempt collided
            StoreUnavailable: the store could not be queried
        """
        for attempt in range(1, self.max_attempts + 1):
            code = self.draw(self.length)
            if not await self.store.code_exists(code):
                return code
            logger.warning("referral_code_collision", attempt=attempt)

        logger.error("referral_code_generation_exhausted", attempts=self.max_attempts)
        raise CodeCollision(f"No unique code after {self.max_attempts} attempts")
