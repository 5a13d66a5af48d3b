"""Referral service: code minting, attribution and registration."""

from collections.abc import Callable
from dataclasses import replace

from fallfest.logging_config import get_logger
from fallfest.referral.codes import CodeGenerator
from fallfest.referral.errors import (
    AlreadyLocked,
    DuplicateParticipant,
    EmptyCode,
    InvalidCode,
    ReferralError,
    SelfReferral,
    StoreUnavailable,
)
from fallfest.referral.models import (
    AttributionResult,
    Identity,
    NewParticipant,
    Participant,
    ReferralSummary,
    RegistrationResult,
    Unregistered,
)
from fallfest.referral.store import ParticipantStore
from fallfest.settings import settings

logger = get_logger(__name__)

AttributionListener = Callable[[Participant, Participant], None]


def share_link(code: str, base_url: str | None = None) -> str:
    """Registration link that pre-fills ``code``."""
    base_url = (base_url or settings.public_base_url).rstrip("/")
    return f"{base_url}/register?ref={code}"


class ReferralService:
    """Service for referral codes and referral attribution.

    ``referred_by`` is write-once. The final write is a conditional update
    in the store, so a second attribution for the same participant fails
    with ``AlreadyLocked`` even when two requests race past the read checks.
    """

    def __init__(
        self,
        store: ParticipantStore,
        generator: CodeGenerator | None = None,
        on_attributed: AttributionListener | None = None,
    ):
        self.store = store
        self.generator = generator or CodeGenerator(store)
        self.listeners: list[AttributionListener] = []
        if on_attributed:
            self.listeners.append(on_attributed)

    def add_listener(self, listener: AttributionListener) -> None:
        self.listeners.append(listener)

    async def generate_unique_code(self) -> str:
        return await self.generator.generate_unique_code()

    async def get_participant(self, identity: Identity) -> Participant | Unregistered:
        """Registered row for ``identity``, or its unregistered placeholder."""
        participant = await self.store.get_by_user_id(identity.user_id)
        if participant is None:
            return Unregistered(user_id=identity.user_id, email=identity.email)
        return participant

    # ==================== ATTRIBUTION ====================

    async def apply_referral(
        self,
        actor: Participant | Unregistered,
        submitted_code: str | None,
    ) -> AttributionResult:
        """Attribute ``actor`` to the owner of ``submitted_code``.

        Checks run in order: already locked, empty code, own code, unknown
        code, same identity. An unregistered actor gets their row created
        with the attribution in the same insert.

        Returns:
            AttributionResult; failures are reported in ``error``, never raised
        """
        try:
            participant, referrer = await self._apply(actor, submitted_code)
        except ReferralError as e:
            logger.info(
                "referral_rejected",
                user_id=actor.user_id,
                code=submitted_code,
                reason=e.code.value,
            )
            return AttributionResult(
                participant=actor if isinstance(actor, Participant) else None,
                error=e.code,
                message=e.message,
            )

        logger.info(
            "referral_applied",
            participant_id=participant.id,
            referrer_id=referrer.id,
        )
        self._notify(participant, referrer)
        return AttributionResult(participant=participant, referrer=referrer)

    async def _apply(
        self,
        actor: Participant | Unregistered,
        submitted_code: str | None,
    ) -> tuple[Participant, Participant]:
        if isinstance(actor, Unregistered) and not (submitted_code or "").strip():
            submitted_code = actor.pending_code

        if isinstance(actor, Unregistered):
            # A stale placeholder may already have a row behind it
            existing = await self.store.get_by_user_id(actor.user_id)
            if existing is not None:
                actor = existing

        if isinstance(actor, Participant) and actor.is_locked:
            raise AlreadyLocked()

        referrer = await self._resolve_referrer(actor, submitted_code)

        if isinstance(actor, Unregistered):
            try:
                created = await self.store.insert(
                    NewParticipant(
                        user_id=actor.user_id,
                        email=actor.email,
                        referral_code=await self.generator.generate_unique_code(),
                        referred_by=referrer.id,
                    )
                )
                return created, referrer
            except DuplicateParticipant:
                # Registered concurrently; attribute the row that won
                existing = await self.store.get_by_user_id(actor.user_id)
                if existing is None:
                    raise StoreUnavailable("Registration row vanished after conflict")
            if existing.is_locked:
                raise AlreadyLocked()
            actor = existing

        return await self._attribute(actor, referrer), referrer

    async def _resolve_referrer(
        self,
        actor: Participant | Unregistered,
        submitted_code: str | None,
    ) -> Participant:
        code = (submitted_code or "").strip()
        if not code:
            raise EmptyCode()

        if isinstance(actor, Participant) and code == actor.referral_code:
            raise SelfReferral()

        referrer = await self.store.get_by_code(code)
        if referrer is None:
            raise InvalidCode()

        # Same identity behind a different code string
        if referrer.user_id == actor.user_id:
            raise SelfReferral()

        return referrer

    async def _attribute(self, actor: Participant, referrer: Participant) -> Participant:
        # Re-read right before the write; the conditional update below is
        # what actually guarantees write-once.
        current = await self.store.get_by_id(actor.id)
        if current is None:
            raise StoreUnavailable(f"Participant {actor.id} not found")
        if current.is_locked:
            raise AlreadyLocked()

        if not await self.store.set_referred_by_if_unset(actor.id, referrer.id):
            logger.warning("referral_write_lost_race", participant_id=actor.id)
            raise AlreadyLocked()

        return replace(current, referred_by=referrer.id, locked=True)

    def _notify(self, participant: Participant, referrer: Participant) -> None:
        for listener in self.listeners:
            listener(participant, referrer)

    # ==================== REGISTRATION ====================

    async def register(
        self,
        identity: Identity,
        full_name: str | None = None,
        institution: str | None = None,
        referral_code: str | None = None,
    ) -> RegistrationResult:
        """Create the registration row for ``identity``.

        The own code is minted here. A referral code that fails validation
        does not block registration; the row is created unattributed and
        the failure is reported on the result.

        Raises:
            StoreUnavailable: store could not be reached
            CodeCollision: no unique code could be drawn
        """
        existing = await self.store.get_by_user_id(identity.user_id)
        if existing is not None:
            return RegistrationResult(participant=existing, created=False)

        actor = Unregistered(user_id=identity.user_id, email=identity.email, pending_code=referral_code)
        referrer = None
        rejection: ReferralError | None = None
        if referral_code and referral_code.strip():
            try:
                referrer = await self._resolve_referrer(actor, referral_code)
            except (EmptyCode, InvalidCode, SelfReferral) as e:
                rejection = e
                logger.info(
                    "registration_referral_ignored",
                    user_id=identity.user_id,
                    code=referral_code,
                    reason=e.code.value,
                )

        own_code = await self.generator.generate_unique_code()
        try:
            participant = await self.store.insert(
                NewParticipant(
                    user_id=identity.user_id,
                    email=identity.email,
                    full_name=full_name,
                    institution=institution,
                    referral_code=own_code,
                    referred_by=referrer.id if referrer else None,
                )
            )
        except DuplicateParticipant:
            existing = await self.store.get_by_user_id(identity.user_id)
            if existing is None:
                raise StoreUnavailable("Registration row vanished after conflict")
            return RegistrationResult(participant=existing, created=False)

        if referrer:
            self._notify(participant, referrer)

        return RegistrationResult(
            participant=participant,
            created=True,
            referrer=referrer,
            attribution_error=rejection.code if rejection else None,
            attribution_message=rejection.message if rejection else None,
        )

    # ==================== SUMMARY ====================

    async def get_summary(self, user_id: str) -> ReferralSummary | None:
        """Referral page data for ``user_id``; None when not registered."""
        participant = await self.store.get_by_user_id(user_id)
        if participant is None:
            return None

        referrer_code = None
        if participant.referred_by is not None:
            referrer = await self.store.get_by_id(participant.referred_by)
            referrer_code = referrer.referral_code if referrer else None

        return ReferralSummary(
            participant=participant,
            link=share_link(participant.referral_code),
            referrer_code=referrer_code,
            referred=await self.store.list_referred_by(participant.id),
        )
