from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from voicegate.context import Context
    from voicegate.services.voice_session_manager.manager import ActiveSession
    from voicegate.services.voice_transport.base import SpeakerInfo

from voicegate.server.sql_models import ConsentType
from voicegate.services.manager import Manager

# -------------------------------------------------------------- #
# Consent Types
# -------------------------------------------------------------- #


class ConsentOutcome(enum.Enum):
    AFFIRM = "affirm"
    AFFIRM_PERMANENT = "affirm_permanent"
    DECLINE = "decline"
    UNRECOGNIZED = "unrecognized"


class ConsentState(enum.Enum):
    """Consent of one user within one active session."""

    UNSET = "unset"
    PENDING = "pending"
    GRANTED_ONE_TIME = "granted_one_time"
    GRANTED_PERMANENT = "granted_permanent"
    DECLINED = "declined"

    @property
    def is_granted(self) -> bool:
        return self in (ConsentState.GRANTED_ONE_TIME, ConsentState.GRANTED_PERMANENT)

    @property
    def is_awaiting(self) -> bool:
        # declined users may still change their mind
        return self in (ConsentState.PENDING, ConsentState.DECLINED)


# -------------------------------------------------------------- #
# Consent Classifiers
# -------------------------------------------------------------- #


class ConsentClassifier(ABC):
    """Turns a free-text DM reply into a ConsentOutcome."""

    @abstractmethod
    def classify(self, text: str) -> ConsentOutcome:
        pass

    @abstractmethod
    def instructions(self) -> str:
        """The reply options, as shown to users."""
        pass


class KeywordConsentClassifier(ConsentClassifier):
    """Exact keyword match, case-insensitive, English and Czech tokens."""

    DEFAULT_AFFIRM = ("yes", "y", "ano")
    DEFAULT_AFFIRM_PERMANENT = ("permanent", "always", "trvale", "trvaly")
    DEFAULT_DECLINE = ("no", "n", "ne")

    def __init__(
        self,
        affirm: tuple[str, ...] = DEFAULT_AFFIRM,
        affirm_permanent: tuple[str, ...] = DEFAULT_AFFIRM_PERMANENT,
        decline: tuple[str, ...] = DEFAULT_DECLINE,
    ):
        self.affirm = {token.lower() for token in affirm}
        self.affirm_permanent = {token.lower() for token in affirm_permanent}
        self.decline = {token.lower() for token in decline}

    def classify(self, text: str) -> ConsentOutcome:
        normalized = (text or "").strip().lower()
        if normalized in self.affirm:
            return ConsentOutcome.AFFIRM
        if normalized in self.affirm_permanent:
            return ConsentOutcome.AFFIRM_PERMANENT
        if normalized in self.decline:
            return ConsentOutcome.DECLINE
        return ConsentOutcome.UNRECOGNIZED

    def instructions(self) -> str:
        return (
            "- **yes** / **ano**: record me in this session only\n"
            "- **permanent** / **trvale**: record me in all future sessions in this server\n"
            "- **no** / **ne**: do not record me"
        )


# -------------------------------------------------------------- #
# Consent Manager Service
# -------------------------------------------------------------- #


class ConsentMessages:
    REQUEST = (
        "Hi! I just joined the voice channel **#{channel_name}** and would like to record it.\n\n"
        "Do you agree to having your voice recorded? Reply with:\n"
        "{instructions}\n\n"
        "_You can revoke your consent at any time with /revoke_consent_"
    )
    NOTHING_TO_ANSWER = "There is no active recording waiting for your consent right now."
    GRANTED_ONE_TIME = "Thank you! I will record your voice in this session."
    GRANTED_PERMANENT = "Thank you! I will record your voice in all future sessions in this server."
    DECLINED = (
        "Understood, I will not record your voice. "
        "If you change your mind, reply **yes** or **permanent**."
    )
    UNRECOGNIZED = "Sorry, I did not understand. Please reply with:\n{instructions}"


class ConsentManagerService(Manager):
    """
    Per-session consent state machine.

    States live on each ActiveSession; durable grants go through the
    SQL consent service. A user only ever reaches the capture pipeline
    from a granted state.
    """

    def __init__(self, context: "Context", classifier: ConsentClassifier | None = None):
        super().__init__(context)
        self.classifier = classifier or KeywordConsentClassifier()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info(
            f"ConsentManagerService initialized with {type(self.classifier).__name__}"
        )
        return True

    async def on_close(self):
        await self.services.logging_service.info("ConsentManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Helpers
    # -------------------------------------------------------------- #

    def _active_sessions(self) -> list[ActiveSession]:
        return list(self.services.voice_session_service_manager.sessions.values())

    def _awaiting_sessions(self, user_id: str) -> list[ActiveSession]:
        return [
            active
            for active in self._active_sessions()
            if active.consent_state(user_id).is_awaiting
        ]

    # -------------------------------------------------------------- #
    # Consent Methods
    # -------------------------------------------------------------- #

    async def solicit(self, active: ActiveSession, member: SpeakerInfo) -> ConsentState:
        """
        Place a channel member into the session's consent state machine.

        A permanent grant for the guild or an existing one-time grant for
        this session skips the request; everyone else goes pending and is
        sent a DM.

        Returns:
            The member's new state
        """
        sql_consent = self.services.sql_consent_service_manager

        if await sql_consent.has_active_permanent_consent(member.user_id, active.guild_id):
            active.set_consent_state(member.user_id, ConsentState.GRANTED_PERMANENT)
            await self.services.logging_service.info(
                f"User {member.user_name} ({member.user_id}) has permanent consent "
                f"in guild {active.guild_id}"
            )
            return ConsentState.GRANTED_PERMANENT

        if await sql_consent.has_session_consent(
            member.user_id, active.session_id, active.guild_id
        ):
            active.set_consent_state(member.user_id, ConsentState.GRANTED_ONE_TIME)
            return ConsentState.GRANTED_ONE_TIME

        active.set_consent_state(member.user_id, ConsentState.PENDING)

        message = ConsentMessages.REQUEST.format(
            channel_name=active.channel_name, instructions=self.classifier.instructions()
        )
        delivered = await self.services.voice_gateway_service_manager.send_dm(
            member.user_id, message
        )
        if delivered:
            await self.services.logging_service.info(
                f"Consent request sent to {member.user_name} ({member.user_id}) "
                f"for session {active.session_id}"
            )
        else:
            await self.services.logging_service.warning(
                f"Could not deliver consent request to {member.user_name} ({member.user_id}); "
                f"they stay pending for session {active.session_id}"
            )
        return ConsentState.PENDING

    def is_awaiting_response(self, user_id: str) -> bool:
        """True when some active session is waiting for this user's answer."""
        return bool(self._awaiting_sessions(user_id))

    async def handle_response(self, user_id: str, user_name: str | None, text: str) -> str:
        """
        Apply a DM reply to every active session awaiting this user.

        Args:
            user_id: Discord user ID of the sender
            user_name: Username, stored on the grant
            text: Raw message content

        Returns:
            The reply to send back to the user
        """
        awaiting = self._awaiting_sessions(user_id)
        if not awaiting:
            return ConsentMessages.NOTHING_TO_ANSWER

        outcome = self.classifier.classify(text)
        sql_consent = self.services.sql_consent_service_manager

        if outcome == ConsentOutcome.AFFIRM:
            for active in awaiting:
                await sql_consent.grant_consent(
                    user_id=user_id,
                    user_name=user_name,
                    consent_type=ConsentType.ONE_TIME,
                    guild_id=active.guild_id,
                    channel_id=active.channel_id,
                    session_id=active.session_id,
                )
                active.set_consent_state(user_id, ConsentState.GRANTED_ONE_TIME)
            await self.services.logging_service.info(f"User {user_name} granted one-time consent")
            return ConsentMessages.GRANTED_ONE_TIME

        if outcome == ConsentOutcome.AFFIRM_PERMANENT:
            granted_guilds = set()
            for active in awaiting:
                if active.guild_id not in granted_guilds:
                    await sql_consent.grant_consent(
                        user_id=user_id,
                        user_name=user_name,
                        consent_type=ConsentType.PERMANENT,
                        guild_id=active.guild_id,
                    )
                    granted_guilds.add(active.guild_id)
                active.set_consent_state(user_id, ConsentState.GRANTED_PERMANENT)
            await self.services.logging_service.info(f"User {user_name} granted permanent consent")
            return ConsentMessages.GRANTED_PERMANENT

        if outcome == ConsentOutcome.DECLINE:
            for active in awaiting:
                active.set_consent_state(user_id, ConsentState.DECLINED)
            await self.services.logging_service.info(f"User {user_name} declined consent")
            return ConsentMessages.DECLINED

        return ConsentMessages.UNRECOGNIZED.format(instructions=self.classifier.instructions())

    async def revoke_consent(self, user_id: str) -> int:
        """
        Revoke every grant of a user, durably and in all active sessions.

        Returns:
            Number of durable grants deactivated
        """
        revoked = await self.services.sql_consent_service_manager.revoke_consent(user_id)

        for active in self._active_sessions():
            if active.consent_state(user_id).is_granted:
                active.set_consent_state(user_id, ConsentState.DECLINED)
                await self.services.logging_service.info(
                    f"User {user_id} no longer recorded in session {active.session_id}"
                )
        return revoked

    async def revoke_session_consents(self, session_id: str) -> int:
        return await self.services.sql_consent_service_manager.revoke_session_consents(session_id)
