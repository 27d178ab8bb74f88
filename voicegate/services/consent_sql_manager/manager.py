from typing import TYPE_CHECKING

from sqlalchemy import insert, select, update

if TYPE_CHECKING:
    from voicegate.context import Context

from voicegate.server.sql_models import ConsentType, UserConsentModel, VoiceSessionModel
from voicegate.services.manager import Manager
from voicegate.utils import generate_16_char_uuid, get_current_timestamp

# -------------------------------------------------------------- #
# SQL Consent Manager Service
# -------------------------------------------------------------- #


class SQLConsentManagerService(Manager):
    """Service for persisting consent grants and revocations."""

    def __init__(self, context: "Context"):
        super().__init__(context)

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("SQLConsentManagerService initialized")
        return True

    async def on_close(self):
        await self.services.logging_service.info("SQLConsentManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Consent Methods
    # -------------------------------------------------------------- #

    async def grant_consent(
        self,
        user_id: str,
        user_name: str | None,
        consent_type: ConsentType,
        guild_id: str,
        channel_id: str | None = None,
        session_id: str | None = None,
    ) -> str:
        """
        Record a consent grant.

        One-time grants are tied to a session; permanent grants only to the guild.

        Returns:
            consent_id: The generated grant ID
        """
        if not user_id or not guild_id:
            raise ValueError("user_id and guild_id are required")
        if consent_type == ConsentType.ONE_TIME and not session_id:
            raise ValueError("one_time consent requires a session_id")

        if consent_type == ConsentType.PERMANENT:
            channel_id = None
            session_id = None

        consent_id = generate_16_char_uuid()
        stmt = insert(UserConsentModel).values(
            id=consent_id,
            user_id=user_id,
            user_name=user_name,
            consent_type=consent_type,
            guild_id=guild_id,
            channel_id=channel_id,
            session_id=session_id,
            is_active=True,
            created_at=get_current_timestamp(),
        )
        await self.server.sql_client.execute(stmt)
        await self.services.logging_service.info(
            f"Recorded {consent_type.value} consent {consent_id} for user {user_id} "
            f"in guild {guild_id}"
        )
        return consent_id

    async def has_active_permanent_consent(self, user_id: str, guild_id: str) -> bool:
        stmt = (
            select(UserConsentModel.id)
            .where(
                UserConsentModel.user_id == user_id,
                UserConsentModel.guild_id == guild_id,
                UserConsentModel.consent_type == ConsentType.PERMANENT,
                UserConsentModel.is_active.is_(True),
            )
            .limit(1)
        )
        rows = await self.server.sql_client.execute(stmt)
        return bool(rows)

    async def has_session_consent(
        self, user_id: str, session_id: str, guild_id: str | None = None
    ) -> bool:
        """
        True for an active one-time grant scoped to the session, or an active
        permanent grant for the session's guild.

        Args:
            user_id: Discord user ID
            session_id: Voice session ID
            guild_id: Session guild, looked up from voice_sessions when omitted
        """
        if guild_id is None:
            rows = await self.server.sql_client.execute(
                select(VoiceSessionModel.guild_id).where(VoiceSessionModel.id == session_id)
            )
            guild_id = rows[0]["guild_id"] if rows else None

        if guild_id and await self.has_active_permanent_consent(user_id, guild_id):
            return True

        stmt = (
            select(UserConsentModel.id)
            .where(
                UserConsentModel.user_id == user_id,
                UserConsentModel.session_id == session_id,
                UserConsentModel.consent_type == ConsentType.ONE_TIME,
                UserConsentModel.is_active.is_(True),
            )
            .limit(1)
        )
        rows = await self.server.sql_client.execute(stmt)
        return bool(rows)

    async def revoke_consent(self, user_id: str) -> int:
        """
        Deactivate every active grant of a user.

        Returns:
            Number of grants revoked
        """
        select_stmt = select(UserConsentModel.id).where(
            UserConsentModel.user_id == user_id, UserConsentModel.is_active.is_(True)
        )
        rows = await self.server.sql_client.execute(select_stmt)
        consent_ids = [row["id"] for row in rows]
        if not consent_ids:
            return 0

        stmt = (
            update(UserConsentModel)
            .where(UserConsentModel.id.in_(consent_ids))
            .values(is_active=False, revoked_at=get_current_timestamp())
        )
        await self.server.sql_client.execute(stmt)
        await self.services.logging_service.info(
            f"Revoked {len(consent_ids)} consent grants for user {user_id}"
        )
        return len(consent_ids)

    async def revoke_session_consents(self, session_id: str) -> int:
        """Deactivate the one-time grants of a finished session. Permanent grants stay."""
        select_stmt = select(UserConsentModel.id).where(
            UserConsentModel.session_id == session_id,
            UserConsentModel.consent_type == ConsentType.ONE_TIME,
            UserConsentModel.is_active.is_(True),
        )
        rows = await self.server.sql_client.execute(select_stmt)
        consent_ids = [row["id"] for row in rows]
        if not consent_ids:
            return 0

        stmt = (
            update(UserConsentModel)
            .where(UserConsentModel.id.in_(consent_ids))
            .values(is_active=False, revoked_at=get_current_timestamp())
        )
        await self.server.sql_client.execute(stmt)
        await self.services.logging_service.info(
            f"Revoked {len(consent_ids)} one-time consent grants for session {session_id}"
        )
        return len(consent_ids)

    async def get_user_consents(self, user_id: str, active_only: bool = True) -> list[dict]:
        """List a user's grants, newest first."""
        stmt = select(UserConsentModel).where(UserConsentModel.user_id == user_id)
        if active_only:
            stmt = stmt.where(UserConsentModel.is_active.is_(True))
        stmt = stmt.order_by(UserConsentModel.created_at.desc())
        return await self.server.sql_client.execute(stmt)
