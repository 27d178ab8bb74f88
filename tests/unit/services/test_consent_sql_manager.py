"""
Unit tests for SQL Consent Manager Service.
"""

import pytest

from voicegate.server.sql_models import ConsentType
from voicegate.services.consent_sql_manager.manager import SQLConsentManagerService

GUILD_ID = "111222333444555666"
OTHER_GUILD_ID = "222333444555666777"
CHANNEL_ID = "444555666777888999"
USER_ID = "900000000000000001"


@pytest.mark.unit
class TestSQLConsentManagerService:
    """Test consent grants, lookups and revocation."""

    @pytest.fixture
    def consent_sql(self, test_services) -> SQLConsentManagerService:
        return test_services.sql_consent_service_manager

    @pytest.fixture
    async def session_id(self, test_services) -> str:
        return await test_services.sql_voice_service_manager.insert_session(GUILD_ID, CHANNEL_ID)

    async def _grant_one_time(self, consent_sql, session_id: str, user_id: str = USER_ID) -> str:
        return await consent_sql.grant_consent(
            user_id=user_id,
            user_name="user1",
            consent_type=ConsentType.ONE_TIME,
            guild_id=GUILD_ID,
            channel_id=CHANNEL_ID,
            session_id=session_id,
        )

    # ========================================================================
    # Grants
    # ========================================================================

    @pytest.mark.asyncio
    async def test_permanent_grant_is_guild_scoped(self, consent_sql):
        await consent_sql.grant_consent(USER_ID, "user1", ConsentType.PERMANENT, GUILD_ID)

        assert await consent_sql.has_active_permanent_consent(USER_ID, GUILD_ID)
        assert not await consent_sql.has_active_permanent_consent(USER_ID, OTHER_GUILD_ID)

    @pytest.mark.asyncio
    async def test_permanent_grant_drops_session_scope(self, consent_sql, session_id):
        await consent_sql.grant_consent(
            USER_ID, "user1", ConsentType.PERMANENT, GUILD_ID, CHANNEL_ID, session_id
        )

        grants = await consent_sql.get_user_consents(USER_ID)
        assert grants[0]["session_id"] is None
        assert grants[0]["channel_id"] is None

    @pytest.mark.asyncio
    async def test_one_time_grant_requires_session(self, consent_sql):
        with pytest.raises(ValueError):
            await consent_sql.grant_consent(USER_ID, "user1", ConsentType.ONE_TIME, GUILD_ID)

    @pytest.mark.asyncio
    async def test_session_consent_from_one_time_grant(self, consent_sql, session_id):
        assert not await consent_sql.has_session_consent(USER_ID, session_id)

        await self._grant_one_time(consent_sql, session_id)

        assert await consent_sql.has_session_consent(USER_ID, session_id)
        assert not await consent_sql.has_active_permanent_consent(USER_ID, GUILD_ID)

    @pytest.mark.asyncio
    async def test_session_consent_from_permanent_grant(self, consent_sql, session_id):
        await consent_sql.grant_consent(USER_ID, "user1", ConsentType.PERMANENT, GUILD_ID)

        # guild looked up from the session row
        assert await consent_sql.has_session_consent(USER_ID, session_id)

    # ========================================================================
    # Revocation
    # ========================================================================

    @pytest.mark.asyncio
    async def test_revoke_consent_deactivates_everything(self, consent_sql, session_id):
        await self._grant_one_time(consent_sql, session_id)
        await consent_sql.grant_consent(USER_ID, "user1", ConsentType.PERMANENT, GUILD_ID)

        revoked = await consent_sql.revoke_consent(USER_ID)

        assert revoked == 2
        assert not await consent_sql.has_session_consent(USER_ID, session_id)
        assert await consent_sql.get_user_consents(USER_ID) == []

        # rows are kept, only deactivated
        history = await consent_sql.get_user_consents(USER_ID, active_only=False)
        assert len(history) == 2
        assert all(row["revoked_at"] is not None for row in history)

    @pytest.mark.asyncio
    async def test_revoke_consent_without_grants(self, consent_sql):
        assert await consent_sql.revoke_consent(USER_ID) == 0

    @pytest.mark.asyncio
    async def test_revoke_session_consents_keeps_permanent(self, consent_sql, session_id):
        other_user = "900000000000000002"
        await self._grant_one_time(consent_sql, session_id)
        await consent_sql.grant_consent(other_user, "user2", ConsentType.PERMANENT, GUILD_ID)

        revoked = await consent_sql.revoke_session_consents(session_id)

        assert revoked == 1
        assert not await consent_sql.has_session_consent(USER_ID, session_id)
        assert await consent_sql.has_session_consent(other_user, session_id)
