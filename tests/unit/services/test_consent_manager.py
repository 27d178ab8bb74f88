"""
Unit tests for the consent state machine and the keyword classifier.
"""

import pytest

from voicegate.server.sql_models import ConsentType
from voicegate.services.consent_manager.manager import (
    ConsentManagerService,
    ConsentMessages,
    ConsentOutcome,
    ConsentState,
    KeywordConsentClassifier,
)

GUILD_ID = "111222333444555666"
CHANNEL_ID = "444555666777888999"

# ============================================================================
# Classifier
# ============================================================================


@pytest.mark.unit
class TestKeywordConsentClassifier:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("yes", ConsentOutcome.AFFIRM),
            ("  ANO ", ConsentOutcome.AFFIRM),
            ("permanent", ConsentOutcome.AFFIRM_PERMANENT),
            ("Trvale", ConsentOutcome.AFFIRM_PERMANENT),
            ("trvaly", ConsentOutcome.AFFIRM_PERMANENT),
            ("no", ConsentOutcome.DECLINE),
            ("NE", ConsentOutcome.DECLINE),
            ("yes please", ConsentOutcome.UNRECOGNIZED),
            ("", ConsentOutcome.UNRECOGNIZED),
        ],
    )
    def test_classify(self, text, expected):
        assert KeywordConsentClassifier().classify(text) == expected

    def test_custom_tokens(self):
        classifier = KeywordConsentClassifier(affirm=("sure",), decline=("nope",))

        assert classifier.classify("Sure") == ConsentOutcome.AFFIRM
        assert classifier.classify("yes") == ConsentOutcome.UNRECOGNIZED
        assert classifier.classify("nope") == ConsentOutcome.DECLINE


# ============================================================================
# Consent Manager Service
# ============================================================================


@pytest.mark.unit
class TestConsentManagerService:
    """Consent flow through a real join with the fake gateway."""

    @pytest.fixture
    def consent(self, test_services) -> ConsentManagerService:
        return test_services.consent_service_manager

    @pytest.fixture
    async def active(self, test_services, fake_gateway, make_speaker, bot_speaker):
        fake_gateway.add_channel([make_speaker(1), make_speaker(2), bot_speaker])
        return await test_services.voice_session_service_manager.join(
            GUILD_ID, CHANNEL_ID
        )

    @pytest.mark.asyncio
    async def test_join_solicits_every_human(self, active, fake_gateway, make_speaker, bot_speaker):
        first, second = make_speaker(1), make_speaker(2)

        assert active.pending_consent_user_ids == {first.user_id, second.user_id}
        assert active.consented_user_ids == frozenset()
        assert len(fake_gateway.dms_to(first.user_id)) == 1
        assert "permanent" in fake_gateway.dms_to(first.user_id)[0]
        assert fake_gateway.dms_to(bot_speaker.user_id) == []

    @pytest.mark.asyncio
    async def test_affirm_grants_one_time(self, consent, active, test_services, make_speaker):
        speaker = make_speaker(1)

        reply = await consent.handle_response(speaker.user_id, speaker.user_name, " Ano ")

        assert reply == ConsentMessages.GRANTED_ONE_TIME
        assert active.consent_state(speaker.user_id) == ConsentState.GRANTED_ONE_TIME
        assert speaker.user_id in active.consented_user_ids

        grants = await test_services.sql_consent_service_manager.get_user_consents(speaker.user_id)
        assert len(grants) == 1
        assert grants[0]["consent_type"] == ConsentType.ONE_TIME
        assert grants[0]["session_id"] == active.session_id
        assert grants[0]["channel_id"] == CHANNEL_ID

    @pytest.mark.asyncio
    async def test_affirm_permanent(self, consent, active, test_services, make_speaker):
        speaker = make_speaker(2)

        reply = await consent.handle_response(speaker.user_id, speaker.user_name, "trvale")

        assert reply == ConsentMessages.GRANTED_PERMANENT
        assert active.consent_state(speaker.user_id) == ConsentState.GRANTED_PERMANENT
        assert await test_services.sql_consent_service_manager.has_active_permanent_consent(
            speaker.user_id, GUILD_ID
        )

    @pytest.mark.asyncio
    async def test_decline_then_change_mind(self, consent, active, test_services, make_speaker):
        speaker = make_speaker(1)

        reply = await consent.handle_response(speaker.user_id, speaker.user_name, "no")
        assert reply == ConsentMessages.DECLINED
        assert active.consent_state(speaker.user_id) == ConsentState.DECLINED
        assert not active.is_consented(speaker.user_id)
        assert await test_services.sql_consent_service_manager.get_user_consents(
            speaker.user_id
        ) == []

        # declined users may still say yes later
        assert consent.is_awaiting_response(speaker.user_id)
        await consent.handle_response(speaker.user_id, speaker.user_name, "yes")
        assert active.is_consented(speaker.user_id)
        assert not consent.is_awaiting_response(speaker.user_id)

    @pytest.mark.asyncio
    async def test_unrecognized_keeps_state(self, consent, active, make_speaker):
        speaker = make_speaker(1)

        reply = await consent.handle_response(speaker.user_id, speaker.user_name, "maybe?")

        assert "yes" in reply and "permanent" in reply
        assert active.consent_state(speaker.user_id) == ConsentState.PENDING

    @pytest.mark.asyncio
    async def test_response_without_session(self, consent, test_services, make_speaker):
        speaker = make_speaker(7)

        reply = await consent.handle_response(speaker.user_id, speaker.user_name, "yes")

        assert reply == ConsentMessages.NOTHING_TO_ANSWER
        assert not consent.is_awaiting_response(speaker.user_id)

    @pytest.mark.asyncio
    async def test_revoke_moves_granted_to_declined(self, consent, active, make_speaker):
        speaker = make_speaker(1)
        await consent.handle_response(speaker.user_id, speaker.user_name, "yes")

        revoked = await consent.revoke_consent(speaker.user_id)

        assert revoked == 1
        assert active.consent_state(speaker.user_id) == ConsentState.DECLINED
        assert not active.is_consented(speaker.user_id)

    @pytest.mark.asyncio
    async def test_undeliverable_request_stays_pending(
        self, test_services, fake_gateway, make_speaker
    ):
        speaker = make_speaker(3)
        fake_gateway.undeliverable.add(speaker.user_id)
        fake_gateway.add_channel([speaker])

        active = await test_services.voice_session_service_manager.join(
            GUILD_ID, CHANNEL_ID
        )

        assert active.consent_state(speaker.user_id) == ConsentState.PENDING
        assert fake_gateway.sent_dms == []
