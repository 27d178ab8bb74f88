"""
Unit tests for speaker bursts and the py-cord burst sink.

The sink is driven directly, the way py-cord's decoder thread would call
write(); no voice connection is involved.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from voicegate.services.voice_transport.base import (
    BurstAbortedError,
    QueuedSpeakerBurst,
    SpeakerInfo,
)
from voicegate.services.voice_transport.manager import (
    BurstSink,
    PycordVoiceGatewayService,
    PycordVoiceTransport,
)

FRAME = b"\x01\x00" * 1920  # one 20 ms stereo frame
GAP_PADDING = b"\x00" * len(FRAME) * 250  # 5 s of silence


async def collect(burst) -> list[bytes]:
    return [frame async for frame in burst]


# ============================================================================
# Speaker Info
# ============================================================================


@pytest.mark.unit
class TestSpeakerInfo:
    @pytest.mark.parametrize(
        "display_name,expected",
        [(None, None), ("", None), ("alice", None), ("Alice B.", "Alice B.")],
    )
    def test_stored_display_name(self, display_name, expected):
        speaker = SpeakerInfo(user_id="1", user_name="alice", display_name=display_name)

        assert speaker.stored_display_name == expected


# ============================================================================
# Queued Speaker Burst
# ============================================================================


@pytest.mark.unit
class TestQueuedSpeakerBurst:
    @pytest.fixture
    def burst(self) -> QueuedSpeakerBurst:
        return QueuedSpeakerBurst(SpeakerInfo(user_id="1", user_name="alice"))

    @pytest.mark.asyncio
    async def test_yields_until_end(self, burst):
        burst.push(b"a")
        burst.push(b"b")
        burst.end()
        burst.push(b"late")

        assert await collect(burst) == [b"a", b"b"]
        assert burst.closed

    @pytest.mark.asyncio
    async def test_abort_raises_after_buffered_frames(self, burst):
        burst.push(b"a")
        burst.abort("decoder crashed")
        received = []

        with pytest.raises(BurstAbortedError, match="decoder crashed"):
            async for frame in burst:
                received.append(frame)

        assert received == [b"a"]

    @pytest.mark.asyncio
    async def test_end_after_abort_is_noop(self, burst):
        burst.abort()
        burst.end()

        with pytest.raises(BurstAbortedError):
            await collect(burst)

    @pytest.mark.asyncio
    async def test_ignore_drops_frames(self, burst):
        burst.push(b"a")
        burst.ignore()
        burst.push(b"b")
        burst.end()

        assert await collect(burst) == []


# ============================================================================
# Burst Sink
# ============================================================================


@pytest.mark.unit
class TestBurstSink:
    @pytest.fixture
    def bursts(self) -> list[QueuedSpeakerBurst]:
        return []

    @pytest.fixture
    async def sink(self, bursts) -> BurstSink:
        return BurstSink(
            loop=asyncio.get_running_loop(),
            resolve_speaker=lambda user_id: SpeakerInfo(str(user_id), f"user{user_id}"),
            on_burst=bursts.append,
            silence_gap_ms=30,
        )

    @pytest.mark.asyncio
    async def test_silence_gap_splits_bursts(self, sink, bursts):
        for _ in range(3):
            sink.write(FRAME, 1)
        await asyncio.sleep(0.1)
        sink.write(FRAME, 1)
        await asyncio.sleep(0.1)

        assert len(bursts) == 2
        assert [len(await collect(burst)) for burst in bursts] == [3, 1]
        assert bursts[0].speaker.user_id == "1"

    @pytest.mark.asyncio
    async def test_speakers_get_separate_bursts(self, sink, bursts):
        sink.write(FRAME, 1)
        sink.write(FRAME, 2)
        sink.write(FRAME, 1)
        await asyncio.sleep(0.1)

        by_user = {burst.speaker.user_id: burst for burst in bursts}
        assert set(by_user) == {"1", "2"}
        assert len(await collect(by_user["1"])) == 2
        assert len(await collect(by_user["2"])) == 1

    @pytest.mark.asyncio
    async def test_gap_padding_trimmed_from_burst_start(self, sink, bursts):
        sink.write(FRAME, 1)
        await asyncio.sleep(0.1)
        # first packet after a pause carries zeros for the whole pause
        sink.write(GAP_PADDING + FRAME, 1)
        sink.write(FRAME, 1)
        await asyncio.sleep(0.1)

        assert len(bursts) == 2
        assert await collect(bursts[1]) == [FRAME, FRAME]

    @pytest.mark.asyncio
    async def test_padding_inside_burst_kept(self, sink, bursts):
        padded = b"\x00" * len(FRAME) + FRAME
        sink.write(FRAME, 1)
        sink.write(padded, 1)
        await asyncio.sleep(0.1)

        assert await collect(bursts[0]) == [FRAME, padded]

    @pytest.mark.asyncio
    async def test_accepts_voice_data_and_member(self, sink, bursts):
        member = SimpleNamespace(id=7, name="alice")
        data = SimpleNamespace(packet=None, source=member, pcm=FRAME)

        sink.write(data, data.source)
        sink.write(data, None)
        await asyncio.sleep(0.1)

        (burst,) = bursts
        assert burst.speaker.user_id == "7"
        assert await collect(burst) == [FRAME]

    @pytest.mark.asyncio
    async def test_abort_speaker(self, sink, bursts):
        sink.write(FRAME, 1)
        await asyncio.sleep(0)

        sink.abort_speaker(1)

        with pytest.raises(BurstAbortedError):
            await collect(bursts[0])

    @pytest.mark.asyncio
    async def test_cleanup_ends_open_bursts(self, sink, bursts):
        sink.write(FRAME, 1)
        await asyncio.sleep(0)

        sink.cleanup()
        await asyncio.sleep(0)
        sink.write(FRAME, 1)
        await asyncio.sleep(0)

        assert len(bursts) == 1
        assert await collect(bursts[0]) == [FRAME]


# ============================================================================
# Py-cord Voice Transport
# ============================================================================


def make_member(member_id: int, name: str, display_name: str | None = None, bot: bool = False):
    member = MagicMock()
    member.id = member_id
    member.name = name
    member.display_name = display_name or name
    member.bot = bot
    return member


@pytest.mark.unit
class TestPycordVoiceTransport:
    @pytest.fixture
    def voice_client(self):
        client = MagicMock()
        client.guild.id = 111
        client.channel.id = 444
        client.channel.members = [
            make_member(1, "alice", "Alice B."),
            make_member(2, "voicegate", bot=True),
        ]
        client.recording = False
        client.disconnect = AsyncMock()
        return client

    def test_list_members(self, voice_client):
        transport = PycordVoiceTransport(voice_client)

        members = transport.list_members()

        assert transport.guild_id == "111"
        assert transport.channel_id == "444"
        assert [(m.user_id, m.stored_display_name, m.is_bot) for m in members] == [
            ("1", "Alice B.", False),
            ("2", None, True),
        ]

    @pytest.mark.asyncio
    async def test_destroy_is_idempotent(self, voice_client):
        transport = PycordVoiceTransport(voice_client)
        transport.start_receiving(lambda burst: None)
        voice_client.recording = True

        await transport.destroy()
        await transport.destroy()

        voice_client.stop_recording.assert_called_once()
        voice_client.disconnect.assert_awaited_once_with(force=True)
        assert transport.destroyed

    @pytest.mark.asyncio
    async def test_destroy_releases_gateway_entry(self, voice_client, test_context):
        gateway = PycordVoiceGatewayService(test_context)
        transport = PycordVoiceTransport(voice_client, gateway=gateway)
        gateway._transports[transport.guild_id] = transport

        await transport.destroy()

        assert transport.guild_id not in gateway._transports

    @pytest.mark.asyncio
    async def test_destroy_keeps_newer_gateway_entry(self, voice_client, test_context):
        gateway = PycordVoiceGatewayService(test_context)
        stale = PycordVoiceTransport(voice_client, gateway=gateway)
        current = PycordVoiceTransport(voice_client, gateway=gateway)
        gateway._transports[current.guild_id] = current

        await stale.destroy()

        assert gateway._transports[current.guild_id] is current

    @pytest.mark.asyncio
    async def test_disconnect_callback_skipped_after_destroy(self, voice_client):
        transport = PycordVoiceTransport(voice_client)
        callback = AsyncMock()
        transport.on_disconnect(callback)

        await transport.notify_disconnected()
        await transport.destroy()
        await transport.notify_disconnected()

        callback.assert_awaited_once()
