"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides
fixtures and configuration that can be used across all tests.
"""

import asyncio
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from voicegate.exceptions import ChannelNotFoundError
from voicegate.services.manager import BaseVoiceGatewayServiceManager
from voicegate.services.pcm import SinePCM, calculate_pcm_duration_ms
from voicegate.services.voice_transport.base import (
    QueuedSpeakerBurst,
    SpeakerInfo,
    VoiceChannelInfo,
    VoiceTransport,
)

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)

TEST_GUILD_ID = "111222333444555666"
TEST_CHANNEL_ID = "444555666777888999"
TEST_CHANNEL_NAME = "General Voice"
BOT_USER_ID = "123456789"


def pytest_configure(config: pytest.Config) -> None:
    """Register markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Apply a timeout to all tests except those marked as slow."""
    for item in items:
        if "slow" not in item.keywords:
            item.add_marker(pytest.mark.timeout(30))


# ============================================================================
# Fake Voice Gateway
# ============================================================================


class FakeVoiceTransport(VoiceTransport):
    """In-process transport; tests drive speaking bursts by hand."""

    def __init__(self, guild_id: str, channel_id: str, members: list[SpeakerInfo]):
        super().__init__(guild_id=guild_id, channel_id=channel_id)
        self.members = list(members)
        self.connected = True
        self.open_bursts: dict[str, QueuedSpeakerBurst] = {}
        self._reconnected = asyncio.Event()

    def list_members(self) -> list[SpeakerInfo]:
        return list(self.members)

    def is_connected(self) -> bool:
        return self.connected

    async def wait_until_reconnected(self) -> None:
        await self._reconnected.wait()

    def reconnect(self) -> None:
        self.connected = True
        self._reconnected.set()

    async def destroy(self) -> None:
        self._destroyed = True
        self.connected = False
        for burst in self.open_bursts.values():
            burst.end()
        self.open_bursts.clear()

    # -------------------------------------------------------------- #
    # Test Drivers
    # -------------------------------------------------------------- #

    def start_burst(self, speaker: SpeakerInfo) -> QueuedSpeakerBurst:
        burst = QueuedSpeakerBurst(speaker)
        self.open_bursts[speaker.user_id] = burst
        self._speaking_callback(burst)
        return burst

    async def speak(self, speaker: SpeakerInfo, ms: int, frame_ms: int = 20) -> QueuedSpeakerBurst:
        """Play `ms` of tone as one complete burst."""
        burst = self.start_burst(speaker)
        for frame in SinePCM().frames(ms, frame_ms=frame_ms):
            burst.push(frame)
            await asyncio.sleep(0)
        burst.end()
        self.open_bursts.pop(speaker.user_id, None)
        return burst

    async def drop(self) -> None:
        self.connected = False
        self._reconnected.clear()
        await self.notify_disconnected()


class FakeVoiceGateway(BaseVoiceGatewayServiceManager):
    """Gateway over an in-memory channel table."""

    def __init__(self, context):
        super().__init__(context)
        self.channels: dict[str, VoiceChannelInfo] = {}
        self.transports: dict[str, FakeVoiceTransport] = {}
        self.sent_dms: list[tuple[str, str]] = []
        self.undeliverable: set[str] = set()
        self.teardowns: list[str] = []
        self.connect_delay: float = 0.0
        self.connect_error: Exception | None = None

    def add_channel(
        self,
        members: list[SpeakerInfo],
        guild_id: str = TEST_GUILD_ID,
        channel_id: str = TEST_CHANNEL_ID,
        channel_name: str = TEST_CHANNEL_NAME,
    ) -> VoiceChannelInfo:
        channel = VoiceChannelInfo(guild_id, channel_id, channel_name, list(members))
        self.channels[channel_id] = channel
        return channel

    async def resolve_channel(self, channel_id: str) -> VoiceChannelInfo:
        if channel_id not in self.channels:
            raise ChannelNotFoundError(channel_id)
        return self.channels[channel_id]

    async def connect(self, channel_id: str) -> FakeVoiceTransport:
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error:
            raise self.connect_error

        channel = self.channels[channel_id]
        transport = FakeVoiceTransport(channel.guild_id, channel.channel_id, channel.members)
        self.transports[channel.guild_id] = transport
        return transport

    async def teardown(self, guild_id: str) -> None:
        self.teardowns.append(guild_id)

    async def send_dm(self, user_id: str, message: str) -> bool:
        if user_id in self.undeliverable:
            return False
        self.sent_dms.append((user_id, message))
        return True

    def dms_to(self, user_id: str) -> list[str]:
        return [message for recipient, message in self.sent_dms if recipient == user_id]


# ============================================================================
# Data Fixtures
# ============================================================================


@pytest.fixture
def make_speaker() -> Callable[..., SpeakerInfo]:
    """Factory for speakers with distinct ids."""

    def _make(n: int, display_name: str | None = None, is_bot: bool = False) -> SpeakerInfo:
        return SpeakerInfo(
            user_id=f"{900000000000000000 + n}",
            user_name=f"user{n}",
            display_name=display_name,
            is_bot=is_bot,
        )

    return _make


@pytest.fixture
def bot_speaker() -> SpeakerInfo:
    return SpeakerInfo(user_id=BOT_USER_ID, user_name="voicegate", is_bot=True)


@pytest.fixture
def shared_test_log_file(tmp_path_factory) -> str:
    """
    Create a single shared log file for all tests in the session.

    Returns:
        str: Path to the shared log file
    """
    from datetime import datetime

    logs_dir = tmp_path_factory.mktemp("logs")
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return str(logs_dir / f"test_run_{timestamp}.log")


# ============================================================================
# Mock Discord Fixtures
# ============================================================================


@pytest.fixture
def mock_discord_bot() -> MagicMock:
    """Create a mock Discord bot instance."""
    bot = MagicMock()
    bot.user = MagicMock()
    bot.user.name = "TestBot"
    bot.user.id = int(BOT_USER_ID)
    bot.guilds = []
    return bot


@pytest.fixture
def mock_discord_context() -> MagicMock:
    """Create a mock Discord application context (py-cord)."""
    ctx = MagicMock()
    ctx.author = MagicMock()
    ctx.author.name = "TestUser"
    ctx.author.id = 987654321
    ctx.author.voice = None
    ctx.guild = MagicMock()
    ctx.guild.id = int(TEST_GUILD_ID)
    ctx.guild.name = "Test Guild"
    ctx.defer = AsyncMock()
    ctx.respond = AsyncMock()
    ctx.edit = AsyncMock()
    ctx.followup = MagicMock()
    ctx.followup.send = AsyncMock()
    return ctx


# ============================================================================
# Testing Environment Fixtures (in-memory database)
# ============================================================================


@pytest.fixture
async def test_context():
    """
    Create a test context instance.

    Yields:
        Context: Test context instance
    """
    from voicegate.context import Context

    context = Context()
    yield context


@pytest.fixture
async def test_server_manager(test_context):
    """
    Create and connect a test server manager backed by in-memory SQLite.

    Yields:
        ServerManager: Connected test server manager instance
    """
    from voicegate.constructor import ServerManagerType
    from voicegate.server.constructor import construct_server_manager

    server = construct_server_manager(ServerManagerType.TESTING, test_context)
    test_context.set_server_manager(server)
    await server.connect_all()

    yield server

    await server.disconnect_all()


@pytest.fixture
async def test_sql_client(test_server_manager):
    """
    Get the in-memory SQL client from test server manager.

    Yields:
        InMemoryMySQLServer: In-memory SQL database client
    """
    yield test_server_manager.sql_client


@pytest.fixture
def fake_gateway(test_server_manager, test_context) -> FakeVoiceGateway:
    return FakeVoiceGateway(test_context)


def fake_ffmpeg(services) -> None:
    """
    Replace the transcoder with a stand-in: the "final" file records the raw
    byte count, and the probe turns it back into a PCM duration.
    """

    async def transcode(input_path: str, output_path: str) -> tuple[bool, str, str]:
        with open(input_path, "rb") as raw:
            raw_size = len(raw.read())
        with open(output_path, "w") as final:
            final.write(str(raw_size))
        return True, "", ""

    async def probe(path: str) -> int | None:
        with open(path) as final:
            return calculate_pcm_duration_ms(int(final.read()))

    services.ffmpeg_service_manager.transcode_chunk = AsyncMock(side_effect=transcode)
    services.ffmpeg_service_manager.probe_duration_ms = AsyncMock(side_effect=probe)


@pytest.fixture
def recordings_dir(tmp_path) -> str:
    return str(tmp_path / "recordings")


@pytest.fixture
async def test_services(
    test_context, test_server_manager, fake_gateway, recordings_dir, shared_test_log_file
):
    """
    Fully initialized ServicesManager for the TESTING environment.

    Uses the fake voice gateway, a stand-in transcoder and no relay polling.

    Yields:
        ServicesManager: Initialized services manager instance
    """
    from voicegate.constructor import ServerManagerType
    from voicegate.services.constructor import construct_services_manager

    services = construct_services_manager(
        ServerManagerType.TESTING,
        context=test_context,
        recording_storage_path=recordings_dir,
        log_file=shared_test_log_file,
        use_timestamp_logs=False,
        voice_gateway=fake_gateway,
        command_relay_polling=False,
    )
    test_context.set_services_manager(services)
    await services.initialize_all()
    fake_ffmpeg(services)

    yield services

    await services.shutdown_all(timeout=10.0)
