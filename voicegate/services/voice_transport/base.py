from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field

# -------------------------------------------------------------- #
# Voice Transport Types
# -------------------------------------------------------------- #


@dataclass(frozen=True)
class SpeakerInfo:
    """Who a burst belongs to, resolved once when the burst opens."""

    user_id: str
    user_name: str
    display_name: str | None = None
    is_bot: bool = False

    @property
    def stored_display_name(self) -> str | None:
        """Display name as persisted: None when it is just the username."""
        if not self.display_name or self.display_name == self.user_name:
            return None
        return self.display_name


@dataclass(frozen=True)
class VoiceChannelInfo:
    """A resolved voice channel and the members currently in it."""

    guild_id: str
    channel_id: str
    channel_name: str
    members: list[SpeakerInfo] = field(default_factory=list)


class BurstAbortedError(Exception):
    """The frame source of a burst failed mid-stream."""


# -------------------------------------------------------------- #
# Speaker Bursts
# -------------------------------------------------------------- #


class SpeakerBurst(ABC):
    """One continuous span of speech from one speaker, as a stream of PCM frames."""

    speaker: SpeakerInfo

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[bytes]:
        """Yield PCM frames until the speaker falls silent."""
        pass

    @abstractmethod
    def ignore(self) -> None:
        """Stop buffering frames; the burst will not be consumed."""
        pass


_END = object()


class QueuedSpeakerBurst(SpeakerBurst):
    """
    Burst fed by a producer through an asyncio.Queue.

    The producer calls push() per frame and end() after the silence gap,
    or abort() when the frame source breaks. Iteration stops at end()
    and raises BurstAbortedError at abort().
    """

    def __init__(self, speaker: SpeakerInfo):
        self.speaker = speaker
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._ignored = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, frame: bytes) -> None:
        if self._closed or self._ignored:
            return
        self._queue.put_nowait(frame)

    def end(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_END)

    def abort(self, reason: str = "frame source failed") -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(BurstAbortedError(reason))

    def ignore(self) -> None:
        self._ignored = True
        # drop anything already buffered
        while not self._queue.empty():
            self._queue.get_nowait()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, BurstAbortedError):
                raise item
            yield item


# -------------------------------------------------------------- #
# Voice Transport
# -------------------------------------------------------------- #


SpeakingStartCallback = Callable[[SpeakerBurst], None]
DisconnectCallback = Callable[[], Awaitable[None]]


class VoiceTransport(ABC):
    """
    An open voice connection for one guild.

    Emits a SpeakerBurst each time someone starts speaking and reports
    unexpected disconnects. destroy() is the only way the owning session
    closes it.
    """

    def __init__(self, guild_id: str, channel_id: str):
        self.guild_id = guild_id
        self.channel_id = channel_id
        self._destroyed = False
        self._speaking_callback: SpeakingStartCallback | None = None
        self._disconnect_callback: DisconnectCallback | None = None

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def start_receiving(self, callback: SpeakingStartCallback) -> None:
        """Register the speaking-start callback and begin receiving audio."""
        self._speaking_callback = callback

    def on_disconnect(self, callback: DisconnectCallback) -> None:
        self._disconnect_callback = callback

    async def notify_disconnected(self) -> None:
        """Called by the gateway when the connection drops without destroy()."""
        if self._destroyed or self._disconnect_callback is None:
            return
        await self._disconnect_callback()

    @abstractmethod
    def list_members(self) -> list[SpeakerInfo]:
        """Members currently in the channel, bots included."""
        pass

    @abstractmethod
    async def wait_until_reconnected(self) -> None:
        """Return once the connection is usable again."""
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def destroy(self) -> None:
        """Stop receiving and disconnect. Open bursts end."""
        pass
