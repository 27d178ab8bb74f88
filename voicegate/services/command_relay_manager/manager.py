from __future__ import annotations

import asyncio
import contextlib
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import insert, select, update

if TYPE_CHECKING:
    from voicegate.context import Context
    from voicegate.server.server import ServerManager

from voicegate.exceptions import VoiceGateError
from voicegate.server.db_models import (
    CommandResult,
    JoinCommandResult,
    LeaveCommandResult,
    StatusCommandResult,
)
from voicegate.server.sql_models import BotConfigModel
from voicegate.services.constants import VoiceCaptureConstants
from voicegate.services.manager import Manager
from voicegate.utils import get_current_timestamp

VOICE_COMMAND_KEY = "voice_command"
VOICE_COMMAND_RESULT_KEY = "voice_command_result"
VOICE_COMMAND_AT_KEY = "voice_command_at"

RELAY_KEYS = (VOICE_COMMAND_KEY, VOICE_COMMAND_RESULT_KEY, VOICE_COMMAND_AT_KEY)

# -------------------------------------------------------------- #
# Relay Store Helpers
# -------------------------------------------------------------- #


async def read_relay_key(server: "ServerManager", key: str) -> str | None:
    rows = await server.sql_client.execute(
        select(BotConfigModel.value).where(BotConfigModel.key == key)
    )
    if not rows or not rows[0]["value"]:
        return None
    return rows[0]["value"]


async def write_relay_key(server: "ServerManager", key: str, value: str) -> None:
    stmt = (
        update(BotConfigModel)
        .where(BotConfigModel.key == key)
        .values(value=value, updated_at=get_current_timestamp())
    )
    await server.sql_client.execute(stmt)


async def write_relay_command(server: "ServerManager", command: str) -> None:
    """Store a command for the bot; the previous result is cleared first."""
    await write_relay_key(server, VOICE_COMMAND_RESULT_KEY, "")
    await write_relay_key(server, VOICE_COMMAND_KEY, command)
    await write_relay_key(server, VOICE_COMMAND_AT_KEY, get_current_timestamp().isoformat())


# -------------------------------------------------------------- #
# Relay Commands
# -------------------------------------------------------------- #


@dataclass(frozen=True)
class RelayCommand:
    action: str  # join, leave or status
    target_id: str | None = None  # channel for join, optional guild for leave


def parse_relay_command(text: str) -> RelayCommand:
    """
    Parse a relayed command string.

    Accepted forms: join:<channelId>, leave, leave:<guildId>, status.

    Raises:
        ValueError: Anything else
    """
    command = (text or "").strip()
    action, _, argument = command.partition(":")
    argument = argument.strip()

    if action == "join":
        if not argument:
            raise ValueError("join requires a channel id")
        return RelayCommand(action="join", target_id=argument)
    if action == "leave":
        return RelayCommand(action="leave", target_id=argument or None)
    if action == "status" and not argument:
        return RelayCommand(action="status")

    raise ValueError(f"Unknown command: {command}")


# -------------------------------------------------------------- #
# SQL Command Relay Manager Service
# -------------------------------------------------------------- #


class SQLCommandRelayManagerService(Manager):
    """The bot_config rows the relay exchanges commands and results through."""

    def __init__(self, context: "Context"):
        super().__init__(context)

    async def on_start(self, services):
        await super().on_start(services)
        await self.ensure_keys()
        await self.services.logging_service.info("SQLCommandRelayManagerService initialized")
        return True

    async def on_close(self):
        await self.services.logging_service.info("SQLCommandRelayManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Key-Value Methods
    # -------------------------------------------------------------- #

    async def ensure_keys(self) -> None:
        """Seed the relay keys with empty values."""
        rows = await self.server.sql_client.execute(
            select(BotConfigModel.key).where(BotConfigModel.key.in_(RELAY_KEYS))
        )
        existing = {row["key"] for row in rows}
        for key in RELAY_KEYS:
            if key not in existing:
                await self.server.sql_client.execute(
                    insert(BotConfigModel).values(key=key, value="", updated_at=None)
                )

    async def get_command(self) -> str | None:
        return await read_relay_key(self.server, VOICE_COMMAND_KEY)

    async def set_command(self, command: str) -> None:
        """Issue a command; any previous result is cleared."""
        await write_relay_command(self.server, command)

    async def clear_command(self) -> None:
        await write_relay_key(self.server, VOICE_COMMAND_KEY, "")

    async def get_result(self) -> dict | None:
        value = await read_relay_key(self.server, VOICE_COMMAND_RESULT_KEY)
        return json.loads(value) if value else None

    async def set_result(self, result: CommandResult) -> None:
        await write_relay_key(self.server, VOICE_COMMAND_RESULT_KEY, result.to_json())


# -------------------------------------------------------------- #
# Command Relay Manager Service
# -------------------------------------------------------------- #


class CommandRelayManagerService(Manager):
    """
    Polls the relay for commands from the control plane and runs them
    against the session orchestrator. Every command gets a JSON result.
    """

    def __init__(
        self,
        context: "Context",
        poll_interval: float = VoiceCaptureConstants.COMMAND_POLL_INTERVAL_SECONDS,
        start_polling: bool = True,
    ):
        super().__init__(context)
        self.poll_interval = poll_interval
        self.start_polling = start_polling
        self._poll_task: asyncio.Task | None = None

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        if self.start_polling:
            self._poll_task = asyncio.create_task(self._poll_loop())
        await self.services.logging_service.info(
            f"CommandRelayManagerService initialized (polling every {self.poll_interval}s)"
            if self.start_polling
            else "CommandRelayManagerService initialized (polling disabled)"
        )
        return True

    async def on_close(self):
        if self._poll_task:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None
        await self.services.logging_service.info("CommandRelayManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Polling
    # -------------------------------------------------------------- #

    async def _poll_loop(self) -> None:
        while not self.context.is_shutting_down():
            try:
                await self.poll_once()
            except Exception as e:
                await self.services.logging_service.error(f"Command relay poll failed: {e}")
            await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> CommandResult | None:
        """Take and execute the pending command, if any."""
        relay_store = self.services.sql_command_relay_service_manager

        command = await relay_store.get_command()
        if not command:
            return None

        await relay_store.clear_command()
        await self.services.logging_service.info(f"Relayed command received: {command}")

        result = await self.execute_command(command)
        await relay_store.set_result(result)
        return result

    async def execute_command(self, command: str) -> CommandResult:
        """Run one command string; never raises."""
        sessions = self.services.voice_session_service_manager

        try:
            relay_command = parse_relay_command(command)

            if relay_command.action == "join":
                active = await sessions.join_channel(relay_command.target_id)
                return JoinCommandResult(
                    session_id=active.session_id, channel_name=active.channel_name
                )

            if relay_command.action == "leave":
                left = await sessions.leave(relay_command.target_id)
                if left is None:
                    return CommandResult(success=False, error="No active recording")
                return LeaveCommandResult(
                    session_id=left.session_id,
                    chunks=left.chunk_count,
                    duration=left.elapsed_seconds,
                )

            return StatusCommandResult(sessions=sessions.status())

        except (VoiceGateError, ValueError) as e:
            return CommandResult(success=False, error=str(e))
        except Exception as e:
            await self.services.logging_service.error(
                f"Relayed command '{command}' failed unexpectedly: {e}"
            )
            return CommandResult(success=False, error=str(e))


# -------------------------------------------------------------- #
# Command Relay Client
# -------------------------------------------------------------- #


class CommandRelayClient:
    """Control-plane side of the relay: write a command, then poll for its result."""

    def __init__(self, server: "ServerManager"):
        self.server = server

    async def issue(self, command: str) -> None:
        await write_relay_command(self.server, command)

    async def wait_for_result(
        self,
        attempts: int = VoiceCaptureConstants.COMMAND_RESULT_POLL_ATTEMPTS,
        interval: float = 1.0,
    ) -> dict | None:
        """
        Poll for the result of the last issued command.

        Returns:
            The decoded result, or None if the bot did not answer in time
        """
        for _ in range(attempts):
            value = await read_relay_key(self.server, VOICE_COMMAND_RESULT_KEY)
            if value:
                return json.loads(value)
            await asyncio.sleep(interval)
        return None
