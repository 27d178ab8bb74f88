import logging
import os
import re
import uuid
from datetime import datetime
from zoneinfo import ZoneInfo

import discord
from dotenv import load_dotenv

load_dotenv(dotenv_path=".env.local")

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Constants
# -------------------------------------------------------------- #


VOICE_UUID_LENGTH = 16  # fixed length for session, chunk and consent ids

# wall-clock zone for stored timestamps (stored naive)
VOICE_TIMEZONE = os.getenv("VOICE_TIMEZONE", "Europe/Prague")

SPEAKER_NAME_MAX_LENGTH = 50
_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


# -------------------------------------------------------------- #
# Generators
# -------------------------------------------------------------- #


def generate_variable_char_uuid(length: int) -> str:
    """Generate a unique identifier of specified length."""
    if length <= 0 or length > 32:
        raise ValueError("Length must be between 1 and 32")
    return uuid.uuid4().hex[:length]


def generate_16_char_uuid() -> str:
    """Generate a unique 16-character identifier."""
    return generate_variable_char_uuid(VOICE_UUID_LENGTH)


# -------------------------------------------------------------- #
# Util Functions
# -------------------------------------------------------------- #


def get_current_timestamp() -> datetime:
    """Get the current wall-clock time in the configured zone, without tzinfo."""
    return datetime.now(ZoneInfo(VOICE_TIMEZONE)).replace(tzinfo=None)


def sanitize_speaker_name(name: str) -> str:
    """Make a display name safe for use inside a filename."""
    return _UNSAFE_NAME_CHARS.sub("_", name)[:SPEAKER_NAME_MAX_LENGTH]


def format_chunk_timestamp(timestamp: datetime) -> str:
    """Format a timestamp as YYYY-MM-DD_HH-MM-SS-mmm for chunk filenames."""
    return timestamp.strftime("%Y-%m-%d_%H-%M-%S-") + f"{timestamp.microsecond // 1000:03d}"


def elapsed_seconds(started_at: datetime, now: datetime | None = None) -> int:
    """Whole seconds between started_at and now, rounded."""
    now = now or get_current_timestamp()
    return max(0, round((now - started_at).total_seconds()))


# -------------------------------------------------------------- #
# Bot Utilities
# -------------------------------------------------------------- #


class BotUtils:
    """Utility class for Discord bot operations."""

    @staticmethod
    async def send_dm(
        bot_instance: discord.Bot,
        user_id: int | str,
        message: str,
    ) -> bool:
        """
        Send a direct message to a Discord user.

        Args:
            bot_instance: Discord bot instance
            user_id: Discord user ID (int or string)
            message: Message content to send

        Returns:
            True if message was sent successfully, False otherwise
        """
        try:
            user = await bot_instance.fetch_user(int(user_id))
            if not user:
                logger.warning(f"Could not fetch user {user_id}")
                return False

            await user.send(message)

            logger.info(f"Successfully sent DM to user {user_id}")
            return True

        except discord.Forbidden:
            logger.warning(f"Could not send DM to user {user_id} - DMs disabled or bot blocked")
            return False
        except discord.HTTPException as e:
            logger.error(f"HTTP error sending DM to user {user_id}: {e}")
            return False
