# Main File

import asyncio
import contextlib
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

import discord
import dotenv

from voicegate.constructor import ServerManagerType
from voicegate.context import Context
from voicegate.server.constructor import construct_server_manager
from voicegate.services.constructor import construct_services_manager

# Configure Python's built-in logging for server initialization
# (before AsyncLoggingService is available)
logs_dir = Path("logs")
logs_dir.mkdir(parents=True, exist_ok=True)
timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
log_file = logs_dir / f"app_{timestamp}.log"

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_file, mode="a", encoding="utf-8"),
    ],
    force=True,
)

dotenv.load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Discord Bot Setup
# -------------------------------------------------------------- #

# Comma separated guild ids for instant command registration during development.
# Leave unset for global commands (takes up to 1 hour to register)
DEBUG_GUILD_IDS = [
    int(guild_id) for guild_id in os.getenv("DEBUG_GUILD_IDS", "").split(",") if guild_id.strip()
]

intents = discord.Intents.default()
intents.voice_states = True
intents.members = True  # channel member lists for consent solicitation
intents.message_content = True  # consent replies arrive as DMs

bot = discord.Bot(intents=intents, debug_guilds=DEBUG_GUILD_IDS or None)


# -------------------------------------------------------------- #
# Event Handler System
# -------------------------------------------------------------- #
#
# Cogs register message handlers with a filter. Handlers pass through
# by default; returning False or registering with pass_through=False
# stops propagation.
#


class MessageEventHandler:
    """Handler for message events with a filter-based architecture."""

    def __init__(self):
        self.handlers = []

    def register_handler(self, filter_func, handler_func, pass_through: bool = True):
        """Register a message event handler with a filter.

        Args:
            filter_func: Async function that takes a message and returns bool
                        (True if handler should process the message)
            handler_func: Async function that processes the message
            pass_through: If True, continue to next handler after this one.
                         If False, stop propagation after this handler.
        """
        self.handlers.append(
            {"filter": filter_func, "handler": handler_func, "pass_through": pass_through}
        )

    async def process_message(self, message: discord.Message):
        """Process a message through all registered handlers."""
        for handler_info in self.handlers:
            try:
                if await handler_info["filter"](message):
                    result = await handler_info["handler"](message)
                    if not handler_info["pass_through"] or result is False:
                        break
            except Exception as e:
                # Log error but continue to next handler
                logging.error(f"Error in message handler: {e}", exc_info=True)


message_event_handler = MessageEventHandler()


async def load_cogs(context: Context):
    """Load all cog extensions with context.

    Args:
        context: The application context instance
    """
    from cogs.voice import setup as setup_voice

    voice_cog = setup_voice(context)
    message_event_handler.register_handler(
        filter_func=voice_cog.filter_message,
        handler_func=voice_cog.handle_message,
        pass_through=False,
    )
    await context.services_manager.logging_service.info("✓ Loaded cogs.voice")
    await context.services_manager.logging_service.info("✓ Registered consent DM handler")


# -------------------------------------------------------------- #
# Commands
# -------------------------------------------------------------- #


@bot.command(name="shutdown", description="Stop recording everywhere and shut the bot down")
async def shutdown(ctx: discord.ApplicationContext):
    """Stop the bot gracefully, ending every recording session first."""

    # Only the application owner or team members may stop the bot
    info = await bot.application_info()
    if info.team:
        allowed = ctx.author.id in [member.id for member in info.team.members]
    else:
        allowed = ctx.author.id == info.owner.id
    if not allowed:
        await ctx.respond("❌ You do not have permission to use this command.", ephemeral=True)
        return

    await ctx.respond("⏳ Ending recordings and shutting down...")

    try:
        logger = bot.context.services_manager.logging_service
        await logger.info(f"Shutdown initiated by user: {ctx.author.name} ({ctx.author.id})")

        await bot.context.services_manager.shutdown_all(timeout=60.0)
        await ctx.followup.send("✅ All services have been shut down. Bot stopping now...")
    except Exception as e:
        with contextlib.suppress(discord.HTTPException):
            await ctx.followup.send(f"⚠️ Shutdown completed with errors: {str(e)}")

    await bot.close()


# -------------------------------------------------------------- #
# Events
# -------------------------------------------------------------- #


@bot.event
async def on_message(message: discord.Message):
    """Route every message through the registered handlers."""
    await message_event_handler.process_message(message)


@bot.event
async def on_ready():
    """Called when the bot is ready and connected to Discord."""
    logger = bot.context.services_manager.logging_service

    await logger.info(f"Logged in as {bot.user.name} (ID: {bot.user.id})")
    await logger.info(f"Connected to {len(bot.guilds)} guild(s):")
    for guild in bot.guilds:
        await logger.info(f"  ✓ {guild.name} (ID: {guild.id})")

    slash_commands = [
        cmd for cmd in bot.pending_application_commands if isinstance(cmd, discord.SlashCommand)
    ]
    await logger.info("Registered slash commands:")
    for cmd in slash_commands:
        await logger.info(f"  ✓ /{cmd.name} - {cmd.description}")

    if DEBUG_GUILD_IDS:
        await logger.info(f"Commands registered for guilds: {DEBUG_GUILD_IDS}")
    else:
        await logger.info("Commands registered globally, this can take up to 1 hour")


@bot.event
async def on_application_command_error(
    ctx: discord.ApplicationContext, error: discord.DiscordException
):
    """Handle errors in application commands."""
    logger = bot.context.services_manager.logging_service
    await logger.error(f"Error in command {ctx.command.name}: {error}")

    if isinstance(error, discord.CheckFailure):
        await ctx.respond("❌ You don't have permission to use this command.", ephemeral=True)
    else:
        await ctx.respond(f"❌ An error occurred: {str(error)}", ephemeral=True)


# -------------------------------------------------------------- #
# Run Bot
# -------------------------------------------------------------- #


async def main():
    """Main function to build services, load cogs and start the bot."""
    # We need to print to console initially since logging service isn't set up yet
    print("=" * 40)
    print("Syncing services...")

    environment = ServerManagerType[os.getenv("SERVER_ENVIRONMENT", "DEVELOPMENT").upper()]

    context = Context()
    context.set_bot(bot)
    bot.context = context

    servers_manager = construct_server_manager(environment, context)
    context.set_server_manager(servers_manager)
    await servers_manager.connect_all()
    print("[OK] Connected all servers.")

    recording_storage_path = os.getenv("RECORDINGS_DIR", os.path.join("assets", "recordings"))

    # Use the same log file that was created for built-in logging
    services_manager = construct_services_manager(
        environment,
        context=context,
        recording_storage_path=recording_storage_path,
        log_file=log_file.name,
    )
    context.set_services_manager(services_manager)
    await services_manager.initialize_all()

    logger = services_manager.logging_service
    await logger.info("[OK] Initialized all services.")

    # -------------------------------------------------------------- #
    # Start Discord Bot
    # -------------------------------------------------------------- #

    try:
        async with bot:
            await load_cogs(context)
            token = os.getenv("DISCORD_TOKEN") or os.getenv("DISCORD_API_TOKEN")
            if not token:
                await logger.error("Error: DISCORD_TOKEN not found in environment variables")
                return
            await bot.start(token)
    finally:
        if not context.is_shutting_down():
            await services_manager.shutdown_all(timeout=60.0)


if __name__ == "__main__":
    asyncio.run(main())
