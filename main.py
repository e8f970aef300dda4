# Main File

import asyncio
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

import discord
import dotenv

from chronicle.constructor import ServerManagerType
from chronicle.context import Context
from chronicle.server.constructor import construct_server_manager
from chronicle.services.constructor import construct_services_manager

# Python's built-in logging covers startup, server connections and py-cord
# itself, before AsyncLoggingService is available
logs_dir = Path(os.getenv("LOG_DIR", "logs"))
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
dotenv.load_dotenv()

# -------------------------------------------------------------- #
# Discord Bot Setup
# -------------------------------------------------------------- #

# Comma separated guild ids for instant command registration during development.
# Leave empty for global commands (takes up to 1 hour to register).
DEBUG_GUILD_IDS = [
    int(guild_id) for guild_id in os.getenv("DEBUG_GUILD_IDS", "").split(",") if guild_id.strip()
]

intents = discord.Intents.default()
intents.voice_states = True
intents.members = True  # display names for clip filenames

bot = discord.Bot(intents=intents, debug_guilds=DEBUG_GUILD_IDS or None)


async def load_cogs(context: Context) -> None:
    from cogs.voice import setup as setup_voice

    setup_voice(context)
    await context.services_manager.logging_service.info("✓ Loaded cogs.voice")


# -------------------------------------------------------------- #
# Commands
# -------------------------------------------------------------- #


@bot.command(name="shutdown", description="Stop recording everywhere and shut the bot down")
async def shutdown(ctx: discord.ApplicationContext):
    """Stop the bot gracefully, letting post-processing finish."""
    if not await bot.is_owner(ctx.author):
        await ctx.respond("❌ You do not have permission to use this command.", ephemeral=True)
        return

    await ctx.respond("Shutting down... in-flight sessions will be processed first.")

    logger = bot.context.services_manager.logging_service
    await logger.info(f"Shutdown initiated by user: {ctx.author.name} ({ctx.author.id})")
    await bot.context.services_manager.shutdown_all(timeout=120.0)
    await bot.close()


# -------------------------------------------------------------- #
# Events
# -------------------------------------------------------------- #


@bot.event
async def on_ready():
    logger = bot.context.services_manager.logging_service

    await logger.info(f"Logged in as {bot.user.name} (ID: {bot.user.id})")
    await logger.info(f"Connected to {len(bot.guilds)} guild(s)")
    for guild in bot.guilds:
        await logger.info(f"  ✓ {guild.name} (ID: {guild.id})")

    if DEBUG_GUILD_IDS:
        await logger.info(f"Commands registered for guilds: {DEBUG_GUILD_IDS}")
    else:
        await logger.info("Commands registered globally; they can take up to an hour to appear")


@bot.event
async def on_application_command_error(
    ctx: discord.ApplicationContext, error: discord.DiscordException
):
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
    """Connect servers, start services, then run the bot."""
    context = Context()

    servers_manager = construct_server_manager(ServerManagerType.DEVELOPMENT, context)
    context.set_server_manager(servers_manager)
    await servers_manager.connect_all()
    logging.info("[OK] Connected all servers.")

    services_manager = construct_services_manager(
        ServerManagerType.DEVELOPMENT,
        context=context,
        default_logging_path=str(logs_dir),
        log_file=log_file.name,  # share the startup log file
    )
    context.set_services_manager(services_manager)
    await services_manager.initialize_all()

    logger = services_manager.logging_service
    await logger.info("[OK] Initialized all services.")

    context.set_bot(bot)
    bot.context = context

    token = os.getenv("DISCORD_API_TOKEN")
    if not token:
        await logger.error("Error: DISCORD_API_TOKEN not found in environment variables")
        await services_manager.shutdown_all(timeout=10.0)
        return

    async with bot:
        await load_cogs(context)
        await bot.start(token)


if __name__ == "__main__":
    asyncio.run(main())
