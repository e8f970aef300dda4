import logging
import os

import discord
from discord.ext import commands

from chronicle.context import Context
from chronicle.errors import SessionAlreadyActiveError, VoiceConnectionError
from chronicle.services.pipeline.manager import PipelineReport
from chronicle.utils import TimestampMode, encode_timestamp, validate_session_id

logger = logging.getLogger(__name__)


def format_report(report: PipelineReport, header: str) -> str:
    return f"{header}\n{report.describe()}"


# -------------------------------------------------------------- #
# Cog
# -------------------------------------------------------------- #


class Voice(commands.Cog):
    """Voice recording commands."""

    def __init__(self, bot: discord.Bot, context: Context):
        self.bot = bot
        self.context = context
        self.services = context.services_manager

    @property
    def recorder(self):
        return self.services.discord_recorder_service_manager

    @property
    def pipeline(self):
        return self.services.session_pipeline_service

    # -------------------------------------------------------------- #
    # Utils
    # -------------------------------------------------------------- #

    def find_user_vc(self, ctx: discord.ApplicationContext) -> discord.VoiceChannel | None:
        """Find the voice channel the invoking user is in."""
        voice = getattr(ctx.author, "voice", None)
        return voice.channel if voice else None

    # -------------------------------------------------------------- #
    # Slash Commands
    # -------------------------------------------------------------- #

    @commands.slash_command(name="join", description="Join your voice channel and start recording")
    async def join(self, ctx: discord.ApplicationContext) -> None:
        await ctx.defer()

        channel = self.find_user_vc(ctx)
        if channel is None:
            await ctx.edit(content="❌ You must be in a voice channel to use this command.")
            return

        if self.recorder.get_sessions_in_guild(ctx.guild.id):
            await ctx.edit(content="❌ Already recording in this server. Use /stop first.")
            return

        try:
            session = await self.recorder.start_session(channel)
        except SessionAlreadyActiveError:
            await ctx.edit(content="❌ This channel is already being recorded.")
            return
        except VoiceConnectionError as e:
            await ctx.edit(content=f"❌ Could not start recording: {e}")
            return

        await ctx.edit(
            content=(
                f"🎙️ Recording **{channel.name}**\n"
                f"Started: {encode_timestamp(session.start_time, TimestampMode.FILE)}\n"
                f"Session: `{session.session_id}`\n"
                "Use /stop to finish."
            )
        )

    @commands.slash_command(name="stop", description="Stop recording and process the session")
    async def stop(self, ctx: discord.ApplicationContext) -> None:
        await ctx.defer()

        sessions = self.recorder.get_sessions_in_guild(ctx.guild.id)
        if not sessions:
            await ctx.edit(content="❌ Not recording in this server.")
            return

        session = await self.recorder.stop_session(sessions[0].channel_id)
        if session is None:
            await ctx.edit(content="❌ The session was already stopped.")
            return

        duration = session.get_recording_duration_seconds()
        await ctx.edit(
            content=(
                f"⏹️ Recording stopped after {int(duration // 60)}m {int(duration % 60)}s "
                f"with {len(session.clips)} clip(s). Processing..."
            )
        )

        report = await self.pipeline.process_session(session)
        await ctx.followup.send(
            format_report(report, f"📁 Session `{session.session_id}` processed:")
        )

    @commands.slash_command(name="reprocess", description="Re-run mix and transcript for a session")
    @discord.option("session_id", description="Session folder name, e.g. 2025-07-30_15-45-30-123")
    async def reprocess(self, ctx: discord.ApplicationContext, session_id: str) -> None:
        await ctx.defer()

        valid_id = validate_session_id(session_id)
        if valid_id is None:
            await ctx.edit(content="❌ Invalid session id.")
            return

        folder_path = os.path.join(self.recorder.recordings_path, valid_id)
        report = await self.pipeline.run(folder_path)
        await ctx.edit(content=format_report(report, f"📁 Session `{valid_id}` reprocessed:"))


def setup(context: Context) -> Voice:
    voice = Voice(context.bot, context)
    context.bot.add_cog(voice)
    return voice
