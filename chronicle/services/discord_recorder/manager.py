import asyncio
import os
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

import discord

from chronicle.constants import FilesystemConstants, RecorderConstants
from chronicle.errors import SessionAlreadyActiveError, VoiceConnectionError
from chronicle.services.discord_recorder.clip_capture import ClipCaptureUnit, ClipRecord
from chronicle.services.discord_recorder.receiver import SessionAudioSink, VoiceReceiver
from chronicle.services.discord_recorder.speakers import resolve_speaker
from chronicle.services.manager import BaseDiscordRecorderServiceManager
from chronicle.utils import TimestampMode, encode_timestamp, utc_now

if TYPE_CHECKING:
    from chronicle.context import Context
    from chronicle.services.manager import ServicesManager


class SpeakerState(Enum):
    IDLE = "idle"
    RECORDING = "recording"


# -------------------------------------------------------------- #
# Discord Session Handler
# -------------------------------------------------------------- #


class DiscordSessionHandler:
    """
    One recording session in one voice channel.

    Tracks which speakers are being recorded and spawns a ClipCaptureUnit
    per speaking burst. All state changes happen on the event loop; the
    decoder thread only ever posts frames through SessionAudioSink.

    Speaker lifecycle:
    - speaking-start while IDLE -> RECORDING, new capture unit
    - speaking-start while RECORDING -> ignored
    - unit finished, member left the channel -> IDLE
    - bot disconnected -> every speaker forgotten, session torn down

    `on_closed` is called once when the session ends without being asked to,
    so the owner can forget it.
    """

    def __init__(
        self,
        voice_client: discord.VoiceClient,
        channel: discord.VoiceChannel,
        folder_path: str,
        start_time: datetime,
        context: "Context",
        silence_duration_ms: int = RecorderConstants.SILENCE_DURATION_MS,
        on_closed: Callable[["DiscordSessionHandler"], None] | None = None,
    ):
        self.voice_client = voice_client
        self.channel = channel
        self.channel_id = channel.id
        self.guild = channel.guild
        self.folder_path = folder_path
        self.start_time = start_time
        self.context = context
        self.services = context.services_manager
        self.silence_duration_ms = silence_duration_ms
        self.on_closed = on_closed

        self.speaker_states: dict[int, SpeakerState] = {}
        self.clips: list[ClipRecord] = []
        self.failed_clips = 0
        self.is_recording = False
        self.connection_lost = False

        self._active_units: dict[int, ClipCaptureUnit] = {}
        self._clip_tasks: set[asyncio.Task] = set()
        self._receiver: VoiceReceiver | None = None
        self._sink: SessionAudioSink | None = None
        self._listener_registered = False
        self._stopping = False

    @property
    def bot(self) -> discord.Bot | None:
        return self.context.bot

    @property
    def session_id(self) -> str:
        return os.path.basename(self.folder_path)

    # -------------------------------------------------------------- #
    # Session Lifecycle Methods
    # -------------------------------------------------------------- #

    async def start_recording(self) -> None:
        """Attach the sink and start listening for speakers and channel changes."""
        if self.is_recording:
            await self.services.logging_service.warning(
                f"Session {self.session_id} already recording"
            )
            return

        loop = asyncio.get_running_loop()
        self._receiver = VoiceReceiver(loop, silence_duration_ms=self.silence_duration_ms)
        self._receiver.on_speaking_start(self.handle_speaking_start)
        self._sink = SessionAudioSink(self._receiver, loop)

        # sync_start=False: each speaker's audio starts at their first packet
        self.voice_client.start_recording(
            self._sink, self._recording_finished_callback, sync_start=False
        )
        self.is_recording = True

        if self.bot is not None:
            self.bot.add_listener(self.on_voice_state_update, "on_voice_state_update")
            self._listener_registered = True

        await self.services.logging_service.info(
            f"Recording started in channel {self.channel_id} -> {self.folder_path}"
        )

    async def stop_recording(self) -> None:
        """
        Stop capturing and leave the channel.

        Does not wait for capture units still writing; their subscriptions are
        ended so each finalizes whatever it already has. Only the listener this
        session registered is removed.
        """
        if self._stopping:
            return
        self._stopping = True
        self.is_recording = False

        self._remove_listener()

        if self._receiver is not None:
            self._receiver.close()
        self.speaker_states.clear()
        self._active_units.clear()

        try:
            if self.voice_client.recording:
                self.voice_client.stop_recording()
            if self.voice_client.is_connected():
                await self.voice_client.disconnect(force=True)
        except Exception as e:
            await self.services.logging_service.error(
                f"Error leaving voice channel {self.channel_id}. "
                f"Error Type: {type(e).__name__}, Details: {str(e)}"
            )

        duration_seconds = (utc_now() - self.start_time).total_seconds()
        await self.services.logging_service.info(
            f"Recording stopped for session {self.session_id}: "
            f"duration {int(duration_seconds // 60)}m {int(duration_seconds % 60)}s, "
            f"{len(self.clips)} clip(s) saved, {len(self.pending_clip_tasks())} still finalizing, "
            f"folder {self.folder_path}"
        )

    async def wait_for_clips(
        self, timeout: float = RecorderConstants.CLIP_SETTLE_TIMEOUT_SECONDS
    ) -> bool:
        """
        Wait, bounded, for capture units to finish writing their files.

        Returns:
            True if every unit finished within the timeout
        """
        pending = self.pending_clip_tasks()
        if not pending:
            return True

        _, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            await self.services.logging_service.warning(
                f"{len(not_done)} clip(s) in session {self.session_id} "
                f"still writing after {timeout}s"
            )
        return not not_done

    def pending_clip_tasks(self) -> list[asyncio.Task]:
        return [task for task in self._clip_tasks if not task.done()]

    def get_recording_duration_seconds(self) -> float:
        return (utc_now() - self.start_time).total_seconds()

    # -------------------------------------------------------------- #
    # Speaker Events
    # -------------------------------------------------------------- #

    def handle_speaking_start(self, user_id: int) -> None:
        """
        React to a speaker starting a burst.

        Runs synchronously within one loop turn, so two starts for the same
        speaker can never both see IDLE.
        """
        if not self.is_recording:
            if self._receiver is not None:
                self._receiver.release(user_id)
            return

        if self.speaker_states.get(user_id) == SpeakerState.RECORDING:
            return

        self.speaker_states[user_id] = SpeakerState.RECORDING
        task = asyncio.create_task(self._capture_clip(user_id))
        self._clip_tasks.add(task)
        task.add_done_callback(self._clip_tasks.discard)

    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        """Track speakers leaving and the bot losing its connection."""
        before_id = getattr(before.channel, "id", None)
        after_id = getattr(after.channel, "id", None)
        if before_id != self.channel_id or after_id == self.channel_id:
            return

        bot_user = self.bot.user if self.bot is not None else None
        if bot_user is not None and member.id == bot_user.id:
            await self.handle_connection_lost("bot left the voice channel")
            return

        if self.speaker_states.get(member.id) == SpeakerState.RECORDING:
            self.speaker_states[member.id] = SpeakerState.IDLE
            self._active_units.pop(member.id, None)
            await self.services.logging_service.debug(
                f"Speaker {member.id} left channel {self.channel_id} while recording"
            )

    async def handle_connection_lost(self, reason: str) -> None:
        """
        Tear the session down after the connection went away on its own.

        Running units finish with what they already have; the folder and its
        clips stay on disk.
        """
        if self._stopping:
            return

        self.connection_lost = True
        await self.services.logging_service.warning(
            f"Voice connection lost in channel {self.channel_id} ({reason}); ending session"
        )
        await self.stop_recording()

        if self.on_closed is not None:
            self.on_closed(self)

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _capture_clip(self, user_id: int) -> None:
        try:
            speaker = await resolve_speaker(self.bot, self.guild, user_id)

            # state may have been cleared while resolving (left, disconnect, stop)
            if not self.is_recording or self.speaker_states.get(user_id) != SpeakerState.RECORDING:
                self._receiver.release(user_id)
                return

            unit = ClipCaptureUnit(
                session_folder=self.folder_path,
                speaker=speaker,
                subscription=self._receiver.subscribe(user_id),
                ffmpeg_service=self.services.ffmpeg_service_manager,
                logging_service=self.services.logging_service,
                on_finished=self._on_unit_finished,
            )
        except Exception as e:
            self._receiver.release(user_id)
            if user_id not in self._active_units:
                self.speaker_states.pop(user_id, None)
            await self.services.logging_service.error(
                f"Could not start a clip for speaker {user_id}. "
                f"Error Type: {type(e).__name__}, Details: {str(e)}"
            )
            return

        self._active_units[user_id] = unit
        await unit.run()

    def _on_unit_finished(self, unit: ClipCaptureUnit) -> None:
        if unit.clip is not None:
            self.clips.append(unit.clip)
        if unit.failed:
            self.failed_clips += 1

        user_id = unit.user_id
        if self._active_units.get(user_id) is not unit:
            return

        del self._active_units[user_id]
        self.speaker_states[user_id] = SpeakerState.IDLE

        # the speaker resumed while this clip was being finalized
        if self.is_recording and self._receiver.has_pending(user_id):
            self.handle_speaking_start(user_id)

    def _remove_listener(self) -> None:
        if self._listener_registered and self.bot is not None:
            self.bot.remove_listener(self.on_voice_state_update, "on_voice_state_update")
        self._listener_registered = False

    async def _recording_finished_callback(self, _sink: SessionAudioSink, *_args) -> None:
        """Called by py-cord when recording ends, requested or not."""
        if not self._stopping:
            await self.handle_connection_lost("recording ended unexpectedly")


# -------------------------------------------------------------- #
# Session Store
# -------------------------------------------------------------- #


class SessionStore:
    """Active sessions keyed by voice channel id; at most one per channel."""

    def __init__(self):
        self._sessions: dict[int, DiscordSessionHandler] = {}

    def __contains__(self, channel_id: int) -> bool:
        return channel_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, channel_id: int) -> DiscordSessionHandler | None:
        return self._sessions.get(channel_id)

    def add(self, session: DiscordSessionHandler) -> None:
        if session.channel_id in self._sessions:
            raise SessionAlreadyActiveError(session.channel_id)
        self._sessions[session.channel_id] = session

    def remove(self, channel_id: int) -> DiscordSessionHandler | None:
        return self._sessions.pop(channel_id, None)

    def channel_ids(self) -> list[int]:
        return list(self._sessions.keys())

    def in_guild(self, guild_id: int) -> list[DiscordSessionHandler]:
        return [session for session in self._sessions.values() if session.guild.id == guild_id]

    def clear(self) -> None:
        self._sessions.clear()


# -------------------------------------------------------------- #
# Discord Recorder Manager Service
# -------------------------------------------------------------- #


class DiscordRecorderManagerService(BaseDiscordRecorderServiceManager):
    """Starts and stops recording sessions and owns the session store."""

    REQUIRED_PERMISSIONS = ("connect", "speak", "use_voice_activation")

    def __init__(
        self,
        context: "Context",
        recordings_path: str = FilesystemConstants.DEFAULT_RECORDINGS_PATH,
        silence_duration_ms: int = RecorderConstants.SILENCE_DURATION_MS,
        connection_timeout: float = RecorderConstants.CONNECTION_TIMEOUT_SECONDS,
    ):
        super().__init__(context)
        self.recordings_path = recordings_path
        self.silence_duration_ms = silence_duration_ms
        self.connection_timeout = connection_timeout
        self.sessions = SessionStore()
        self._starting: set[int] = set()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: "ServicesManager") -> None:
        await super().on_start(services)
        os.makedirs(self.recordings_path, exist_ok=True)
        await self.services.logging_service.info(
            f"Discord recorder ready, saving sessions under {self.recordings_path}"
        )

    async def on_close(self) -> None:
        """Stop every active session."""
        for channel_id in self.sessions.channel_ids():
            await self.stop_session(channel_id)
        self.sessions.clear()
        await self.services.logging_service.info("Discord recorder stopped")

    # -------------------------------------------------------------- #
    # Session Management Methods
    # -------------------------------------------------------------- #

    async def start_session(self, channel: discord.VoiceChannel) -> DiscordSessionHandler:
        """
        Join a voice channel and start recording it.

        Args:
            channel: The voice channel to record

        Returns:
            The new, recording session

        Raises:
            SessionAlreadyActiveError: If the channel is already being recorded
            VoiceConnectionError: On missing permissions, join timeout or transport failure
        """
        if self.context.is_shutting_down():
            raise VoiceConnectionError("Shutting down; not accepting new recordings")
        if channel.id in self.sessions or channel.id in self._starting:
            raise SessionAlreadyActiveError(channel.id)

        self._check_permissions(channel)

        self._starting.add(channel.id)
        try:
            voice_client = await self._connect(channel)

            start_time = utc_now()
            folder_path = os.path.join(
                self.recordings_path, encode_timestamp(start_time, TimestampMode.FOLDER)
            )
            os.makedirs(folder_path, exist_ok=True)

            session = DiscordSessionHandler(
                voice_client=voice_client,
                channel=channel,
                folder_path=folder_path,
                start_time=start_time,
                context=self.context,
                silence_duration_ms=self.silence_duration_ms,
                on_closed=self._on_session_closed,
            )
            try:
                await session.start_recording()
            except Exception as e:
                await self._teardown_connection(channel, voice_client)
                raise VoiceConnectionError(
                    f"Joined {channel.name} but could not start recording: {e}"
                ) from e

            self.sessions.add(session)
        finally:
            self._starting.discard(channel.id)

        await self.services.logging_service.info(
            f"Started recording session {session.session_id} in channel {channel.id}"
        )
        return session

    async def stop_session(self, channel_id: int) -> DiscordSessionHandler | None:
        """
        Stop the session for a channel.

        Returns without waiting for in-flight capture units.

        Returns:
            The stopped session, or None if the channel was not being recorded
        """
        session = self.sessions.remove(channel_id)
        if session is None:
            await self.services.logging_service.warning(
                f"No active session for channel {channel_id}"
            )
            return None

        await session.stop_recording()
        return session

    def get_active_session(self, channel_id: int) -> DiscordSessionHandler | None:
        return self.sessions.get(channel_id)

    def get_sessions_in_guild(self, guild_id: int) -> list[DiscordSessionHandler]:
        return self.sessions.in_guild(guild_id)

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    def _on_session_closed(self, session: DiscordSessionHandler) -> None:
        # a newer session may already own the channel
        if self.sessions.get(session.channel_id) is session:
            self.sessions.remove(session.channel_id)

    def _check_permissions(self, channel: discord.VoiceChannel) -> None:
        me = channel.guild.me
        if me is None:
            return

        permissions = channel.permissions_for(me)
        missing = [name for name in self.REQUIRED_PERMISSIONS if not getattr(permissions, name)]
        if missing:
            raise VoiceConnectionError(
                f"Missing permission(s) in {channel.name}: {', '.join(missing)}"
            )

    async def _connect(self, channel: discord.VoiceChannel) -> discord.VoiceClient:
        try:
            return await channel.connect(timeout=self.connection_timeout, reconnect=True)
        except (asyncio.TimeoutError, discord.DiscordException, OSError) as e:
            await self.services.logging_service.error(
                f"Failed to join voice channel {channel.id}. "
                f"Error Type: {type(e).__name__}, Details: {str(e)}"
            )
            await self._teardown_connection(channel, channel.guild.voice_client)
            raise VoiceConnectionError(
                f"Could not join {channel.name} within {self.connection_timeout:.0f}s: "
                f"{type(e).__name__}"
            ) from e

    async def _teardown_connection(
        self, channel: discord.VoiceChannel, voice_client: discord.VoiceProtocol | None
    ) -> None:
        if voice_client is None:
            return
        try:
            await voice_client.disconnect(force=True)
        except Exception as e:
            await self.services.logging_service.warning(
                f"Could not tear down partial connection to {channel.id}: {e}"
            )
