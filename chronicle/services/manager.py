from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from chronicle.context import Context


# -------------------------------------------------------------- #
# Services Manager Class
# -------------------------------------------------------------- #


class ServicesManager:
    """Holds every in-process service and drives their lifecycle."""

    def __init__(
        self,
        context: Context,
        logging_service: BaseAsyncLoggingService,
        ffmpeg_service_manager: BaseFFmpegServiceManager,
        discord_recorder_service_manager: BaseDiscordRecorderServiceManager | None = None,
        timeline_mixer_service: BaseTimelineMixerService | None = None,
        transcript_assembler_service: BaseTranscriptAssemblerService | None = None,
        summary_generator_service: BaseSummaryGeneratorService | None = None,
        session_pipeline_service: BaseSessionPipelineService | None = None,
    ):
        self.context = context
        self.server = context.server_manager

        self.logging_service = logging_service
        self.ffmpeg_service_manager = ffmpeg_service_manager

        # Capture
        self.discord_recorder_service_manager = discord_recorder_service_manager

        # Post-processing
        self.timeline_mixer_service = timeline_mixer_service
        self.transcript_assembler_service = transcript_assembler_service
        self.summary_generator_service = summary_generator_service
        self.session_pipeline_service = session_pipeline_service

    def _optional_services(self) -> list[Manager]:
        return [
            service
            for service in (
                self.discord_recorder_service_manager,
                self.timeline_mixer_service,
                self.transcript_assembler_service,
                self.summary_generator_service,
                self.session_pipeline_service,
            )
            if service is not None
        ]

    async def initialize_all(self) -> None:
        """Start the logger first, then every other service."""
        await self.logging_service.on_start(self)
        await self.ffmpeg_service_manager.on_start(self)

        for service in self._optional_services():
            await service.on_start(self)

    async def shutdown_all(self, timeout: float = 60.0) -> None:
        """
        Gracefully shutdown all services.

        Recording sessions are stopped first so no new clips appear, then
        post-processing is given the bulk of the budget to finish, then the
        capability clients are disconnected. Logging is always flushed last.

        Args:
            timeout: Maximum time in seconds to spend on shutdown
        """
        await self.logging_service.info("Starting graceful shutdown of all services...")

        if self.context:
            self.context.mark_shutdown_started()

        try:
            # Phase 1: stop accepting audio
            if self.discord_recorder_service_manager:
                await asyncio.wait_for(
                    self.discord_recorder_service_manager.on_close(), timeout=timeout * 0.2
                )
                await self.logging_service.info("✓ All recording sessions stopped")

            # Phase 2: let in-flight post-processing finish
            if self.session_pipeline_service:
                await asyncio.wait_for(
                    self.session_pipeline_service.on_close(), timeout=timeout * 0.6
                )
                await self.logging_service.info("✓ Post-processing drained")

            for service in (
                self.timeline_mixer_service,
                self.transcript_assembler_service,
                self.summary_generator_service,
            ):
                if service:
                    await service.on_close()

            # Phase 3: encoders and capability clients
            await asyncio.wait_for(self.ffmpeg_service_manager.on_close(), timeout=timeout * 0.1)
            if self.context and self.context.server_manager:
                await self.context.server_manager.disconnect_all()
                await self.logging_service.info("✓ All servers disconnected")

            await self.logging_service.info("✓ Graceful shutdown completed successfully")

        except asyncio.TimeoutError:
            await self.logging_service.error(
                f"Shutdown timeout exceeded ({timeout}s) - forcing shutdown"
            )
        except Exception as e:
            await self.logging_service.error(
                f"Error during shutdown. Error Type: {type(e).__name__}, Details: {str(e)}"
            )

        # Phase 4: always flush logging, even after errors
        try:
            await asyncio.wait_for(self.logging_service.on_close(), timeout=5.0)
        except asyncio.TimeoutError:
            pass  # Don't wait forever for logging to flush


# -------------------------------------------------------------- #
# Base Service Manager Class
# -------------------------------------------------------------- #


class Manager(ABC):
    """Base class for all manager services."""

    def __init__(self, context: Context):
        self.context = context
        self.server = context.server_manager
        self.services: ServicesManager | None = None

        # check if server has been initialized
        if self.server is not None and not self.server.is_initialized:
            raise RuntimeError(
                "ServerManager must be initialized before creating Manager instances."
            )

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        """Actions to perform on manager start."""
        self.services = services

    async def on_close(self) -> None:
        """Actions to perform on manager shutdown."""
        pass


# -------------------------------------------------------------- #
# Base Service Interfaces
# -------------------------------------------------------------- #


class BaseAsyncLoggingService(Manager):
    """Specialized manager for asynchronous logging services."""

    @abstractmethod
    async def log(self, message: str, level: str = "INFO") -> None:
        """Log a message at the given level."""
        pass

    @abstractmethod
    async def debug(self, message: str) -> None:
        pass

    @abstractmethod
    async def info(self, message: str) -> None:
        pass

    @abstractmethod
    async def warning(self, message: str) -> None:
        pass

    @abstractmethod
    async def error(self, message: str) -> None:
        pass

    @abstractmethod
    async def critical(self, message: str) -> None:
        pass


class BaseFFmpegServiceManager(Manager):
    """Specialized manager for ffmpeg encoding and mixing."""

    @abstractmethod
    def get_ffmpeg_path(self) -> str:
        """Get the FFmpeg executable path."""
        pass

    @abstractmethod
    def create_ogg_opus_stream(self, output_path: str) -> Any:
        """Create a PCM-to-Ogg/Opus streaming encoder writing to output_path."""
        pass

    @abstractmethod
    async def mix_to_ogg(
        self, input_paths: list[str], filter_complex: str, output_path: str
    ) -> None:
        """Mix input files through a filter graph into a single Ogg/Opus file."""
        pass


class BaseDiscordRecorderServiceManager(Manager):
    """Specialized manager for Discord voice recording sessions."""

    @abstractmethod
    async def start_session(self, channel: Any) -> Any:
        """Join a voice channel and begin recording it."""
        pass

    @abstractmethod
    async def stop_session(self, channel_id: int) -> Any:
        """Stop the session for a channel without waiting for in-flight clips."""
        pass

    @abstractmethod
    def get_active_session(self, channel_id: int) -> Any:
        pass


class BaseTimelineMixerService(Manager):
    """Specialized manager for mixing session clips onto one timeline."""

    @abstractmethod
    async def mix_session_folder(self, folder_path: str) -> str:
        """Mix the clips of a session folder and return the output path."""
        pass


class BaseTranscriptAssemblerService(Manager):
    """Specialized manager for building a session transcript."""

    @abstractmethod
    async def transcribe_session_folder(self, folder_path: str) -> Any:
        """Transcribe the clips of a session folder into transcript.md."""
        pass


class BaseSummaryGeneratorService(Manager):
    """Specialized manager for summarizing a transcript."""

    @abstractmethod
    async def generate_summary(self, transcript_text: str, folder_path: str) -> str:
        """Summarize a transcript into summary.md and return its path."""
        pass


class BaseSessionPipelineService(Manager):
    """Specialized manager for post-processing finished sessions."""

    @abstractmethod
    async def run(self, folder_path: str) -> Any:
        """Run mix, transcript and summary for a session folder."""
        pass
