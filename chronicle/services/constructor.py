import os
import platform
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from chronicle.constants import FilesystemConstants, RecorderConstants
from chronicle.constructor import ServerManagerType
from chronicle.services.discord_recorder.manager import DiscordRecorderManagerService
from chronicle.services.ffmpeg_manager.manager import FFmpegManagerService
from chronicle.services.logger import AsyncLoggingService
from chronicle.services.manager import ServicesManager
from chronicle.services.pipeline.manager import SessionPipelineService
from chronicle.services.summarization.manager import SummaryGeneratorService
from chronicle.services.timeline_mixer.manager import TimelineMixerService
from chronicle.services.transcription.manager import TranscriptAssemblerService

if TYPE_CHECKING:
    from chronicle.context import Context

# prefer a project-local .env.local file, then fallback to any .env
load_dotenv(dotenv_path=".env.local")
load_dotenv()

# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Services Manager
# -------------------------------------------------------------- #


def resolve_ffmpeg_path() -> str:
    """Get the ffmpeg executable from FFMPEG_PATH, the per-platform variable, or PATH."""
    explicit = os.getenv("FFMPEG_PATH")
    if explicit:
        return explicit

    if platform.system().lower().startswith("win"):
        return os.getenv("WINDOWS_FFMPEG_PATH", "ffmpeg")
    if platform.system() == "Darwin":
        return os.getenv("MAC_FFMPEG_PATH", "ffmpeg")
    return "ffmpeg"


def construct_services_manager(
    service_type: ServerManagerType,
    context: "Context",
    recordings_path: str | None = None,
    default_logging_path: str = "logs",
    log_file: str | None = None,
    log_level: str | None = None,
    silence_duration_ms: int = RecorderConstants.SILENCE_DURATION_MS,
) -> ServicesManager:
    """Construct the services manager with every service wired in.

    Args:
        service_type: DEVELOPMENT, PRODUCTION or TESTING
        context: Context instance containing server and services
        recordings_path: Root folder for session folders (default: RECORDINGS_PATH or "recordings")
        default_logging_path: Directory to store log files (default: "logs")
        log_file: Specific log file name (optional)
        log_level: Minimum log level (default: LOG_LEVEL or INFO; DEBUG when testing)
        silence_duration_ms: Trailing silence that ends a clip
    """
    if recordings_path is None:
        recordings_path = os.getenv(
            "RECORDINGS_PATH", FilesystemConstants.DEFAULT_RECORDINGS_PATH
        )
    if log_level is None:
        default_level = "DEBUG" if service_type == ServerManagerType.TESTING else "INFO"
        log_level = os.getenv("LOG_LEVEL", default_level)

    logging_service = AsyncLoggingService(
        context=context,
        log_dir=default_logging_path,
        log_file=log_file,
        min_level=log_level,
        console_output=service_type != ServerManagerType.TESTING,
    )

    return ServicesManager(
        context=context,
        logging_service=logging_service,
        ffmpeg_service_manager=FFmpegManagerService(context, ffmpeg_path=resolve_ffmpeg_path()),
        discord_recorder_service_manager=DiscordRecorderManagerService(
            context,
            recordings_path=recordings_path,
            silence_duration_ms=silence_duration_ms,
        ),
        timeline_mixer_service=TimelineMixerService(context),
        transcript_assembler_service=TranscriptAssemblerService(context),
        summary_generator_service=SummaryGeneratorService(context),
        session_pipeline_service=SessionPipelineService(context),
    )
