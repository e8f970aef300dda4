import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chronicle.constants import RecorderConstants
from chronicle.services.manager import BaseSessionPipelineService
from chronicle.services.transcription.manager import TranscriptArtifacts

if TYPE_CHECKING:
    from chronicle.context import Context
    from chronicle.services.discord_recorder.manager import DiscordSessionHandler

# -------------------------------------------------------------- #
# Pipeline Report
# -------------------------------------------------------------- #


@dataclass
class PipelineReport:
    """Outcome of each post-processing stage for one session folder."""

    folder_path: str
    mixed_path: str | None = None
    transcript_path: str | None = None
    summary_path: str | None = None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def mix_succeeded(self) -> bool:
        return self.mixed_path is not None

    @property
    def transcript_succeeded(self) -> bool:
        return self.transcript_path is not None

    @property
    def summary_succeeded(self) -> bool:
        return self.summary_path is not None

    def describe(self) -> str:
        """One line per stage, for the front end."""
        lines = []
        for stage, succeeded in (
            ("mix", self.mix_succeeded),
            ("transcript", self.transcript_succeeded),
            ("summary", self.summary_succeeded),
        ):
            if succeeded:
                lines.append(f"✅ {stage}")
            else:
                lines.append(f"❌ {stage}: {self.errors.get(stage, 'not produced')}")
        return "\n".join(lines)


# -------------------------------------------------------------- #
# Session Pipeline Service
# -------------------------------------------------------------- #


class SessionPipelineService(BaseSessionPipelineService):
    """
    Runs post-processing for stopped sessions.

    Stages run in order for one session: mix, then transcript (whatever the
    mix outcome), then summary from inside the transcript stage. Each stage
    fails on its own. Separate sessions are processed concurrently and a
    run, once started, is not cancelled.
    """

    def __init__(self, context: "Context"):
        super().__init__(context)
        self._runs: set[asyncio.Task] = set()

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info("SessionPipelineService initialized")

    async def on_close(self) -> None:
        """Wait for in-flight runs; the caller bounds this with a timeout."""
        pending = [task for task in self._runs if not task.done()]
        if pending:
            await self.services.logging_service.info(
                f"Waiting for {len(pending)} post-processing run(s) to finish..."
            )
            await asyncio.gather(*pending, return_exceptions=True)

    # -------------------------------------------------------------- #
    # Stages
    # -------------------------------------------------------------- #

    async def run_mix(self, folder_path: str) -> str:
        """Mix a session folder. Raises on failure."""
        return await self.services.timeline_mixer_service.mix_session_folder(folder_path)

    async def run_transcribe(self, folder_path: str) -> TranscriptArtifacts:
        """Transcribe (and summarize) a session folder. Raises on failure."""
        return await self.services.transcript_assembler_service.transcribe_session_folder(
            folder_path
        )

    async def run(self, folder_path: str) -> PipelineReport:
        """
        Run every stage for a session folder.

        Never raises; each stage's failure is logged and recorded in the report.
        """
        report = PipelineReport(folder_path=folder_path)
        await self.services.logging_service.info(f"Post-processing {folder_path}")

        try:
            report.mixed_path = await self.run_mix(folder_path)
        except Exception as e:
            report.errors["mix"] = str(e)
            await self.services.logging_service.error(
                f"Mix failed for {folder_path}. "
                f"Error Type: {type(e).__name__}, Details: {str(e)}"
            )

        try:
            artifacts = await self.run_transcribe(folder_path)
        except Exception as e:
            report.errors["transcript"] = str(e)
            report.errors["summary"] = "skipped, no transcript"
            await self.services.logging_service.error(
                f"Transcription failed for {folder_path}. "
                f"Error Type: {type(e).__name__}, Details: {str(e)}"
            )
        else:
            report.transcript_path = artifacts.transcript_path
            report.summary_path = artifacts.summary_path
            if artifacts.summary_error is not None:
                report.errors["summary"] = artifacts.summary_error

        await self.services.logging_service.info(
            f"Post-processing finished for {folder_path}: mix={report.mix_succeeded}, "
            f"transcript={report.transcript_succeeded}, summary={report.summary_succeeded}"
        )
        return report

    async def process_session(
        self,
        session: "DiscordSessionHandler",
        settle_timeout: float = RecorderConstants.CLIP_SETTLE_TIMEOUT_SECONDS,
    ) -> PipelineReport:
        """
        Post-process a stopped session.

        Gives truncated clips a bounded moment to finish writing, then runs
        the stages. Shielded so a cancelled caller does not abort the run.
        """
        task = asyncio.create_task(self._process_session(session, settle_timeout))
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return await asyncio.shield(task)

    async def _process_session(
        self, session: "DiscordSessionHandler", settle_timeout: float
    ) -> PipelineReport:
        await session.wait_for_clips(timeout=settle_timeout)
        return await self.run(session.folder_path)
