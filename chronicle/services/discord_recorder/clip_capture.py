import os
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from chronicle.services.discord_recorder.pcm_generator import FrameAligner
from chronicle.services.discord_recorder.speakers import ResolvedSpeaker
from chronicle.utils import build_clip_filename, utc_now

if TYPE_CHECKING:
    from chronicle.services.ffmpeg_manager.manager import FFmpegManagerService
    from chronicle.services.manager import BaseAsyncLoggingService

# -------------------------------------------------------------- #
# Clip Record
# -------------------------------------------------------------- #


@dataclass
class ClipRecord:
    """One finished single-speaker clip on disk."""

    speaker: ResolvedSpeaker
    start_time: datetime
    file_path: str
    duration_ms: int | None = None

    @property
    def filename(self) -> str:
        return os.path.basename(self.file_path)


# -------------------------------------------------------------- #
# Clip Capture Unit
# -------------------------------------------------------------- #


class ClipCaptureUnit:
    """
    Writes one continuous burst of a single speaker to an Ogg/Opus file.

    The file is only created when the first byte arrives, so a burst that
    never delivers audio leaves nothing behind. Failures are logged and
    reported through `failed`; they never propagate to the session.
    """

    def __init__(
        self,
        session_folder: str,
        speaker: ResolvedSpeaker,
        subscription: AsyncIterator[bytes],
        ffmpeg_service: "FFmpegManagerService",
        logging_service: "BaseAsyncLoggingService",
        on_finished: Callable[["ClipCaptureUnit"], None] | None = None,
    ):
        self.session_folder = session_folder
        self.speaker = speaker
        self.subscription = subscription
        self.ffmpeg_service = ffmpeg_service
        self.logging_service = logging_service
        self.on_finished = on_finished

        self.start_time: datetime | None = None
        self.file_path: str | None = None
        self.clip: ClipRecord | None = None
        self.failed = False
        self.error: Exception | None = None

    @property
    def user_id(self) -> int:
        return self.speaker.user_id

    async def run(self) -> ClipRecord | None:
        """
        Consume the subscription until it ends and finalize the clip.

        Returns:
            The finished ClipRecord, or None if no audio arrived or capture failed
        """
        stream = None
        aligner = FrameAligner()

        try:
            async for chunk in self.subscription:
                if stream is None:
                    # frames may have been held while the speaker was being resolved
                    self.start_time = (
                        getattr(self.subscription, "first_frame_at", None) or utc_now()
                    )
                    filename = build_clip_filename(self.start_time, self.speaker.label)
                    self.file_path = os.path.join(self.session_folder, filename)
                    stream = self.ffmpeg_service.create_ogg_opus_stream(self.file_path)
                    await stream.start()
                    await self.logging_service.debug(
                        f"Clip started for {self.speaker.label}: {os.path.basename(self.file_path)}"
                    )

                frames = aligner.push(chunk)
                if frames:
                    await stream.write(frames)

            if stream is None:
                await self.logging_service.debug(
                    f"Speaker {self.speaker.label} produced no audio; no clip written"
                )
                return None

            tail = aligner.flush()
            if tail:
                await stream.write(tail)
            await stream.close()

            end_time = utc_now()
            self.clip = ClipRecord(
                speaker=self.speaker,
                start_time=self.start_time,
                file_path=self.file_path,
                duration_ms=int((end_time - self.start_time).total_seconds() * 1000),
            )
            await self.logging_service.info(
                f"Clip saved for {self.speaker.label}: {self.clip.filename} "
                f"({self.clip.duration_ms}ms)"
            )
            return self.clip

        except Exception as e:
            self.failed = True
            self.error = e
            await self.logging_service.error(
                f"Clip capture failed for {self.speaker.label} ({self.file_path}). "
                f"Error Type: {type(e).__name__}, Details: {str(e)}"
            )
            if stream is not None:
                await stream.abort()
            return None

        finally:
            if stream is not None:
                self.ffmpeg_service.release_stream(stream)
            if self.on_finished is not None:
                self.on_finished(self)
