import os
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import aiofiles

from chronicle.constants import FilesystemConstants, TranscriptionConstants
from chronicle.errors import NoInputError, TimestampParseError, TranscribeError
from chronicle.services.manager import BaseTranscriptAssemblerService
from chronicle.services.transcription.segments import (
    TranscriptionSegment,
    is_transcribable,
    merge_consecutive_segments,
    render_transcript_markdown,
    segment_from_response,
)
from chronicle.utils import (
    decode_timestamp,
    extract_speaker_from_filename,
    list_session_clips,
    utc_now,
)

if TYPE_CHECKING:
    from chronicle.context import Context


@dataclass
class TranscriptArtifacts:
    """Files produced by a transcription run."""

    transcript_path: str
    segment_count: int
    summary_path: str | None = None
    summary_error: str | None = None


# -------------------------------------------------------------- #
# Transcript Assembler Service
# -------------------------------------------------------------- #


class TranscriptAssemblerService(BaseTranscriptAssemblerService):
    """
    Builds one speaker-attributed transcript from a session's clips.

    Each clip is transcribed on its own, its segments shifted by the clip's
    offset from the session start, filtered, then merged across speakers in
    time order. A clip that fails to transcribe is skipped, not fatal.
    """

    def __init__(
        self,
        context: "Context",
        max_no_speech_prob: float = TranscriptionConstants.MAX_NO_SPEECH_PROB,
        min_segment_duration: float = TranscriptionConstants.MIN_SEGMENT_DURATION_SECONDS,
    ):
        super().__init__(context)
        self.max_no_speech_prob = max_no_speech_prob
        self.min_segment_duration = min_segment_duration

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"TranscriptAssemblerService initialized "
            f"(no-speech cutoff {self.max_no_speech_prob})"
        )

    # -------------------------------------------------------------- #
    # Transcription
    # -------------------------------------------------------------- #

    async def transcribe_session_folder(self, folder_path: str) -> TranscriptArtifacts:
        """
        Transcribe a session folder into `transcript.md`, then summarize it.

        Returns:
            TranscriptArtifacts; the summary fields record whether the summary succeeded

        Raises:
            NoInputError: If the folder holds no clips with valid timestamps
            TranscribeError: If no clip produced a usable segment
        """
        filenames = list_session_clips(folder_path)
        if not filenames:
            raise NoInputError(f"No OGG files found to transcribe in {folder_path}")

        clips: list[tuple[str, datetime]] = []
        for filename in filenames:
            try:
                clips.append((filename, decode_timestamp(filename)))
            except TimestampParseError as e:
                await self.services.logging_service.warning(f"Skipping clip: {e}")

        if not clips:
            raise NoInputError(f"No clips with valid timestamps in {folder_path}")

        session_start = min(timestamp for _, timestamp in clips)
        await self.services.logging_service.info(
            f"Transcribing {len(clips)} clip(s) from {folder_path}"
        )

        segments: list[TranscriptionSegment] = []
        for filename, timestamp in clips:
            segments.extend(
                await self._transcribe_clip(
                    folder_path,
                    filename,
                    offset_seconds=(timestamp - session_start).total_seconds(),
                )
            )

        if not segments:
            raise TranscribeError("No transcribable segments found in any audio files")

        segments.sort(key=lambda segment: segment.start_time)
        merged = merge_consecutive_segments(segments)

        transcript_text = render_transcript_markdown(
            merged,
            session_id=os.path.basename(os.path.normpath(folder_path)),
            session_start=session_start,
            duration_seconds=(utc_now() - session_start).total_seconds(),
            model=self.server.transcription_client.model,
            max_no_speech_prob=self.max_no_speech_prob,
        )
        transcript_path = os.path.join(folder_path, FilesystemConstants.TRANSCRIPT_FILENAME)
        async with aiofiles.open(transcript_path, mode="w", encoding="utf-8") as f:
            await f.write(transcript_text)

        await self.services.logging_service.info(
            f"Transcript written: {transcript_path} ({len(merged)} segments)"
        )

        artifacts = TranscriptArtifacts(transcript_path=transcript_path, segment_count=len(merged))
        await self._summarize(artifacts, transcript_text, folder_path)
        return artifacts

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _transcribe_clip(
        self, folder_path: str, filename: str, offset_seconds: float
    ) -> list[TranscriptionSegment]:
        speaker = extract_speaker_from_filename(filename)
        try:
            response = await self.server.transcription_client.transcribe(
                os.path.join(folder_path, filename)
            )
        except Exception as e:
            await self.services.logging_service.warning(
                f"Failed to transcribe {filename}, skipping. "
                f"Error Type: {type(e).__name__}, Details: {str(e)}"
            )
            return []

        kept = []
        raw_segments = response.get("segments") or []
        for raw in raw_segments:
            segment = segment_from_response(raw, speaker, offset_seconds)
            if is_transcribable(segment, self.max_no_speech_prob, self.min_segment_duration):
                kept.append(segment)

        await self.services.logging_service.debug(
            f"{filename}: kept {len(kept)} of {len(raw_segments)} segments"
        )
        return kept

    async def _summarize(
        self, artifacts: TranscriptArtifacts, transcript_text: str, folder_path: str
    ) -> None:
        summary_generator = self.services.summary_generator_service
        if summary_generator is None:
            return

        try:
            artifacts.summary_path = await summary_generator.generate_summary(
                transcript_text, folder_path
            )
        except Exception as e:
            artifacts.summary_error = str(e)
            await self.services.logging_service.error(
                f"Summary generation failed for {folder_path}. "
                f"Error Type: {type(e).__name__}, Details: {str(e)}"
            )
