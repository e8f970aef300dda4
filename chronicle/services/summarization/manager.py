import os
from typing import TYPE_CHECKING

import aiofiles

from chronicle.constants import FilesystemConstants, SummarizationConstants
from chronicle.errors import SummarizationError
from chronicle.services.manager import BaseSummaryGeneratorService
from chronicle.utils import TimestampMode, encode_timestamp, utc_now

if TYPE_CHECKING:
    from chronicle.context import Context

# -------------------------------------------------------------- #
# Prompt
# -------------------------------------------------------------- #


SUMMARY_SYSTEM_PROMPT = """You summarize voice meetings from an automatic speech-to-text transcript.

The transcript was produced per speaker by a speech recognition model, so expect:
- misheard words, wrong homophones and garbled names or technical terms
- missing punctuation and run-on sentences
- short filler fragments ("yeah", "okay", "mm") that carry no content
- speakers occasionally talking over one another

Work from what was most plausibly said. Where a word is clearly misrecognized,
use the obvious intended meaning; where it is ambiguous, do not guess.
Never invent decisions, numbers, dates or names that are not in the transcript.

Write the summary in Markdown with these sections:

## Overview
Two to four sentences on what the meeting was about.

## Key Points
Bulleted list of the main topics and what was said about each, attributed to
speakers where it matters.

## Decisions
Bulleted list of anything agreed on. Write "None recorded." if there were none.

## Action Items
Bulleted list of follow-ups as "**Owner**: task". Write "None recorded." if there were none.

Be concise. Skip small talk."""


def render_summary_markdown(summary: str, session_id: str, model: str) -> str:
    """Wrap the model's reply with a header and a disclaimer footer."""
    return "\n".join(
        [
            "# Meeting Summary",
            "",
            f"**Session:** {session_id}",
            f"**Generated:** {encode_timestamp(utc_now(), TimestampMode.FILE)}",
            f"**Model:** {model}",
            "",
            "---",
            "",
            summary.strip(),
            "",
            "---",
            "",
            "*Summary generated automatically from a speech-to-text transcript. "
            "It may contain transcription errors; check the transcript before relying on it.*",
            "",
        ]
    )


# -------------------------------------------------------------- #
# Summary Generator Service
# -------------------------------------------------------------- #


class SummaryGeneratorService(BaseSummaryGeneratorService):
    """Turns a session transcript into `summary.md`."""

    def __init__(
        self,
        context: "Context",
        system_prompt: str = SUMMARY_SYSTEM_PROMPT,
        temperature: float = SummarizationConstants.TEMPERATURE,
    ):
        super().__init__(context)
        self.system_prompt = system_prompt
        self.temperature = temperature

    async def on_start(self, services) -> None:
        await super().on_start(services)
        await self.services.logging_service.info(
            f"SummaryGeneratorService initialized (model: {self.server.summarization_client.model})"
        )

    async def generate_summary(self, transcript_text: str, folder_path: str) -> str:
        """
        Summarize a transcript and write it next to it.

        Args:
            transcript_text: Full transcript document
            folder_path: Session folder to write `summary.md` into

        Returns:
            Path of the summary file

        Raises:
            SummarizationError: If the model returns an empty reply
        """
        client = self.server.summarization_client
        await self.services.logging_service.info(
            f"Generating summary for {folder_path} with {client.model}"
        )

        summary = await client.summarize(
            self.system_prompt, transcript_text, temperature=self.temperature
        )
        if not summary or not summary.strip():
            raise SummarizationError(f"{client.model} returned an empty summary")

        summary_path = os.path.join(folder_path, FilesystemConstants.SUMMARY_FILENAME)
        document = render_summary_markdown(
            summary,
            session_id=os.path.basename(os.path.normpath(folder_path)),
            model=client.model,
        )
        async with aiofiles.open(summary_path, mode="w", encoding="utf-8") as f:
            await f.write(document)

        await self.services.logging_service.info(f"Summary written: {summary_path}")
        return summary_path
