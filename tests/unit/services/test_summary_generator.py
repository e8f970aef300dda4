"""Unit tests for the summary generator, against the mock summarization client."""

import os

import pytest

from chronicle.errors import SummarizationError
from chronicle.services.manager import ServicesManager
from chronicle.services.summarization.manager import (
    SUMMARY_SYSTEM_PROMPT,
    render_summary_markdown,
)


@pytest.mark.unit
class TestSummaryGenerator:
    async def test_writes_summary_file(
        self, services_manager: ServicesManager, summarization_client, session_folder
    ):
        summarization_client.reply = "## Overview\nPlanning the release."

        path = await services_manager.summary_generator_service.generate_summary(
            "**[00:01] alice (90% confidence):** let's ship friday", session_folder
        )

        assert path == os.path.join(session_folder, "summary.md")
        with open(path, encoding="utf-8") as f:
            document = f.read()
        assert document.startswith("# Meeting Summary")
        assert "**Session:** 2025-07-30_15-45-30-123" in document
        assert "Planning the release." in document

    async def test_prompt_and_temperature_are_passed(
        self, services_manager: ServicesManager, summarization_client, session_folder
    ):
        await services_manager.summary_generator_service.generate_summary("text", session_folder)

        call = summarization_client.calls[0]
        assert call["system_prompt"] == SUMMARY_SYSTEM_PROMPT
        assert call["content"] == "text"
        assert call["temperature"] == pytest.approx(0.1)

    async def test_empty_reply_raises(
        self, services_manager: ServicesManager, summarization_client, session_folder
    ):
        summarization_client.reply = "   "

        with pytest.raises(SummarizationError):
            await services_manager.summary_generator_service.generate_summary(
                "text", session_folder
            )
        assert not os.path.exists(os.path.join(session_folder, "summary.md"))

    def test_render_strips_reply(self):
        document = render_summary_markdown("\n\n- point\n\n", "abc", "llama3.1")

        assert "\n- point\n" in document
        assert "**Model:** llama3.1" in document
        assert "transcription errors" in document
