"""Client for OpenAI-compatible `/audio/transcriptions` endpoints (Groq by default)."""

import json
import logging
import os
from typing import Any

import aiofiles
import aiohttp

from chronicle.constants import TranscriptionConstants
from chronicle.errors import TranscriptionAPIError
from chronicle.server.services import TranscriptionServerHandler

logger = logging.getLogger(__name__)


class TranscriptionAPIClient(TranscriptionServerHandler):
    """Uploads one clip per request and returns the verbose JSON response."""

    def __init__(
        self,
        name: str = "transcription_api",
        endpoint: str = TranscriptionConstants.DEFAULT_ENDPOINT,
        api_key: str | None = None,
        model: str = TranscriptionConstants.DEFAULT_MODEL,
        timeout_seconds: float = TranscriptionConstants.REQUEST_TIMEOUT_SECONDS,
    ):
        """
        Initialize the transcription client.

        Args:
            name: Name of the client
            endpoint: Full URL of the transcription endpoint
            api_key: Bearer token for the endpoint
            model: Speech-to-text model name
            timeout_seconds: Total timeout per upload
        """
        super().__init__(name, endpoint, model)
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.session: aiohttp.ClientSession | None = None

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Open the HTTP session."""
        if not self.api_key:
            logger.warning("No transcription API key configured; requests will be rejected")

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        self.session = aiohttp.ClientSession(
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
        )
        self._connected = True
        logger.info(f"Transcription client ready for {self.endpoint} (model: {self.model})")

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
        self._connected = False
        logger.info("Transcription client closed")

    async def health_check(self) -> bool:
        # hosted endpoints expose no health route; an open session is the best signal
        return self.session is not None and not self.session.closed

    # -------------------------------------------------------------- #
    # Transcription
    # -------------------------------------------------------------- #

    async def transcribe(self, audio_path: str) -> dict[str, Any]:
        """
        Upload one audio file and return the parsed verbose JSON.

        Args:
            audio_path: Path to the clip

        Returns:
            Parsed response with `text` and `segments`

        Raises:
            RuntimeError: If the client is not connected
            TranscriptionAPIError: If the endpoint answers with a non-200 status
        """
        if not self.session:
            raise RuntimeError("Not connected to transcription endpoint")

        file_size = os.path.getsize(audio_path)
        if file_size > TranscriptionConstants.MAX_FILE_SIZE_BYTES:
            logger.warning(
                f"{os.path.basename(audio_path)} is {file_size / 1024 / 1024:.1f}MB, "
                f"above the {TranscriptionConstants.MAX_FILE_SIZE_BYTES // 1024 // 1024}MB "
                "upload limit; sending anyway"
            )

        async with aiofiles.open(audio_path, mode="rb") as f:
            audio_bytes = await f.read()

        data = aiohttp.FormData()
        data.add_field(
            "file",
            audio_bytes,
            filename=os.path.basename(audio_path),
            content_type="audio/ogg",
        )
        data.add_field("model", self.model)
        data.add_field("response_format", TranscriptionConstants.RESPONSE_FORMAT)
        data.add_field("temperature", str(TranscriptionConstants.TEMPERATURE))

        async with self.session.post(self.endpoint, data=data) as response:
            body = await response.text()
            if response.status != 200:
                raise TranscriptionAPIError(response.status, body)

        return json.loads(body)


def construct_transcription_client(
    endpoint: str | None = None,
    api_key: str | None = None,
    model: str | None = None,
) -> TranscriptionAPIClient:
    """
    Construct a transcription client from arguments or environment variables.

    TRANSCRIPTION_API_KEY takes precedence over GROQ_API_KEY.
    """
    return TranscriptionAPIClient(
        name="transcription_api",
        endpoint=endpoint
        or os.getenv("TRANSCRIPTION_API_URL", TranscriptionConstants.DEFAULT_ENDPOINT),
        api_key=api_key or os.getenv("TRANSCRIPTION_API_KEY") or os.getenv("GROQ_API_KEY"),
        model=model or os.getenv("TRANSCRIPTION_MODEL", TranscriptionConstants.DEFAULT_MODEL),
    )
