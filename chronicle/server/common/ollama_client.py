"""Ollama client for meeting summaries."""

import asyncio
import logging
import os

import ollama

from chronicle.constants import SummarizationConstants
from chronicle.errors import SummarizationError
from chronicle.server.services import SummarizationServerHandler

logger = logging.getLogger(__name__)


class OllamaSummarizationClient(SummarizationServerHandler):
    """Chat-completion client for a local or remote Ollama server."""

    def __init__(
        self,
        name: str = "ollama",
        host: str = "http://localhost:11434",
        model: str = SummarizationConstants.DEFAULT_MODEL,
        timeout_seconds: float = 300.0,
        max_retries: int = 3,
    ):
        """
        Initialize the Ollama client.

        Args:
            name: Name of the client
            host: Ollama server URL
            model: Model used for every summary
            timeout_seconds: Per-request timeout
            max_retries: Attempts per request before giving up
        """
        super().__init__(name, model)
        self.host = host
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self._client: ollama.AsyncClient | None = None

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        self._client = ollama.AsyncClient(host=self.host)
        self._connected = True
        logger.info(f"Ollama client ready at {self.host} (model: {self.model})")

    async def disconnect(self) -> None:
        self._client = None
        self._connected = False
        logger.info("Ollama client closed")

    async def health_check(self) -> bool:
        """Check if the Ollama server answers a model listing."""
        if not self._client:
            return False
        try:
            await self._client.list()
            return True
        except Exception as e:
            logger.error(f"Ollama health check failed: {e}")
            return False

    # -------------------------------------------------------------- #
    # Summarization
    # -------------------------------------------------------------- #

    async def summarize(self, system_prompt: str, content: str, temperature: float) -> str:
        """
        Send one system + user exchange and return the reply.

        Retries with exponential backoff on timeouts and transport errors.

        Raises:
            RuntimeError: If the client is not connected
            SummarizationError: If every attempt failed
        """
        if not self._client:
            raise RuntimeError("Not connected to Ollama server")

        last_error: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                response = await asyncio.wait_for(
                    self._client.chat(
                        model=self.model,
                        messages=[
                            {"role": "system", "content": system_prompt},
                            {"role": "user", "content": content},
                        ],
                        options={"temperature": temperature},
                    ),
                    timeout=self.timeout_seconds,
                )
                return response["message"]["content"] or ""
            except asyncio.TimeoutError as e:
                last_error = e
                logger.warning(f"Ollama request timeout (attempt {attempt + 1}/{self.max_retries})")
            except ollama.ResponseError as e:
                # model missing or request rejected, retrying will not help
                raise SummarizationError(f"Ollama rejected the request: {e.error}") from e
            except Exception as e:
                last_error = e
                logger.warning(
                    f"Ollama request error (attempt {attempt + 1}/{self.max_retries}): {e}"
                )

            if attempt < self.max_retries - 1:
                await asyncio.sleep(2**attempt)

        raise SummarizationError(
            f"Ollama request failed after {self.max_retries} attempts: {last_error}"
        ) from last_error


def construct_ollama_client(host: str | None = None, model: str | None = None):
    """
    Construct an Ollama client from arguments or OLLAMA_* environment variables.

    Returns:
        Configured OllamaSummarizationClient instance
    """
    if host is None:
        ollama_host = os.environ.get("OLLAMA_HOST", SummarizationConstants.DEFAULT_HOST)
        ollama_port = os.environ.get("OLLAMA_PORT", SummarizationConstants.DEFAULT_PORT)
        host = ollama_host if "://" in ollama_host else f"http://{ollama_host}:{ollama_port}"

    if model is None:
        model = os.environ.get("OLLAMA_MODEL", SummarizationConstants.DEFAULT_MODEL)

    return OllamaSummarizationClient(name="ollama", host=host, model=model)
