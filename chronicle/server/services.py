from abc import ABC, abstractmethod
from typing import Any

# -------------------------------------------------------------- #
# Base Server Handler
# -------------------------------------------------------------- #


class BaseServerHandler(ABC):
    """Abstract base class for all external capability clients."""

    def __init__(self, name: str):
        self.name = name
        self._connected = False

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def on_startup(self) -> None:
        """Actions to perform once connected."""
        pass

    async def on_close(self) -> None:
        """Actions to perform before disconnecting."""
        pass

    # -------------------------------------------------------------- #
    # Abstract Methods
    # -------------------------------------------------------------- #

    @abstractmethod
    async def connect(self) -> None:
        """Open the client connection."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the client connection."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the capability is reachable."""
        pass

    @property
    def is_connected(self) -> bool:
        """Check if currently connected."""
        return self._connected


# -------------------------------------------------------------- #
# Capability Handlers
# -------------------------------------------------------------- #


class TranscriptionServerHandler(BaseServerHandler):
    """Speech-to-text capability: one audio file in, timed segments out."""

    def __init__(self, name: str, endpoint: str, model: str):
        super().__init__(name)
        self.endpoint = endpoint
        self.model = model

    @abstractmethod
    async def transcribe(self, audio_path: str) -> dict[str, Any]:
        """
        Transcribe one audio file.

        Args:
            audio_path: Path to the audio file

        Returns:
            Verbose JSON response. `segments` is a list of dicts with
            `start`, `end`, `text`, `avg_logprob` and `no_speech_prob`.
        """
        pass


class SummarizationServerHandler(BaseServerHandler):
    """Text generation capability used for meeting summaries."""

    def __init__(self, name: str, model: str):
        super().__init__(name)
        self.model = model

    @abstractmethod
    async def summarize(self, system_prompt: str, content: str, temperature: float) -> str:
        """
        Run a single system + user prompt and return the reply text.

        Args:
            system_prompt: Instructions for the model
            content: The text to summarize
            temperature: Sampling temperature
        """
        pass
