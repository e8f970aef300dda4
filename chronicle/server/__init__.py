"""Clients for the external capabilities used by post-processing."""

from .server import ServerManager
from .services import BaseServerHandler, SummarizationServerHandler, TranscriptionServerHandler

__all__ = [
    "BaseServerHandler",
    "ServerManager",
    "SummarizationServerHandler",
    "TranscriptionServerHandler",
]
