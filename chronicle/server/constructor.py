from typing import TYPE_CHECKING

from dotenv import load_dotenv

from chronicle.constructor import ServerManagerType
from chronicle.server.server import ServerManager

if TYPE_CHECKING:
    from chronicle.context import Context

# prefer a project-local .env.local file, then fallback to any .env
load_dotenv(dotenv_path=".env.local")
load_dotenv()

# -------------------------------------------------------------- #
# Constructor for Dynamic Creation of Server Manager
# -------------------------------------------------------------- #


def construct_server_manager(client_type: ServerManagerType, context: "Context") -> ServerManager:
    """Construct a ServerManager with the capability clients for the given type."""

    if client_type in (ServerManagerType.DEVELOPMENT, ServerManagerType.PRODUCTION):
        from chronicle.server.common.ollama_client import construct_ollama_client
        from chronicle.server.common.transcription_api import construct_transcription_client

        return ServerManager(
            context=context,
            transcription_client=construct_transcription_client(),
            summarization_client=construct_ollama_client(),
        )
    elif client_type == ServerManagerType.TESTING:
        from chronicle.server.testing.constructor import construct_server_manager

        return construct_server_manager(context)

    raise ValueError(f"Unsupported ServerManagerType: {client_type}")
