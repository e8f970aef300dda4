from enum import Enum

# -------------------------------------------------------------- #
# Server Manager Types
# -------------------------------------------------------------- #


class ServerManagerType(Enum):
    """Which set of external capability clients to build."""

    DEVELOPMENT = "development"  # hosted STT endpoint + local Ollama
    PRODUCTION = "production"  # same clients, production env file
    TESTING = "testing"  # in-memory mocks, no network
