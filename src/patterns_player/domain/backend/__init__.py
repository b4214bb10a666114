"""Backend domain - HTTP client for the backend and music server."""

from .api import BackendApi
from .schemas import (
    GenerationRequest,
    LegacyListenRequest,
    MusicApiKeyResponse,
    SessionListenRequest,
    SessionListenResponse,
)

__all__ = [
    "BackendApi",
    "GenerationRequest",
    "LegacyListenRequest",
    "MusicApiKeyResponse",
    "SessionListenRequest",
    "SessionListenResponse",
]
