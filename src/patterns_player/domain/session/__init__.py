"""Session domain - wallet sessions and legacy API keys.

This domain handles:
- The process-wide session and its expiry sweep
- Legacy music API key issuance and caching
- Choosing and refreshing the authorization for music generation
"""

from .manager import (
    ApiKeyManager,
    AuthorizationProvider,
    SessionManager,
    session_from_track,
)
from .models import ApiKey, Authorization, Session

__all__ = [
    # Models
    "ApiKey",
    "Authorization",
    "Session",
    # Management
    "ApiKeyManager",
    "AuthorizationProvider",
    "SessionManager",
    "session_from_track",
]
