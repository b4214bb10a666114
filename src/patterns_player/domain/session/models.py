"""
Authorization models.

A Session is the wallet-signed credential for music generation and session
listens. An ApiKey is the older per-user music API key, kept as a fallback.
Both are valid until ``expires_at`` (Unix timestamp).
"""

import time
from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Session:
    """Wallet-authorized listening session.

    ``expires_at`` is None for sessions carried on a track by an upstream
    step, whose expiry is unknown; those are trusted until the server
    rejects them.
    """

    session_id: str
    music_server_url: str
    expires_at: Optional[float] = None

    @property
    def server_url(self) -> str:
        return self.music_server_url

    @property
    def scope(self) -> str:
        """Cache scope: generated audio is tied to the session that produced it."""
        return self.session_id

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.session_id}"}

    def is_valid(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return True
        return (now if now is not None else time.time()) < self.expires_at

    def __repr__(self) -> str:
        # Never log full credentials
        return f"Session({self.session_id[:8]}..., {self.music_server_url}, expires_at={self.expires_at})"


@dataclass(frozen=True)
class ApiKey:
    """Legacy music API key."""

    key: str
    music_server_url: str
    expires_at: float

    @property
    def server_url(self) -> str:
        return self.music_server_url

    @property
    def scope(self) -> Optional[str]:
        return None

    def auth_headers(self) -> dict[str, str]:
        return {"X-Music-Api-Key": self.key}

    def is_valid(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) < self.expires_at

    def __repr__(self) -> str:
        return f"ApiKey({self.key[:4]}..., {self.music_server_url}, expires_at={self.expires_at})"


Authorization = Union[Session, ApiKey]
