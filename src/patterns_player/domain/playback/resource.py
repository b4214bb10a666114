"""Audio resource handles produced by music generation."""

from typing import Optional


class AudioResource:
    """Playable audio held in memory or referenced by URL.

    A resource is either generated audio (``data``) or an external URL handed
    over by an upstream generation step. ``release()`` drops the in-memory
    payload; the cache that owns a resource is the only caller.
    """

    def __init__(
        self,
        data: Optional[bytes] = None,
        url: Optional[str] = None,
        content_type: str = "audio/wav",
    ):
        if data is None and url is None:
            raise ValueError("AudioResource needs either data or a url")
        self._data = data
        self.url = url
        self.content_type = content_type
        self._released = False

    @classmethod
    def from_url(cls, url: str) -> "AudioResource":
        return cls(url=url, content_type="")

    @property
    def data(self) -> Optional[bytes]:
        return self._data

    @property
    def size(self) -> int:
        return len(self._data) if self._data is not None else 0

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Free the audio payload. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        self._data = None

    def __repr__(self) -> str:
        source = self.url if self.url else f"{self.size} bytes"
        state = " released" if self._released else ""
        return f"<AudioResource {source} {self.content_type}{state}>"
