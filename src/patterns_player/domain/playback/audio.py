"""
Audio output abstraction.

The controller never touches a playback primitive directly. An AudioOutput
loads a resource, plays/pauses/seeks it and reports what happens through
four named events.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional

from loguru import logger

from ..exceptions import AudioOutputError
from .resource import AudioResource


class AudioEvent(Enum):
    STARTED = "started"
    ENDED = "ended"
    FAILED = "failed"
    METADATA_READY = "metadataReady"


AudioListener = Callable[[AudioEvent, dict[str, Any]], None]


class AudioOutput(ABC):
    """Base class for audio outputs.

    Subclasses call ``_emit`` for STARTED (playback actually began), ENDED,
    FAILED (with ``message``) and METADATA_READY (with ``duration``).
    """

    def __init__(self) -> None:
        self._listeners: list[AudioListener] = []

    def add_listener(self, listener: AudioListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _emit(self, event: AudioEvent, **data: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception:
                logger.exception(f"Audio listener failed on {event.value}")

    @abstractmethod
    async def load(self, resource: AudioResource) -> None:
        """Bind a resource. Raises AudioOutputError if it cannot be loaded."""

    @abstractmethod
    async def play(self) -> None: ...

    @abstractmethod
    async def pause(self) -> None: ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop playback and unbind the current resource."""

    @abstractmethod
    async def seek(self, seconds: float) -> None: ...

    @abstractmethod
    async def set_volume(self, volume: float) -> None: ...

    @property
    def position(self) -> Optional[float]:
        """Playback position in seconds, or None if the output cannot report it."""
        return None

    @property
    def duration(self) -> Optional[float]:
        return None


class SimulatedAudioOutput(AudioOutput):
    """Output that plays nothing. Used headless and in tests.

    It reports no position, so the controller's clock is the time source.
    ``finish()`` and ``fail()`` simulate the end of a track and a playback
    error.
    """

    def __init__(self, duration: Optional[float] = None):
        super().__init__()
        self._duration = duration
        self.resource: Optional[AudioResource] = None
        self.playing = False
        self.volume = 1.0
        self.seeks: list[float] = []
        self.loaded: list[AudioResource] = []

    @property
    def duration(self) -> Optional[float]:
        return self._duration if self.resource is not None else None

    async def load(self, resource: AudioResource) -> None:
        if resource.released:
            raise AudioOutputError(f"Cannot load released resource {resource!r}")
        self.resource = resource
        self.loaded.append(resource)
        self.playing = False
        if self._duration:
            self._emit(AudioEvent.METADATA_READY, duration=self._duration)

    async def play(self) -> None:
        if self.resource is None:
            raise AudioOutputError("Nothing loaded")
        self.playing = True
        self._emit(AudioEvent.STARTED)

    async def pause(self) -> None:
        self.playing = False

    async def stop(self) -> None:
        self.playing = False
        self.resource = None

    async def seek(self, seconds: float) -> None:
        self.seeks.append(seconds)

    async def set_volume(self, volume: float) -> None:
        self.volume = volume

    def finish(self) -> None:
        self.playing = False
        self._emit(AudioEvent.ENDED)

    def fail(self, message: str = "Playback error") -> None:
        self.playing = False
        self._emit(AudioEvent.FAILED, message=message)
