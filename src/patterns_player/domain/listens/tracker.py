"""
Counted-listen detection.

A listen counts once the listener has played a track for
min(min_listen_time, duration * min_listen_percentage) seconds. Each track
counts at most once per session, and never twice within the cooldown.
"""

import time
from typing import Callable, Optional

from loguru import logger

from ...core.config import ListenConfig
from ..library.models import Track

DEFAULT_MIN_LISTEN_TIME = 30.0
DEFAULT_MIN_LISTEN_PERCENTAGE = 0.8
DEFAULT_COOLDOWN_SECONDS = 30.0


def _listen_key(track: Track) -> str:
    return f"{track.address}:{track.collection_address}"


class ListenTracker:
    """Decides when a playback becomes a counted listen."""

    def __init__(
        self,
        min_listen_time: float = DEFAULT_MIN_LISTEN_TIME,
        min_listen_percentage: float = DEFAULT_MIN_LISTEN_PERCENTAGE,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.min_listen_time = min_listen_time
        self.min_listen_percentage = min_listen_percentage
        self.cooldown = cooldown
        self._clock = clock
        self._last_recorded: dict[str, float] = {}
        self._recorded_in_session: set[str] = set()

    @classmethod
    def from_config(
        cls, config: ListenConfig, clock: Callable[[], float] = time.time
    ) -> "ListenTracker":
        return cls(
            min_listen_time=config.min_listen_time,
            min_listen_percentage=config.min_listen_percentage,
            cooldown=config.cooldown_seconds,
            clock=clock,
        )

    def threshold(self, duration: Optional[float]) -> float:
        """Seconds of playback needed for a track of the given duration."""
        if not duration or duration <= 0:
            return self.min_listen_time
        return min(self.min_listen_time, duration * self.min_listen_percentage)

    def can_record(self, track: Track) -> bool:
        """True if the track is countable and not blocked by dedupe or cooldown."""
        if not track.can_be_counted():
            return False

        key = _listen_key(track)
        if key in self._recorded_in_session:
            return False

        last = self._last_recorded.get(key)
        if last is not None and self._clock() - last < self.cooldown:
            return False
        return True

    def should_record(self, track: Track, current_time: float, duration: Optional[float]) -> bool:
        """
        Check whether a listen should be recorded now.

        Args:
            track: Track being played
            current_time: Seconds the listener has played the track
            duration: Track duration in seconds

        Returns:
            True if the threshold is reached and the track may be counted
        """
        if not self.can_record(track):
            return False
        return current_time >= self.threshold(duration)

    def mark_as_recorded(self, track: Track) -> None:
        """Mark a track as counted. Call before delivering the listen."""
        key = _listen_key(track)
        self._last_recorded[key] = self._clock()
        self._recorded_in_session.add(key)
        logger.debug(f"Listen marked as recorded: {key}")

    def reset_nft(self, track: Track) -> None:
        """Allow a track to qualify again (its delivery failed)."""
        key = _listen_key(track)
        self._last_recorded.pop(key, None)
        self._recorded_in_session.discard(key)
        logger.debug(f"Listen state reset: {key}")

    def clear(self) -> None:
        self._last_recorded.clear()
        self._recorded_in_session.clear()

    def stats(self) -> dict:
        return {
            "recorded_in_session": len(self._recorded_in_session),
            "tracked": len(self._last_recorded),
            "min_listen_time": self.min_listen_time,
            "min_listen_percentage": self.min_listen_percentage,
        }
