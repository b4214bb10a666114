"""
Circular playlist management.

Pure functions over ordered track lists (rotation, circular navigation,
collection enrichment, validation) plus PlaylistManager, which holds the
current playlist and position for the playback controller.
"""

import random
from dataclasses import dataclass
from typing import Optional, Sequence

from loguru import logger

from ..library.models import Track


def find_track_index(playlist: Sequence[Track], target: Track) -> int:
    """
    Get the position (0-based index) of a track in a playlist.

    Args:
        playlist: Ordered tracks
        target: Track to find (matched by identity, not object equality)

    Returns:
        0-based position of track, or -1 if not found
    """
    for i, track in enumerate(playlist):
        if track.same_as(target):
            return i
    return -1


def rotate(playlist: Sequence[Track], start_track: Track) -> list[Track]:
    """Rotate the playlist so start_track comes first.

    The remainder keeps its relative order and wraps around, e.g.
    rotate([A, B, C], B) == [B, C, A]. Returns the input order unchanged
    when start_track is not in the playlist.
    """
    start = find_track_index(playlist, start_track)
    if start == -1:
        return list(playlist)
    return [*playlist[start:], *playlist[:start]]


def next_index(current: int, length: int) -> int:
    """Next position, wrapping to 0 after the last track. -1 for an empty playlist."""
    if length == 0:
        return -1
    return (current + 1) % length


def prev_index(current: int, length: int) -> int:
    """Previous position, wrapping to the last track before 0. -1 for an empty playlist."""
    if length == 0:
        return -1
    return (current - 1 + length) % length


def enrich_track_with_collection(track: Track, source: Track) -> Track:
    """Copy source's collection onto track if track has none. Present data is never overwritten."""
    if track.collection_address or not source.collection_address:
        return track
    return track.with_collection(source.collection)


def enrich_with_collection(playlist: Sequence[Track], reference: Track) -> list[Track]:
    """Fill in missing collection data across the playlist from a trusted reference track."""
    if not reference.collection_address:
        return list(playlist)
    return [enrich_track_with_collection(track, reference) for track in playlist]


def validate(playlist: Sequence[Track]) -> bool:
    """A playlist is valid when non-empty and every track has an identity."""
    return len(playlist) > 0 and all(track.has_identity() for track in playlist)


def has_collection_info(playlist: Sequence[Track]) -> bool:
    """Check if every track in the playlist carries a collection address."""
    return all(track.collection_address for track in playlist)


def shuffle(
    playlist: Sequence[Track],
    current: Optional[Track] = None,
    keep_current_first: bool = True,
    rng: Optional[random.Random] = None,
) -> list[Track]:
    """Shuffle tracks, optionally pinning the current track to the front."""
    rng = rng or random.Random()
    shuffled = list(playlist)

    pinned = None
    if keep_current_first and current is not None:
        position = find_track_index(shuffled, current)
        if position != -1:
            pinned = shuffled.pop(position)

    rng.shuffle(shuffled)

    if pinned is not None:
        shuffled.insert(0, pinned)
    return shuffled


@dataclass(frozen=True)
class PlaylistInfo:
    """Summary of playlist state for UIs and debugging."""

    length: int
    current_index: int
    current_track: Optional[Track]
    has_next: bool
    has_previous: bool
    has_collection_info: bool


class PlaylistManager:
    """Holds the active playlist and the current position in it.

    Invariant: ``current_index`` is a valid index into ``tracks``, or -1 iff
    the playlist is empty.
    """

    def __init__(self) -> None:
        self._tracks: list[Track] = []
        self._current_index = -1

    @property
    def tracks(self) -> list[Track]:
        return list(self._tracks)

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def current_track(self) -> Optional[Track]:
        if self._current_index == -1:
            return None
        return self._tracks[self._current_index]

    def __len__(self) -> int:
        return len(self._tracks)

    def is_empty(self) -> bool:
        return not self._tracks

    def update(self, tracks: Sequence[Track], start_track: Optional[Track] = None) -> bool:
        """Replace the playlist.

        With start_track, the playlist is rotated so it comes first and tracks
        missing collection data inherit the start track's collection. Without
        it, the current track keeps its position if it is still present.

        Returns:
            False if the new playlist was rejected as invalid
        """
        if not tracks:
            self.clear()
            return True

        if not validate(tracks):
            logger.warning(f"Rejected invalid playlist of {len(tracks)} tracks")
            return False

        ordered = list(tracks)
        start_index = 0

        if start_track is not None:
            ordered = rotate(ordered, start_track)
            if start_track.collection_address and not has_collection_info(ordered):
                ordered = enrich_with_collection(ordered, start_track)
                logger.debug("Enriched playlist with start track's collection")
            if find_track_index(ordered, start_track) == -1:
                # Start track not part of the list: play it first anyway
                ordered.insert(0, start_track)
        else:
            current = self.current_track
            if current is not None:
                position = find_track_index(ordered, current)
                if position != -1:
                    start_index = position

        self._tracks = ordered
        self._current_index = start_index
        logger.debug(
            f"Playlist updated: {len(ordered)} tracks, current index {start_index}"
        )
        return True

    def set_current(self, index: int) -> Track:
        """Move to an absolute position.

        Raises:
            IndexError: If index is outside the playlist
        """
        if not 0 <= index < len(self._tracks):
            raise IndexError(f"Playlist index {index} out of range ({len(self._tracks)} tracks)")
        self._current_index = index
        return self._tracks[index]

    def peek(self, index: int) -> Optional[Track]:
        if 0 <= index < len(self._tracks):
            return self._tracks[index]
        return None

    def next_track(self) -> Optional[Track]:
        return self.peek(next_index(self._current_index, len(self._tracks)))

    def previous_track(self) -> Optional[Track]:
        return self.peek(prev_index(self._current_index, len(self._tracks)))

    def move_to_next(self) -> Optional[Track]:
        if self.is_empty():
            return None
        return self.set_current(next_index(self._current_index, len(self._tracks)))

    def move_to_previous(self) -> Optional[Track]:
        if self.is_empty():
            return None
        return self.set_current(prev_index(self._current_index, len(self._tracks)))

    def shuffle(self, keep_current_first: bool = True, rng: Optional[random.Random] = None) -> None:
        if len(self._tracks) <= 1:
            return
        current = self.current_track
        self._tracks = shuffle(self._tracks, current, keep_current_first, rng)
        if current is not None:
            self._current_index = find_track_index(self._tracks, current)
        logger.debug("Playlist shuffled")

    def clear(self) -> None:
        self._tracks = []
        self._current_index = -1

    def info(self) -> PlaylistInfo:
        length = len(self._tracks)
        return PlaylistInfo(
            length=length,
            current_index=self._current_index,
            current_track=self.current_track,
            has_next=length > 1,
            has_previous=length > 1,
            has_collection_info=has_collection_info(self._tracks),
        )
