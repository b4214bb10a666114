"""Playback domain - music resolution and the player state machine.

This domain handles:
- Circular playlist rotation, navigation and enrichment
- Generated audio cache with TTL and size bound
- Music source resolution (cache, pre-resolved audio, remote generation)
- Audio output abstraction and progress clock
- Playback controller state machine
"""

from .audio import AudioEvent, AudioOutput, SimulatedAudioOutput
from .cache import MusicCache, cache_key
from .clock import ProgressClock, calculate_progress, format_time, progress_to_time
from .controller import Direction, PlaybackController, PlaybackState, PlayerSnapshot
from .playlist import (
    PlaylistInfo,
    PlaylistManager,
    enrich_with_collection,
    find_track_index,
    has_collection_info,
    next_index,
    prev_index,
    rotate,
    shuffle,
    validate,
)
from .resolver import MusicSourceResolver
from .resource import AudioResource

__all__ = [
    # Playlist
    "PlaylistInfo",
    "PlaylistManager",
    "enrich_with_collection",
    "find_track_index",
    "has_collection_info",
    "next_index",
    "prev_index",
    "rotate",
    "shuffle",
    "validate",
    # Resources and cache
    "AudioResource",
    "MusicCache",
    "cache_key",
    "MusicSourceResolver",
    # Output and timing
    "AudioEvent",
    "AudioOutput",
    "SimulatedAudioOutput",
    "ProgressClock",
    "calculate_progress",
    "format_time",
    "progress_to_time",
    # Controller
    "Direction",
    "PlaybackController",
    "PlaybackState",
    "PlayerSnapshot",
]
