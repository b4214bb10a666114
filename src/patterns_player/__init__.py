"""Patterns player - playback and session engine for NFT music.

Resolves playable audio for NFT tracks, drives a circular-playlist player
and delivers counted listens to the backend.
"""

__version__ = "0.1.0"

from .context import EngineContext

__all__ = ["EngineContext", "__version__"]
