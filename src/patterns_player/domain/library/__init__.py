"""Library domain - NFT track models.

This domain handles:
- Track identity and display metadata
- Collection references
- Listen records
"""

from .models import Collection, ListenRecord, Track, TrackMetadata

__all__ = [
    "Collection",
    "ListenRecord",
    "Track",
    "TrackMetadata",
]
