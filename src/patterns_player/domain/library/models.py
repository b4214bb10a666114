"""
Track domain models.

Contains data structures for representing NFT tracks, their collections and
counted listens.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Optional

from ..exceptions import InvalidTrackError

# Metadata keys with a dedicated field; everything else lands in ``extra``
_KNOWN_METADATA_KEYS = {
    "name",
    "image",
    "description",
    "attributes",
    "animation_url",
    "audio_url",
}


@dataclass(frozen=True)
class Collection:
    """Collection an NFT track belongs to."""

    address: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class TrackMetadata:
    """Display metadata of an NFT track.

    Unknown attributes from the NFT payload are kept in ``extra`` so they can be
    forwarded to the music server untouched.
    """

    name: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    attributes: tuple = ()
    animation_url: Optional[str] = None
    audio_url: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "TrackMetadata":
        if not data:
            return cls()
        return cls(
            name=data.get("name"),
            image=data.get("image"),
            description=data.get("description"),
            attributes=tuple(data.get("attributes") or ()),
            animation_url=data.get("animation_url"),
            audio_url=data.get("audio_url"),
            extra={k: v for k, v in data.items() if k not in _KNOWN_METADATA_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the NFT metadata shape, dropping empty fields."""
        data: dict[str, Any] = dict(self.extra)
        for key in ("name", "image", "description", "animation_url", "audio_url"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.attributes:
            data["attributes"] = list(self.attributes)
        return data


@dataclass(frozen=True)
class Track:
    """Represents a playable NFT track.

    Identity is the NFT ``address``; tracks without an address fall back to
    their ordinal ``index``. Session fields are set when the track was handed
    over by a session-authorized generation step.
    """

    address: Optional[str] = None
    index: Optional[int] = None
    metadata: TrackMetadata = field(default_factory=TrackMetadata)
    collection: Optional[Collection] = None
    audio_url: Optional[str] = None  # Pre-resolved audio (from an upstream generation step)
    session_id: Optional[str] = None
    music_server_url: Optional[str] = None

    @property
    def name(self) -> str:
        return self.metadata.name or self.identity_key

    @property
    def identity_key(self) -> str:
        """Stable key for caches and trackers: address, else ``index-N``."""
        return self.address or f"index-{self.index or 0}"

    @property
    def collection_address(self) -> Optional[str]:
        return self.collection.address if self.collection else None

    def has_identity(self) -> bool:
        """True when the track has an address or a non-negative index."""
        return bool(self.address) or (self.index is not None and self.index >= 0)

    def same_as(self, other: "Track") -> bool:
        """Two tracks are the same NFT iff addresses match, or both lack one and indexes match."""
        if self.address or other.address:
            return self.address == other.address
        return self.index == other.index

    def can_be_counted(self) -> bool:
        """Only tracks with both an address and a collection address produce listens."""
        return bool(self.address and self.collection_address)

    def with_collection(self, collection: Collection) -> "Track":
        return replace(self, collection=collection)

    def to_generation_payload(self) -> dict[str, Any]:
        """Body for the music server's generate-music-stream endpoint."""
        return {
            "metadata": self.metadata.to_dict(),
            "index": self.index,
            "address": self.address,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Track":
        """Build a track from an NFT payload (camelCase keys, as the backend sends them)."""
        collection_data = data.get("collection")
        collection = None
        if collection_data:
            collection = Collection(
                address=collection_data.get("address"),
                name=collection_data.get("name"),
            )
        return cls(
            address=data.get("address") or None,
            index=data.get("index"),
            metadata=TrackMetadata.from_dict(data.get("metadata")),
            collection=collection,
            audio_url=data.get("audioUrl"),
            session_id=data.get("sessionId"),
            music_server_url=data.get("musicServerUrl"),
        )


@dataclass(frozen=True)
class ListenRecord:
    """A counted listen ready for delivery to the backend."""

    track_address: str
    collection_address: str
    timestamp: float  # Unix timestamp (seconds)

    @property
    def key(self) -> str:
        """Dedupe key for the retry queue."""
        return f"{self.track_address}:{self.collection_address}"

    @classmethod
    def from_track(cls, track: Track, timestamp: float) -> "ListenRecord":
        """Create a record for a countable track.

        Raises:
            InvalidTrackError: If the track lacks an address or collection address
        """
        if not track.can_be_counted():
            raise InvalidTrackError(
                f"Track {track.identity_key} has no collection address, listens cannot be recorded"
            )
        return cls(
            track_address=track.address,
            collection_address=track.collection_address,
            timestamp=timestamp,
        )
