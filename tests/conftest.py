"""Shared fixtures for the engine tests."""

from typing import Optional

import pytest

from patterns_player.domain.library.models import Collection, Track, TrackMetadata


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_track(
    address: Optional[str] = "0xA",
    index: Optional[int] = None,
    collection: Optional[str] = "0xC",
    name: Optional[str] = None,
    **kwargs,
) -> Track:
    """Build a track with an optional collection."""
    return Track(
        address=address,
        index=index,
        metadata=TrackMetadata(name=name or address or f"Track {index}"),
        collection=Collection(address=collection, name="Collection") if collection else None,
        **kwargs,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def abc_tracks() -> list[Track]:
    """Three countable tracks A, B, C in one collection."""
    return [make_track(address) for address in ("0xA", "0xB", "0xC")]
