"""Tests for circular playlist operations."""

import random

import pytest

from conftest import make_track
from patterns_player.domain.library.models import Collection, Track
from patterns_player.domain.playback.playlist import (
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


def addresses(tracks: list[Track]) -> list[str]:
    return [track.address for track in tracks]


class TestRotate:
    @pytest.mark.parametrize("k", range(5))
    def test_rotation_is_cyclic(self, k: int) -> None:
        playlist = [make_track(f"0x{i}") for i in range(5)]

        result = rotate(playlist, playlist[k])

        assert len(result) == len(playlist)
        assert result[0].same_as(playlist[k])
        for i in range(len(playlist)):
            assert result[i] is playlist[(k + i) % len(playlist)]

    def test_abc_rotated_at_b(self, abc_tracks: list[Track]) -> None:
        assert addresses(rotate(abc_tracks, abc_tracks[1])) == ["0xB", "0xC", "0xA"]

    def test_absent_track_leaves_order(self, abc_tracks: list[Track]) -> None:
        assert addresses(rotate(abc_tracks, make_track("0xZ"))) == ["0xA", "0xB", "0xC"]

    def test_matches_by_identity_not_object(self, abc_tracks: list[Track]) -> None:
        result = rotate(abc_tracks, make_track("0xC", collection=None))
        assert addresses(result) == ["0xC", "0xA", "0xB"]


class TestCircularIndex:
    def test_next_wraps(self) -> None:
        assert next_index(2, 3) == 0
        assert next_index(0, 3) == 1

    def test_prev_wraps(self) -> None:
        assert prev_index(0, 3) == 2
        assert prev_index(2, 3) == 1

    def test_empty_playlist(self) -> None:
        assert next_index(0, 0) == -1
        assert prev_index(0, 0) == -1


class TestEnrichment:
    def test_copies_missing_collection_only(self) -> None:
        reference = make_track("0xR", collection="0xREF")
        own = make_track("0xA", collection="0xOWN")
        bare = make_track("0xB", collection=None)

        result = enrich_with_collection([own, bare], reference)

        assert result[0].collection_address == "0xOWN"
        assert result[1].collection_address == "0xREF"
        assert bare.collection is None

    def test_is_idempotent(self) -> None:
        reference = make_track("0xR", collection="0xREF")
        once = enrich_with_collection([make_track("0xB", collection=None)], reference)
        assert enrich_with_collection(once, reference) == once

    def test_reference_without_collection_changes_nothing(self) -> None:
        tracks = [make_track("0xB", collection=None)]
        assert enrich_with_collection(tracks, make_track("0xR", collection=None)) == tracks

    def test_has_collection_info(self, abc_tracks: list[Track]) -> None:
        assert has_collection_info(abc_tracks)
        assert not has_collection_info([*abc_tracks, make_track("0xD", collection=None)])


class TestValidate:
    def test_empty_is_invalid(self) -> None:
        assert not validate([])

    def test_index_only_tracks_are_valid(self) -> None:
        assert validate([make_track(None, index=0), make_track(None, index=1)])

    def test_track_without_identity_is_invalid(self) -> None:
        assert not validate([make_track("0xA"), Track(index=-1)])


class TestShuffle:
    def test_keeps_current_first(self, abc_tracks: list[Track]) -> None:
        result = shuffle(abc_tracks, abc_tracks[2], rng=random.Random(1))
        assert result[0].same_as(abc_tracks[2])
        assert sorted(addresses(result)) == ["0xA", "0xB", "0xC"]

    def test_find_missing_track(self, abc_tracks: list[Track]) -> None:
        assert find_track_index(abc_tracks, make_track("0xZ")) == -1


class TestPlaylistManager:
    def test_starts_empty(self) -> None:
        manager = PlaylistManager()
        assert manager.current_index == -1
        assert manager.current_track is None
        assert manager.move_to_next() is None

    def test_update_rotates_around_start(self, abc_tracks: list[Track]) -> None:
        manager = PlaylistManager()

        assert manager.update(abc_tracks, start_track=abc_tracks[1])

        assert addresses(manager.tracks) == ["0xB", "0xC", "0xA"]
        assert manager.current_index == 0

    def test_navigation_wraps(self, abc_tracks: list[Track]) -> None:
        manager = PlaylistManager()
        manager.update(abc_tracks, start_track=abc_tracks[1])

        assert manager.move_to_next().address == "0xC"
        assert manager.move_to_next().address == "0xA"
        assert manager.move_to_next().address == "0xB"
        assert manager.move_to_previous().address == "0xA"

    def test_start_track_enriches_playlist(self) -> None:
        start = make_track("0xA", collection="0xC")
        tracks = [start, make_track("0xB", collection=None)]
        manager = PlaylistManager()

        manager.update(tracks, start_track=start)

        assert manager.tracks[1].collection == Collection(address="0xC", name="Collection")

    def test_start_track_outside_list_is_played_first(self, abc_tracks: list[Track]) -> None:
        manager = PlaylistManager()
        manager.update(abc_tracks, start_track=make_track("0xZ"))

        assert addresses(manager.tracks) == ["0xZ", "0xA", "0xB", "0xC"]

    def test_update_without_start_keeps_current(self, abc_tracks: list[Track]) -> None:
        manager = PlaylistManager()
        manager.update(abc_tracks)
        manager.set_current(1)

        manager.update([make_track("0xD"), *abc_tracks])

        assert manager.current_track.address == "0xB"
        assert manager.current_index == 2

    def test_invalid_playlist_rejected(self, abc_tracks: list[Track]) -> None:
        manager = PlaylistManager()
        manager.update(abc_tracks)

        assert not manager.update([Track(index=-1)])
        assert len(manager) == 3

    def test_set_current_out_of_range(self, abc_tracks: list[Track]) -> None:
        manager = PlaylistManager()
        manager.update(abc_tracks)
        with pytest.raises(IndexError):
            manager.set_current(3)

    def test_clear(self, abc_tracks: list[Track]) -> None:
        manager = PlaylistManager()
        manager.update(abc_tracks)
        manager.clear()

        assert manager.is_empty()
        assert manager.current_index == -1

    def test_shuffle_keeps_current_track(self, abc_tracks: list[Track]) -> None:
        manager = PlaylistManager()
        manager.update(abc_tracks)
        manager.set_current(2)

        manager.shuffle(rng=random.Random(3))

        assert manager.current_track.address == "0xC"
        assert manager.current_index == 0

    def test_info(self, abc_tracks: list[Track]) -> None:
        manager = PlaylistManager()
        manager.update(abc_tracks)
        info = manager.info()

        assert info.length == 3
        assert info.current_index == 0
        assert info.has_next
        assert info.has_collection_info
