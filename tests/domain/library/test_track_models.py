"""Tests for track models."""

import pytest

from conftest import make_track
from patterns_player.domain.exceptions import InvalidTrackError
from patterns_player.domain.library.models import (
    Collection,
    ListenRecord,
    Track,
    TrackMetadata,
)


class TestTrackIdentity:
    def test_same_address_is_same_track(self) -> None:
        assert make_track("0xA", index=1).same_as(make_track("0xA", index=7))

    def test_different_address_is_different_track(self) -> None:
        assert not make_track("0xA").same_as(make_track("0xB"))

    def test_index_identity_when_both_lack_address(self) -> None:
        assert make_track(None, index=3).same_as(make_track(None, index=3))
        assert not make_track(None, index=3).same_as(make_track(None, index=4))

    def test_address_vs_index_only(self) -> None:
        assert not make_track("0xA", index=3).same_as(make_track(None, index=3))

    def test_identity_key_falls_back_to_index(self) -> None:
        assert make_track("0xA").identity_key == "0xA"
        assert make_track(None, index=5).identity_key == "index-5"

    def test_has_identity(self) -> None:
        assert make_track("0xA").has_identity()
        assert make_track(None, index=0).has_identity()
        assert not make_track(None, index=-1).has_identity()
        assert not make_track(None, index=None).has_identity()


class TestTrackFromDict:
    def test_parses_backend_payload(self) -> None:
        track = Track.from_dict(
            {
                "address": "0xA",
                "index": 2,
                "metadata": {"name": "Dawn", "image": "ipfs://img", "bpm": 120},
                "collection": {"address": "0xC", "name": "Patterns"},
                "audioUrl": "https://cdn.example/a.wav",
                "sessionId": "sess",
                "musicServerUrl": "https://music.example",
            }
        )

        assert track.name == "Dawn"
        assert track.collection_address == "0xC"
        assert track.metadata.extra == {"bpm": 120}
        assert track.audio_url == "https://cdn.example/a.wav"
        assert track.session_id == "sess"

    def test_generation_payload_keeps_unknown_metadata(self) -> None:
        track = Track.from_dict({"address": "0xA", "index": 1, "metadata": {"name": "Dawn", "bpm": 120}})

        assert track.to_generation_payload() == {
            "metadata": {"bpm": 120, "name": "Dawn"},
            "index": 1,
            "address": "0xA",
        }

    def test_empty_metadata(self) -> None:
        assert TrackMetadata.from_dict(None) == TrackMetadata()


class TestListenRecord:
    def test_from_countable_track(self) -> None:
        record = ListenRecord.from_track(make_track("0xA", collection="0xC"), 100.0)
        assert record.key == "0xA:0xC"
        assert record.timestamp == 100.0

    def test_track_without_collection_is_rejected(self) -> None:
        with pytest.raises(InvalidTrackError):
            ListenRecord.from_track(make_track("0xA", collection=None), 100.0)

    def test_collection_without_address_is_rejected(self) -> None:
        track = Track(address="0xA", collection=Collection(address=None, name="Unknown"))
        assert not track.can_be_counted()
        with pytest.raises(InvalidTrackError):
            ListenRecord.from_track(track, 1.0)
