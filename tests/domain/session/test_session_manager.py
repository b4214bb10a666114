"""Tests for session, API key and authorization management."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeClock, make_track
from patterns_player.domain.exceptions import AuthExpiredError, NetworkError
from patterns_player.domain.session.manager import (
    ApiKeyManager,
    AuthorizationProvider,
    SessionManager,
    session_from_track,
)
from patterns_player.domain.session.models import ApiKey, Session


class TestSessionValidity:
    def test_expired_session_is_cleared(self, clock: FakeClock) -> None:
        manager = SessionManager(clock=clock)
        manager.set_session_data("sess-1", "https://music.example", clock.now - 1)

        assert manager.check_validity() is False
        assert manager.session is None

    def test_valid_session_has_no_side_effects(self, clock: FakeClock) -> None:
        manager = SessionManager(clock=clock)
        session = manager.set_session_data("sess-1", "https://music.example", clock.now + 3600)
        listener = MagicMock()
        manager.subscribe(listener)

        assert manager.check_validity() is True
        assert manager.session is session
        listener.assert_not_called()

    def test_no_session(self, clock: FakeClock) -> None:
        assert SessionManager(clock=clock).check_validity() is False

    def test_set_session_replaces_previous(self, clock: FakeClock) -> None:
        manager = SessionManager(clock=clock)
        manager.set_session_data("old", "https://a.example", clock.now + 60)
        manager.set_session_data("new", "https://b.example", clock.now + 60)

        assert manager.current().session_id == "new"

    def test_clear_session_notifies(self, clock: FakeClock) -> None:
        manager = SessionManager(clock=clock)
        manager.set_session_data("sess-1", "https://music.example", clock.now + 60)
        listener = MagicMock()
        unsubscribe = manager.subscribe(listener)

        manager.clear_session()
        listener.assert_called_once_with(None)

        unsubscribe()
        manager.set_session_data("sess-2", "https://music.example", clock.now + 60)
        listener.assert_called_once()

    def test_remaining_seconds(self, clock: FakeClock) -> None:
        manager = SessionManager(clock=clock)
        assert manager.remaining_seconds() == 0
        manager.set_session_data("sess-1", "https://music.example", clock.now + 90)
        clock.advance(30)
        assert manager.remaining_seconds() == 60

    def test_repr_masks_session_id(self) -> None:
        session = Session("abcdefghijklmnop", "https://music.example", 1.0)
        assert "abcdefghijklmnop" not in repr(session)


class TestSessionSweep:
    @pytest.mark.asyncio
    async def test_sweep_clears_expired_session(self, clock: FakeClock) -> None:
        manager = SessionManager(clock=clock, check_interval=0.01)
        manager.set_session_data("sess-1", "https://music.example", clock.now + 10)
        manager.start()
        try:
            clock.advance(11)
            await asyncio.sleep(0.05)
            assert manager.session is None
            assert manager.is_sweeping
        finally:
            await manager.stop()
        assert not manager.is_sweeping

    @pytest.mark.asyncio
    async def test_refresh_installs_new_session(self, clock: FakeClock) -> None:
        fresh = Session("fresh", "https://music.example", clock.now + 600)
        manager = SessionManager(clock=clock, refresh_handler=AsyncMock(return_value=fresh))

        assert await manager.refresh() is fresh
        assert manager.current() is fresh

    @pytest.mark.asyncio
    async def test_refresh_without_handler(self, clock: FakeClock) -> None:
        assert await SessionManager(clock=clock).refresh() is None

    @pytest.mark.asyncio
    async def test_failing_refresh_handler(self, clock: FakeClock) -> None:
        manager = SessionManager(clock=clock, refresh_handler=AsyncMock(side_effect=RuntimeError))
        assert await manager.refresh() is None


@pytest.fixture
def backend(clock: FakeClock) -> MagicMock:
    backend = MagicMock()
    backend.generate_music_api_key = AsyncMock(
        side_effect=lambda token: ApiKey(f"key-for-{token}", "https://legacy.example", clock.now + 60)
    )
    return backend


class TestApiKeyManager:
    @pytest.mark.asyncio
    async def test_caches_valid_key(self, backend: MagicMock, clock: FakeClock) -> None:
        manager = ApiKeyManager(backend, lambda: "token", clock=clock)

        first = await manager.get_valid_key()
        second = await manager.get_valid_key()

        assert first is second
        backend.generate_music_api_key.assert_awaited_once_with("token")

    @pytest.mark.asyncio
    async def test_expired_key_is_replaced(self, backend: MagicMock, clock: FakeClock) -> None:
        manager = ApiKeyManager(backend, lambda: "token", clock=clock)
        first = await manager.get_valid_key()

        clock.advance(61)

        assert await manager.get_valid_key() is not first
        assert backend.generate_music_api_key.await_count == 2

    @pytest.mark.asyncio
    async def test_no_token_no_key(self, backend: MagicMock, clock: FakeClock) -> None:
        manager = ApiKeyManager(backend, lambda: None, clock=clock)
        assert await manager.get_valid_key() is None
        backend.generate_music_api_key.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backend_failure_returns_none(self, backend: MagicMock, clock: FakeClock) -> None:
        backend.generate_music_api_key.side_effect = NetworkError("down")
        manager = ApiKeyManager(backend, lambda: "token", clock=clock)
        assert await manager.get_valid_key() is None

    @pytest.mark.asyncio
    async def test_refresh_fetches_new_key(self, backend: MagicMock, clock: FakeClock) -> None:
        manager = ApiKeyManager(backend, lambda: "token", clock=clock)
        await manager.get_valid_key()

        await manager.refresh_key()

        assert backend.generate_music_api_key.await_count == 2


class TestAuthorizationProvider:
    @pytest.mark.asyncio
    async def test_prefers_process_session(self, backend: MagicMock, clock: FakeClock) -> None:
        sessions = SessionManager(clock=clock)
        session = sessions.set_session_data("sess-1", "https://music.example", clock.now + 60)
        provider = AuthorizationProvider(sessions, ApiKeyManager(backend, lambda: "token", clock))
        carrier = make_track("0xA", session_id="carried", music_server_url="https://other.example")

        assert await provider.authorization_for(carrier) is session

    @pytest.mark.asyncio
    async def test_session_carried_by_playlist_track(self, clock: FakeClock) -> None:
        provider = AuthorizationProvider(SessionManager(clock=clock))
        carrier = make_track("0xB", session_id="carried", music_server_url="https://other.example")

        auth = await provider.authorization_for(make_track("0xA"), [make_track("0xA"), carrier])

        assert auth == Session("carried", "https://other.example")

    @pytest.mark.asyncio
    async def test_falls_back_to_legacy_key(self, backend: MagicMock, clock: FakeClock) -> None:
        provider = AuthorizationProvider(
            SessionManager(clock=clock), ApiKeyManager(backend, lambda: "token", clock)
        )

        auth = await provider.authorization_for(make_track("0xA"))

        assert isinstance(auth, ApiKey)
        assert auth.auth_headers() == {"X-Music-Api-Key": "key-for-token"}

    @pytest.mark.asyncio
    async def test_nothing_available(self, clock: FakeClock) -> None:
        provider = AuthorizationProvider(SessionManager(clock=clock))
        with pytest.raises(AuthExpiredError) as exc_info:
            await provider.authorization_for(make_track("0xA"))
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_refresh_api_key(self, backend: MagicMock, clock: FakeClock) -> None:
        keys = ApiKeyManager(backend, lambda: "token", clock)
        provider = AuthorizationProvider(SessionManager(clock=clock), keys)
        old = await keys.get_valid_key()

        fresh = await provider.refresh(old)

        assert isinstance(fresh, ApiKey)
        assert fresh is not old

    @pytest.mark.asyncio
    async def test_rejected_session_without_handler_falls_back(
        self, backend: MagicMock, clock: FakeClock
    ) -> None:
        sessions = SessionManager(clock=clock)
        session = sessions.set_session_data("sess-1", "https://music.example", clock.now + 60)
        provider = AuthorizationProvider(sessions, ApiKeyManager(backend, lambda: "token", clock))

        fresh = await provider.refresh(session)

        assert sessions.session is None
        assert isinstance(fresh, ApiKey)

    def test_session_from_track_needs_server(self) -> None:
        assert session_from_track(make_track("0xA", session_id="s")) is None
        assert session_from_track(None) is None
