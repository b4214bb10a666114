"""Tests for listen delivery and the retry queue."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeClock
from patterns_player.core.config import DeliveryConfig
from patterns_player.domain.backend.schemas import SessionListenResponse
from patterns_player.domain.exceptions import NetworkError, ServerError
from patterns_player.domain.library.models import ListenRecord
from patterns_player.domain.listens.delivery import ListenDeliveryService
from patterns_player.domain.session.manager import SessionManager


def record(address: str = "0xA") -> ListenRecord:
    return ListenRecord(track_address=address, collection_address="0xC", timestamp=1.0)


@pytest.fixture
def api() -> MagicMock:
    api = MagicMock()
    api.record_listen = AsyncMock(return_value=True)
    api.record_session_listen = AsyncMock(
        return_value=SessionListenResponse(success=True, user_listen_count=1)
    )
    return api


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def service(api: MagicMock, clock: FakeClock, sleep: AsyncMock) -> ListenDeliveryService:
    return ListenDeliveryService(api, config=DeliveryConfig(), clock=clock, sleep=sleep)


class TestRecordListen:
    @pytest.mark.asyncio
    async def test_success_on_first_attempt(
        self, service: ListenDeliveryService, api: MagicMock
    ) -> None:
        assert await service.record_listen(record()) is True
        api.record_listen.assert_awaited_once()
        assert service.queue_size() == 0

    @pytest.mark.asyncio
    async def test_retries_with_linear_backoff(
        self, service: ListenDeliveryService, api: MagicMock, sleep: AsyncMock
    ) -> None:
        api.record_listen.side_effect = [NetworkError("down"), ServerError(502), True]

        assert await service.record_listen(record()) is True

        assert api.record_listen.await_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_enqueue(
        self, service: ListenDeliveryService, api: MagicMock
    ) -> None:
        api.record_listen.side_effect = NetworkError("down")

        assert await service.record_listen(record()) is False

        assert api.record_listen.await_count == 3
        assert service.is_queued(record())

    @pytest.mark.asyncio
    async def test_queue_is_deduplicated(
        self, service: ListenDeliveryService, api: MagicMock
    ) -> None:
        api.record_listen.side_effect = NetworkError("down")

        await service.record_listen(record())
        await service.record_listen(record())

        assert service.queue_size() == 1

    @pytest.mark.asyncio
    async def test_rejection_is_not_queued(
        self, service: ListenDeliveryService, api: MagicMock
    ) -> None:
        api.record_listen.return_value = False

        assert await service.record_listen(record()) is False

        api.record_listen.assert_awaited_once()
        assert service.queue_size() == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_enqueues(
        self, service: ListenDeliveryService, api: MagicMock
    ) -> None:
        api.record_listen.side_effect = RuntimeError("bug")

        assert await service.record_listen(record()) is False
        assert service.is_queued(record())

    @pytest.mark.asyncio
    async def test_attempt_timeout_counts_as_failure(self, api: MagicMock, clock: FakeClock) -> None:
        async def hang(*args, **kwargs) -> bool:
            await asyncio.sleep(10)
            return True

        api.record_listen.side_effect = hang
        service = ListenDeliveryService(
            api, config=DeliveryConfig(timeout=0.01, retry_attempts=1), clock=clock, sleep=AsyncMock()
        )

        assert await service.record_listen(record()) is False
        assert service.is_queued(record())


class TestSessionRouting:
    @pytest.mark.asyncio
    async def test_valid_session_uses_session_endpoint(self, api: MagicMock, clock: FakeClock) -> None:
        sessions = SessionManager(clock=clock)
        sessions.set_session_data("sess-1", "https://music.example", clock.now + 60)
        service = ListenDeliveryService(api, sessions, clock=clock, sleep=AsyncMock())

        assert await service.record_listen(record()) is True

        assert api.record_session_listen.await_args.args[:2] == ("sess-1", record())
        api.record_listen.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_session_uses_legacy_endpoint(
        self, api: MagicMock, clock: FakeClock
    ) -> None:
        sessions = SessionManager(clock=clock)
        sessions.set_session_data("sess-1", "https://music.example", clock.now - 1)
        service = ListenDeliveryService(api, sessions, clock=clock, sleep=AsyncMock())

        await service.record_listen(record())

        api.record_listen.assert_awaited_once()
        api.record_session_listen.assert_not_awaited()


class TestQueueSweep:
    @pytest.mark.asyncio
    async def test_entry_retried_at_four_minutes_dropped_at_six(
        self, service: ListenDeliveryService, api: MagicMock, clock: FakeClock
    ) -> None:
        api.record_listen.side_effect = NetworkError("down")
        await service.record_listen(record())
        api.record_listen.reset_mock()

        clock.advance(4 * 60)
        assert await service.flush_queue() == 0
        api.record_listen.assert_awaited_once()
        assert service.is_queued(record())

        api.record_listen.reset_mock()
        clock.advance(2 * 60)
        await service.flush_queue()
        api.record_listen.assert_not_awaited()
        assert service.queue_size() == 0

    @pytest.mark.asyncio
    async def test_flush_delivers_queued(
        self, service: ListenDeliveryService, api: MagicMock
    ) -> None:
        api.record_listen.side_effect = NetworkError("down")
        await service.record_listen(record("0xA"))
        await service.record_listen(record("0xB"))

        api.record_listen.side_effect = None
        api.record_listen.return_value = True

        assert await service.flush_queue() == 2
        assert service.queue_size() == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_every_entry_queued(
        self, service: ListenDeliveryService, api: MagicMock
    ) -> None:
        api.record_listen.side_effect = NetworkError("down")
        await service.record_listen(record("0xA"))
        await service.record_listen(record("0xB"))

        api.record_listen.side_effect = RuntimeError("decode failure")

        assert await service.flush_queue() == 0
        assert service.is_queued(record("0xA"))
        assert service.is_queued(record("0xB"))

    @pytest.mark.asyncio
    async def test_rejected_entry_requeued_while_young(
        self, service: ListenDeliveryService, api: MagicMock, clock: FakeClock
    ) -> None:
        api.record_listen.side_effect = NetworkError("down")
        await service.record_listen(record())

        api.record_listen.side_effect = None
        api.record_listen.return_value = False
        clock.advance(60)

        assert await service.flush_queue() == 0
        assert service.is_queued(record())

    @pytest.mark.asyncio
    async def test_rejected_entry_dropped_once_too_old(
        self, service: ListenDeliveryService, api: MagicMock, clock: FakeClock
    ) -> None:
        api.record_listen.side_effect = NetworkError("down")
        await service.record_listen(record())

        async def reject_slowly(*args, **kwargs) -> bool:
            clock.advance(301)
            return False

        api.record_listen.side_effect = reject_slowly
        clock.advance(4 * 60)

        await service.flush_queue()
        assert service.queue_size() == 0

    @pytest.mark.asyncio
    async def test_cleanup_drops_stale_entries(
        self, service: ListenDeliveryService, api: MagicMock, clock: FakeClock
    ) -> None:
        api.record_listen.side_effect = NetworkError("down")
        await service.record_listen(record())
        clock.advance(301)

        assert service.cleanup() == 1
        assert service.queue_size() == 0

    @pytest.mark.asyncio
    async def test_periodic_sweep(self, api: MagicMock, clock: FakeClock) -> None:
        service = ListenDeliveryService(
            api, config=DeliveryConfig(sweep_interval=0.01), clock=clock, sleep=AsyncMock()
        )
        api.record_listen.side_effect = NetworkError("down")
        await service.record_listen(record())
        api.record_listen.side_effect = None
        api.record_listen.return_value = True

        service.start()
        try:
            await asyncio.sleep(0.05)
            assert service.queue_size() == 0
            assert service.stats()["sweeping"] is True
        finally:
            await service.stop()
        assert service.stats()["sweeping"] is False


class TestBatch:
    @pytest.mark.asyncio
    async def test_counts_successes_with_delay(
        self, service: ListenDeliveryService, api: MagicMock, sleep: AsyncMock
    ) -> None:
        api.record_listen.side_effect = [True, False, True]

        assert await service.record_batch([record("0xA"), record("0xB"), record("0xC")]) == 2

        assert [call.args[0] for call in sleep.await_args_list] == [0.2, 0.2]
