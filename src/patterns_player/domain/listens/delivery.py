"""
Listen delivery with retry queue.

Counted listens are sent to the backend with a few quick retries. Listens
that still fail are queued and retried by a periodic sweep until they are
older than ``max_queue_age``.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from loguru import logger

from ...core.config import DeliveryConfig
from ..backend.api import BackendApi
from ..exceptions import DeliveryError, MusicSourceError
from ..library.models import ListenRecord
from ..session.manager import SessionManager


@dataclass
class QueuedListen:
    record: ListenRecord
    queued_at: float  # Unix timestamp
    attempts: int = 0


class ListenDeliveryService:
    """Sends listen records to the backend and retries failures.

    A valid session routes listens to the session endpoint, otherwise the
    legacy endpoint is used. A fresh listen that the backend explicitly
    rejects is not queued. Queued listens stay queued on any failure until
    they exceed ``max_queue_age``.
    """

    def __init__(
        self,
        api: BackendApi,
        session_manager: Optional[SessionManager] = None,
        config: Optional[DeliveryConfig] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api = api
        self.session_manager = session_manager
        self.config = config or DeliveryConfig()
        self._clock = clock
        self._sleep = sleep
        self._queue: dict[str, QueuedListen] = {}
        self._processing = False
        self._sweep_task: Optional[asyncio.Task] = None

    async def _send(self, record: ListenRecord) -> bool:
        """One delivery attempt.

        Raises:
            DeliveryError: Timeout, network or server failure
        """
        session = self.session_manager.current() if self.session_manager else None
        try:
            if session is not None:
                response = await asyncio.wait_for(
                    self.api.record_session_listen(
                        session.session_id, record, timeout=self.config.timeout
                    ),
                    timeout=self.config.timeout,
                )
                return response.success
            return await asyncio.wait_for(
                self.api.record_listen(record, timeout=self.config.timeout),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError as e:
            raise DeliveryError(f"Listen delivery timed out for {record.key}", e) from e
        except MusicSourceError as e:
            raise DeliveryError(f"Listen delivery failed for {record.key}: {e}", e) from e

    async def record_listen(self, record: ListenRecord) -> bool:
        """
        Deliver a listen, retrying transient failures.

        Args:
            record: Listen to deliver

        Returns:
            True only if the backend acknowledged the listen. On failure the
            record is queued unless the backend explicitly rejected it.
        """
        attempts = self.config.retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                delivered = await self._send(record)
            except DeliveryError as e:
                logger.warning(f"Listen delivery attempt {attempt}/{attempts} failed: {e}")
                if attempt < attempts:
                    await self._sleep(self.config.retry_delay * attempt)
                continue
            except Exception:
                logger.exception(f"Unexpected error delivering listen {record.key}")
                break

            if delivered:
                self._queue.pop(record.key, None)
            return delivered

        self._enqueue(record)
        return False

    def _enqueue(self, record: ListenRecord, queued_at: Optional[float] = None, attempts: int = 0) -> None:
        existing = self._queue.get(record.key)
        if existing is not None:
            existing.attempts = max(existing.attempts, attempts)
            logger.debug(f"Listen already queued: {record.key}")
            return
        self._queue[record.key] = QueuedListen(
            record=record,
            queued_at=self._clock() if queued_at is None else queued_at,
            attempts=attempts,
        )
        logger.info(f"Queued listen for retry: {record.key} ({len(self._queue)} queued)")

    def _requeue(self, entry: QueuedListen) -> None:
        if self._is_too_old(entry, self._clock()):
            logger.warning(f"Dropping stale queued listen: {entry.record.key}")
            return
        self._enqueue(entry.record, entry.queued_at, entry.attempts)

    def _is_too_old(self, entry: QueuedListen, now: float) -> bool:
        return now - entry.queued_at > self.config.max_queue_age

    def is_queued(self, record: ListenRecord) -> bool:
        return record.key in self._queue

    def queue_size(self) -> int:
        return len(self._queue)

    async def flush_queue(self) -> int:
        """Retry every queued listen once.

        Entries older than ``max_queue_age`` are dropped without sending.
        Entries that fail again, for any reason, stay queued with their
        original queue time while they are younger than ``max_queue_age``.

        Returns:
            Number of listens delivered
        """
        if self._processing or not self._queue:
            return 0

        self._processing = True
        delivered = 0
        entries = list(self._queue.values())
        self._queue.clear()
        done = 0
        try:
            now = self._clock()

            for i, entry in enumerate(entries):
                done = i
                if self._is_too_old(entry, now):
                    logger.warning(f"Dropping stale queued listen: {entry.record.key}")
                    continue

                if i > 0:
                    await self._sleep(self.config.queue_delay)

                entry.attempts += 1
                try:
                    if await self._send(entry.record):
                        delivered += 1
                        continue
                    logger.warning(f"Queued listen rejected: {entry.record.key}")
                except DeliveryError as e:
                    logger.debug(f"Queued listen still failing: {e}")
                except Exception:
                    logger.exception(f"Unexpected error delivering queued listen {entry.record.key}")

                self._requeue(entry)
            done = len(entries)
        finally:
            # Entries not reached when the sweep is cancelled go back untouched
            for entry in entries[done:]:
                self._enqueue(entry.record, entry.queued_at, entry.attempts)
            self._processing = False

        if delivered:
            logger.info(f"Delivered {delivered} queued listens")
        return delivered

    def cleanup(self) -> int:
        """Drop queued listens older than ``max_queue_age`` without sending them."""
        now = self._clock()
        stale = [key for key, entry in self._queue.items() if self._is_too_old(entry, now)]
        for key in stale:
            del self._queue[key]
        return len(stale)

    async def record_batch(self, records: Iterable[ListenRecord]) -> int:
        """Deliver listens one after another.

        Returns:
            Number of listens delivered
        """
        records = list(records)
        successes = 0
        for i, record in enumerate(records):
            if await self.record_listen(record):
                successes += 1
            if i < len(records) - 1:
                await self._sleep(self.config.batch_delay)
        logger.info(f"Batch delivery: {successes}/{len(records)} listens recorded")
        return successes

    def start(self) -> None:
        """Start the periodic queue sweep."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            try:
                await self.flush_queue()
            except Exception:
                logger.exception("Listen queue sweep failed")

    def stats(self) -> dict:
        return {
            "queue_size": len(self._queue),
            "processing": self._processing,
            "sweeping": self._sweep_task is not None and not self._sweep_task.done(),
        }
