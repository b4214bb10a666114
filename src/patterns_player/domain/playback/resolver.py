"""
Music source resolution.

Turns a track plus an authorization into a playable AudioResource: cached
audio first, then audio pre-resolved by an upstream step, then a remote
generation request. Concurrent resolutions of the same cache key share one
request.
"""

import asyncio
from typing import Callable, Optional, Sequence

from loguru import logger

from ...core.config import GenerationConfig
from ..backend.api import BackendApi
from ..exceptions import GenerationTimeoutError, MusicSourceError, ServerError, classify_status
from ..library.models import Track
from ..session.models import Authorization
from .cache import MusicCache, cache_key
from .resource import AudioResource

BATCH_CONCURRENCY = 2


class MusicSourceResolver:
    """Resolves tracks to audio through the cache or the music server.

    The resolver never retries on its own. An AuthExpiredError carries
    ``retryable`` so the caller can refresh the authorization and call
    ``resolve`` once more with ``retry_on_auth_error=False``.
    """

    def __init__(
        self,
        api: BackendApi,
        cache: MusicCache,
        config: Optional[GenerationConfig] = None,
    ):
        self.api = api
        self.cache = cache
        self.config = config or GenerationConfig()
        self._in_flight: dict[str, asyncio.Task] = {}

    def owns(self, resource: AudioResource) -> bool:
        """True if the resource's lifetime is managed by the cache."""
        return self.cache.owns(resource)

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def is_in_flight(self, track: Track, scope: Optional[str] = None) -> bool:
        return cache_key(track, scope) in self._in_flight

    async def resolve(
        self,
        track: Track,
        auth: Authorization,
        *,
        retry_on_auth_error: bool = True,
        timeout: Optional[float] = None,
        background: bool = False,
    ) -> AudioResource:
        """
        Get playable audio for a track.

        Args:
            track: Track to resolve
            auth: Session or legacy API key used for generation
            retry_on_auth_error: Mark a 401 as retryable for the caller
            timeout: Generation timeout override
            background: Use the (longer) preload timeout

        Returns:
            AudioResource. Tracks without identity get an uncached resource
            that the caller must release.

        Raises:
            MusicSourceError: Generation failed (see exceptions for the taxonomy)
        """
        scope = auth.scope
        cached = self.cache.get(track, scope)
        if cached is not None:
            return cached

        if timeout is None:
            timeout = self.config.preload_timeout if background else self.config.timeout

        if track.audio_url:
            resource = AudioResource.from_url(track.audio_url)
            if self.cache.set(track, resource, scope):
                logger.debug(f"Adopted pre-resolved audio for {track.name}")
            return resource

        if not track.has_identity():
            return await self._generate(track, auth, timeout, retry_on_auth_error)

        key = cache_key(track, scope)
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.create_task(
                self._generate_and_store(track, auth, timeout, retry_on_auth_error)
            )
            self._in_flight[key] = task
            task.add_done_callback(lambda done, key=key: self._finish(key, done))
        else:
            logger.debug(f"Joining in-flight generation for {track.name}")

        # Shielded so a cancelled caller (track switch) does not abort the
        # generation other callers or the cache are waiting on
        return await asyncio.shield(task)

    async def _generate_and_store(
        self, track: Track, auth: Authorization, timeout: float, retryable: bool
    ) -> AudioResource:
        resource = await self._generate(track, auth, timeout, retryable)
        self.cache.set(track, resource, auth.scope)
        return resource

    async def _generate(
        self, track: Track, auth: Authorization, timeout: float, retryable: bool
    ) -> AudioResource:
        logger.info(f"Generating music for {track.name} via {auth.server_url}")
        try:
            response = await asyncio.wait_for(
                self.api.generate_music(
                    auth.server_url,
                    track.to_generation_payload(),
                    auth.auth_headers(),
                    timeout,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise GenerationTimeoutError(timeout) from e

        if not response.is_success:
            error = classify_status(response.status_code, response.text[:200], retryable)
            logger.warning(f"Music generation failed for {track.name}: {error}")
            raise error

        if not response.content:
            raise ServerError(response.status_code, "Empty audio payload")

        content_type = response.headers.get("content-type", "audio/wav")
        logger.debug(f"Generated {len(response.content)} bytes for {track.name}")
        return AudioResource(data=response.content, content_type=content_type)

    def _finish(self, key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Retrieve the exception so an unawaited failure is not reported as lost
        if not task.cancelled():
            task.exception()

    async def preload(self, track: Track, auth: Authorization) -> bool:
        """Resolve a track ahead of need. Failures are logged, never raised.

        Returns:
            True if the track is now cached
        """
        if self.cache.has(track, auth.scope):
            return True
        try:
            await self.resolve(track, auth, retry_on_auth_error=False, background=True)
        except MusicSourceError as e:
            logger.warning(f"Preload failed for {track.name}: {e}")
            return False
        logger.debug(f"Preloaded {track.name}")
        return self.cache.has(track, auth.scope)

    async def generate_batch(
        self,
        tracks: Sequence[Track],
        auth: Authorization,
        concurrency: int = BATCH_CONCURRENCY,
        on_progress: Optional[Callable[[int, int], None]] = None,
        on_error: Optional[Callable[[Track, MusicSourceError], None]] = None,
    ) -> dict[str, AudioResource]:
        """
        Generate several tracks with bounded concurrency.

        Args:
            tracks: Tracks to generate
            auth: Authorization for every request
            concurrency: Maximum simultaneous generations
            on_progress: Called with (completed, total) after each track
            on_error: Called with (track, error) for each failure

        Returns:
            Mapping of track identity key to resource, successful tracks only
        """
        semaphore = asyncio.Semaphore(max(1, concurrency))
        results: dict[str, AudioResource] = {}
        completed = 0

        async def generate_one(track: Track) -> None:
            nonlocal completed
            async with semaphore:
                try:
                    results[track.identity_key] = await self.resolve(
                        track, auth, retry_on_auth_error=False, background=True
                    )
                except MusicSourceError as e:
                    logger.warning(f"Batch generation failed for {track.name}: {e}")
                    if on_error:
                        on_error(track, e)
                completed += 1
                if on_progress:
                    on_progress(completed, len(tracks))

        await asyncio.gather(*(generate_one(track) for track in tracks))
        logger.info(f"Batch generation finished: {len(results)}/{len(tracks)} tracks")
        return results

    async def cancel_pending(self) -> None:
        """Cancel every in-flight generation (shutdown)."""
        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug(f"Cancelled {len(tasks)} in-flight generations")
