"""Engine context for explicit service ownership.

This module provides the EngineContext dataclass that owns every engine
service for one application lifetime: created at start, torn down on
shutdown, and passed to the presentation layer instead of module-level state.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx
from loguru import logger

from patterns_player.core.config import Config
from patterns_player.domain.backend.api import BackendApi
from patterns_player.domain.listens.delivery import ListenDeliveryService
from patterns_player.domain.listens.tracker import ListenTracker
from patterns_player.domain.playback.audio import AudioOutput, SimulatedAudioOutput
from patterns_player.domain.playback.cache import MusicCache
from patterns_player.domain.playback.controller import PlaybackController
from patterns_player.domain.playback.resolver import MusicSourceResolver
from patterns_player.domain.session.manager import (
    ApiKeyManager,
    AuthorizationProvider,
    RefreshHandler,
    SessionManager,
)


@dataclass
class EngineContext:
    """Lifecycle-scoped container for the playback and session engine.

    Attributes:
        config: Engine configuration
        client: Shared HTTP client for backend and music server requests
        api: Backend API client
        sessions: Process-wide session holder
        api_keys: Legacy music API key cache
        authorization: Chooses session or API key per track
        cache: Generated audio cache (outlives single playbacks)
        resolver: Music source resolver
        tracker: Counted-listen detection
        delivery: Listen delivery with retry queue
        output: Audio output the controller drives
        player: Playback controller (state machine)
        owns_client: Whether shutdown closes the HTTP client
    """

    config: Config
    client: httpx.AsyncClient
    api: BackendApi
    sessions: SessionManager
    api_keys: ApiKeyManager
    authorization: AuthorizationProvider
    cache: MusicCache
    resolver: MusicSourceResolver
    tracker: ListenTracker
    delivery: ListenDeliveryService
    output: AudioOutput
    player: PlaybackController
    started: bool = field(default=False)
    owns_client: bool = field(default=True)

    @classmethod
    def create(
        cls,
        config: Optional[Config] = None,
        audio_output: Optional[AudioOutput] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
        refresh_handler: Optional[RefreshHandler] = None,
    ) -> "EngineContext":
        """Build every engine service.

        Args:
            config: Engine configuration (defaults when omitted)
            audio_output: Output to play through (SimulatedAudioOutput when omitted)
            client: HTTP client to use. A caller-supplied client is left open on shutdown;
                one created here is closed.
            clock: Time source shared by all services
            refresh_handler: Async callable producing a fresh session (wallet re-sign)

        Returns:
            New, not yet started EngineContext
        """
        config = config or Config()
        owns_client = client is None
        if owns_client:
            client = httpx.AsyncClient(timeout=config.backend.request_timeout)
        api = BackendApi(client, config.backend)

        sessions = SessionManager(
            clock=clock,
            check_interval=config.session.check_interval,
            refresh_handler=refresh_handler,
        )
        api_keys = ApiKeyManager(api, lambda: config.backend.auth_token, clock=clock)
        authorization = AuthorizationProvider(sessions, api_keys)

        cache = MusicCache(
            max_size=config.cache.max_size,
            max_age=config.cache.max_age_seconds,
            clock=clock,
        )
        resolver = MusicSourceResolver(api, cache, config.generation)
        tracker = ListenTracker.from_config(config.listens, clock=clock)
        delivery = ListenDeliveryService(api, sessions, config.delivery, clock=clock)
        output = audio_output or SimulatedAudioOutput()

        player = PlaybackController(
            resolver,
            authorization,
            tracker,
            delivery,
            output,
            config=config.player,
            clock=clock,
        )

        return cls(
            config=config,
            client=client,
            api=api,
            sessions=sessions,
            api_keys=api_keys,
            authorization=authorization,
            cache=cache,
            resolver=resolver,
            tracker=tracker,
            delivery=delivery,
            output=output,
            player=player,
            owns_client=owns_client,
        )

    async def start(self) -> None:
        """Start the session expiry sweep and the listen queue sweep."""
        if self.started:
            return
        self.sessions.start()
        self.delivery.start()
        self.started = True
        logger.info("Engine started")

    async def shutdown(self) -> None:
        """Tear down in dependency order. Safe to call more than once."""
        await self.player.close()
        await self.player.wait_for_background()

        try:
            await self.delivery.flush_queue()
        except Exception:
            logger.exception("Failed to flush listen queue on shutdown")

        await self.delivery.stop()
        await self.sessions.stop()
        await self.resolver.cancel_pending()

        self.tracker.clear()
        self.cache.clear()
        if self.owns_client:
            await self.client.aclose()
        self.started = False
        logger.info("Engine shut down")

    async def __aenter__(self) -> "EngineContext":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
