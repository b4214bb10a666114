"""
Session and authorization management.

SessionManager owns the single wallet-authorized session handed over by the
external signature flow and sweeps it for expiry. ApiKeyManager caches the
legacy music API key. AuthorizationProvider picks whichever authorization is
usable for a track and obtains a fresh one for the one-shot retry after an
AuthExpiredError.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, Sequence

from loguru import logger

from ..exceptions import AuthExpiredError, MusicSourceError
from ..library.models import Track
from .models import ApiKey, Authorization, Session

DEFAULT_CHECK_INTERVAL = 30.0

SessionListener = Callable[[Optional[Session]], None]
RefreshHandler = Callable[[], Awaitable[Optional[Session]]]


class SessionManager:
    """Process-wide holder of the active session.

    At most one session is active. ``check_validity()`` clears an expired
    session as a side effect and runs on ``start()`` and every
    ``check_interval`` seconds afterwards.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        refresh_handler: Optional[RefreshHandler] = None,
    ):
        self._clock = clock
        self.check_interval = check_interval
        self.refresh_handler = refresh_handler
        self._session: Optional[Session] = None
        self._listeners: list[SessionListener] = []
        self._sweep_task: Optional[asyncio.Task] = None

    @property
    def session(self) -> Optional[Session]:
        """Installed session, without checking expiry."""
        return self._session

    def set_session_data(self, session_id: str, music_server_url: str, expires_at: float) -> Session:
        """Install the process-wide session, replacing any previous one."""
        session = Session(
            session_id=session_id,
            music_server_url=music_server_url,
            expires_at=expires_at,
        )
        self._session = session
        logger.info(f"Session installed, expires in {self.remaining_seconds():.0f}s")
        self._notify()
        return session

    def check_validity(self) -> bool:
        """True iff a session exists and has not expired. Clears an expired session."""
        if self._session is None:
            return False
        if self._session.is_valid(self._clock()):
            return True

        logger.info("Session expired, clearing")
        self._session = None
        self._notify()
        return False

    def clear_session(self) -> None:
        """Explicitly invalidate the session (logout)."""
        if self._session is None:
            return
        self._session = None
        logger.info("Session cleared")
        self._notify()

    def current(self) -> Optional[Session]:
        """The valid session, or None."""
        return self._session if self.check_validity() else None

    def remaining_seconds(self) -> float:
        """Seconds until the session expires (0 when there is none)."""
        if self._session is None or self._session.expires_at is None:
            return 0.0
        return max(0.0, self._session.expires_at - self._clock())

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener for session changes.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._session)
            except Exception:
                logger.exception("Session listener failed")

    async def refresh(self) -> Optional[Session]:
        """Obtain a new session from the refresh handler (wallet re-sign).

        Returns:
            The new session, or None if no handler is set or it produced nothing
        """
        if self.refresh_handler is None:
            logger.debug("No session refresh handler registered")
            return None

        try:
            session = await self.refresh_handler()
        except Exception:
            logger.exception("Session refresh failed")
            return None

        if session is None or not session.is_valid(self._clock()):
            logger.warning("Session refresh produced no valid session")
            return None

        self._session = session
        logger.info("Session refreshed")
        self._notify()
        return session

    def start(self) -> None:
        """Check validity now and start the periodic expiry sweep."""
        self.check_validity()
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

    @property
    def is_sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.check_interval)
            self.check_validity()


class ApiKeyManager:
    """Caches the legacy music API key and fetches a new one when it expires."""

    def __init__(
        self,
        backend,
        token_getter: Callable[[], Optional[str]],
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.token_getter = token_getter
        self._clock = clock
        self._key: Optional[ApiKey] = None
        self._lock = asyncio.Lock()

    def cached_key(self) -> Optional[ApiKey]:
        return self._key

    def clear(self) -> None:
        self._key = None

    async def get_valid_key(self) -> Optional[ApiKey]:
        """Cached key while valid, otherwise a freshly issued one.

        Returns:
            ApiKey, or None when no backend token is available or issuing failed
        """
        async with self._lock:
            if self._key is not None and self._key.is_valid(self._clock()):
                return self._key

            token = self.token_getter()
            if not token:
                logger.debug("No backend auth token, legacy API key unavailable")
                return None

            try:
                self._key = await self.backend.generate_music_api_key(token)
            except MusicSourceError as e:
                logger.warning(f"Failed to get music API key: {e}")
                self._key = None
                return None

            logger.info("Music API key issued")
            return self._key

    async def refresh_key(self) -> Optional[ApiKey]:
        self.clear()
        return await self.get_valid_key()


def session_from_track(track: Optional[Track]) -> Optional[Session]:
    """Session carried by a track from an upstream generation step, if any."""
    if track is None or not track.session_id or not track.music_server_url:
        return None
    return Session(session_id=track.session_id, music_server_url=track.music_server_url)


class AuthorizationProvider:
    """Chooses the authorization used for music generation.

    Order: the valid process-wide session, a session carried by the track or
    any playlist track, then the legacy API key.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        api_key_manager: Optional[ApiKeyManager] = None,
    ):
        self.session_manager = session_manager
        self.api_key_manager = api_key_manager

    async def authorization_for(
        self,
        track: Optional[Track] = None,
        playlist: Sequence[Track] = (),
    ) -> Authorization:
        """
        Raises:
            AuthExpiredError: No usable authorization (not retryable)
        """
        session = self.session_manager.current()
        if session is not None:
            return session

        for candidate in (track, *playlist):
            carried = session_from_track(candidate)
            if carried is not None:
                return carried

        if self.api_key_manager is not None:
            key = await self.api_key_manager.get_valid_key()
            if key is not None:
                return key

        raise AuthExpiredError("No valid session or API key", retryable=False)

    async def refresh(self, auth: Authorization) -> Optional[Authorization]:
        """Fresh authorization to retry with after ``auth`` was rejected."""
        if isinstance(auth, ApiKey):
            if self.api_key_manager is None:
                return None
            return await self.api_key_manager.refresh_key()

        if self.session_manager.refresh_handler is not None:
            session = await self.session_manager.refresh()
            if session is not None:
                return session
        elif self.session_manager.session == auth:
            self.session_manager.clear_session()

        if self.api_key_manager is not None:
            return await self.api_key_manager.get_valid_key()
        return None
