"""
Playback controller: the player's state machine.

States: IDLE -> LOADING -> PLAYING <-> PAUSED -> LOADING (next) ...
ERROR is reached from LOADING or PLAYING; close() returns to IDLE from any
state.

Every track switch bumps a generation counter. Work started for an earlier
generation (a slow resolution, a clock tick, a delayed advance) checks the
counter when it resumes and is discarded if the player has moved on.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Coroutine, NamedTuple, Optional, Sequence, Union

from loguru import logger

from ...core.config import PlayerConfig
from ...core.output import log
from ..exceptions import AudioOutputError, AuthExpiredError, InvalidTrackError, MusicSourceError
from ..library.models import ListenRecord, Track
from ..listens.delivery import ListenDeliveryService
from ..listens.tracker import ListenTracker
from ..session.manager import AuthorizationProvider
from ..session.models import Authorization
from .audio import AudioEvent, AudioOutput
from .clock import ProgressClock, calculate_progress, progress_to_time
from .playlist import PlaylistManager, next_index, prev_index
from .resolver import MusicSourceResolver
from .resource import AudioResource

# Wall-clock gaps longer than this many tick intervals are not counted as
# listening time (suspended process, blocked loop)
MAX_TICK_DRIFT = 1.2


class PlaybackState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    ERROR = "error"


class Direction(Enum):
    NEXT = "next"
    PREV = "prev"


class PlayerSnapshot(NamedTuple):
    """Read-only player state for the presentation layer."""

    current_track: Optional[Track]
    is_playing: bool
    is_loading: bool
    progress: float  # Percentage 0-100
    current_time: float  # Seconds
    duration: float  # Seconds
    volume: float  # 0.0-1.0
    is_muted: bool
    playlist: tuple[Track, ...]
    state: PlaybackState
    current_index: int


SnapshotListener = Callable[[PlayerSnapshot], None]


class PlaybackController:
    """Plays tracks from a circular playlist on an AudioOutput.

    Resolution failures never escape: the controller skips ahead (bounded by
    ``max_advance_attempts``) and closes playback when nothing is playable.
    """

    def __init__(
        self,
        resolver: MusicSourceResolver,
        authorization: AuthorizationProvider,
        tracker: ListenTracker,
        delivery: ListenDeliveryService,
        output: AudioOutput,
        config: Optional[PlayerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.resolver = resolver
        self.authorization = authorization
        self.tracker = tracker
        self.delivery = delivery
        self.output = output
        self.config = config or PlayerConfig()
        self._clock = clock

        self.playlist = PlaylistManager()
        self._state = PlaybackState.IDLE
        self._generation = 0
        self._current_track: Optional[Track] = None
        self._resource: Optional[AudioResource] = None
        self._owns_resource = False

        # Per-track counters
        self._position = 0.0
        self._duration = 0.0
        self._played_seconds = 0.0
        self._last_tick_at: Optional[float] = None
        self._listen_recorded = False

        self._volume = self.config.volume
        self._previous_volume = self.config.volume
        self._muted = False

        self._listeners: list[SnapshotListener] = []
        self._tasks: set[asyncio.Task] = set()
        self._advance_task: Optional[asyncio.Task] = None
        self._progress_clock = ProgressClock(self.config.tick_interval, self._handle_tick)

        output.add_listener(self._on_audio_event)

    # ------------------------------------------------------------------ state

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def current_track(self) -> Optional[Track]:
        return self._current_track

    @property
    def duration(self) -> float:
        return self._duration if self._duration > 0 else self.config.default_duration

    @property
    def position(self) -> float:
        return self._position

    @property
    def played_seconds(self) -> float:
        """Actual listening time of the current track (pauses and seeks excluded)."""
        return self._played_seconds

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def is_muted(self) -> bool:
        return self._muted

    def snapshot(self) -> PlayerSnapshot:
        return PlayerSnapshot(
            current_track=self._current_track,
            is_playing=self._state == PlaybackState.PLAYING,
            is_loading=self._state == PlaybackState.LOADING,
            progress=calculate_progress(self._position, self.duration),
            current_time=self._position,
            duration=self.duration,
            volume=self._volume,
            is_muted=self._muted,
            playlist=tuple(self.playlist.tracks),
            state=self._state,
            current_index=self.playlist.current_index,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a snapshot listener.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener failed")

    def _set_state(self, state: PlaybackState) -> None:
        if state != self._state:
            logger.debug(f"Playback state: {self._state.value} -> {state.value}")
            self._state = state
        self._notify()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.opt(exception=task.exception()).error("Background playback task failed")

    async def wait_for_background(self) -> None:
        """Wait until preloads, listen deliveries and scheduled advances settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --------------------------------------------------------------- commands

    async def play_track(self, track: Track, playlist: Optional[Sequence[Track]] = None) -> bool:
        """
        Play a track, making it the head of the (rotated) playlist.

        Args:
            track: Track to play
            playlist: Tracks to play after it (default: just this track)

        Returns:
            True if a track started playing
        """
        tracks = list(playlist) if playlist else [track]
        if not self.playlist.update(tracks, start_track=track):
            log(f"Cannot play {track.name}: invalid playlist", "warning")
            return False

        logger.info(f"Play {track.name} ({len(self.playlist)} tracks in playlist)")
        return await self._play_from(self.playlist.current_index, Direction.NEXT)

    async def toggle_play(self) -> None:
        """Pause when playing, resume when paused, replay after an error or close."""
        if self._state == PlaybackState.PLAYING:
            await self.output.pause()
            self._accumulate_playtime()
            self._progress_clock.stop()
            self._set_state(PlaybackState.PAUSED)
        elif self._state == PlaybackState.PAUSED:
            self._last_tick_at = self._clock()
            await self.output.play()
            # Outputs that report STARTED on resume already switched state
            if self._state == PlaybackState.PAUSED:
                self._enter_playing()
        elif self._state in (PlaybackState.IDLE, PlaybackState.ERROR):
            if self.playlist.current_track is not None:
                await self._play_from(self.playlist.current_index, Direction.NEXT)

    async def seek_to(self, percentage: float) -> None:
        """Jump to a percentage of the track. Seeking never counts as listening time."""
        if self._current_track is None:
            return
        seconds = progress_to_time(percentage, self.duration)
        self._position = seconds
        self._notify()

        await self.output.seek(seconds)
        if self._state == PlaybackState.PLAYING:
            self._accumulate_playtime()
            self._progress_clock.start()

    async def next(self) -> bool:
        return await self.advance(Direction.NEXT)

    async def prev(self) -> bool:
        return await self.advance(Direction.PREV)

    async def advance(self, direction: Union[Direction, str] = Direction.NEXT) -> bool:
        """Play the next or previous track, wrapping around the playlist.

        Returns:
            True if a track started playing
        """
        direction = Direction(direction)
        length = len(self.playlist)
        if length == 0:
            return False

        step = next_index if direction == Direction.NEXT else prev_index
        return await self._play_from(step(self.playlist.current_index, length), direction)

    async def close(self) -> None:
        """Stop playback and release the output.

        The cache is left alone; only a resource the cache does not own is
        released here.
        """
        self._generation += 1
        self._progress_clock.stop()
        self._cancel_advance()

        resource, owned = self._resource, self._owns_resource
        self._resource = None
        self._owns_resource = False
        await self.output.stop()
        if owned and resource is not None:
            resource.release()

        self._current_track = None
        self._reset_track_counters()
        self._set_state(PlaybackState.IDLE)
        logger.info("Playback closed")

    async def set_volume(self, volume: float) -> None:
        """Set the volume (clamped to [0, 1]). A positive volume unmutes."""
        self._volume = max(0.0, min(1.0, volume))
        if self._volume > 0:
            self._muted = False
        await self.output.set_volume(self._volume)
        self._notify()

    async def toggle_mute(self) -> None:
        if self._muted:
            self._muted = False
            self._volume = self._previous_volume or self.config.volume
        else:
            self._previous_volume = self._volume
            self._muted = True
            self._volume = 0.0
        await self.output.set_volume(self._volume)
        self._notify()

    def update_playlist(self, tracks: Sequence[Track]) -> bool:
        """Replace the playlist while keeping the current track's position."""
        if not self.playlist.update(tracks):
            return False
        self._notify()
        return True

    # --------------------------------------------------------------- internals

    def _reset_track_counters(self) -> None:
        self._position = 0.0
        self._duration = 0.0
        self._played_seconds = 0.0
        self._last_tick_at = None
        self._listen_recorded = False

    def _cancel_advance(self) -> None:
        task, self._advance_task = self._advance_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _schedule_advance(self, direction: Direction, delay: float = 0.0) -> None:
        if self._advance_task is not None and not self._advance_task.done():
            return
        self._advance_task = self._spawn(self._delayed_advance(self._generation, direction, delay))

    async def _delayed_advance(self, generation: int, direction: Direction, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        if generation != self._generation:
            return
        await self.advance(direction)

    async def _play_from(self, index: int, direction: Direction) -> bool:
        """Try the track at index, skipping ahead in direction on failure.

        Bounded by ``max_advance_attempts``; closes playback when every
        attempt fails.
        """
        length = len(self.playlist)
        for attempt in range(1, self.config.max_advance_attempts + 1):
            track = self.playlist.set_current(index)
            result = await self._load_and_play(track)
            if result is None:
                # Superseded by another track switch or close()
                return False
            if result:
                return True
            if length <= 1 or attempt == self.config.max_advance_attempts:
                break
            step = next_index if direction == Direction.NEXT else prev_index
            index = step(index, length)
            logger.warning(f"Skipping to track {index + 1}/{length} after failure")

        await self.close()
        log("No playable track found, playback stopped", "warning")
        return False

    async def _begin_switch(self, track: Track) -> int:
        self._generation += 1
        generation = self._generation
        self._cancel_advance()
        self._progress_clock.stop()

        resource, owned = self._resource, self._owns_resource
        self._resource = None
        self._owns_resource = False

        self._current_track = track
        self._reset_track_counters()
        self._set_state(PlaybackState.LOADING)

        await self.output.stop()
        if owned and resource is not None:
            resource.release()
        return generation

    async def _load_and_play(self, track: Track) -> Optional[bool]:
        """Resolve and start one track.

        Returns:
            True when started, False on failure, None when superseded
        """
        generation = await self._begin_switch(track)

        try:
            auth = await self.authorization.authorization_for(track, self.playlist.tracks)
            resource = await self._resolve_with_refresh(track, auth)
        except MusicSourceError as e:
            if generation != self._generation:
                return None
            logger.warning(f"Could not resolve {track.name}: {e}")
            log(f"Could not play {track.name}: {e}", "warning")
            self._set_state(PlaybackState.ERROR)
            return False

        if generation != self._generation:
            logger.debug(f"Discarding stale resolution for {track.name}")
            if not self.resolver.owns(resource):
                resource.release()
            return None

        self._resource = resource
        self._owns_resource = not self.resolver.owns(resource)

        try:
            await self.output.load(resource)
            await self.output.set_volume(self._volume)
            self._last_tick_at = self._clock()
            await self.output.play()
        except AudioOutputError as e:
            if generation != self._generation:
                return None
            logger.warning(f"Audio output failed for {track.name}: {e}")
            self._set_state(PlaybackState.ERROR)
            return False

        if generation != self._generation:
            return None
        return True

    async def _resolve_with_refresh(self, track: Track, auth: Authorization) -> AudioResource:
        try:
            return await self.resolver.resolve(track, auth, retry_on_auth_error=True)
        except AuthExpiredError as e:
            if not e.retryable:
                raise
            logger.info(f"Authorization rejected for {track.name}, refreshing once")
            fresh = await self.authorization.refresh(auth)
            if fresh is None:
                raise AuthExpiredError("Authorization could not be refreshed", retryable=False) from e
            return await self.resolver.resolve(track, fresh, retry_on_auth_error=False)

    def _enter_playing(self) -> None:
        self._last_tick_at = self._clock()
        self._progress_clock.start()
        self._set_state(PlaybackState.PLAYING)

    def _on_audio_event(self, event: AudioEvent, data: dict[str, Any]) -> None:
        if event == AudioEvent.METADATA_READY:
            duration = data.get("duration")
            if duration and duration > 0:
                self._duration = float(duration)
                self._notify()

        elif event == AudioEvent.STARTED:
            was_loading = self._state == PlaybackState.LOADING
            if self._state in (PlaybackState.LOADING, PlaybackState.PAUSED):
                self._enter_playing()
            if was_loading:
                self._spawn(self._preload_next(self._generation))

        elif event == AudioEvent.ENDED:
            if self._state == PlaybackState.PLAYING:
                self._accumulate_playtime()
                self._check_listen(at_end=True)
                self._progress_clock.stop()
                self._schedule_advance(Direction.NEXT)

        elif event == AudioEvent.FAILED:
            if self._state not in (PlaybackState.LOADING, PlaybackState.PLAYING):
                return
            message = data.get("message", "playback error")
            name = self._current_track.name if self._current_track else "track"
            log(f"Could not play {name}: {message}", "warning")
            self._progress_clock.stop()
            self._set_state(PlaybackState.ERROR)
            if len(self.playlist) > 1:
                self._schedule_advance(Direction.NEXT, self.config.error_advance_delay)

    def _accumulate_playtime(self) -> float:
        """Add wall time since the last tick to the listening time."""
        now = self._clock()
        if self._last_tick_at is None:
            self._last_tick_at = now
            return 0.0
        delta = now - self._last_tick_at
        self._last_tick_at = now
        delta = max(0.0, min(delta, self.config.tick_interval * MAX_TICK_DRIFT))
        self._played_seconds += delta
        return delta

    async def _handle_tick(self) -> None:
        if self._state != PlaybackState.PLAYING or self._current_track is None:
            return

        delta = self._accumulate_playtime()

        # The output's reported position is authoritative when it has one
        position = self.output.position
        self._position = position if position is not None else self._position + delta
        output_duration = self.output.duration
        if output_duration and output_duration > 0:
            self._duration = output_duration
        self._position = min(self._position, self.duration)

        self._check_listen()
        self._notify()

        if self._position >= self.duration - self.config.end_tolerance:
            logger.debug(f"Track ended: {self._current_track.name}")
            self._check_listen(at_end=True)
            self._progress_clock.stop()
            self._schedule_advance(Direction.NEXT)

    def _check_listen(self, at_end: bool = False) -> None:
        """Count the listen once the threshold is reached.

        A track that ends before the normal threshold still counts when at
        least ``end_listen_percentage`` of it was actually heard.
        """
        track = self._current_track
        if track is None or self._listen_recorded or not track.can_be_counted():
            return
        if not self.tracker.should_record(track, self._played_seconds, self.duration):
            heard_enough = self._played_seconds >= self.duration * self.config.end_listen_percentage
            if not (at_end and heard_enough and self.tracker.can_record(track)):
                return

        self._listen_recorded = True
        self.tracker.mark_as_recorded(track)
        try:
            record = ListenRecord.from_track(track, self._clock())
        except InvalidTrackError as e:
            logger.warning(str(e))
            return
        logger.info(f"Counted listen: {track.name} after {self._played_seconds:.0f}s")
        self._spawn(self._deliver_listen(track, record))

    async def _deliver_listen(self, track: Track, record: ListenRecord) -> None:
        try:
            delivered = await self.delivery.record_listen(record)
        except Exception:
            logger.exception(f"Listen delivery crashed for {record.key}")
            delivered = False

        if not delivered and not self.delivery.is_queued(record):
            self.tracker.reset_nft(track)

    async def _preload_next(self, generation: int) -> None:
        if len(self.playlist) <= 1 or generation != self._generation:
            return
        upcoming = self.playlist.next_track()
        if upcoming is None or (self._current_track and upcoming.same_as(self._current_track)):
            return

        try:
            auth = await self.authorization.authorization_for(upcoming, self.playlist.tracks)
        except MusicSourceError as e:
            logger.debug(f"No authorization for preloading {upcoming.name}: {e}")
            return
        await self.resolver.preload(upcoming, auth)
