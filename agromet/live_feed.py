"""
Live measurement feed for one station and one lookback window.

The feed is seeded by a bounded historical query and then kept current either by
a realtime insert subscription (push) or by periodic re-queries (poll). Its
subscription lifecycle is an explicit state machine:

    IDLE -> SUBSCRIBING -> ACTIVE -> TEARING_DOWN -> IDLE

Each (station, window) selection gets a new generation number. History results
and insert notifications tagged with an older generation are dropped, so a slow
query for a previously selected station can never leak into the current one.
"""
import bisect
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Iterable

from agromet.applog import log
from agromet.backend import Backend, BackendError, Subscription
from agromet.models import Measurement

LOG_NAME = "live_feed"


class FeedState(Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    TEARING_DOWN = "tearing_down"


class LoadStatus(Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


TRANSITIONS = {
    FeedState.IDLE: {FeedState.SUBSCRIBING},
    FeedState.SUBSCRIBING: {FeedState.ACTIVE, FeedState.TEARING_DOWN},
    FeedState.ACTIVE: {FeedState.TEARING_DOWN},
    FeedState.TEARING_DOWN: {FeedState.IDLE},
}

REFRESH_PUSH = "push"
REFRESH_POLL = "poll"


class FeedStateError(RuntimeError):
    pass


@dataclass(frozen=True)
class RefreshPolicy:
    mode: str = REFRESH_PUSH
    interval_seconds: int = 60

    def __post_init__(self):
        if self.mode not in (REFRESH_PUSH, REFRESH_POLL):
            raise ValueError(f"unknown refresh mode: {self.mode}")
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LiveFeed:
    def __init__(
        self,
        backend: Backend,
        policy: RefreshPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.backend = backend
        self.policy = policy or RefreshPolicy()
        self.clock = clock
        self._lock = threading.RLock()
        self._state = FeedState.IDLE
        self._generation = 0
        self._station_id: str | None = None
        self._window: timedelta | None = None
        self._subscription: Subscription | None = None
        self._points: list[Measurement] = []
        self._keys: set = set()
        self._pending: list[Measurement] = []
        self._status = LoadStatus.EMPTY
        self._error: str | None = None
        self._last_poll: datetime | None = None

    # ------------------------
    # Introspection
    # ------------------------
    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def status(self) -> LoadStatus:
        return self._status

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def station_id(self) -> str | None:
        return self._station_id

    @property
    def window(self) -> timedelta | None:
        return self._window

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None

    def snapshot(self) -> list[Measurement]:
        with self._lock:
            return list(self._points)

    # ------------------------
    # State machine
    # ------------------------
    def _transition(self, target: FeedState) -> None:
        if target not in TRANSITIONS[self._state]:
            raise FeedStateError(f"illegal transition {self._state.value} -> {target.value}")
        self._state = target

    def _acquire(self, station_id: str, generation: int) -> None:
        if self._subscription is not None:
            raise FeedStateError("subscription still held; release before acquiring a new one")

        def on_insert(measurement: Measurement, generation=generation):
            self._on_insert(generation, measurement)

        try:
            self._subscription = self.backend.subscribe_inserts(station_id, on_insert)
        except BackendError as exc:
            log(f"Live subscription for station={station_id} failed: {exc}", LOG_NAME)
            self._subscription = None

    def _release(self, subscription: Subscription | None, station_id: str | None) -> None:
        # called without self._lock: release() may wait on a delivery thread that needs it
        if subscription is None:
            return
        try:
            subscription.release()
        except Exception as exc:
            log(f"Releasing subscription for station={station_id} failed: {exc!r}", LOG_NAME)

    def _teardown(self) -> Subscription | None:
        """Move to IDLE and hand back the detached subscription for the caller to release."""
        if self._state == FeedState.IDLE:
            return None
        self._transition(FeedState.TEARING_DOWN)
        subscription, self._subscription = self._subscription, None
        self._transition(FeedState.IDLE)
        return subscription

    # ------------------------
    # Merge helpers
    # ------------------------
    def _reset_points(self, measurements: Iterable[Measurement] = ()) -> None:
        self._points = []
        self._keys = set()
        for measurement in measurements:
            self._merge(measurement)

    def _merge(self, measurement: Measurement) -> bool:
        if measurement.key in self._keys:
            return False
        self._keys.add(measurement.key)
        if not self._points or measurement.created_at >= self._points[-1].created_at:
            self._points.append(measurement)
        else:
            times = [p.created_at for p in self._points]
            self._points.insert(bisect.bisect_right(times, measurement.created_at), measurement)
        return True

    # ------------------------
    # Public operations
    # ------------------------
    def begin(self, station_id: str, window: timedelta) -> int:
        """
        Tear down the current selection and start a new one.

        Returns the generation ticket that the matching history result must carry.
        The old subscription is released before the new one is acquired.
        """
        with self._lock:
            previous_station = self._station_id
            detached = self._teardown()
            self._generation += 1
            ticket = self._generation
            self._station_id = str(station_id)
            self._window = window
            self._reset_points()
            self._pending = []
            self._status = LoadStatus.LOADING
            self._error = None
            self._last_poll = None
        self._release(detached, previous_station)
        with self._lock:
            if ticket != self._generation or self._state != FeedState.IDLE:
                # superseded by another begin() while releasing
                return ticket
            self._transition(FeedState.SUBSCRIBING)
            if self.policy.mode == REFRESH_PUSH:
                self._acquire(self._station_id, ticket)
            log(
                f"Feed generation={ticket} station={self._station_id} window={window} "
                f"mode={self.policy.mode}",
                LOG_NAME,
            )
            return ticket

    def apply_history(self, ticket: int, measurements: Iterable[Measurement]) -> bool:
        with self._lock:
            if ticket != self._generation or self._state != FeedState.SUBSCRIBING:
                log(f"Discarding stale history result generation={ticket} (current={self._generation})", LOG_NAME)
                return False
            self._reset_points(measurements)
            for measurement in self._pending:
                self._merge(measurement)
            self._pending = []
            self._status = LoadStatus.READY
            self._last_poll = self.clock()
            self._transition(FeedState.ACTIVE)
            return True

    def fail(self, ticket: int, message: str) -> bool:
        with self._lock:
            if ticket != self._generation or self._state != FeedState.SUBSCRIBING:
                log(f"Discarding stale history failure generation={ticket}", LOG_NAME)
                return False
            self._reset_points()
            self._pending = []
            self._status = LoadStatus.FAILED
            self._error = message
            self._last_poll = self.clock()
            self._transition(FeedState.ACTIVE)
            log(f"History query for station={self._station_id} failed: {message}", LOG_NAME)
            return True

    def load(self, ticket: int) -> bool:
        with self._lock:
            if ticket != self._generation:
                return False
            station_id = self._station_id
            since = self.clock() - self._window
        try:
            measurements = self.backend.query_measurements(station_id, since)
        except BackendError as exc:
            return self.fail(ticket, str(exc))
        return self.apply_history(ticket, measurements)

    def select(self, station_id: str, window: timedelta) -> bool:
        """Switch to (station, window), reloading only when the selection changed."""
        with self._lock:
            unchanged = (
                self._state in (FeedState.SUBSCRIBING, FeedState.ACTIVE)
                and self._station_id == str(station_id)
                and self._window == window
            )
        if unchanged:
            return False
        self.load(self.begin(station_id, window))
        return True

    def reload(self) -> None:
        with self._lock:
            station_id, window = self._station_id, self._window
        if station_id is None or window is None:
            return
        self.load(self.begin(station_id, window))

    def _on_insert(self, generation: int, measurement: Measurement) -> None:
        with self._lock:
            if generation != self._generation or measurement.station_id != self._station_id:
                return
            if self._state == FeedState.SUBSCRIBING:
                self._pending.append(measurement)
            elif self._state == FeedState.ACTIVE:
                self._merge(measurement)

    def due_for_poll(self, now: datetime | None = None) -> bool:
        if self.policy.mode != REFRESH_POLL or self._state != FeedState.ACTIVE:
            return False
        if self._last_poll is None:
            return True
        now = now or self.clock()
        return (now - self._last_poll).total_seconds() >= self.policy.interval_seconds

    def poll(self) -> int:
        """Fetch rows newer than the newest one held; returns how many were added."""
        with self._lock:
            if self._state != FeedState.ACTIVE:
                return 0
            generation = self._generation
            station_id = self._station_id
            since = self._points[-1].created_at if self._points else self.clock() - self._window
        try:
            measurements = self.backend.query_measurements(station_id, since)
        except BackendError as exc:
            with self._lock:
                if generation == self._generation:
                    self._error = str(exc)
                    self._last_poll = self.clock()
            log(f"Refresh for station={station_id} failed: {exc}", LOG_NAME)
            return 0
        with self._lock:
            if generation != self._generation or self._state != FeedState.ACTIVE:
                return 0
            added = sum(1 for m in measurements if self._merge(m))
            if self._status == LoadStatus.FAILED:
                self._status = LoadStatus.READY
            self._error = None
            self._last_poll = self.clock()
            return added

    def close(self) -> None:
        with self._lock:
            station_id = self._station_id
            detached = self._teardown()
            self._generation += 1
            self._pending = []
        self._release(detached, station_id)
