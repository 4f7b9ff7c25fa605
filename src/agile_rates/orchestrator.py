"""Refresh coordination and the in-memory rate snapshot.

The orchestrator decides when to fetch, persists fetched rates, and then
replaces the snapshot wholesale from the store. Readers only ever see a
snapshot that matches a committed store state.
"""

import logging
import threading
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from .collectors.octopus import OctopusClient
from .config import DEFAULT_FAILURE_COOLDOWN_MINUTES, Settings
from .errors import RatesError
from .models import RateRecord
from .scheduler import is_covered, utc_now
from .store import RateStore

logger = logging.getLogger(__name__)

Subscriber = Callable[[list[RateRecord]], None]


class FetchState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    SUCCESS = "success"
    FAILED = "failed"


class RatesOrchestrator:
    """Owns the refresh cycle for one region's rate series."""

    def __init__(
        self,
        source: OctopusClient,
        store: RateStore,
        settings_provider: Callable[[], Settings] = Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._source = source
        self._store = store
        self._settings_provider = settings_provider
        self._clock = clock

        self._snapshot: tuple[RateRecord, ...] = ()
        self._fetch_lock = threading.Lock()
        self._publish_lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._next_attempt_at: datetime | None = None

        self.state = FetchState.IDLE
        self.last_outcome: FetchState | None = None
        self.last_error: RatesError | None = None

    @property
    def has_data(self) -> bool:
        return bool(self._snapshot)

    def current_snapshot(self) -> list[RateRecord]:
        """The current rate series, ascending by start time. Never blocks."""
        return list(self._snapshot)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback`` with each new snapshot. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def load(self) -> list[RateRecord]:
        """Populate the snapshot from the store without touching the network.

        Waits for an in-flight refresh so an older read is never published
        over a newer commit.
        """
        with self._fetch_lock:
            snapshot = self._store.fetch_all()
            self._publish(snapshot)
        return snapshot

    def reset(self) -> int:
        """Delete every stored rate and publish the empty snapshot.

        Returns the number of rates deleted.
        """
        with self._fetch_lock:
            deleted = self._store.delete_all()
            self._next_attempt_at = None
            self._publish([])
        logger.info("Rate cache reset, %d rates deleted", deleted)
        return deleted

    def is_covered(self) -> bool:
        return is_covered(self._clock(), self._snapshot)

    def refresh(self, force: bool = False) -> bool:
        """Run one refresh cycle.

        Returns True if rates were fetched and the snapshot replaced, False if
        the cycle was skipped (already covered, in cooldown, or another fetch
        in flight). Errors propagate after the previous snapshot is kept.
        """
        now = self._clock()
        if not force:
            if is_covered(now, self._snapshot):
                return False
            if self._next_attempt_at is not None and now < self._next_attempt_at:
                logger.debug("Refresh skipped, cooling down until %s", self._next_attempt_at)
                return False

        if not self._fetch_lock.acquire(blocking=False):
            logger.debug("Refresh already in flight, ignoring request")
            return False

        settings = None
        try:
            self.state = FetchState.FETCHING
            settings = self._settings_provider()
            region = self._source.resolve_region(settings.postcode)
            records = self._source.fetch_rates(region)
            self._store.upsert(records)
            snapshot = self._store.fetch_all()
        except RatesError as exc:
            self.last_outcome = FetchState.FAILED
            self.last_error = exc
            if not force and not is_covered(now, self._snapshot):
                minutes = settings.failure_cooldown_minutes if settings else DEFAULT_FAILURE_COOLDOWN_MINUTES
                self._next_attempt_at = now + timedelta(minutes=minutes)
            logger.warning("Rate refresh failed, keeping %d cached rates: %s", len(self._snapshot), exc)
            raise
        else:
            self._publish(snapshot)
            self.last_outcome = FetchState.SUCCESS
            self.last_error = None
            self._next_attempt_at = None
            logger.info("Rate refresh for region %s complete, %d rates cached", region, len(snapshot))
            return True
        finally:
            self.state = FetchState.IDLE
            self._fetch_lock.release()

    def _publish(self, snapshot: list[RateRecord]) -> None:
        with self._publish_lock:
            self._snapshot = tuple(snapshot)
            published = list(self._snapshot)
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(list(published))
            except Exception:
                logger.exception("Rate snapshot subscriber %r failed", callback)
