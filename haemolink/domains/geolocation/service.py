import enum
import itertools
import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from haemolink.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fix:
    lat: float
    lng: float
    accuracy: float | None = None
    heading: float | None = None
    speed: float | None = None
    timestamp: float = field(default_factory=time.time)

    def accuracy_or_inf(self) -> float:
        if self.accuracy is None or not math.isfinite(self.accuracy):
            return math.inf
        return self.accuracy


FixCallback = Callable[[Fix], None]
ErrorCallback = Callable[[Exception], None]


class PositionSource(Protocol):
    """Browser-geolocation shaped source: a continuous watch plus a single-shot request."""

    def watch_position(self, on_fix: FixCallback, on_error: ErrorCallback | None = None) -> int: ...

    def clear_watch(self, watch_id: int) -> None: ...

    def get_current_position(self, on_fix: FixCallback, on_error: ErrorCallback, *, timeout_ms: int) -> None: ...


class PositionFeed:
    """
    In-process fan-out of device fixes, keyed by actor (user id).
    Devices push fixes over HTTP; acquirers and trackers watch them.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._watchers: dict[str, dict[int, FixCallback]] = {}
        self._owner: dict[int, str] = {}
        self._last: dict[str, Fix] = {}

    def publish(self, actor_id: str, fix: Fix) -> int:
        with self._lock:
            self._last[actor_id] = fix
            callbacks = list(self._watchers.get(actor_id, {}).values())
        for cb in callbacks:
            try:
                cb(fix)
            except Exception:
                logger.exception("position watcher failed actor=%s", actor_id)
        return len(callbacks)

    def watch(self, actor_id: str, on_fix: FixCallback) -> int:
        with self._lock:
            watch_id = next(self._ids)
            self._watchers.setdefault(actor_id, {})[watch_id] = on_fix
            self._owner[watch_id] = actor_id
        return watch_id

    def clear(self, watch_id: int) -> None:
        with self._lock:
            actor_id = self._owner.pop(watch_id, None)
            if actor_id is None:
                return
            watchers = self._watchers.get(actor_id, {})
            watchers.pop(watch_id, None)
            if not watchers:
                self._watchers.pop(actor_id, None)

    def watcher_count(self, actor_id: str) -> int:
        with self._lock:
            return len(self._watchers.get(actor_id, {}))

    def last_fix(self, actor_id: str) -> Fix | None:
        with self._lock:
            return self._last.get(actor_id)

    def source_for(self, actor_id: str, *, max_age_seconds: float | None = None) -> "FeedPositionSource":
        return FeedPositionSource(self, actor_id, max_age_seconds=max_age_seconds)


class FeedPositionSource:
    def __init__(self, feed: PositionFeed, actor_id: str, *, max_age_seconds: float | None = None) -> None:
        self.feed = feed
        self.actor_id = actor_id
        self.max_age_seconds = settings.geo_fix_max_age_seconds if max_age_seconds is None else max_age_seconds

    def recent_fix(self) -> Fix | None:
        last = self.feed.last_fix(self.actor_id)
        if last is None or time.time() - last.timestamp > self.max_age_seconds:
            return None
        return last

    def watch_position(self, on_fix: FixCallback, on_error: ErrorCallback | None = None) -> int:
        """A fix pushed within `max_age_seconds` is replayed to the new watcher before returning."""
        watch_id = self.feed.watch(self.actor_id, on_fix)
        last = self.recent_fix()
        if last is not None:
            on_fix(last)
        return watch_id

    def clear_watch(self, watch_id: int) -> None:
        self.feed.clear(watch_id)

    def get_current_position(self, on_fix: FixCallback, on_error: ErrorCallback, *, timeout_ms: int) -> None:
        # Next fresh fix only; cached fixes are never served.
        fired = threading.Event()
        holder: dict[str, int] = {}

        def _once(fix: Fix) -> None:
            if fired.is_set():
                return
            fired.set()
            self.feed.clear(holder.get("id", -1))
            on_fix(fix)

        def _timeout() -> None:
            if fired.is_set():
                return
            fired.set()
            self.feed.clear(holder.get("id", -1))
            on_error(TimeoutError("position request timed out"))

        holder["id"] = self.feed.watch(self.actor_id, _once)
        if fired.is_set():
            self.feed.clear(holder["id"])
            return
        timer = threading.Timer(max(0, timeout_ms) / 1000.0, _timeout)
        timer.daemon = True
        timer.start()


class AcquisitionState(str, enum.Enum):
    WATCHING = "WATCHING"
    SINGLE_SHOT = "SINGLE_SHOT"
    DONE = "DONE"


class FixAcquisition:
    """
    WATCHING -> (early exit | timed out) -> DONE, with an optional SINGLE_SHOT
    step when the watch produced nothing. The watch is released exactly once.
    """

    def __init__(
        self,
        source: PositionSource,
        *,
        timeout_ms: int,
        desired_accuracy_m: float,
        single_shot_cap_ms: int | None = None,
    ) -> None:
        self.source = source
        self.timeout_ms = max(0, int(timeout_ms))
        self.desired_accuracy_m = desired_accuracy_m
        self.single_shot_cap_ms = single_shot_cap_ms if single_shot_cap_ms is not None else settings.geo_single_shot_cap_ms
        self.state = AcquisitionState.WATCHING
        self.fixes: list[Fix] = []
        self.result: Fix | None = None
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._watch_id: int | None = None
        self._watch_released = False

    def _release_watch(self) -> None:
        with self._lock:
            if self._watch_released or self._watch_id is None:
                return
            self._watch_released = True
            watch_id = self._watch_id
        try:
            self.source.clear_watch(watch_id)
        except Exception:
            logger.warning("clear_watch failed watch_id=%s", watch_id)

    def _finish(self, fix: Fix | None) -> None:
        with self._lock:
            if self.state == AcquisitionState.DONE:
                return
            self.state = AcquisitionState.DONE
            self.result = fix
        self._release_watch()
        self._done.set()

    def _on_watch_fix(self, fix: Fix) -> None:
        with self._lock:
            if self.state != AcquisitionState.WATCHING:
                return
            self.fixes.append(fix)
        if fix.accuracy_or_inf() <= self.desired_accuracy_m:
            self._finish(fix)

    def _on_single_shot_error(self, err: Exception) -> None:
        logger.info("single-shot position request failed: %s", err)
        self._finish(None)

    def run(self) -> Fix | None:
        try:
            watch_id = self.source.watch_position(self._on_watch_fix, lambda err: None)
            with self._lock:
                self._watch_id = watch_id
                already_done = self.state == AcquisitionState.DONE
            if already_done:
                # An early-exit fix arrived before the watch id was known.
                self._release_watch()
        except Exception as e:
            logger.warning("watch_position failed: %s", e)

        if self._done.wait(self.timeout_ms / 1000.0):
            return self.result

        with self._lock:
            if self.state == AcquisitionState.DONE:
                return self.result
            best = min(self.fixes, key=lambda f: f.accuracy_or_inf()) if self.fixes else None
            if best is None:
                self.state = AcquisitionState.SINGLE_SHOT
        if best is not None:
            self._finish(best)
            return self.result

        self._release_watch()
        cap_ms = min(self.timeout_ms, self.single_shot_cap_ms)
        try:
            self.source.get_current_position(self._finish, self._on_single_shot_error, timeout_ms=cap_ms)
        except Exception as e:
            logger.warning("get_current_position failed: %s", e)
            self._finish(None)
        if not self._done.wait(cap_ms / 1000.0 + 0.25):
            self._finish(None)
        return self.result


def acquire_best_fix(
    source: PositionSource | None,
    timeout_ms: int | None = None,
    desired_accuracy_m: float | None = None,
) -> Fix | None:
    """
    Most accurate fix obtained within `timeout_ms`, or None.
    Returns as soon as a fix is at least as accurate as `desired_accuracy_m`.
    """
    if source is None:
        return None
    acquisition = FixAcquisition(
        source,
        timeout_ms=timeout_ms if timeout_ms is not None else settings.geo_fix_timeout_ms,
        desired_accuracy_m=desired_accuracy_m if desired_accuracy_m is not None else settings.geo_desired_accuracy_m,
    )
    try:
        return acquisition.run()
    except Exception:
        logger.exception("fix acquisition failed")
        return None


position_feed = PositionFeed()
