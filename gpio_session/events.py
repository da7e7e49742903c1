"""Edge detection and debounced dispatch for claimed input lines."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import itertools
import logging
import threading
import time

LOGGER = logging.getLogger(__name__)

EDGE_KINDS = ("rising", "falling", "both")


@dataclass(frozen=True)
class EdgeEvent:
    pin: int
    edge: str
    level: bool
    timestamp: float


EdgeHandler = Callable[[EdgeEvent], None]


class Debouncer:
    """Suppress edges that arrive within ``window_ms`` of the last accepted one."""

    def __init__(self, window_ms: float) -> None:
        self.window_s = max(float(window_ms), 0.0) / 1000.0
        self._last_accepted: Optional[float] = None

    def accept(self, now: float) -> bool:
        if self._last_accepted is not None and (now - self._last_accepted) < self.window_s:
            return False
        self._last_accepted = now
        return True

    def reset(self) -> None:
        self._last_accepted = None


@dataclass(eq=False)
class Subscription:
    """Handle returned by EdgeDispatcher.subscribe."""

    id: int
    pin: int
    edge: str
    handler: EdgeHandler
    dispatcher: "EdgeDispatcher" = field(repr=False)

    def matches(self, event: EdgeEvent) -> bool:
        return self.edge == "both" or self.edge == event.edge

    def cancel(self) -> None:
        self.dispatcher.cancel(self)


@dataclass
class _PinWatch:
    level: int
    debouncer: Debouncer
    subscriptions: List[Subscription] = field(default_factory=list)


class EdgeDispatcher:
    """Single polling loop that turns level changes into debounced edge events.

    ``sampler(pin)`` returns the current level, or None when the pin should no
    longer be sampled.
    """

    def __init__(
        self,
        sampler: Callable[[int], Optional[int]],
        poll_interval: float = 0.005,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sampler = sampler
        self._poll_interval = poll_interval
        self._clock = clock
        self._lock = threading.RLock()
        self._watches: Dict[int, _PinWatch] = {}
        self._ids = itertools.count(1)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def watch(self, pin: int, debounce_ms: float, level: int) -> None:
        with self._lock:
            if pin not in self._watches:
                self._watches[pin] = _PinWatch(level=1 if level else 0, debouncer=Debouncer(debounce_ms))

    def unwatch(self, pin: int) -> None:
        with self._lock:
            self._watches.pop(pin, None)

    def is_watching(self, pin: int) -> bool:
        with self._lock:
            return pin in self._watches

    def subscribe(self, pin: int, handler: EdgeHandler, edge: str = "both") -> Subscription:
        with self._lock:
            watch = self._watches.get(pin)
            if watch is None:
                raise KeyError(f"GPIO{pin} is not being watched")
            sub = Subscription(id=next(self._ids), pin=pin, edge=edge, handler=handler, dispatcher=self)
            watch.subscriptions.append(sub)
            return sub

    def cancel(self, subscription: Subscription) -> None:
        with self._lock:
            watch = self._watches.get(subscription.pin)
            if watch is not None and subscription in watch.subscriptions:
                watch.subscriptions.remove(subscription)

    def subscriptions(self, pin: int) -> List[Subscription]:
        with self._lock:
            watch = self._watches.get(pin)
            return list(watch.subscriptions) if watch is not None else []

    def feed(self, pin: int, level: int, now: Optional[float] = None) -> Optional[EdgeEvent]:
        """Process one level sample; returns the dispatched event, if any."""
        if now is None:
            now = self._clock()
        level = 1 if level else 0
        with self._lock:
            watch = self._watches.get(pin)
            if watch is None or level == watch.level:
                return None
            watch.level = level
            if not watch.debouncer.accept(now):
                LOGGER.debug("Suppressed bounce on GPIO%s", pin)
                return None
            event = EdgeEvent(pin=pin, edge="rising" if level else "falling", level=bool(level), timestamp=now)
            targets = [sub for sub in watch.subscriptions if sub.matches(event)]
        for sub in targets:
            try:
                sub.handler(event)
            except Exception as exc:
                LOGGER.exception("Edge handler error (GPIO%s): %s", pin, exc)
        return event

    def poll_once(self, now: Optional[float] = None) -> List[EdgeEvent]:
        with self._lock:
            pins = [pin for pin, watch in self._watches.items() if watch.subscriptions]
        events = []
        for pin in pins:
            try:
                level = self._sampler(pin)
            except Exception as exc:
                LOGGER.exception("Failed to sample GPIO%s: %s", pin, exc)
                continue
            if level is None:
                continue
            event = self.feed(pin, level, self._clock() if now is None else now)
            if event is not None:
                events.append(event)
        return events

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="gpio_edge_dispatch", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            start = time.monotonic()
            self.poll_once()
            sleep_for = self._poll_interval - (time.monotonic() - start)
            if sleep_for > 0:
                self._stop_event.wait(sleep_for)
