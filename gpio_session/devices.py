"""Device wrappers (LEDs, buttons, PWM outputs, bus reservations) over a session."""

from __future__ import annotations

from typing import Callable, List, Optional
import logging
import threading
import time

from .events import EdgeEvent, Subscription
from .gpio_claims import ClaimOptions, PinMode
from .session import GpioSession

LOGGER = logging.getLogger(__name__)


class Device:
    """Base device; every claim it makes is owned by ``device:<name>``."""

    def __init__(self, session: GpioSession, pin: Optional[int], name: Optional[str] = None) -> None:
        self.session = session
        self.pin = pin
        self.name = name or f"GPIO{pin}"
        self.owner = f"device:{self.name}"

    def claimed_lines(self) -> List[int]:
        """Return GPIO lines this device owns."""
        return [claim.line for claim in self.session.claims() if claim.owner == self.owner]

    @property
    def closed(self) -> bool:
        return not self.claimed_lines()

    def close(self) -> None:
        self.session.release_owner(self.owner)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


class DigitalOutputDevice(Device):
    def __init__(
        self,
        session: GpioSession,
        pin: int,
        name: Optional[str] = None,
        initial: bool = False,
        active_high: bool = True,
    ) -> None:
        super().__init__(session, pin, name)
        self.active_high = active_high
        session.claim(pin, PinMode.OUTPUT, ClaimOptions(initial=self._physical(initial)), owner=self.owner)

    def _physical(self, active: bool) -> bool:
        return bool(active) if self.active_high else not active

    def on(self) -> None:
        self.session.write(self.pin, self._physical(True))

    def off(self) -> None:
        self.session.write(self.pin, self._physical(False))

    def toggle(self) -> None:
        if self.is_active:
            self.off()
        else:
            self.on()

    @property
    def is_active(self) -> bool:
        return self.session.read(self.pin) == self._physical(True)

    def blink(
        self,
        on_time: float = 0.5,
        off_time: float = 0.5,
        count: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Blink count times (blocking); always ends switched off."""
        try:
            for _ in range(max(int(count), 0)):
                self.on()
                sleep(on_time)
                self.off()
                sleep(off_time)
        finally:
            if not self.closed:
                self.off()


LED = DigitalOutputDevice


class DigitalInputDevice(Device):
    """Input with optional debounced activation callbacks.

    With the default pull-up a grounded pin reads low, so the device is
    active-low unless told otherwise.
    """

    def __init__(
        self,
        session: GpioSession,
        pin: int,
        name: Optional[str] = None,
        pull: str = "up",
        active_low: Optional[bool] = None,
        debounce_ms: Optional[float] = None,
    ) -> None:
        super().__init__(session, pin, name)
        self.active_low = (pull == "up") if active_low is None else bool(active_low)
        self._on_activated: List[Callable[[EdgeEvent], None]] = []
        self._on_deactivated: List[Callable[[EdgeEvent], None]] = []
        self._subscription: Optional[Subscription] = None
        self._activated = threading.Event()
        self._lock = threading.Lock()
        session.claim(pin, PinMode.INPUT, ClaimOptions(pull=pull, debounce_ms=debounce_ms), owner=self.owner)

    @property
    def is_active(self) -> bool:
        return self.session.read(self.pin) != self.active_low

    def when_activated(self, handler: Callable[[EdgeEvent], None]) -> None:
        self._ensure_subscription()
        self._on_activated.append(handler)

    def when_deactivated(self, handler: Callable[[EdgeEvent], None]) -> None:
        self._ensure_subscription()
        self._on_deactivated.append(handler)

    def wait_for_active(self, timeout: Optional[float] = None) -> bool:
        """Block until the next debounced activation (or return at once if active)."""
        self._ensure_subscription()
        self._activated.clear()
        if self.is_active:
            return True
        return self._activated.wait(timeout)

    def _ensure_subscription(self) -> None:
        with self._lock:
            if self._subscription is None:
                self._subscription = self.session.subscribe(self.pin, self._handle_edge)

    def _handle_edge(self, event: EdgeEvent) -> None:
        active = event.level != self.active_low
        if active:
            self._activated.set()
        handlers = self._on_activated if active else self._on_deactivated
        for handler in list(handlers):
            try:
                handler(event)
            except Exception as exc:
                LOGGER.exception("%s handler error: %s", self.name, exc)

    def close(self) -> None:
        with self._lock:
            self._subscription = None
        super().close()


class Button(DigitalInputDevice):
    """Push button wired between the pin and ground."""

    @property
    def is_pressed(self) -> bool:
        return self.is_active

    def when_pressed(self, handler: Callable[[EdgeEvent], None]) -> None:
        self.when_activated(handler)

    def when_released(self, handler: Callable[[EdgeEvent], None]) -> None:
        self.when_deactivated(handler)

    def wait_for_press(self, timeout: Optional[float] = None) -> bool:
        return self.wait_for_active(timeout)


class PwmOutputDevice(Device):
    def __init__(
        self,
        session: GpioSession,
        pin: int,
        name: Optional[str] = None,
        frequency_hz: Optional[float] = None,
        initial: float = 0.0,
    ) -> None:
        super().__init__(session, pin, name)
        claim = session.claim(
            pin,
            PinMode.PWM,
            ClaimOptions(frequency_hz=frequency_hz, duty_cycle=initial),
            owner=self.owner,
        )
        self._value = float(initial)
        self._frequency = float(claim.options.frequency_hz)

    @property
    def value(self) -> float:
        return self._value

    @value.setter
    def value(self, fraction: float) -> None:
        self.session.set_duty_cycle(self.pin, fraction)
        self._value = float(fraction)

    @property
    def frequency(self) -> float:
        return self._frequency

    @frequency.setter
    def frequency(self, frequency_hz: float) -> None:
        self.session.set_frequency(self.pin, frequency_hz)
        self._frequency = float(frequency_hz)

    def off(self) -> None:
        self.value = 0.0


PWMLED = PwmOutputDevice


class BusReservation(Device):
    """Hold every line of a bus (i2c1, spi0, ...) for a bus driver."""

    def __init__(self, session: GpioSession, bus: str, name: Optional[str] = None) -> None:
        super().__init__(session, None, name or bus)
        self.bus = bus
        self.lines = [claim.line for claim in session.reserve_bus(bus, owner=self.owner)]
        self.pin = self.lines[0]
