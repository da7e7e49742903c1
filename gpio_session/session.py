"""GPIO session manager: claim-before-use, safe release and edge subscriptions."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterator, List, Optional
import logging
import math
import threading

from .config import SessionConfig
from .errors import AlreadyClaimed, InvalidArgument, InvalidState, UnsupportedMode
from .events import EDGE_KINDS, EdgeDispatcher, EdgeHandler, Subscription
from .gpio import GpioAdapter, NullGpioAdapter, create_adapter
from .gpio_claims import ClaimOptions, GpioClaimRegistry, PinClaim, PinMode, is_fraction, parse_mode
from .pinmap import RPI_40PIN, BoardProfile, load_profile

LOGGER = logging.getLogger(__name__)

DEFAULT_OWNER = "session"


class GpioSession:
    """Owns every GPIO claim of one application.

    Construct it once at the top of the program and pass it to whatever needs
    pins. Leaving the ``with`` block (normally or through an exception)
    releases every claimed line; pair it with
    :class:`gpio_session.lifecycle.ShutdownGuard` to cover SIGINT/SIGTERM too.

    Every line follows ``unclaimed -> claimed(mode) -> unclaimed``. Claims are
    exclusive: a second claim on a line fails with AlreadyClaimed no matter who
    asks.
    """

    def __init__(
        self,
        adapter: Optional[GpioAdapter] = None,
        profile: BoardProfile = RPI_40PIN,
        *,
        debounce_ms: float = 200.0,
        poll_interval: float = 0.005,
        pwm_frequency_hz: float = 100.0,
        start_dispatcher: bool = True,
    ) -> None:
        self.adapter = adapter or NullGpioAdapter()
        self.profile = profile
        self.debounce_ms = float(debounce_ms)
        self.pwm_frequency_hz = float(pwm_frequency_hz)
        self._registry = GpioClaimRegistry()
        self._lock = threading.RLock()
        self._closed = False
        self._start_dispatcher = start_dispatcher
        self.dispatcher = EdgeDispatcher(self._sample, poll_interval=poll_interval)

    @classmethod
    def from_config(cls, config: SessionConfig, **kwargs: Any) -> "GpioSession":
        """Build a session (adapter and board profile included) from configuration."""
        return cls(
            create_adapter(config),
            load_profile(config.board_profile),
            debounce_ms=config.debounce_ms,
            poll_interval=config.poll_interval,
            pwm_frequency_hz=config.pwm_frequency_hz,
            **kwargs,
        )

    def __enter__(self) -> "GpioSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def claim(
        self,
        pin: int,
        mode: PinMode | str,
        options: Optional[ClaimOptions] = None,
        owner: Optional[str] = None,
    ) -> PinClaim:
        """Claim pin for mode and configure the line to match.

        Either the claim succeeds completely or it fails without leaving a
        registry entry; if configuring the line fails it is returned to the
        safe default and the adapter error propagates.

        The claim is registered before the line is touched, so release_all
        from a signal handler always sees a line that may be driven.
        """
        line = self._check_pin(pin)
        mode = parse_mode(mode)
        opts = (options or ClaimOptions()).validated()
        owner = owner or DEFAULT_OWNER

        with self._lock:
            self._ensure_open()
            self._ensure_unclaimed(line)
            opts = self._check_capability(line, mode, opts)
            claim = self._registry.claim(line, owner, mode, opts)
            try:
                self._configure(line, mode, opts)
            except BaseException:
                self._registry.discard(claim)
                raise
            if not self._registry.is_live(claim):
                # released by a shutdown handler while the line was being set up
                self._reset_line(line)
                raise InvalidState(f"GPIO{line} was released while being claimed")
        LOGGER.debug("Claimed GPIO%s as %s for %s", line, mode.value, owner)
        return claim

    def reserve_bus(self, bus: str, owner: Optional[str] = None) -> List[PinClaim]:
        """Reserve every line of a bus for a bus driver (all or nothing)."""
        try:
            lines = self.profile.bus_lines(bus)
        except KeyError:
            raise InvalidArgument(f"Unknown bus {bus!r} on {self.profile.name}") from None
        owner = owner or f"bus:{bus}"
        with self._lock:
            self._ensure_open()
            claims = self._registry.claim_many(lines, owner, PinMode.RESERVED, ClaimOptions(bus=bus))
        LOGGER.info("Reserved %s lines %s for %s", bus, list(lines), owner)
        return claims

    @contextmanager
    def claimed(
        self,
        pin: int,
        mode: PinMode | str,
        options: Optional[ClaimOptions] = None,
        owner: Optional[str] = None,
    ) -> Iterator[PinClaim]:
        """Scoped claim, released when the block exits."""
        claim = self.claim(pin, mode, options, owner)
        try:
            yield claim
        finally:
            self.release(claim.line)

    def release(self, pin: int) -> bool:
        """Return pin to the safe default and drop its claim.

        Never raises; releasing an unclaimed (or unknown) pin is a no-op and
        returns False.
        """
        if isinstance(pin, bool) or not isinstance(pin, int):
            return False
        with self._lock:
            claim = self._registry.claim_for_line(pin)
            if claim is None:
                return False
            self.dispatcher.unwatch(claim.line)
            # the entry stays until the line is safe so an interrupting
            # release_all still restores it
            self._restore_safe(claim)
            if not self._registry.discard(claim):
                return False
        LOGGER.debug("Released GPIO%s (%s, %s)", claim.line, claim.mode.value, claim.owner)
        return True

    def release_owner(self, owner: str) -> int:
        released = 0
        for line in sorted(self._registry.claims_for_owner(owner)):
            if self.release(line):
                released += 1
        return released

    def release_all(self) -> int:
        """Release every claimed line exactly once; returns how many were released."""
        released = 0
        with self._lock:
            for claim in self._registry.snapshot():
                if self.release(claim.line):
                    released += 1
        if released:
            LOGGER.info("Released %s GPIO claim(s)", released)
        return released

    def close(self) -> None:
        """Stop edge dispatch, release all claims and close the adapter."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.dispatcher.stop()
        try:
            self.release_all()
        finally:
            self.adapter.close()

    # ------------------------------------------------------------------
    # Pin I/O
    # ------------------------------------------------------------------

    def read(self, pin: int) -> bool:
        """Sampled level of an input, or driven level of an output."""
        with self._lock:
            claim = self._require(pin, (PinMode.INPUT, PinMode.OUTPUT), "read")
            return bool(self.adapter.read(claim.line))

    def write(self, pin: int, value: Any) -> None:
        with self._lock:
            claim = self._require(pin, (PinMode.OUTPUT,), "write")
            self.adapter.write(claim.line, coerce_level(value))

    def set_duty_cycle(self, pin: int, fraction: float) -> None:
        with self._lock:
            claim = self._require(pin, (PinMode.PWM,), "set duty cycle on")
            if not is_fraction(fraction):
                raise InvalidArgument(f"duty cycle must be within [0.0, 1.0] (got {fraction!r})")
            self.adapter.set_duty_cycle(claim.line, float(fraction))

    def set_frequency(self, pin: int, frequency_hz: float) -> None:
        with self._lock:
            claim = self._require(pin, (PinMode.PWM,), "set frequency on")
            if isinstance(frequency_hz, bool) or not isinstance(frequency_hz, (int, float)) or not frequency_hz > 0:
                raise InvalidArgument(f"frequency must be > 0 (got {frequency_hz!r})")
            self.adapter.set_frequency(claim.line, float(frequency_hz))

    def subscribe(self, pin: int, handler: EdgeHandler, edge: str = "both") -> Subscription:
        """Call handler for debounced edges on a claimed input pin."""
        if edge not in EDGE_KINDS:
            raise InvalidArgument(f"edge must be one of {', '.join(EDGE_KINDS)} (got {edge!r})")
        if not callable(handler):
            raise InvalidArgument("edge handler must be callable")
        with self._lock:
            claim = self._require(pin, (PinMode.INPUT,), "subscribe to")
            if not self.dispatcher.is_watching(claim.line):
                self.dispatcher.watch(claim.line, claim.options.debounce_ms, self.adapter.read(claim.line))
            subscription = self.dispatcher.subscribe(claim.line, handler, edge)
        if self._start_dispatcher:
            self.dispatcher.start()
        return subscription

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def mode(self, pin: int) -> PinMode:
        claim = self._registry.claim_for_line(self._check_pin(pin))
        return claim.mode if claim is not None else PinMode.UNCLAIMED

    def owner(self, pin: int) -> Optional[str]:
        return self._registry.owner_for_line(self._check_pin(pin))

    def claim_for(self, pin: int) -> Optional[PinClaim]:
        return self._registry.claim_for_line(self._check_pin(pin))

    def is_claimed(self, pin: int) -> bool:
        return self.claim_for(pin) is not None

    def claims(self) -> List[PinClaim]:
        return self._registry.snapshot()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_pin(self, pin: Any) -> int:
        if isinstance(pin, bool) or not isinstance(pin, int):
            raise InvalidArgument(f"GPIO pin must be an integer line number (got {pin!r})")
        if not self.profile.has_line(pin):
            raise InvalidArgument(f"GPIO{pin} is not available on {self.profile.name}")
        return pin

    def _ensure_open(self) -> None:
        if self._closed:
            raise InvalidState("GPIO session is closed")

    def _ensure_unclaimed(self, line: int) -> None:
        existing = self._registry.claim_for_line(line)
        if existing is not None:
            raise AlreadyClaimed(f"GPIO{line} already claimed by {existing.owner} ({existing.mode.value})")

    def _require(self, pin: int, modes: tuple, action: str) -> PinClaim:
        line = self._check_pin(pin)
        claim = self._registry.claim_for_line(line)
        if claim is None:
            raise InvalidState(f"Cannot {action} GPIO{line}: pin is not claimed")
        if claim.mode not in modes:
            raise InvalidState(f"Cannot {action} GPIO{line}: pin is claimed as {claim.mode.value}")
        return claim

    def _check_capability(self, line: int, mode: PinMode, opts: ClaimOptions) -> ClaimOptions:
        bus = self.profile.bus_for_line(line)
        if mode is PinMode.RESERVED:
            if bus is None:
                raise UnsupportedMode(f"GPIO{line} belongs to no bus and cannot be reserved")
            return replace(opts, bus=bus)

        if bus is not None:
            LOGGER.warning("GPIO%s is a %s bus line; using it as %s may conflict with the bus", line, bus, mode.value)

        if mode is PinMode.INPUT:
            if opts.debounce_ms is None:
                opts = replace(opts, debounce_ms=self.debounce_ms)
        elif mode is PinMode.PWM:
            channel = self.profile.pwm_channel(line)
            if channel is None:
                raise UnsupportedMode(f"GPIO{line} has no hardware PWM")
            for claim in self._registry.snapshot():
                if claim.mode is PinMode.PWM and self.profile.pwm_channel(claim.line) == channel:
                    raise UnsupportedMode(f"PWM channel of GPIO{line} is already driven by GPIO{claim.line}")
            if not self.adapter.supports_pwm(line, channel):
                raise UnsupportedMode(f"Hardware PWM is not available for GPIO{line} on this adapter")
            if opts.frequency_hz is None:
                opts = replace(opts, frequency_hz=self.pwm_frequency_hz)
        return opts

    def _configure(self, line: int, mode: PinMode, opts: ClaimOptions) -> None:
        if mode is PinMode.RESERVED:
            return
        try:
            if mode is PinMode.INPUT:
                self.adapter.setup_input(line, pull=opts.pull)
            elif mode is PinMode.OUTPUT:
                self.adapter.setup_output(line, initial=opts.initial)
            else:
                channel = self.profile.pwm_channel(line)
                self.adapter.setup_pwm(line, channel, opts.frequency_hz, opts.duty_cycle)
        except Exception:
            LOGGER.error("Failed to configure GPIO%s as %s; returning it to safe state", line, mode.value)
            self._reset_line(line)
            raise

    def _reset_line(self, line: int) -> None:
        try:
            self.adapter.release(line)
        except Exception as exc:
            LOGGER.exception("Failed to reset GPIO%s after setup error: %s", line, exc)

    def _restore_safe(self, claim: PinClaim) -> None:
        if claim.mode is PinMode.RESERVED:
            return
        try:
            if claim.mode is PinMode.OUTPUT:
                self.adapter.write(claim.line, False)
            elif claim.mode is PinMode.PWM:
                self.adapter.set_duty_cycle(claim.line, 0.0)
        except Exception as exc:
            LOGGER.exception("Failed to drive GPIO%s low on release: %s", claim.line, exc)
        try:
            self.adapter.release(claim.line)
        except Exception as exc:
            LOGGER.exception("Failed to return GPIO%s to safe state: %s", claim.line, exc)

    def _sample(self, line: int) -> Optional[int]:
        with self._lock:
            claim = self._registry.claim_for_line(line)
            if claim is None or claim.mode is not PinMode.INPUT:
                return None
            return self.adapter.read(line)


def coerce_level(value: Any) -> bool:
    """Coerce a boolean-like value into a logic level."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and not (isinstance(value, float) and math.isnan(value)):
        return bool(value)
    raise InvalidArgument(f"Invalid logic level: {value!r}")
