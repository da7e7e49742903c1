"""Daemon entry point for gpio_session.

Claims the pins and buses declared in the configuration file, logs debounced
input edges and holds the claims until SIGINT/SIGTERM, then releases them.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence
import argparse
import logging
import threading

from .config import BACKENDS, SessionConfig, default_config_path, load_config
from .devices import LED, BusReservation, Device, PwmOutputDevice
from .errors import ConfigError, GpioSessionError
from .events import EdgeEvent
from .gpio_claims import ClaimOptions, PinMode
from .lifecycle import ShutdownGuard
from .pin_resolver import PinResolver
from .session import GpioSession

LOGGER = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments for the daemon."""
    parser = argparse.ArgumentParser(description="Hold declared GPIO claims until terminated")
    parser.add_argument("--config", default=default_config_path(), help="Path to YAML configuration")
    parser.add_argument("--backend", choices=BACKENDS, help="Override the configured GPIO backend")
    parser.add_argument("--chip", help="Override the GPIO chip device")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING)")
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    """Set up basic logging for the daemon and CLI."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format="%(asctime)s %(levelname)s %(message)s")


def apply_overrides(config: SessionConfig, args: argparse.Namespace) -> SessionConfig:
    if args.backend:
        config.backend = args.backend
    if args.chip:
        config.chip = args.chip
    return config


def _log_edge(name: str) -> Callable[[EdgeEvent], None]:
    def handler(event: EdgeEvent) -> None:
        LOGGER.info("%s (GPIO%s) %s edge", name, event.pin, event.edge)

    return handler


def claim_declared(session: GpioSession, resolver: PinResolver, config: SessionConfig) -> List[Device]:
    """Claim every bus and pin named in the configuration."""
    devices: List[Device] = []
    for bus in config.buses:
        devices.append(BusReservation(session, bus))
    for decl in config.pins:
        line = resolver.resolve(decl.pin)
        if decl.mode == "output":
            devices.append(LED(session, line, decl.name, initial=decl.initial))
        elif decl.mode == "pwm":
            devices.append(
                PwmOutputDevice(session, line, decl.name, frequency_hz=decl.frequency_hz, initial=decl.duty_cycle)
            )
        else:
            device = Device(session, line, decl.name)
            session.claim(
                line,
                PinMode.INPUT,
                ClaimOptions(pull=decl.pull, debounce_ms=decl.debounce_ms),
                owner=device.owner,
            )
            session.subscribe(line, _log_edge(decl.name), edge=decl.edge)
            devices.append(device)
        LOGGER.info("Claimed %s on GPIO%s as %s", decl.name, line, decl.mode)
    return devices


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for running the daemon."""
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = apply_overrides(load_config(args.config), args)
        session = GpioSession.from_config(config)
    except (ConfigError, RuntimeError) as exc:
        LOGGER.error("Startup failed: %s", exc)
        return 1

    stop_event = threading.Event()
    guard = ShutdownGuard(session, exit_on_signal=False)
    guard.add_callback(lambda _signum: stop_event.set())

    with session, guard:
        try:
            claim_declared(session, PinResolver(session.profile, config.aliases), config)
        except GpioSessionError as exc:
            LOGGER.error("Failed to claim declared pins: %s", exc)
            return 1
        LOGGER.info("Holding %s GPIO claim(s); waiting for SIGINT/SIGTERM", len(session.claims()))
        while not stop_event.is_set():
            stop_event.wait(1.0)
        LOGGER.info("Shutting down")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
