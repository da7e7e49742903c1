"""Command-line tool for one-shot GPIO operations.

Every command runs inside its own session: whatever it claimed is returned to
the safe default when the command finishes or is interrupted, so ``write``
only holds its level for ``--hold`` seconds.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Callable, Dict, Optional, Sequence
import argparse
import json
import threading
import time

from .config import BACKENDS, default_config_path, load_config
from .daemon import apply_overrides, configure_logging
from .devices import LED, PwmOutputDevice
from .errors import ConfigError, GpioSessionError
from .events import EDGE_KINDS, EdgeEvent
from .gpio_claims import PULL_MODES, ClaimOptions, PinMode
from .lifecycle import ShutdownGuard
from .pin_resolver import PinResolver
from .session import GpioSession

LEVEL_TOKENS = {
    "1": True, "high": True, "on": True, "true": True,
    "0": False, "low": False, "off": False, "false": False,
}


def parse_level(token: str) -> bool:
    """Parse a CLI logic-level token."""
    lowered = token.strip().lower()
    if lowered not in LEVEL_TOKENS:
        raise argparse.ArgumentTypeError(f"invalid level {token!r} (use 1/0, high/low, on/off)")
    return LEVEL_TOKENS[lowered]


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="gpio_session command-line tool")
    parser.add_argument("--config", default=default_config_path(), help="Path to YAML configuration")
    parser.add_argument("--backend", choices=BACKENDS, help="Override the configured GPIO backend")
    parser.add_argument("--chip", help="Override the GPIO chip device")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING)")

    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("pins", help="List GPIO lines and their capabilities")

    read_cmd = sub.add_parser("read", help="Sample an input pin")
    read_cmd.add_argument("pin", help="Pin (17, GPIO17, BOARD11 or alias)")
    read_cmd.add_argument("--pull", choices=PULL_MODES, default="up", help="Bias while sampling")

    write_cmd = sub.add_parser("write", help="Drive an output pin")
    write_cmd.add_argument("pin", help="Pin (17, GPIO17, BOARD11 or alias)")
    write_cmd.add_argument("value", type=parse_level, help="Level (1/0, high/low, on/off)")
    write_cmd.add_argument("--hold", type=float, default=0.0, help="Seconds to hold the level before release")

    blink_cmd = sub.add_parser("blink", help="Blink an output pin")
    blink_cmd.add_argument("pin", help="Pin (17, GPIO17, BOARD11 or alias)")
    blink_cmd.add_argument("--count", type=int, default=3)
    blink_cmd.add_argument("--on-ms", type=float, default=500.0)
    blink_cmd.add_argument("--off-ms", type=float, default=500.0)

    pwm_cmd = sub.add_parser("pwm", help="Run hardware PWM on a pin")
    pwm_cmd.add_argument("pin", help="Pin (12, 13, 18 or 19 on the 40-pin header)")
    pwm_cmd.add_argument("--duty", type=float, required=True, help="Duty cycle 0.0-1.0")
    pwm_cmd.add_argument("--frequency", type=float, default=None, help="Frequency in Hz")
    pwm_cmd.add_argument("--hold", type=float, default=1.0, help="Seconds to run before release")

    watch_cmd = sub.add_parser("watch", help="Print debounced edges on an input pin")
    watch_cmd.add_argument("pin", help="Pin (17, GPIO17, BOARD11 or alias)")
    watch_cmd.add_argument("--pull", choices=PULL_MODES, default="up")
    watch_cmd.add_argument("--edge", choices=EDGE_KINDS, default="both")
    watch_cmd.add_argument("--debounce-ms", type=float, default=None)
    watch_cmd.add_argument("--count", type=int, default=0, help="Stop after N edges (0 = no limit)")
    watch_cmd.add_argument("--timeout", type=float, default=None, help="Stop after N seconds")

    return parser.parse_args(argv)


def cmd_pins(session: GpioSession, resolver: PinResolver, _args: argparse.Namespace) -> Dict[str, Any]:
    rows = session.profile.describe()
    for row in rows:
        row["alias"] = resolver.name_for_line(row["line"])
    return {"profile": session.profile.name, "pins": rows}


def cmd_read(session: GpioSession, resolver: PinResolver, args: argparse.Namespace) -> Dict[str, Any]:
    line = resolver.resolve(args.pin)
    session.claim(line, PinMode.INPUT, ClaimOptions(pull=args.pull), owner="cli")
    return {"pin": line, "value": int(session.read(line))}


def cmd_write(session: GpioSession, resolver: PinResolver, args: argparse.Namespace) -> Dict[str, Any]:
    line = resolver.resolve(args.pin)
    session.claim(line, PinMode.OUTPUT, ClaimOptions(initial=args.value), owner="cli")
    if args.hold > 0:
        time.sleep(args.hold)
    return {"pin": line, "value": int(args.value), "held_s": max(args.hold, 0.0)}


def cmd_blink(session: GpioSession, resolver: PinResolver, args: argparse.Namespace) -> Dict[str, Any]:
    line = resolver.resolve(args.pin)
    led = LED(session, line, "cli")
    led.blink(on_time=args.on_ms / 1000.0, off_time=args.off_ms / 1000.0, count=args.count)
    return {"pin": line, "count": max(args.count, 0)}


def cmd_pwm(session: GpioSession, resolver: PinResolver, args: argparse.Namespace) -> Dict[str, Any]:
    line = resolver.resolve(args.pin)
    device = PwmOutputDevice(session, line, "cli", frequency_hz=args.frequency, initial=args.duty)
    if args.hold > 0:
        time.sleep(args.hold)
    return {"pin": line, "duty": device.value, "frequency_hz": device.frequency, "held_s": max(args.hold, 0.0)}


def cmd_watch(session: GpioSession, resolver: PinResolver, args: argparse.Namespace) -> Dict[str, Any]:
    line = resolver.resolve(args.pin)
    session.claim(line, PinMode.INPUT, ClaimOptions(pull=args.pull, debounce_ms=args.debounce_ms), owner="cli")
    done = threading.Event()
    seen = []

    def on_edge(event: EdgeEvent) -> None:
        seen.append(event)
        print(json.dumps(asdict(event)), flush=True)
        if args.count and len(seen) >= args.count:
            done.set()

    session.subscribe(line, on_edge, edge=args.edge)
    done.wait(args.timeout)
    return {"pin": line, "events": len(seen)}


COMMANDS: Dict[str, Callable[[GpioSession, PinResolver, argparse.Namespace], Dict[str, Any]]] = {
    "pins": cmd_pins,
    "read": cmd_read,
    "write": cmd_write,
    "blink": cmd_blink,
    "pwm": cmd_pwm,
    "watch": cmd_watch,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the CLI and print JSON responses."""
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = apply_overrides(load_config(args.config), args)
        with GpioSession.from_config(config) as session, ShutdownGuard(session):
            resolver = PinResolver(session.profile, config.aliases)
            result = COMMANDS[args.cmd](session, resolver, args)
    except (GpioSessionError, ConfigError) as exc:
        print(json.dumps({"ok": False, "error": str(exc), "type": type(exc).__name__}, indent=2))
        return 1
    except KeyboardInterrupt:
        return 130

    response = {"ok": True, "cmd": args.cmd}
    response.update(result)
    print(json.dumps(response, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
