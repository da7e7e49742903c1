"""Configuration loader for gpio_session.

Configuration lives in a small YAML file::

    version: 1
    backend: auto            # auto | gpiod | "null" (quoted)
    chip: /dev/gpiochip0
    debounce_ms: 200
    aliases:
      status_led: 17
    pins:
      - {name: status_led, pin: status_led, mode: output}
      - {name: button, pin: GPIO27, mode: input, pull: up, edge: falling}
    buses: [i2c1]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import math
import os

import yaml

from .errors import ConfigError
from .events import EDGE_KINDS
from .gpio_claims import PULL_MODES

CONFIG_ENV_VAR = "GPIO_SESSION_CONFIG"
BACKENDS = ("auto", "gpiod", "null")
DECLARED_MODES = ("input", "output", "pwm")


@dataclass
class PinDeclaration:
    """A pin the daemon claims at startup."""

    name: str
    pin: Any
    mode: str = "input"
    pull: str = "up"
    initial: bool = False
    debounce_ms: Optional[float] = None
    edge: str = "both"
    frequency_hz: Optional[float] = None
    duty_cycle: float = 0.0


@dataclass
class SessionConfig:
    backend: str = "auto"
    chip: str = "/dev/gpiochip0"
    consumer: str = "gpio_session"
    board_profile: Optional[str] = None
    debounce_ms: float = 200.0
    poll_interval_ms: float = 5.0
    pwm_frequency_hz: float = 100.0
    pwm_sysfs_root: str = "/sys/class/pwm"
    aliases: Dict[str, int] = field(default_factory=dict)
    pins: List[PinDeclaration] = field(default_factory=list)
    buses: List[str] = field(default_factory=list)

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000.0


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return its top-level mapping."""
    if not path.exists():
        raise ConfigError(f"Missing required file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Expected mapping in {path}")
    return data


def ensure_version(data: Dict[str, Any], path: Path) -> None:
    if data.get("version") != 1:
        raise ConfigError(f"{path} must set version: 1")


def default_config_path() -> Optional[str]:
    """Return the config path named by GPIO_SESSION_CONFIG, if set."""
    value = os.environ.get(CONFIG_ENV_VAR, "").strip()
    return value or None


def load_config(path: str | Path | None) -> SessionConfig:
    """Load a SessionConfig from YAML (defaults when path is None)."""
    if path is None:
        return SessionConfig()
    cfg_path = Path(path)
    data = load_yaml(cfg_path)
    ensure_version(data, cfg_path)

    config = SessionConfig()
    config.backend = _choice(data.get("backend", config.backend), BACKENDS, "backend", cfg_path)
    config.chip = str(data.get("chip", config.chip))
    config.consumer = str(data.get("consumer", config.consumer))
    config.debounce_ms = _number(data.get("debounce_ms", config.debounce_ms), "debounce_ms", cfg_path, minimum=0.0)
    config.poll_interval_ms = _number(
        data.get("poll_interval_ms", config.poll_interval_ms), "poll_interval_ms", cfg_path, minimum=0.1
    )
    config.pwm_frequency_hz = _number(
        data.get("pwm_frequency_hz", config.pwm_frequency_hz), "pwm_frequency_hz", cfg_path, minimum=0.001
    )
    config.pwm_sysfs_root = str(data.get("pwm_sysfs_root", config.pwm_sysfs_root))

    profile = data.get("board_profile")
    if profile:
        profile_path = Path(str(profile))
        if not profile_path.is_absolute():
            profile_path = cfg_path.parent / profile_path
        config.board_profile = str(profile_path)

    aliases = data.get("aliases") or {}
    if not isinstance(aliases, dict):
        raise ConfigError(f"{cfg_path}: aliases must be a mapping")
    for name, line in aliases.items():
        if isinstance(line, bool) or not isinstance(line, int):
            raise ConfigError(f"{cfg_path}: alias '{name}' must map to a BCM line number")
        config.aliases[str(name)] = int(line)

    buses = data.get("buses") or []
    if not isinstance(buses, list):
        raise ConfigError(f"{cfg_path}: buses must be a list")
    config.buses = [str(bus) for bus in buses]

    pins = data.get("pins") or []
    if not isinstance(pins, list):
        raise ConfigError(f"{cfg_path}: pins must be a list")
    seen: set[str] = set()
    for entry in pins:
        decl = _pin_declaration(entry, cfg_path)
        if decl.name in seen:
            raise ConfigError(f"{cfg_path}: duplicate pin name '{decl.name}'")
        seen.add(decl.name)
        config.pins.append(decl)
    return config


def _pin_declaration(entry: Any, path: Path) -> PinDeclaration:
    if not isinstance(entry, dict):
        raise ConfigError(f"{path}: pin entries must be mappings")
    if entry.get("pin") is None:
        raise ConfigError(f"{path}: pin entry {entry!r} is missing 'pin'")
    name = str(entry.get("name") or entry["pin"])
    debounce = entry.get("debounce_ms")
    frequency = entry.get("frequency_hz")
    return PinDeclaration(
        name=name,
        pin=entry["pin"],
        mode=_choice(entry.get("mode", "input"), DECLARED_MODES, f"pins.{name}.mode", path),
        pull=_choice(entry.get("pull", "up"), PULL_MODES, f"pins.{name}.pull", path),
        initial=bool(entry.get("initial", False)),
        debounce_ms=None if debounce is None else _number(debounce, f"pins.{name}.debounce_ms", path, minimum=0.0),
        edge=_choice(entry.get("edge", "both"), EDGE_KINDS, f"pins.{name}.edge", path),
        frequency_hz=None if frequency is None else _number(frequency, f"pins.{name}.frequency_hz", path, minimum=0.001),
        duty_cycle=_number(entry.get("duty_cycle", 0.0), f"pins.{name}.duty_cycle", path, minimum=0.0, maximum=1.0),
    )


def _choice(value: Any, allowed: tuple, key: str, path: Path) -> str:
    token = str(value).strip().lower()
    if token not in allowed:
        raise ConfigError(f"{path}: {key} must be one of {', '.join(allowed)} (got {value!r})")
    return token


def _number(value: Any, key: str, path: Path, minimum: float, maximum: Optional[float] = None) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{path}: {key} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{path}: {key} must be a number (got {value!r})") from None
    if math.isnan(number) or number < minimum or (maximum is not None and number > maximum):
        bounds = f">= {minimum}" if maximum is None else f"within [{minimum}, {maximum}]"
        raise ConfigError(f"{path}: {key} must be {bounds} (got {value!r})")
    return number
