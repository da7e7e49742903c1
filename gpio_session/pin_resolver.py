"""Resolve user-facing pin tokens (names, GPIOnn, BOARDnn) to BCM lines."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from .errors import InvalidArgument
from .pinmap import BoardProfile, RPI_40PIN

BCM_PREFIXES = ("GPIO", "BCM")
HEADER_PREFIXES = ("BOARD", "PIN")


class PinResolver:
    """Map configured aliases and numbering schemes onto one profile."""

    def __init__(self, profile: BoardProfile = RPI_40PIN, aliases: Optional[Mapping[str, int]] = None) -> None:
        self._profile = profile
        self._aliases: Dict[str, int] = {}
        for name, line in (aliases or {}).items():
            if not profile.has_line(int(line)):
                raise InvalidArgument(f"Alias {name} points at unknown GPIO line {line}")
            self._aliases[str(name)] = int(line)

    @property
    def aliases(self) -> Dict[str, int]:
        return dict(self._aliases)

    def resolve(self, token: Any) -> int:
        """Return the BCM line for token or raise InvalidArgument."""
        if isinstance(token, str) and token in self._aliases:
            return self._aliases[token]
        line = resolve_gpio_line(token, self._profile)
        if line is None:
            raise InvalidArgument(f"Cannot resolve pin {token!r}")
        if not self._profile.has_line(line):
            raise InvalidArgument(f"GPIO line {line} is not available on {self._profile.name}")
        return line

    def name_for_line(self, line: int) -> Optional[str]:
        for name, value in self._aliases.items():
            if value == line:
                return name
        return None


def resolve_gpio_line(pin: Any, profile: BoardProfile = RPI_40PIN) -> Optional[int]:
    """Resolve a pin token into a BCM GPIO line if possible."""
    if isinstance(pin, bool):
        return None
    if isinstance(pin, int):
        return pin
    if isinstance(pin, str):
        stripped = pin.strip()
        upper = stripped.upper()
        if stripped.isdigit():
            return int(stripped)
        for prefix in BCM_PREFIXES:
            if upper.startswith(prefix) and upper[len(prefix):].isdigit():
                return int(upper[len(prefix):])
        for prefix in HEADER_PREFIXES:
            if upper.startswith(prefix) and upper[len(prefix):].isdigit():
                return profile.line_for_header(int(upper[len(prefix):]))
    return None
