"""Board profiles for gpio_session.

A profile lists which BCM lines exist, which of them can drive hardware PWM,
which belong to a shared bus, and how physical header positions map to BCM
numbers. The session only ever uses BCM numbers; the header table is a lookup
for pin resolution.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from .config import ensure_version, load_yaml
from .errors import ConfigError


@dataclass(frozen=True)
class PwmChannel:
    """Kernel PWM channel (``/sys/class/pwm/pwmchip<chip>/pwm<channel>``)."""

    chip: int
    channel: int


@dataclass(frozen=True)
class BoardProfile:
    """Line capabilities with lookup helpers."""

    name: str
    lines: FrozenSet[int]
    pwm: Dict[int, PwmChannel]
    buses: Dict[str, Tuple[int, ...]]
    header: Dict[int, int]

    def __post_init__(self) -> None:
        owners: Dict[int, str] = {}
        for bus, lines in self.buses.items():
            for line in lines:
                if line in owners:
                    raise ConfigError(f"GPIO line {line} listed in both {owners[line]} and {bus}")
                owners[line] = bus
        for label, lines in (("pwm", self.pwm.keys()), ("bus", owners.keys()), ("header", self.header.values())):
            unknown = sorted(set(lines) - set(self.lines))
            if unknown:
                raise ConfigError(f"Profile {self.name}: {label} entries reference unknown lines {unknown}")

    def has_line(self, line: int) -> bool:
        return line in self.lines

    def pwm_channel(self, line: int) -> Optional[PwmChannel]:
        return self.pwm.get(line)

    def bus_for_line(self, line: int) -> Optional[str]:
        for bus, lines in self.buses.items():
            if line in lines:
                return bus
        return None

    def bus_lines(self, bus: str) -> Tuple[int, ...]:
        """Return the lines of a bus (raises KeyError if unknown)."""
        return self.buses[bus]

    def line_for_header(self, physical: int) -> Optional[int]:
        return self.header.get(int(physical))

    def header_for_line(self, line: int) -> Optional[int]:
        for physical, bcm in self.header.items():
            if bcm == line:
                return physical
        return None

    def describe(self) -> List[Dict[str, Any]]:
        """Return one capability row per line (used by the CLI)."""
        rows = []
        for line in sorted(self.lines):
            channel = self.pwm_channel(line)
            rows.append(
                {
                    "line": line,
                    "header": self.header_for_line(line),
                    "pwm": None if channel is None else [channel.chip, channel.channel],
                    "bus": self.bus_for_line(line),
                }
            )
        return rows

    @classmethod
    def load(cls, path: str | Path) -> "BoardProfile":
        """Load a profile from YAML.

        Expected keys: ``name``, ``lines`` (list of ints or ``{first, last}``),
        ``pwm`` (``line: [chip, channel]``), ``buses`` (``name: [lines]``) and
        ``header`` (``physical: bcm``).
        """
        prof_path = Path(path)
        data = load_yaml(prof_path)
        ensure_version(data, prof_path)
        try:
            return cls(
                name=str(data.get("name") or prof_path.stem),
                lines=_lines(data.get("lines")),
                pwm={int(line): _channel(value) for line, value in (data.get("pwm") or {}).items()},
                buses={str(bus): tuple(int(v) for v in lines) for bus, lines in (data.get("buses") or {}).items()},
                header={int(phys): int(bcm) for phys, bcm in (data.get("header") or {}).items()},
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ConfigError(f"Invalid board profile {prof_path}: {exc}") from exc


def _lines(value: Any) -> FrozenSet[int]:
    if isinstance(value, dict):
        first = int(value["first"])
        last = int(value["last"])
        if last < first:
            raise ValueError("lines.last must be >= lines.first")
        return frozenset(range(first, last + 1))
    if isinstance(value, list) and value:
        return frozenset(int(v) for v in value)
    raise ValueError("lines must be a non-empty list or a {first, last} mapping")


def _channel(value: Any) -> PwmChannel:
    if not isinstance(value, list) or len(value) != 2:
        raise ValueError(f"pwm entries must be [chip, channel] (got {value!r})")
    return PwmChannel(int(value[0]), int(value[1]))


# 40-pin header (Pi 2/3/4/Zero); physical position -> BCM line.
RPI_40PIN_HEADER = {
    3: 2, 5: 3, 7: 4, 8: 14, 10: 15, 11: 17, 12: 18, 13: 27,
    15: 22, 16: 23, 18: 24, 19: 10, 21: 9, 22: 25, 23: 11, 24: 8,
    26: 7, 27: 0, 28: 1, 29: 5, 31: 6, 32: 12, 33: 13, 35: 19,
    36: 16, 37: 26, 38: 20, 40: 21,
}

RPI_40PIN = BoardProfile(
    name="rpi-40pin",
    lines=frozenset(range(0, 28)),
    pwm={
        12: PwmChannel(0, 0),
        18: PwmChannel(0, 0),
        13: PwmChannel(0, 1),
        19: PwmChannel(0, 1),
    },
    buses={
        "i2c0": (0, 1),
        "i2c1": (2, 3),
        "spi0": (7, 8, 9, 10, 11),
        "uart0": (14, 15),
    },
    header=dict(RPI_40PIN_HEADER),
)


def load_profile(path: str | Path | None) -> BoardProfile:
    """Return the profile at path, or the 40-pin Raspberry Pi default."""
    if path is None:
        return RPI_40PIN
    return BoardProfile.load(path)
