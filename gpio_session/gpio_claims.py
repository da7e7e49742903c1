"""GPIO ownership tracking to prevent two roles driving the same line."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set
import math
import threading

from .errors import AlreadyClaimed, InvalidArgument

PULL_MODES = ("up", "down", "none")


class PinMode(str, Enum):
    """Claim mode of a single line."""

    UNCLAIMED = "unclaimed"
    INPUT = "input"
    OUTPUT = "output"
    PWM = "pwm"
    RESERVED = "reserved"


CLAIMABLE_MODES = (PinMode.INPUT, PinMode.OUTPUT, PinMode.PWM, PinMode.RESERVED)

_MODE_ALIASES = {
    "in": PinMode.INPUT,
    "digital-input": PinMode.INPUT,
    "out": PinMode.OUTPUT,
    "digital-output": PinMode.OUTPUT,
    "pwm-output": PinMode.PWM,
    "reserved-by-bus": PinMode.RESERVED,
}


def parse_mode(value: Any) -> PinMode:
    """Coerce a mode token (enum or string) into a claimable PinMode."""
    if isinstance(value, PinMode):
        mode = value
    elif isinstance(value, str):
        token = value.strip().lower()
        mode = _MODE_ALIASES.get(token)
        if mode is None:
            try:
                mode = PinMode(token)
            except ValueError:
                raise InvalidArgument(f"Unknown pin mode {value!r}") from None
    else:
        raise InvalidArgument(f"Unknown pin mode {value!r}")
    if mode not in CLAIMABLE_MODES:
        raise InvalidArgument(f"Pin mode {mode.value!r} cannot be claimed")
    return mode


@dataclass(frozen=True)
class ClaimOptions:
    """Per-claim electrical and event settings.

    Only the fields relevant to the claimed mode are used: ``pull`` and
    ``debounce_ms`` for inputs, ``initial`` for outputs, ``frequency_hz`` and
    ``duty_cycle`` for PWM, ``bus`` for reserved lines.
    """

    pull: str = "up"
    initial: bool = False
    frequency_hz: Optional[float] = None
    duty_cycle: float = 0.0
    debounce_ms: Optional[float] = None
    bus: Optional[str] = None

    def validated(self) -> "ClaimOptions":
        """Return a copy with normalized values, raising InvalidArgument on bad input."""
        pull = str(self.pull).strip().lower()
        if pull not in PULL_MODES:
            raise InvalidArgument(f"pull must be one of {', '.join(PULL_MODES)} (got {self.pull!r})")
        if self.frequency_hz is not None and not _positive_number(self.frequency_hz):
            raise InvalidArgument(f"frequency_hz must be > 0 (got {self.frequency_hz!r})")
        if not is_fraction(self.duty_cycle):
            raise InvalidArgument(f"duty_cycle must be within [0.0, 1.0] (got {self.duty_cycle!r})")
        if self.debounce_ms is not None:
            if isinstance(self.debounce_ms, bool) or not isinstance(self.debounce_ms, (int, float)):
                raise InvalidArgument(f"debounce_ms must be a number (got {self.debounce_ms!r})")
            if math.isnan(self.debounce_ms) or self.debounce_ms < 0:
                raise InvalidArgument(f"debounce_ms must be >= 0 (got {self.debounce_ms!r})")
        return replace(self, pull=pull, initial=bool(self.initial))


def is_fraction(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return 0.0 <= float(value) <= 1.0


def _positive_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value) and value > 0


@dataclass(frozen=True)
class PinClaim:
    line: int
    owner: str
    mode: PinMode
    options: ClaimOptions


class GpioClaimRegistry:
    """Track GPIO line ownership with hard-fail collision semantics.

    The lock is re-entrant: a signal handler that releases claims runs on the
    thread it interrupted, possibly while that thread is inside the registry.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._claim_by_line: Dict[int, PinClaim] = {}
        self._lines_by_owner: Dict[str, Set[int]] = {}

    def claim(self, line: int, owner: str, mode: PinMode, options: ClaimOptions) -> PinClaim:
        return self.claim_many([line], owner, mode, options)[0]

    def claim_many(
        self,
        lines: Iterable[int],
        owner: str,
        mode: PinMode,
        options: ClaimOptions,
    ) -> List[PinClaim]:
        """Claim every line or none of them."""
        if not owner:
            raise InvalidArgument("GPIO owner must be non-empty")
        wanted = [int(line) for line in lines]
        with self._lock:
            for idx in wanted:
                existing = self._claim_by_line.get(idx)
                if existing is not None:
                    raise AlreadyClaimed(f"GPIO line {idx} already claimed by {existing.owner} ({existing.mode.value})")
            claims = []
            for idx in wanted:
                claim = PinClaim(line=idx, owner=owner, mode=mode, options=options)
                # owner index first; claims_for_owner filters stale entries
                self._lines_by_owner.setdefault(owner, set()).add(idx)
                self._claim_by_line[idx] = claim
                claims.append(claim)
            return claims

    def release(self, line: int) -> Optional[PinClaim]:
        """Drop the claim on a line; returns the removed claim, if any."""
        with self._lock:
            claim = self._claim_by_line.pop(int(line), None)
            if claim is None:
                return None
            self._forget_owner(claim)
            return claim

    def discard(self, claim: PinClaim) -> bool:
        """Drop claim only if it is still the live claim on its line."""
        with self._lock:
            if self._claim_by_line.get(claim.line) is not claim:
                return False
            del self._claim_by_line[claim.line]
            self._forget_owner(claim)
            return True

    def is_live(self, claim: PinClaim) -> bool:
        with self._lock:
            return self._claim_by_line.get(claim.line) is claim

    def claim_for_line(self, line: int) -> Optional[PinClaim]:
        with self._lock:
            return self._claim_by_line.get(int(line))

    def owner_for_line(self, line: int) -> Optional[str]:
        claim = self.claim_for_line(line)
        return claim.owner if claim is not None else None

    def claims_for_owner(self, owner: str) -> Set[int]:
        with self._lock:
            return {
                line
                for line in self._lines_by_owner.get(owner, set())
                if line in self._claim_by_line and self._claim_by_line[line].owner == owner
            }

    def snapshot(self) -> list[PinClaim]:
        with self._lock:
            return [claim for _, claim in sorted(self._claim_by_line.items())]

    def _forget_owner(self, claim: PinClaim) -> None:
        owned = self._lines_by_owner.get(claim.owner)
        if owned is not None:
            owned.discard(claim.line)
            if not owned:
                self._lines_by_owner.pop(claim.owner, None)
