"""GPIO adapters for gpio_session (libgpiod-backed, plus an in-memory one)."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Set
import logging

from .config import SessionConfig
from .errors import ConfigError
from .pinmap import PwmChannel
from .pwm import SysfsPwm

LOGGER = logging.getLogger(__name__)


class GpioAdapter:
    """Abstract GPIO adapter.

    ``release`` must leave the line in the safe default: input, no bias,
    nothing driven.
    """

    def setup_input(self, line: int, pull: str = "up") -> None:
        raise NotImplementedError

    def setup_output(self, line: int, initial: bool = False) -> None:
        raise NotImplementedError

    def read(self, line: int) -> int:
        raise NotImplementedError

    def write(self, line: int, value: bool) -> None:
        raise NotImplementedError

    def supports_pwm(self, line: int, channel: PwmChannel) -> bool:
        return False

    def setup_pwm(self, line: int, channel: PwmChannel, frequency_hz: float, duty_cycle: float) -> None:
        raise NotImplementedError

    def set_duty_cycle(self, line: int, duty_cycle: float) -> None:
        raise NotImplementedError

    def set_frequency(self, line: int, frequency_hz: float) -> None:
        raise NotImplementedError

    def release(self, line: int) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return


@dataclass(frozen=True)
class LineState:
    """Electrical state of one simulated line."""

    direction: str = "input"
    value: int = 0
    pull: str = "none"
    duty_cycle: float = 0.0
    frequency_hz: Optional[float] = None

    @property
    def is_safe(self) -> bool:
        return self.direction == "input" and self.pull == "none"


class NullGpioAdapter(GpioAdapter):
    """In-memory GPIO adapter for development and tests."""

    def __init__(self) -> None:
        self._states: Dict[int, LineState] = {}
        self._levels: Dict[int, int] = {}
        self.closed = False

    def setup_input(self, line: int, pull: str = "up") -> None:
        self._states[line] = LineState(direction="input", pull=pull, value=self._input_level(line, pull))

    def setup_output(self, line: int, initial: bool = False) -> None:
        self._states[line] = LineState(direction="output", value=1 if initial else 0)

    def read(self, line: int) -> int:
        state = self.state(line)
        if state.direction == "input":
            return self._input_level(line, state.pull)
        return int(state.value)

    def write(self, line: int, value: bool) -> None:
        self._states[line] = replace(self.state(line), value=1 if value else 0)

    def supports_pwm(self, line: int, channel: PwmChannel) -> bool:
        return True

    def setup_pwm(self, line: int, channel: PwmChannel, frequency_hz: float, duty_cycle: float) -> None:
        self._states[line] = LineState(direction="pwm", duty_cycle=float(duty_cycle), frequency_hz=float(frequency_hz))

    def set_duty_cycle(self, line: int, duty_cycle: float) -> None:
        self._states[line] = replace(self.state(line), duty_cycle=float(duty_cycle))

    def set_frequency(self, line: int, frequency_hz: float) -> None:
        self._states[line] = replace(self.state(line), frequency_hz=float(frequency_hz))

    def release(self, line: int) -> None:
        self._states[line] = LineState()

    def close(self) -> None:
        self.closed = True

    def state(self, line: int) -> LineState:
        return self._states.get(line, LineState())

    def set_input_level(self, line: int, level: bool) -> None:
        """Simulate an external signal on an input line."""
        self._levels[line] = 1 if level else 0

    def _input_level(self, line: int, pull: str) -> int:
        if line in self._levels:
            return self._levels[line]
        return 1 if pull == "up" else 0


class LibgpiodAdapter(GpioAdapter):
    """libgpiod-backed GPIO adapter (supports v1/v2 APIs)."""

    def __init__(
        self,
        chip: str = "/dev/gpiochip0",
        consumer: str = "gpio_session",
        pwm: Optional[SysfsPwm] = None,
    ) -> None:
        self._chip_path = chip
        self._consumer = consumer
        self._pwm = pwm
        self._backend = ""
        self._requests: Dict[int, Any] = {}
        self._lines: Dict[int, Any] = {}
        self._outputs: Set[int] = set()
        self._pwm_channels: Dict[int, PwmChannel] = {}
        self._chip: Optional[Any] = None
        self._gpiod = self._load_gpiod()
        self._init_backend()

    def _load_gpiod(self):
        try:
            import gpiod
        except ImportError as exc:
            raise RuntimeError("gpiod is required for GPIO access (pip install gpiod or python3-libgpiod)") from exc
        return gpiod

    def _init_backend(self) -> None:
        if hasattr(self._gpiod, "request_lines"):
            self._backend = "v2"
            line_mod = getattr(self._gpiod, "line", None)
            self._Direction = getattr(self._gpiod, "LineDirection", None) or getattr(line_mod, "Direction", None)
            self._Bias = getattr(self._gpiod, "LineBias", None) or getattr(line_mod, "Bias", None)
            self._Value = getattr(self._gpiod, "LineValue", None) or getattr(line_mod, "Value", None)
            self._LineSettings = getattr(self._gpiod, "LineSettings", None) or getattr(line_mod, "LineSettings", None)
            if not all((self._Direction, self._Bias, self._Value, self._LineSettings)):
                raise RuntimeError("Unsupported gpiod v2 API")
        else:
            self._backend = "v1"
            self._Value = None
            self._chip = self._gpiod.Chip(self._chip_path)

    def setup_input(self, line: int, pull: str = "up") -> None:
        self._release_line(line)
        if self._backend == "v2":
            settings = self._LineSettings(direction=self._Direction.INPUT, bias=self._v2_bias(pull))
            self._requests[line] = self._gpiod.request_lines(
                self._chip_path,
                consumer=self._consumer,
                config={line: settings},
            )
            return

        line_obj = self._chip.get_line(line)
        line_obj.request(consumer=self._consumer, type=self._gpiod.LINE_REQ_DIR_IN, flags=self._v1_bias_flags(pull))
        self._lines[line] = line_obj

    def setup_output(self, line: int, initial: bool = False) -> None:
        self._release_line(line)
        if self._backend == "v2":
            settings = self._LineSettings(direction=self._Direction.OUTPUT, output_value=self._encode_value(initial))
            self._requests[line] = self._gpiod.request_lines(
                self._chip_path,
                consumer=self._consumer,
                config={line: settings},
            )
        else:
            line_obj = self._chip.get_line(line)
            line_obj.request(
                consumer=self._consumer,
                type=self._gpiod.LINE_REQ_DIR_OUT,
                default_vals=[1 if initial else 0],
            )
            self._lines[line] = line_obj
        self._outputs.add(line)

    def read(self, line: int) -> int:
        if self._backend == "v2":
            return int(self._decode_value(self._requests[line], line))
        return int(self._lines[line].get_value())

    def write(self, line: int, value: bool) -> None:
        if self._backend == "v2":
            req = self._requests[line]
            encoded = self._encode_value(value)
            if hasattr(req, "set_value"):
                req.set_value(line, encoded)
                return
            if hasattr(req, "set_values"):
                req.set_values({line: encoded})
                return
            raise RuntimeError("Unsupported gpiod request API for set_value")

        self._lines[line].set_value(1 if value else 0)

    def supports_pwm(self, line: int, channel: PwmChannel) -> bool:
        return self._pwm is not None and self._pwm.available(channel)

    def setup_pwm(self, line: int, channel: PwmChannel, frequency_hz: float, duty_cycle: float) -> None:
        if self._pwm is None:
            raise RuntimeError("Hardware PWM is not configured for this adapter")
        # The PWM peripheral drives the pin; gpiod must not hold it.
        self._release_line(line)
        self._pwm.open(channel, frequency_hz, duty_cycle)
        self._pwm_channels[line] = channel

    def set_duty_cycle(self, line: int, duty_cycle: float) -> None:
        self._pwm.set_duty_cycle(self._pwm_channels[line], duty_cycle)

    def set_frequency(self, line: int, frequency_hz: float) -> None:
        self._pwm.set_frequency(self._pwm_channels[line], frequency_hz)

    def release(self, line: int) -> None:
        channel = self._pwm_channels.pop(line, None)
        if channel is not None and self._pwm is not None:
            self._pwm.close(channel)
        if line in self._outputs and (line in self._requests or line in self._lines):
            self.write(line, False)
        self.setup_input(line, pull="none")
        self._release_line(line)

    def close(self) -> None:
        for line in list(self._pwm_channels):
            channel = self._pwm_channels.pop(line)
            try:
                self._pwm.close(channel)
            except OSError as exc:
                LOGGER.warning("Failed to close PWM channel %s: %s", channel, exc)
        for req in self._requests.values():
            self._release_handle(req)
        for line in self._lines.values():
            self._release_handle(line)
        self._requests.clear()
        self._lines.clear()
        self._outputs.clear()
        if self._chip is not None:
            try:
                self._chip.close()
            except OSError:
                pass

    def _release_line(self, line: int) -> None:
        self._outputs.discard(line)
        self._release_handle(self._requests.pop(line, None))
        self._release_handle(self._lines.pop(line, None))

    @staticmethod
    def _release_handle(handle: Any) -> None:
        if handle is None:
            return
        release = getattr(handle, "release", None)
        if callable(release):
            try:
                release()
            except OSError:
                pass
            return
        close = getattr(handle, "close", None)
        if callable(close):
            try:
                close()
            except OSError:
                pass

    def _v2_bias(self, pull: str):
        if pull == "up":
            return self._Bias.PULL_UP
        if pull == "down":
            return self._Bias.PULL_DOWN
        return getattr(self._Bias, "DISABLED", None) or self._Bias.AS_IS

    def _v1_bias_flags(self, pull: str) -> int:
        name = {
            "up": "LINE_REQ_FLAG_BIAS_PULL_UP",
            "down": "LINE_REQ_FLAG_BIAS_PULL_DOWN",
        }.get(pull, "LINE_REQ_FLAG_BIAS_DISABLE")
        flag = getattr(self._gpiod, name, None)
        if flag is None:
            LOGGER.debug("gpiod v1 lacks %s; requesting line without bias flags", name)
            return 0
        return flag

    def _encode_value(self, value: bool):
        if self._Value is not None:
            return self._Value.ACTIVE if value else self._Value.INACTIVE
        return 1 if value else 0

    def _decode_value(self, req, line: int) -> int:
        if hasattr(req, "get_value"):
            return self._value_to_int(req.get_value(line))
        if hasattr(req, "get_values"):
            values = req.get_values()
            if isinstance(values, dict):
                return self._value_to_int(values.get(line, 0))
            if values:
                return self._value_to_int(values[0])
        raise RuntimeError("Unsupported gpiod request API for get_value")

    def _value_to_int(self, value: Any) -> int:
        if self._Value is not None:
            if value == self._Value.ACTIVE:
                return 1
            if value == self._Value.INACTIVE:
                return 0
        return 1 if int(value) else 0


def create_adapter(config: SessionConfig) -> GpioAdapter:
    """Build the adapter named by config.backend."""
    backend = config.backend
    if backend == "auto":
        backend = "gpiod" if Path(config.chip).exists() else "null"
        if backend == "null":
            LOGGER.warning("GPIO chip %s not found; using in-memory GPIO adapter", config.chip)
    if backend == "null":
        return NullGpioAdapter()
    if backend == "gpiod":
        return LibgpiodAdapter(config.chip, config.consumer, pwm=SysfsPwm(config.pwm_sysfs_root))
    raise ConfigError(f"Unknown GPIO backend {config.backend!r} (use one of auto, gpiod, null)")
