"""Hardware PWM through the kernel sysfs interface (/sys/class/pwm).

On Raspberry Pi boards the PWM function must be routed to the pin first, for
example with ``dtoverlay=pwm-2chan`` in config.txt.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict
import logging
import time

from .pinmap import PwmChannel

LOGGER = logging.getLogger(__name__)
NS_PER_SECOND = 1_000_000_000


class SysfsPwm:
    """Export, configure and unexport kernel PWM channels."""

    def __init__(self, root: str | Path = "/sys/class/pwm", export_timeout: float = 1.0) -> None:
        self._root = Path(root)
        self._export_timeout = export_timeout
        self._period_ns: Dict[PwmChannel, int] = {}
        self._duty: Dict[PwmChannel, float] = {}

    def available(self, channel: PwmChannel) -> bool:
        return self._chip_dir(channel).is_dir()

    def open(self, channel: PwmChannel, frequency_hz: float, duty_cycle: float) -> None:
        pwm_dir = self._pwm_dir(channel)
        if not pwm_dir.exists():
            self._write(self._chip_dir(channel) / "export", channel.channel)
            deadline = time.monotonic() + self._export_timeout
            while not pwm_dir.exists():
                if time.monotonic() >= deadline:
                    raise RuntimeError(f"PWM channel {pwm_dir} did not appear after export")
                time.sleep(0.01)
        self._duty[channel] = float(duty_cycle)
        self.set_frequency(channel, frequency_hz)
        self._write(pwm_dir / "enable", 1)
        LOGGER.debug("PWM %s enabled at %.3f Hz, duty %.3f", pwm_dir, frequency_hz, duty_cycle)

    def set_frequency(self, channel: PwmChannel, frequency_hz: float) -> None:
        pwm_dir = self._pwm_dir(channel)
        period = max(1, int(round(NS_PER_SECOND / float(frequency_hz))))
        # duty_cycle must never exceed period, so drop it before changing period.
        self._write(pwm_dir / "duty_cycle", 0)
        self._write(pwm_dir / "period", period)
        self._period_ns[channel] = period
        self.set_duty_cycle(channel, self._duty.get(channel, 0.0))

    def set_duty_cycle(self, channel: PwmChannel, duty_cycle: float) -> None:
        period = self._period_ns.get(channel)
        if period is None:
            raise RuntimeError(f"PWM channel {channel} is not open")
        self._duty[channel] = float(duty_cycle)
        self._write(self._pwm_dir(channel) / "duty_cycle", int(round(period * float(duty_cycle))))

    def close(self, channel: PwmChannel) -> None:
        pwm_dir = self._pwm_dir(channel)
        self._period_ns.pop(channel, None)
        self._duty.pop(channel, None)
        if not pwm_dir.exists():
            return
        self._write(pwm_dir / "duty_cycle", 0)
        self._write(pwm_dir / "enable", 0)
        self._write(self._chip_dir(channel) / "unexport", channel.channel)

    def _chip_dir(self, channel: PwmChannel) -> Path:
        return self._root / f"pwmchip{channel.chip}"

    def _pwm_dir(self, channel: PwmChannel) -> Path:
        return self._chip_dir(channel) / f"pwm{channel.channel}"

    @staticmethod
    def _write(path: Path, value: int) -> None:
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(str(int(value)))
