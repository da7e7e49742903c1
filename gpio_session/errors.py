"""Error taxonomy for gpio_session.

All session errors are programming errors: they are raised synchronously to the
caller and never retried.
"""

from __future__ import annotations


class GpioSessionError(RuntimeError):
    """Base class for pin claim/usage violations."""


class AlreadyClaimed(GpioSessionError):
    """Raised when claiming a line that already has an owner."""


class UnsupportedMode(GpioSessionError):
    """Raised when a line cannot provide the requested mode."""


class InvalidState(GpioSessionError):
    """Raised when an operation does not match the line's current claim."""


class InvalidArgument(GpioSessionError, ValueError):
    """Raised for out-of-range pins, values or options."""


class ConfigError(RuntimeError):
    """Raised when a configuration or board profile file is invalid."""
