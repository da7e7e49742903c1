"""gpio_session package: exclusive GPIO claims with guaranteed safe release."""

__all__ = [
    "cli",
    "config",
    "daemon",
    "devices",
    "errors",
    "events",
    "gpio",
    "gpio_claims",
    "lifecycle",
    "pin_resolver",
    "pinmap",
    "pwm",
    "session",
]
