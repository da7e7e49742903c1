#!/usr/bin/env python3
"""Blink an LED on GPIO17 until Ctrl-C.

The line is driven low and released on exit, Ctrl-C and SIGTERM alike.
"""

from gpio_session.config import SessionConfig
from gpio_session.devices import LED
from gpio_session.lifecycle import ShutdownGuard
from gpio_session.session import GpioSession

LED_PIN = 17


def main():
    with GpioSession.from_config(SessionConfig()) as session, ShutdownGuard(session):
        led = LED(session, LED_PIN, "status")
        while True:
            led.blink(on_time=0.25, off_time=0.75)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
