#!/usr/bin/env python3
"""Toggle an LED from a push button wired between GPIO27 and ground."""

import threading

from gpio_session.config import SessionConfig
from gpio_session.devices import LED, Button
from gpio_session.lifecycle import ShutdownGuard
from gpio_session.session import GpioSession


def main():
    stop = threading.Event()
    with GpioSession.from_config(SessionConfig()) as session:
        guard = ShutdownGuard(session, exit_on_signal=False)
        guard.add_callback(lambda _signum: stop.set())
        with guard:
            led = LED(session, 17, "lamp")
            button = Button(session, 27, "switch", debounce_ms=50)
            button.when_pressed(lambda event: led.toggle())
            button.when_released(lambda event: print("released at", event.timestamp))
            stop.wait()


if __name__ == "__main__":
    main()
