import logging
import os
import signal
import subprocess
import sys
import threading
from pathlib import Path

import pytest

from gpio_session import lifecycle
from gpio_session.errors import InvalidState
from gpio_session.gpio import NullGpioAdapter
from gpio_session.gpio_claims import ClaimOptions, PinMode
from gpio_session.lifecycle import ShutdownGuard
from gpio_session.session import GpioSession


def test_sigint_releases_claims_then_interrupts(session, adapter):
    session.claim(17, "output", ClaimOptions(initial=True))
    session.claim(18, "pwm", ClaimOptions(duty_cycle=0.7))
    guard = ShutdownGuard(session, use_atexit=False)
    with pytest.raises(KeyboardInterrupt):
        guard.handle_signal(signal.SIGINT)
    assert session.claims() == []
    assert adapter.state(17).is_safe
    assert adapter.state(17).value == 0
    assert adapter.state(18).is_safe


def test_sigterm_exits_with_signal_status(session):
    session.claim(17, "output")
    guard = ShutdownGuard(session, use_atexit=False)
    with pytest.raises(SystemExit) as excinfo:
        guard.handle_signal(signal.SIGTERM)
    assert excinfo.value.code == 128 + signal.SIGTERM
    assert session.mode(17) is PinMode.UNCLAIMED


def test_callbacks_run_after_release(session):
    session.claim(17, "output")
    order = []
    guard = ShutdownGuard(session, exit_on_signal=False, use_atexit=False)
    guard.add_callback(lambda signum: order.append((signum, session.mode(17))))
    guard.handle_signal(signal.SIGTERM)
    assert order == [(signal.SIGTERM, PinMode.UNCLAIMED)]


def test_failing_callback_is_logged(session, caplog):
    seen = []

    def broken(_signum):
        raise RuntimeError("callback bug")

    guard = ShutdownGuard(session, exit_on_signal=False, use_atexit=False)
    guard.add_callback(broken)
    guard.add_callback(seen.append)
    with caplog.at_level(logging.ERROR, logger="gpio_session.lifecycle"):
        guard.handle_signal(signal.SIGINT)
    assert seen == [signal.SIGINT]
    assert "Shutdown callback failed" in caplog.text


def test_install_and_uninstall_restore_handlers(session):
    before = signal.getsignal(signal.SIGTERM)
    with ShutdownGuard(session, use_atexit=False) as guard:
        assert signal.getsignal(signal.SIGTERM) == guard.handle_signal
        assert signal.getsignal(signal.SIGINT) == guard.handle_signal
    assert signal.getsignal(signal.SIGTERM) == before


def test_real_sigterm_releases_claims(session, adapter):
    session.claim(17, "output", ClaimOptions(initial=True))
    fired = threading.Event()
    guard = ShutdownGuard(session, exit_on_signal=False, use_atexit=False)
    guard.add_callback(lambda _signum: fired.set())
    with guard:
        os.kill(os.getpid(), signal.SIGTERM)
        assert fired.wait(2.0)
    assert session.mode(17) is PinMode.UNCLAIMED
    assert adapter.state(17).value == 0


def test_atexit_hook_closes_session(monkeypatch):
    registered = []
    unregistered = []
    monkeypatch.setattr(lifecycle.atexit, "register", registered.append)
    monkeypatch.setattr(lifecycle.atexit, "unregister", unregistered.append)

    adapter = NullGpioAdapter()
    sess = GpioSession(adapter, start_dispatcher=False)
    sess.claim(17, "output", ClaimOptions(initial=True))
    guard = ShutdownGuard(sess, signals=()).install()
    assert len(registered) == 1

    registered[0]()
    assert sess.closed
    assert adapter.closed
    assert adapter.state(17).is_safe

    guard.uninstall()
    assert unregistered == registered


def test_session_context_releases_on_exception():
    adapter = NullGpioAdapter()
    with pytest.raises(ValueError):
        with GpioSession(adapter, start_dispatcher=False) as sess:
            sess.claim(17, "output", ClaimOptions(initial=True))
            raise ValueError("application failure")
    assert adapter.state(17).is_safe
    assert adapter.state(17).value == 0


def test_install_off_main_thread_skips_signals(session, caplog):
    before = signal.getsignal(signal.SIGTERM)
    guard = ShutdownGuard(session, use_atexit=False)
    with caplog.at_level(logging.WARNING, logger="gpio_session.lifecycle"):
        worker = threading.Thread(target=guard.install)
        worker.start()
        worker.join()
    assert signal.getsignal(signal.SIGTERM) == before
    assert "signal hooks skipped" in caplog.text
    guard.uninstall()


class SignalDuringSetupAdapter(NullGpioAdapter):
    """Delivers a shutdown signal while a line is half configured."""

    def __init__(self):
        super().__init__()
        self.guard = None

    def setup_output(self, line, initial=False):
        super().setup_output(line, initial)
        self.guard.handle_signal(signal.SIGTERM)


class SignalDuringReleaseAdapter(NullGpioAdapter):
    def __init__(self):
        super().__init__()
        self.guard = None

    def write(self, line, value):
        super().write(line, value)
        if not value and self.guard is not None:
            guard, self.guard = self.guard, None
            guard.handle_signal(signal.SIGTERM)


def test_signal_inside_registry_call_does_not_deadlock(session, adapter):
    session.claim(17, "output", ClaimOptions(initial=True))
    guard = ShutdownGuard(session, use_atexit=False)
    with pytest.raises(KeyboardInterrupt):
        with session._registry._lock, session.dispatcher._lock:
            guard.handle_signal(signal.SIGINT)
    assert session.claims() == []
    assert adapter.state(17).is_safe


def test_repeated_signal_while_releasing(session, adapter):
    session.claim(17, "output", ClaimOptions(initial=True))
    guard = ShutdownGuard(session, exit_on_signal=False, use_atexit=False)
    with session._registry._lock:
        guard.handle_signal(signal.SIGINT)
        guard.handle_signal(signal.SIGINT)
    assert session.claims() == []
    assert adapter.state(17).value == 0


def test_signal_during_claim_setup_leaves_line_safe():
    adapter = SignalDuringSetupAdapter()
    with GpioSession(adapter, start_dispatcher=False) as sess:
        adapter.guard = ShutdownGuard(sess, use_atexit=False)
        with pytest.raises(SystemExit):
            sess.claim(17, "output", ClaimOptions(initial=True))
        assert sess.claims() == []
        assert adapter.state(17).is_safe


def test_signal_during_claim_setup_without_exit():
    adapter = SignalDuringSetupAdapter()
    with GpioSession(adapter, start_dispatcher=False) as sess:
        adapter.guard = ShutdownGuard(sess, exit_on_signal=False, use_atexit=False)
        with pytest.raises(InvalidState):
            sess.claim(17, "output", ClaimOptions(initial=True))
        assert sess.claims() == []
        assert adapter.state(17).is_safe
        assert adapter.state(17).value == 0


def test_signal_during_release_still_releases():
    adapter = SignalDuringReleaseAdapter()
    with GpioSession(adapter, start_dispatcher=False) as sess:
        sess.claim(17, "output", ClaimOptions(initial=True))
        sess.claim(22, "output", ClaimOptions(initial=True))
        adapter.guard = ShutdownGuard(sess, exit_on_signal=False, use_atexit=False)
        sess.release(17)
        assert sess.claims() == []
        assert adapter.state(17).is_safe
        assert adapter.state(22).is_safe


READ_LOOP = """
import os, signal, sys, threading
from gpio_session.gpio import NullGpioAdapter
from gpio_session.lifecycle import ShutdownGuard
from gpio_session.session import GpioSession

adapter = NullGpioAdapter()
session = GpioSession(adapter, start_dispatcher=False)
session.claim(17, "output")
session.write(17, True)
try:
    with ShutdownGuard(session, use_atexit=False):
        threading.Timer(float(sys.argv[1]), os.kill, (os.getpid(), signal.SIGINT)).start()
        while True:
            session.read(17)
            session.mode(17)
except KeyboardInterrupt:
    pass
state = adapter.state(17)
print(state.direction, state.value, len(session.claims()))
"""


@pytest.mark.parametrize("delay", [0.01 + 0.002 * i for i in range(20)])
def test_sigint_during_busy_read_loop_releases(delay):
    root = Path(__file__).resolve().parents[1]
    env = dict(os.environ, PYTHONPATH=os.pathsep.join(filter(None, [str(root), os.environ.get("PYTHONPATH")])))
    result = subprocess.run(
        [sys.executable, "-c", READ_LOOP, str(delay)],
        capture_output=True,
        text=True,
        timeout=10,
        env=env,
    )
    assert result.returncode == 0, result.stderr
    assert result.stdout.split() == ["input", "0", "0"]
