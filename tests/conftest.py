import pytest

from gpio_session.gpio import NullGpioAdapter
from gpio_session.session import GpioSession


@pytest.fixture
def adapter():
    return NullGpioAdapter()


@pytest.fixture
def session(adapter):
    """Session without the background dispatch thread; tests feed edges directly."""
    sess = GpioSession(adapter, start_dispatcher=False)
    yield sess
    sess.close()
