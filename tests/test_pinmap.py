import textwrap

import pytest

from gpio_session.errors import ConfigError
from gpio_session.pinmap import RPI_40PIN, BoardProfile, PwmChannel, load_profile


def test_default_profile_capabilities():
    assert load_profile(None) is RPI_40PIN
    assert RPI_40PIN.has_line(0)
    assert RPI_40PIN.has_line(27)
    assert not RPI_40PIN.has_line(28)
    assert RPI_40PIN.pwm_channel(18) == PwmChannel(0, 0)
    assert RPI_40PIN.pwm_channel(19) == RPI_40PIN.pwm_channel(13)
    assert RPI_40PIN.pwm_channel(17) is None
    assert RPI_40PIN.bus_for_line(9) == "spi0"
    assert RPI_40PIN.bus_for_line(17) is None
    assert RPI_40PIN.bus_lines("i2c1") == (2, 3)


def test_header_lookups():
    assert RPI_40PIN.line_for_header(11) == 17
    assert RPI_40PIN.line_for_header(1) is None
    assert RPI_40PIN.header_for_line(18) == 12
    assert len(RPI_40PIN.header) == 28


def test_describe_lists_every_line():
    rows = RPI_40PIN.describe()
    assert [row["line"] for row in rows] == list(range(28))
    assert rows[18] == {"line": 18, "header": 12, "pwm": [0, 0], "bus": None}
    assert rows[2]["bus"] == "i2c1"


def test_line_in_two_buses_is_rejected():
    with pytest.raises(ConfigError, match="both"):
        BoardProfile("bad", frozenset({1, 2}), {}, {"a": (1,), "b": (1, 2)}, {})


def test_unknown_lines_are_rejected():
    with pytest.raises(ConfigError, match="pwm"):
        BoardProfile("bad", frozenset({1}), {5: PwmChannel(0, 0)}, {}, {})


def test_load_profile_from_yaml(tmp_path):
    path = tmp_path / "cm4.yaml"
    path.write_text(
        textwrap.dedent(
            """
            version: 1
            name: compute-module
            lines: {first: 0, last: 45}
            pwm:
              40: [0, 0]
              41: [0, 1]
            buses:
              i2c0: [44, 45]
            header:
              1: 4
            """
        ),
        encoding="utf-8",
    )
    profile = load_profile(path)
    assert profile.name == "compute-module"
    assert profile.has_line(45)
    assert profile.pwm_channel(41) == PwmChannel(0, 1)
    assert profile.bus_for_line(44) == "i2c0"
    assert profile.line_for_header(1) == 4


@pytest.mark.parametrize(
    "body",
    [
        "version: 1\nlines: []\n",
        "version: 1\nlines: {first: 5, last: 1}\n",
        "version: 1\nlines: [1, 2]\npwm: {1: 3}\n",
        "version: 1\nlines: [1, 2]\nbuses: {i2c: [7]}\n",
    ],
)
def test_invalid_profiles(tmp_path, body):
    path = tmp_path / "bad.yaml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(ConfigError):
        BoardProfile.load(path)
