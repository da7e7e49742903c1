import textwrap

import pytest

from gpio_session.config import CONFIG_ENV_VAR, SessionConfig, default_config_path, load_config
from gpio_session.errors import ConfigError


def write(tmp_path, name, body):
    path = tmp_path / name
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


def test_defaults_without_path():
    config = load_config(None)
    assert config == SessionConfig()
    assert config.debounce_ms == 200.0
    assert config.poll_interval == pytest.approx(0.005)


def test_full_config(tmp_path):
    path = write(
        tmp_path,
        "gpio.yaml",
        """
        version: 1
        backend: "Null"
        chip: /dev/gpiochip4
        debounce_ms: 50
        poll_interval_ms: 2
        board_profile: boards/custom.yaml
        aliases:
          status_led: 17
        buses: [i2c1]
        pins:
          - {name: status_led, pin: status_led, mode: output, initial: true}
          - {name: button, pin: GPIO27, edge: falling, debounce_ms: 30}
          - {name: fan, pin: 18, mode: pwm, frequency_hz: 25000, duty_cycle: 0.4}
        """,
    )
    config = load_config(path)
    assert config.backend == "null"
    assert config.chip == "/dev/gpiochip4"
    assert config.debounce_ms == 50.0
    assert config.poll_interval == pytest.approx(0.002)
    assert config.board_profile == str(tmp_path / "boards" / "custom.yaml")
    assert config.aliases == {"status_led": 17}
    assert config.buses == ["i2c1"]

    led, button, fan = config.pins
    assert (led.mode, led.initial) == ("output", True)
    assert (button.mode, button.pull, button.edge, button.debounce_ms) == ("input", "up", "falling", 30.0)
    assert (fan.frequency_hz, fan.duty_cycle) == (25000.0, 0.4)


@pytest.mark.parametrize(
    "body, message",
    [
        ("backend: gpiod\n", "version"),
        ("version: 2\n", "version"),
        ("version: 1\nbackend: wiringpi\n", "backend"),
        ("version: 1\ndebounce_ms: -5\n", "debounce_ms"),
        ("version: 1\ndebounce_ms: .nan\n", "debounce_ms"),
        ("version: 1\naliases: [17]\n", "aliases"),
        ("version: 1\naliases: {led: GPIO17}\n", "alias 'led'"),
        ("version: 1\npins: {led: 17}\n", "pins must be a list"),
        ("version: 1\npins: [{name: led}]\n", "missing 'pin'"),
        ("version: 1\npins: [{pin: 17, mode: analog}]\n", "mode"),
        ("version: 1\npins: [{pin: 17, duty_cycle: 2}]\n", "duty_cycle"),
        ("version: 1\npins: [{name: a, pin: 17}, {name: a, pin: 27}]\n", "duplicate pin name"),
        ("- 1\n- 2\n", "Expected mapping"),
        ("version: [1\n", "Invalid YAML"),
    ],
)
def test_invalid_config(tmp_path, body, message):
    path = tmp_path / "bad.yaml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(ConfigError, match=message):
        load_config(path)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="Missing required file"):
        load_config(tmp_path / "absent.yaml")


def test_config_path_from_environment(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    assert default_config_path() is None
    monkeypatch.setenv(CONFIG_ENV_VAR, "  /etc/gpio_session.yaml ")
    assert default_config_path() == "/etc/gpio_session.yaml"
