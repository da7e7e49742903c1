import argparse
import json

import pytest

from gpio_session import cli
from gpio_session.config import CONFIG_ENV_VAR


@pytest.fixture(autouse=True)
def no_env_config(monkeypatch):
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)


def run(capsys, *argv):
    code = cli.main(["--backend", "null", *argv])
    return code, json.loads(capsys.readouterr().out)


def test_pins_lists_capabilities(capsys):
    code, out = run(capsys, "pins")
    assert code == 0
    assert out["ok"] is True
    assert out["profile"] == "rpi-40pin"
    assert len(out["pins"]) == 28
    assert out["pins"][12]["pwm"] == [0, 0]


def test_write_and_read(capsys):
    code, out = run(capsys, "write", "GPIO17", "on")
    assert code == 0
    assert out == {"ok": True, "cmd": "write", "pin": 17, "value": 1, "held_s": 0.0}

    code, out = run(capsys, "read", "BOARD13", "--pull", "down")
    assert code == 0
    assert (out["pin"], out["value"]) == (27, 0)


def test_blink(capsys):
    code, out = run(capsys, "blink", "17", "--count", "2", "--on-ms", "1", "--off-ms", "1")
    assert code == 0
    assert out["count"] == 2


def test_pwm(capsys):
    code, out = run(capsys, "pwm", "18", "--duty", "0.5", "--hold", "0")
    assert code == 0
    assert (out["duty"], out["frequency_hz"]) == (0.5, 100.0)


def test_pwm_on_plain_line_fails(capsys):
    code, out = run(capsys, "pwm", "17", "--duty", "0.5", "--hold", "0")
    assert code == 1
    assert out["ok"] is False
    assert out["type"] == "UnsupportedMode"


def test_unknown_pin_fails(capsys):
    code, out = run(capsys, "read", "GPIO99")
    assert code == 1
    assert out["type"] == "InvalidArgument"


def test_watch_times_out(capsys):
    code, out = run(capsys, "watch", "27", "--timeout", "0.05")
    assert code == 0
    assert out["events"] == 0


def test_aliases_from_config(tmp_path, capsys):
    path = tmp_path / "gpio.yaml"
    path.write_text("version: 1\naliases:\n  status_led: 17\n", encoding="utf-8")
    code, out = run(capsys, "--config", str(path), "write", "status_led", "1")
    assert code == 0
    assert out["pin"] == 17

    code, out = run(capsys, "--config", str(path), "pins")
    assert out["pins"][17]["alias"] == "status_led"


def test_bad_config_reports_error(tmp_path, capsys):
    code, out = run(capsys, "--config", str(tmp_path / "missing.yaml"), "pins")
    assert code == 1
    assert out["type"] == "ConfigError"


@pytest.mark.parametrize("token, level", [("1", True), ("HIGH", True), ("off", False), ("false", False)])
def test_parse_level(token, level):
    assert cli.parse_level(token) is level


def test_parse_level_rejects_garbage():
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_level("maybe")
