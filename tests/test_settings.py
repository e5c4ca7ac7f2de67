"""Tests for layered configuration in :mod:`matrix_pingpong.settings`."""

import json
import textwrap

import pytest

from matrix_pingpong.settings import PingPongSettings, _to_bool, _to_seconds


def build(cli=None, env=None, settings_file=None):
    return PingPongSettings.from_sources(
        cli_overrides=cli or {}, env=env or {}, settings_file=settings_file
    )


def test_defaults():
    settings = build()
    assert settings.message_text == "ping"
    assert settings.interval_seconds == 3.0
    assert settings.retry_interval_seconds == 5.0
    assert settings.sync_timeout_seconds == 30.0
    assert settings.debug is False


@pytest.mark.parametrize(
    "value, expected",
    [("3s", 3.0), ("500ms", 0.5), ("2m", 120.0), ("1h", 3600.0), ("1.5", 1.5), (2, 2.0), (" 4 s ", 4.0)],
)
def test_to_seconds(value, expected):
    assert _to_seconds(value) == pytest.approx(expected)


@pytest.mark.parametrize("value", ["soon", "-1s", "3 days", True, None, -2])
def test_to_seconds_rejects(value):
    with pytest.raises(ValueError):
        _to_seconds(value)


@pytest.mark.parametrize("value, expected", [("yes", True), ("0", False), (1, True), (False, False)])
def test_to_bool(value, expected):
    assert _to_bool(value) is expected


def test_to_bool_rejects():
    with pytest.raises(ValueError):
        _to_bool("maybe")


def test_toml_section(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text(
        textwrap.dedent(
            """
            [pingpong]
            message_text = "pong"
            interval_seconds = "1s"
            debug = true
            unknown = 1
            """
        )
    )
    settings = build(settings_file=path)
    assert settings.message_text == "pong"
    assert settings.interval_seconds == 1.0
    assert settings.debug is True


def test_json_top_level(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"retry_interval_seconds": 0.25}))
    assert build(settings_file=path).retry_interval_seconds == 0.25


def test_settings_file_from_env(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"message_text": "from-file"}))
    settings = build(env={"PINGPONG_SETTINGS_FILE": str(path)})
    assert settings.message_text == "from-file"


def test_precedence(tmp_path):
    path = tmp_path / "settings.toml"
    path.write_text('interval_seconds = 10\nmessage_text = "file"\nretry_interval_seconds = 9\n')
    env = {"PINGPONG_INTERVAL": "7s", "PINGPONG_MESSAGE_TEXT": "env", "PINGPONG_DEBUG": ""}

    settings = build(cli={"interval_seconds": "500ms", "debug": None}, env=env, settings_file=path)

    assert settings.interval_seconds == 0.5
    assert settings.message_text == "env"
    assert settings.retry_interval_seconds == 9.0
    assert settings.debug is False


def test_missing_settings_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        build(settings_file=tmp_path / "missing.toml")


def test_unsupported_extension(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("debug: true")
    with pytest.raises(ValueError, match="Unsupported"):
        build(settings_file=path)


def test_section_must_be_mapping(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"pingpong": [1, 2]}))
    with pytest.raises(ValueError, match="section must be a mapping"):
        build(settings_file=path)


def test_invalid_env_value():
    with pytest.raises(ValueError):
        build(env={"PINGPONG_RETRY_INTERVAL": "later"})
