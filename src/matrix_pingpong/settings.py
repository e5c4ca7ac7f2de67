"""Layered configuration for the ping-pong monitor.

Values are merged from default dataclass attributes, an optional TOML/JSON
settings file, environment variables, and command-line overrides, in that
order of increasing precedence.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Mapping

try:  # Python >=3.11
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    tomllib = None  # type: ignore

_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d*)?|\.\d+)\s*(ms|s|m|h)?\s*$")


def _to_bool(value: Any) -> bool:
    """Coerce a flag value such as ``"yes"`` or ``0`` to a boolean."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "t", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "f", "no", "n", "off"}:
            return False
    raise ValueError(f"Cannot interpret {value!r} as a boolean")


def _to_seconds(value: Any) -> float:
    """Coerce a duration to seconds.

    Numbers are taken as seconds. Strings may carry an ``ms``, ``s``, ``m`` or
    ``h`` suffix (``"3s"``, ``"500ms"``); a bare number string means seconds.

    Raises:
        ValueError: If *value* is negative or not a recognizable duration.
    """

    if isinstance(value, bool):
        raise ValueError(f"Cannot interpret {value!r} as a duration")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        match = _DURATION_PATTERN.match(value)
        if match is None:
            raise ValueError(f"Cannot interpret {value!r} as a duration")
        number, unit = match.groups()
        seconds = float(number) * _DURATION_UNITS[unit or "s"]
    else:
        raise ValueError(f"Cannot interpret {value!r} as a duration")
    if seconds < 0:
        raise ValueError(f"Duration must not be negative, got {value!r}")
    return seconds


def _resolve_settings_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Return the CLI path, else ``PINGPONG_SETTINGS_FILE``, else ``None``."""
    if cli_path:
        return cli_path
    env_value = env.get("PINGPONG_SETTINGS_FILE")
    if env_value:
        return Path(env_value).expanduser()
    return None


@dataclass(slots=True)
class PingPongSettings:
    """Resolved configuration for a monitoring run.

    Attributes:
        message_text: Body of the messages bounced between the participants.
        interval_seconds: Delay before replying to a received message.
        retry_interval_seconds: Delay before retrying a failed send or sync.
        sync_timeout_seconds: Long-poll timeout of each ``/sync`` request.
        debug: Log every operation instead of showing the dashboard.
    """

    message_text: str = "ping"
    interval_seconds: float = 3.0
    retry_interval_seconds: float = 5.0
    sync_timeout_seconds: float = 30.0
    debug: bool = False

    _ENV_KEYS: ClassVar[Mapping[str, str]] = {
        "message_text": "PINGPONG_MESSAGE_TEXT",
        "interval_seconds": "PINGPONG_INTERVAL",
        "retry_interval_seconds": "PINGPONG_RETRY_INTERVAL",
        "sync_timeout_seconds": "PINGPONG_SYNC_TIMEOUT",
        "debug": "PINGPONG_DEBUG",
    }

    _FIELD_CASTERS: ClassVar[Mapping[str, Any]] = {
        "message_text": str,
        "interval_seconds": _to_seconds,
        "retry_interval_seconds": _to_seconds,
        "sync_timeout_seconds": _to_seconds,
        "debug": _to_bool,
    }

    @classmethod
    def from_sources(
        cls,
        *,
        cli_overrides: Mapping[str, Any],
        env: Mapping[str, str],
        settings_file: Path | None,
    ) -> "PingPongSettings":
        """Create a configuration instance from layered sources.

        Args:
            cli_overrides: Mapping of CLI-provided overrides keyed by dataclass
                field name. ``None`` values are ignored.
            env: Environment variables available to the process.
            settings_file: Path explicitly supplied to the CLI, or ``None``.

        Returns:
            An instance populated according to CLI > environment > settings >
            default precedence.

        Raises:
            FileNotFoundError: If *settings_file* (or the resolved environment
                path) points to a file that does not exist.
            ValueError: If any source contains an invalid value.
        """

        settings_path = _resolve_settings_path(settings_file, env)
        data: dict[str, Any] = {}

        if settings_path:
            if not settings_path.exists():
                raise FileNotFoundError(f"Settings file '{settings_path}' does not exist")
            data.update(cls._load_settings_file(settings_path))

        data.update(cls._load_from_env(env))

        for key, value in cli_overrides.items():
            if value is not None:
                data[key] = cls._FIELD_CASTERS[key](value)

        return cls(**data)

    @classmethod
    def _load_from_env(cls, env: Mapping[str, str]) -> dict[str, Any]:
        loaded: dict[str, Any] = {}
        for field_name, env_key in cls._ENV_KEYS.items():
            raw_value = env.get(env_key, "")
            if raw_value == "":
                continue
            loaded[field_name] = cls._FIELD_CASTERS[field_name](raw_value)
        return loaded

    @classmethod
    def _load_settings_file(cls, path: Path) -> dict[str, Any]:
        """Parse configuration values from a TOML or JSON settings file.

        Values may sit at the top level or under a ``pingpong`` section.
        Unknown keys are ignored.

        Raises:
            RuntimeError: If TOML parsing is requested on an interpreter without
                ``tomllib`` support.
            ValueError: If the document is not a mapping or contains invalid
                values.
        """

        suffix = path.suffix.lower()
        if suffix == ".json":
            import json

            payload = json.loads(path.read_text())
        elif suffix == ".toml":
            if tomllib is None:  # pragma: no cover
                raise RuntimeError("tomllib is unavailable on this Python interpreter")
            payload = tomllib.loads(path.read_text())
        else:
            raise ValueError(
                f"Unsupported settings file extension '{path.suffix}'. "
                "Use .toml or .json."
            )

        if not isinstance(payload, Mapping):
            raise ValueError("Settings file must contain a top-level mapping")

        section = payload.get("pingpong", payload)
        if not isinstance(section, Mapping):
            raise ValueError("Settings file 'pingpong' section must be a mapping")

        result: dict[str, Any] = {}
        for key, value in section.items():
            if key not in cls._FIELD_CASTERS:
                continue
            result[key] = cls._FIELD_CASTERS[key](value)
        return result


__all__ = ["PingPongSettings"]
