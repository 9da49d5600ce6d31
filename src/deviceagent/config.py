"""Agent configuration for deviceagent."""

from __future__ import annotations

import dataclasses
import json
import os
import shlex
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from deviceagent._constants import (
    DEFAULT_DIR,
    DEFAULT_LAUNCHER_COMMAND,
    DEFAULT_MQTT_CHECKIN_INTERVAL,
    DEFAULT_MQTT_KEEPALIVE,
    DEFAULT_POLL_INTERVAL,
)
from deviceagent.exceptions import AgentConfigError


_TRUE_VALUES = frozenset({"1", "true", "yes", "y", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "n", "off"})


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return default


# Keys accepted by ``from_file`` in addition to the field names.
_FILE_ALIASES: dict[str, str] = {
    "deviceId": "device_id",
    "forgeURL": "forge_url",
    "forgeUrl": "forge_url",
    "brokerURL": "broker_url",
    "brokerUrl": "broker_url",
    "brokerUsername": "broker_username",
    "brokerPassword": "broker_password",
    "teamId": "team_id",
    "pollInterval": "poll_interval",
    "mqttKeepalive": "mqtt_keepalive",
    "mqttCheckinInterval": "mqtt_checkin_interval",
    "launcherCommand": "launcher_command",
    "restartLimit": "restart_limit",
    "restartDelay": "restart_delay",
    "stopTimeout": "stop_timeout",
    "httpTimeout": "http_timeout",
    "verifySsl": "verify_ssl",
}

_FLOAT_FIELDS = frozenset(
    {"poll_interval", "mqtt_checkin_interval", "restart_delay", "stop_timeout", "http_timeout"}
)
_INT_FIELDS = frozenset({"mqtt_keepalive", "restart_limit"})
_BOOL_FIELDS = frozenset({"verify_ssl"})


@dataclasses.dataclass(frozen=True)
class AgentConfig:
    """Agent configuration.

    Parameters
    ----------
    device_id : str
        Identifier of this device on the platform.
    token : str
        Device access token sent as a bearer token with every HTTP request.
    forge_url : str
        Base URL of the platform API.
    dir : str
        Working directory holding the project file and the project files
        written for the managed process.
    broker_url : str or None
        MQTT broker URL (``mqtt://``, ``mqtts://``, ``ws://`` or ``wss://``).
        When unset the agent falls back to HTTP polling.
    broker_username : str or None
        MQTT username.
    broker_password : str or None
        MQTT password.
    team_id : str
        Team identifier used to build MQTT topics.
    poll_interval : float
        Seconds between HTTP check-ins when polling.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_checkin_interval : float
        Seconds between periodic status publications over MQTT.
    launcher_command : tuple of str
        Command line of the managed process. ``{project_dir}`` is replaced
        by the directory holding the written configuration.
    restart_limit : int
        Consecutive unexpected exits tolerated before giving up.
    restart_delay : float
        Seconds to wait before respawning a crashed process.
    stop_timeout : float
        Seconds to wait for a graceful exit before killing the process.
    http_timeout : float
        Total timeout of a single HTTP request in seconds.
    verify_ssl : bool
        Verify TLS certificates for HTTP and MQTT.
    """

    device_id: str
    token: str
    forge_url: str
    dir: str = DEFAULT_DIR
    broker_url: str | None = None
    broker_username: str | None = None
    broker_password: str | None = None
    team_id: str = ""
    poll_interval: float = DEFAULT_POLL_INTERVAL
    mqtt_keepalive: int = DEFAULT_MQTT_KEEPALIVE
    mqtt_checkin_interval: float = DEFAULT_MQTT_CHECKIN_INTERVAL
    launcher_command: tuple[str, ...] = DEFAULT_LAUNCHER_COMMAND
    restart_limit: int = 5
    restart_delay: float = 2.0
    stop_timeout: float = 10.0
    http_timeout: float = 30.0
    verify_ssl: bool = True

    @property
    def push_enabled(self) -> bool:
        """Whether a broker is configured (push mode instead of polling)."""
        return bool(self.broker_url)

    def validate(self) -> AgentConfig:
        """Raise :class:`AgentConfigError` when a required field is missing."""
        missing = [name for name in ("device_id", "token", "forge_url") if not getattr(self, name)]
        if missing:
            raise AgentConfigError(f"Missing required configuration: {', '.join(missing)}")
        if not self.launcher_command:
            raise AgentConfigError("launcher_command must not be empty")
        if self.poll_interval <= 0:
            raise AgentConfigError(f"poll_interval must be positive, got {self.poll_interval}")
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> AgentConfig:
        """Create configuration from environment variables.

        Reads ``DEVICE_AGENT_*`` variables. Explicit keyword arguments
        override environment values.
        """
        config_kwargs = {**_read_env(skip=overrides), **overrides}
        config_kwargs.setdefault("device_id", "")
        config_kwargs.setdefault("token", "")
        config_kwargs.setdefault("forge_url", "")
        return cls(**config_kwargs)

    @classmethod
    def from_file(cls, path: str | Path, **overrides: Any) -> AgentConfig:
        """Create configuration from a JSON file.

        Keys may be field names or their camelCase spelling. Values from
        ``DEVICE_AGENT_*`` environment variables and then *overrides* take
        precedence over the file.
        """
        file_path = Path(path)
        try:
            data = json.loads(file_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise AgentConfigError(f"Cannot read configuration file {file_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise AgentConfigError(f"Configuration file {file_path} must contain a JSON object")

        field_names = {f.name for f in dataclasses.fields(cls)}
        file_kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _FILE_ALIASES.get(key, key)
            if name not in field_names:
                continue
            if isinstance(value, str):
                value = _coerce(name, value)
            elif name == "launcher_command":
                value = tuple(value)
            file_kwargs[name] = value

        merged = {**file_kwargs, **_read_env(skip=overrides), **overrides}
        return cls.from_env(**merged)


_ENV_CONFIG_MAP: dict[str, str] = {
    "DEVICE_AGENT_DEVICE_ID": "device_id",
    "DEVICE_AGENT_TOKEN": "token",
    "DEVICE_AGENT_FORGE_URL": "forge_url",
    "DEVICE_AGENT_DIR": "dir",
    "DEVICE_AGENT_BROKER_URL": "broker_url",
    "DEVICE_AGENT_BROKER_USERNAME": "broker_username",
    "DEVICE_AGENT_BROKER_PASSWORD": "broker_password",
    "DEVICE_AGENT_TEAM_ID": "team_id",
    "DEVICE_AGENT_POLL_INTERVAL": "poll_interval",
    "DEVICE_AGENT_MQTT_KEEPALIVE": "mqtt_keepalive",
    "DEVICE_AGENT_MQTT_CHECKIN_INTERVAL": "mqtt_checkin_interval",
    "DEVICE_AGENT_LAUNCHER_COMMAND": "launcher_command",
    "DEVICE_AGENT_RESTART_LIMIT": "restart_limit",
    "DEVICE_AGENT_RESTART_DELAY": "restart_delay",
    "DEVICE_AGENT_STOP_TIMEOUT": "stop_timeout",
    "DEVICE_AGENT_HTTP_TIMEOUT": "http_timeout",
    "DEVICE_AGENT_VERIFY_SSL": "verify_ssl",
}


def _read_env(*, skip: Mapping[str, Any]) -> dict[str, Any]:
    """Return the fields actually set in the environment, coerced."""
    values: dict[str, Any] = {}
    for env_key, field_name in _ENV_CONFIG_MAP.items():
        raw = os.environ.get(env_key)
        if raw is not None and field_name not in skip:
            values[field_name] = _coerce(field_name, raw)
    return values


def _coerce(field_name: str, value: str) -> Any:
    if field_name == "launcher_command":
        return tuple(shlex.split(value))
    if field_name in _BOOL_FIELDS:
        normalized = value.strip().lower()
        if normalized not in _TRUE_VALUES | _FALSE_VALUES:
            raise AgentConfigError(f"Invalid value for {field_name}: {value!r}")
        return _env_bool(normalized, True)
    try:
        if field_name in _FLOAT_FIELDS:
            return float(value)
        if field_name in _INT_FIELDS:
            return int(value)
    except ValueError as exc:
        raise AgentConfigError(f"Invalid value for {field_name}: {value!r}") from exc
    return value
