"""MQTT push transport.

`MqttRuntime` owns the paho-mqtt client and its network thread and hands
decoded messages to the asyncio loop. `MqttClient` is the transport the
agent talks to: it scopes subscriptions to the assigned project, turns
``update`` commands into ``Agent.set_state`` calls and publishes status
check-ins.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, cast
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt
from pydantic import ValidationError

from deviceagent._constants import DEVICE_COMMAND_TOPIC, DEVICE_STATUS_TOPIC, PROJECT_COMMAND_TOPIC
from deviceagent._redact import redact_for_log
from deviceagent.config import AgentConfig
from deviceagent.exceptions import AgentConfigError
from deviceagent.models.desired import DesiredState

if TYPE_CHECKING:
    from deviceagent.agent import Agent

_logger = logging.getLogger(__name__)

_DESIRED_KEYS = ("project", "snapshot", "settings")


@dataclass(frozen=True)
class MqttBootstrap:
    """Broker connection details derived from the agent configuration."""

    host: str
    port: int
    transport: str
    tls: bool
    path: str
    client_id: str
    username: str | None
    password: str | None


def parse_broker_url(raw_url: str) -> tuple[str, int, str, bool, str]:
    """Split a broker URL into ``(host, port, transport, tls, ws_path)``."""
    value = raw_url.strip()
    if not value:
        raise AgentConfigError("Broker URL is empty")
    if "://" not in value:
        value = f"mqtt://{value}"

    parts = urlsplit(value)
    scheme = parts.scheme.lower()
    defaults = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883, "ws": 80, "wss": 443}
    if scheme not in defaults:
        raise AgentConfigError(f"Unsupported broker scheme: {scheme}")
    host = parts.hostname
    if not host:
        raise AgentConfigError(f"Broker URL has no host: {raw_url}")

    transport = "websockets" if scheme in {"ws", "wss"} else "tcp"
    tls = scheme in {"mqtts", "ssl", "wss"}
    return host, parts.port or defaults[scheme], transport, tls, parts.path or "/"


def build_bootstrap(config: AgentConfig) -> MqttBootstrap:
    if not config.broker_url:
        raise AgentConfigError("No broker URL configured")
    host, port, transport, tls, path = parse_broker_url(config.broker_url)
    return MqttBootstrap(
        host=host,
        port=port,
        transport=transport,
        tls=tls,
        path=path,
        client_id=config.broker_username or f"device-{config.device_id}",
        username=config.broker_username,
        password=config.broker_password,
    )


def decode_message(payload: bytes) -> dict[str, Any]:
    """Decode an MQTT payload into a JSON object."""
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError("MQTT payload is not a JSON object")
    return parsed


class MqttRuntime:
    """Threaded paho-mqtt runtime that emits parsed messages onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[str, dict[str, Any]], None],
        on_connect: Callable[[], None],
        keepalive: int = 60,
        verify_tls: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._on_connect = on_connect
        self._keepalive = keepalive
        self._verify_tls = verify_tls
        self._logger = logger or _logger
        self._client: mqtt.Client | None = None
        self._running = False
        self._topics: set[str] = set()

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    @property
    def topics(self) -> frozenset[str]:
        return frozenset(self._topics)

    def start(self, bootstrap: MqttBootstrap) -> None:
        """Connect in the background; paho keeps reconnecting on its own."""
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s transport=%s client_id=%s",
            bootstrap.host,
            bootstrap.port,
            bootstrap.transport,
            bootstrap.client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=bootstrap.client_id,
            transport=bootstrap.transport,
        )
        client.enable_logger(self._logger)
        if bootstrap.username:
            client.username_pw_set(bootstrap.username, bootstrap.password)
        if bootstrap.transport == "websockets":
            client.ws_set_options(path=bootstrap.path)
        if bootstrap.tls:
            client.tls_set()
            if not self._verify_tls:
                client.tls_insecure_set(True)
        client.reconnect_delay_set(min_delay=1, max_delay=60)

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.info("MQTT connected to %s:%s", bootstrap.host, bootstrap.port)
            for topic in sorted(self._topics):
                self._logger.debug("MQTT subscribing topic=%s", topic)
                c.subscribe(topic, qos=1)
            self._loop.call_soon_threadsafe(self._on_connect)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                parsed = decode_message(msg.payload)
            except (UnicodeDecodeError, ValueError):
                self._logger.debug("MQTT payload parse failure topic=%s", msg.topic, exc_info=True)
                return
            self._logger.debug("Received PUBLISH topic=%s parsed=%s", msg.topic, redact_for_log(parsed))
            self._loop.call_soon_threadsafe(self._on_message, msg.topic, parsed)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.warning("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect_async(bootstrap.host, bootstrap.port, keepalive=self._keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def subscribe(self, topic: str) -> None:
        self._topics.add(topic)
        client = self._client
        if client is not None and client.is_connected():
            client.subscribe(topic, qos=1)

    def unsubscribe(self, topic: str) -> None:
        self._topics.discard(topic)
        client = self._client
        if client is not None and client.is_connected():
            client.unsubscribe(topic)

    def publish(self, topic: str, payload: dict[str, Any]) -> bool:
        """Publish JSON; returns ``False`` when not connected."""
        client = self._client
        if client is None or not client.is_connected():
            self._logger.debug("MQTT publish skipped (not connected) topic=%s", topic)
            return False
        client.publish(topic, json.dumps(payload, separators=(",", ":")), qos=1)
        return True

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")


class MqttClient:
    """Push transport bound to one agent."""

    def __init__(
        self,
        agent: Agent,
        config: AgentConfig,
        *,
        runtime_factory: Callable[..., MqttRuntime] = MqttRuntime,
    ) -> None:
        self._agent = agent
        self._config = config
        self._runtime_factory = runtime_factory
        self._runtime: MqttRuntime | None = None
        self._project: str | None = None
        self._project_topic: str | None = None
        self._checkin_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def runtime(self) -> MqttRuntime | None:
        return self._runtime

    @property
    def project(self) -> str | None:
        return self._project

    @property
    def command_topic(self) -> str:
        return DEVICE_COMMAND_TOPIC.format(team=self._config.team_id, device=self._config.device_id)

    @property
    def status_topic(self) -> str:
        return DEVICE_STATUS_TOPIC.format(team=self._config.team_id, device=self._config.device_id)

    def start(self) -> None:
        if self._runtime is not None and self._runtime.is_running:
            return
        loop = asyncio.get_running_loop()
        runtime = self._runtime_factory(
            loop=loop,
            on_message=self._on_message,
            on_connect=self._on_connect,
            keepalive=self._config.mqtt_keepalive,
            verify_tls=self._config.verify_ssl,
            logger=_logger,
        )
        runtime.subscribe(self.command_topic)
        if self._project_topic is not None:
            runtime.subscribe(self._project_topic)
        runtime.start(build_bootstrap(self._config))
        self._runtime = runtime
        if self._config.mqtt_checkin_interval > 0:
            self._checkin_task = loop.create_task(self._periodic_check_in())

    def stop(self) -> None:
        task = self._checkin_task
        self._checkin_task = None
        if task is not None and not task.done():
            task.cancel()
        runtime = self._runtime
        self._runtime = None
        if runtime is not None:
            runtime.stop()

    def set_project(self, project: str | None) -> None:
        """Scope project-wide command subscriptions to *project*."""
        self._project = project
        topic = (
            PROJECT_COMMAND_TOPIC.format(team=self._config.team_id, project=project) if project else None
        )
        if topic == self._project_topic:
            return
        runtime = self._runtime
        if runtime is not None and self._project_topic is not None:
            runtime.unsubscribe(self._project_topic)
        self._project_topic = topic
        if runtime is not None and topic is not None:
            runtime.subscribe(topic)
        _logger.debug("MQTT project scope set to %s", project)

    def check_in(self) -> None:
        """Publish the agent's status once it is not busy updating."""
        self._spawn(self._publish_status())

    async def _publish_status(self) -> None:
        await self._agent.wait_idle()
        report = self._agent.get_state()
        runtime = self._runtime
        if report is None or runtime is None:
            return
        runtime.publish(self.status_topic, report.to_payload())

    async def _periodic_check_in(self) -> None:
        while True:
            await asyncio.sleep(self._config.mqtt_checkin_interval)
            self.check_in()

    def _on_connect(self) -> None:
        self.check_in()

    def _on_message(self, topic: str, payload: dict[str, Any]) -> None:
        command = payload.get("command")
        if command != "update":
            _logger.debug("Ignoring MQTT command=%s topic=%s", command, topic)
            return
        try:
            desired = DesiredState.model_validate({k: payload[k] for k in _DESIRED_KEYS if k in payload})
        except ValidationError:
            _logger.debug("Invalid update command topic=%s", topic, exc_info=True)
            return
        self._spawn(self._agent.set_state(desired))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.error("MQTT-triggered task failed", exc_info=exc)
