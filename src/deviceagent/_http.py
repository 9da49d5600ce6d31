"""HTTP polling transport.

Endpoints:
  - GET  /api/v1/devices/{device}/live/snapshot  (current snapshot)
  - GET  /api/v1/devices/{device}/live/settings  (current settings)
  - POST /api/v1/devices/{device}/live/state     (check-in)

A check-in answered with ``409`` carries the desired state in its body;
``401``/``404`` mean the device is no longer known to the platform.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from deviceagent._constants import SETTINGS_ENDPOINT, SNAPSHOT_ENDPOINT, STATE_ENDPOINT
from deviceagent._transport import HttpTransport, Transport
from deviceagent.config import AgentConfig
from deviceagent.exceptions import AgentApiError, AgentAuthenticationError, AgentError, AgentTransportError
from deviceagent.models.desired import DesiredState
from deviceagent.models.state import Settings, Snapshot

if TYPE_CHECKING:
    from deviceagent.agent import Agent

_logger = logging.getLogger(__name__)

_DEAUTHORIZED_STATUSES: frozenset[int] = frozenset({401, 404})


def _require_object(endpoint: str, status: int, body: Any) -> dict[str, Any]:
    if status in _DEAUTHORIZED_STATUSES:
        raise AgentAuthenticationError(
            f"{endpoint} rejected device credentials (HTTP {status})",
            code=str(status),
            endpoint=endpoint,
        )
    if status != 200:
        raise AgentTransportError(
            f"HTTP {status} from {endpoint}",
            status_code=status,
            endpoint=endpoint,
        )
    if not isinstance(body, dict):
        raise AgentApiError(
            f"{endpoint} returned {type(body).__name__}, expected an object",
            code="invalid_body",
            endpoint=endpoint,
        )
    return body


class HttpPoller:
    """Pull transport: fetches live snapshot/settings and polls for changes."""

    def __init__(
        self,
        agent: Agent,
        config: AgentConfig,
        *,
        transport: Transport | None = None,
    ) -> None:
        self._agent = agent
        self._config = config
        self._transport: Transport = transport if transport is not None else HttpTransport(config)
        self._poll_task: asyncio.Task[None] | None = None

    def _endpoint(self, template: str) -> str:
        return template.format(device=self._config.device_id)

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def get_snapshot(self) -> Snapshot:
        """Fetch the snapshot currently assigned to this device."""
        endpoint = self._endpoint(SNAPSHOT_ENDPOINT)
        response = await self._transport.request("GET", endpoint)
        body = _require_object(endpoint, response.status, response.body)
        try:
            snapshot = Snapshot.model_validate(body)
        except ValidationError as exc:
            raise AgentApiError(f"{endpoint} returned an invalid snapshot: {exc}", endpoint=endpoint) from exc
        _logger.debug("Fetched snapshot id=%s", snapshot.id)
        return snapshot

    async def get_settings(self) -> Settings | None:
        """Fetch the settings currently assigned to this device."""
        endpoint = self._endpoint(SETTINGS_ENDPOINT)
        response = await self._transport.request("GET", endpoint)
        body = _require_object(endpoint, response.status, response.body)
        if not body:
            return None
        try:
            settings = Settings.model_validate(body)
        except ValidationError as exc:
            raise AgentApiError(f"{endpoint} returned invalid settings: {exc}", endpoint=endpoint) from exc
        _logger.debug("Fetched settings hash=%s", settings.hash)
        return settings

    async def check_in(self) -> None:
        """Report the agent's state and act on the platform's answer."""
        report = self._agent.get_state()
        if report is None:
            _logger.debug("Skipping check-in while an update is in progress")
            return

        endpoint = self._endpoint(STATE_ENDPOINT)
        response = await self._transport.request("POST", endpoint, json_body=report.to_payload())
        if response.status == 200:
            return
        if response.status == 409:
            if not isinstance(response.body, dict):
                raise AgentApiError(f"{endpoint} sent a conflict without desired state", endpoint=endpoint)
            await self._agent.set_state(DesiredState.model_validate(response.body))
            return
        if response.status in _DEAUTHORIZED_STATUSES:
            _logger.warning("Device no longer recognised by the platform (HTTP %s)", response.status)
            await self._agent.set_state(None)
            return
        raise AgentTransportError(
            f"HTTP {response.status} from {endpoint}",
            status_code=response.status,
            endpoint=endpoint,
        )

    def start_polling(self) -> None:
        if self.is_polling:
            return
        _logger.info("Polling %s every %.0fs", self._config.forge_url, self._config.poll_interval)
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    def stop_polling(self) -> None:
        task = self._poll_task
        self._poll_task = None
        if task is not None and not task.done():
            task.cancel()

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.check_in()
            except (AgentError, ValidationError) as exc:
                _logger.warning("Check-in failed: %s", exc)
            await asyncio.sleep(self._config.poll_interval)

    async def close(self) -> None:
        task = self._poll_task
        self.stop_polling()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        close = getattr(self._transport, "close", None)
        if close is not None:
            await close()
