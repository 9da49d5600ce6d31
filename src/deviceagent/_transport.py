"""HTTP transport with device token authentication and JSON decoding."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from deviceagent._constants import USER_AGENT
from deviceagent._redact import redact_for_log
from deviceagent.config import AgentConfig
from deviceagent.exceptions import AgentTransportError

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpResponse:
    """Status code plus the decoded JSON body (``None`` when empty)."""

    status: int
    body: Any


class Transport(Protocol):
    """Structural transport interface used by the poller.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`HttpTransport`) concrete.
    """

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        json_body: Mapping[str, Any] | None = None,
    ) -> HttpResponse:
        ...


class HttpTransport:
    """aiohttp-based transport for the platform's device API."""

    def __init__(
        self,
        config: AgentConfig,
        http_session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._external_session = http_session is not None
        self._http = http_session

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.http_timeout),
                connector=aiohttp.TCPConnector(ssl=self._config.verify_ssl),
            )
        return self._http

    def _headers(self) -> dict[str, str]:
        return {
            "accept": "application/json",
            "authorization": f"Bearer {self._config.token}",
            "user-agent": USER_AGENT,
        }

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        json_body: Mapping[str, Any] | None = None,
    ) -> HttpResponse:
        """Send a request and decode the JSON reply.

        Any HTTP status is returned to the caller; only network failures and
        undecodable bodies raise :class:`AgentTransportError`.
        """
        url = f"{self._config.forge_url.rstrip('/')}{endpoint}"
        _logger.debug("%s %s body=%s", method, url, redact_for_log(json_body))

        try:
            async with self._session().request(
                method,
                url,
                json=dict(json_body) if json_body is not None else None,
                headers=self._headers(),
            ) as resp:
                text = await resp.text()
                status = resp.status
        except aiohttp.ClientError as exc:
            raise AgentTransportError(
                f"Request to {endpoint} failed: {exc}",
                endpoint=endpoint,
            ) from exc
        except TimeoutError as exc:
            raise AgentTransportError(
                f"Request to {endpoint} timed out",
                endpoint=endpoint,
            ) from exc

        if not text.strip():
            return HttpResponse(status=status, body=None)
        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise AgentTransportError(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            ) from exc
        return HttpResponse(status=status, body=body)

    async def close(self) -> None:
        if not self._external_session and self._http is not None:
            await self._http.close()
        self._http = None
