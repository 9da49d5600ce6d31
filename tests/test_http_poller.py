"""Tests for the HTTP polling transport."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import pytest

from deviceagent._http import HttpPoller
from deviceagent._transport import HttpResponse
from deviceagent.config import AgentConfig
from deviceagent.exceptions import AgentApiError, AgentAuthenticationError, AgentTransportError
from deviceagent.models import AgentStatus, DesiredState, StatusReport


class FakeTransport:
    def __init__(self, *responses: HttpResponse) -> None:
        self.responses = list(responses)
        self.requests: list[tuple[str, str, Mapping[str, Any] | None]] = []
        self.closed = False

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        json_body: Mapping[str, Any] | None = None,
    ) -> HttpResponse:
        self.requests.append((method, endpoint, json_body))
        if not self.responses:
            return HttpResponse(status=200, body=None)
        return self.responses.pop(0)

    async def close(self) -> None:
        self.closed = True


class FakeAgent:
    def __init__(self, report: StatusReport | None = None) -> None:
        self.report = report
        self.desired: list[DesiredState | None] = []

    def get_state(self) -> StatusReport | None:
        return self.report

    async def set_state(self, desired: DesiredState | None) -> None:
        self.desired.append(desired)


def _config(tmp_path: Path) -> AgentConfig:
    return AgentConfig(
        device_id="dev-1",
        token="t",
        forge_url="http://forge.test",
        dir=str(tmp_path),
        poll_interval=0.01,
    )


def _poller(tmp_path: Path, agent: FakeAgent, transport: FakeTransport) -> HttpPoller:
    return HttpPoller(agent, _config(tmp_path), transport=transport)  # type: ignore[arg-type]


_REPORT = StatusReport(project="p1", snapshot="s1", settings="h1", state=AgentStatus.RUNNING)


@pytest.mark.asyncio
async def test_get_snapshot_parses_flat_record(tmp_path: Path) -> None:
    transport = FakeTransport(HttpResponse(200, {"id": "s2", "name": "v2", "flows": []}))
    poller = _poller(tmp_path, FakeAgent(), transport)

    snapshot = await poller.get_snapshot()

    assert snapshot.id == "s2"
    assert snapshot.payload == {"name": "v2", "flows": []}
    assert transport.requests == [("GET", "/api/v1/devices/dev-1/live/snapshot", None)]


@pytest.mark.asyncio
async def test_get_settings_empty_body_means_no_settings(tmp_path: Path) -> None:
    transport = FakeTransport(HttpResponse(200, {}), HttpResponse(200, {"hash": "h2", "env": {"A": "b"}}))
    poller = _poller(tmp_path, FakeAgent(), transport)

    assert await poller.get_settings() is None
    settings = await poller.get_settings()
    assert settings is not None
    assert settings.hash == "h2"
    assert settings.env == {"A": "b"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("response", "error"),
    [
        (HttpResponse(401, None), AgentAuthenticationError),
        (HttpResponse(404, {"error": "not found"}), AgentAuthenticationError),
        (HttpResponse(500, None), AgentTransportError),
        (HttpResponse(200, ["s1"]), AgentApiError),
    ],
)
async def test_get_snapshot_errors(tmp_path: Path, response: HttpResponse, error: type[Exception]) -> None:
    poller = _poller(tmp_path, FakeAgent(), FakeTransport(response))

    with pytest.raises(error):
        await poller.get_snapshot()


@pytest.mark.asyncio
async def test_check_in_posts_status_report(tmp_path: Path) -> None:
    transport = FakeTransport(HttpResponse(200, None))
    agent = FakeAgent(_REPORT)
    poller = _poller(tmp_path, agent, transport)

    await poller.check_in()

    method, endpoint, body = transport.requests[0]
    assert (method, endpoint) == ("POST", "/api/v1/devices/dev-1/live/state")
    assert body == _REPORT.to_payload()
    assert agent.desired == []


@pytest.mark.asyncio
async def test_check_in_conflict_applies_desired_state(tmp_path: Path) -> None:
    transport = FakeTransport(HttpResponse(409, {"project": "p1", "snapshot": None}))
    agent = FakeAgent(_REPORT)
    poller = _poller(tmp_path, agent, transport)

    await poller.check_in()

    (desired,) = agent.desired
    assert desired is not None
    assert desired.has_snapshot and desired.snapshot is None
    assert not desired.has_settings


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 404])
async def test_check_in_unknown_device_deauthorizes(tmp_path: Path, status: int) -> None:
    agent = FakeAgent(_REPORT)
    poller = _poller(tmp_path, agent, FakeTransport(HttpResponse(status, None)))

    await poller.check_in()

    assert agent.desired == [None]


@pytest.mark.asyncio
async def test_check_in_unexpected_status_raises(tmp_path: Path) -> None:
    agent = FakeAgent(_REPORT)
    poller = _poller(tmp_path, agent, FakeTransport(HttpResponse(503, None)))

    with pytest.raises(AgentTransportError) as excinfo:
        await poller.check_in()

    assert excinfo.value.status_code == 503
    assert agent.desired == []


@pytest.mark.asyncio
async def test_check_in_skipped_while_updating(tmp_path: Path) -> None:
    transport = FakeTransport()
    poller = _poller(tmp_path, FakeAgent(None), transport)

    await poller.check_in()

    assert transport.requests == []


@pytest.mark.asyncio
async def test_polling_survives_failures_and_close_stops_it(tmp_path: Path) -> None:
    transport = FakeTransport(HttpResponse(500, None), HttpResponse(409, {"snapshot": "s9"}))
    agent = FakeAgent(_REPORT)
    poller = _poller(tmp_path, agent, transport)

    poller.start_polling()
    assert poller.is_polling
    for _ in range(200):
        if agent.desired:
            break
        await asyncio.sleep(0.01)
    await poller.close()

    assert not poller.is_polling
    assert transport.closed
    assert len(transport.requests) >= 2
    assert agent.desired[0] is not None
    assert agent.desired[0].snapshot == "s9"
