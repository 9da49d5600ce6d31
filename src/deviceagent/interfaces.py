"""Structural interfaces for the agent's collaborators.

The reconciliation engine only depends on these protocols, which keeps the
production implementations (`HttpPoller`, `MqttClient`, `Launcher`,
`ProjectFileStore`) concrete while letting tests pass small doubles.
"""

from __future__ import annotations

from typing import Protocol

from deviceagent.config import AgentConfig
from deviceagent.models.state import LocalState, Settings, Snapshot


class StateStore(Protocol):
    async def load(self) -> LocalState:
        ...

    async def save(self, state: LocalState) -> None:
        ...


class SnapshotSource(Protocol):
    """Pull-style transport: fetches live data and can poll for changes."""

    def start_polling(self) -> None:
        ...

    def stop_polling(self) -> None:
        ...

    async def get_snapshot(self) -> Snapshot:
        ...

    async def get_settings(self) -> Settings | None:
        ...

    async def close(self) -> None:
        ...


class PushTransport(Protocol):
    """Push-style transport: delivers commands and accepts status check-ins."""

    def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def set_project(self, project: str | None) -> None:
        ...

    def check_in(self) -> None:
        ...


class ProcessSupervisor(Protocol):
    """A handle on one managed-process deployment. Never reused once stopped."""

    @property
    def state(self) -> str:
        ...

    @property
    def restart_count(self) -> int:
        ...

    async def write_configuration(self) -> None:
        ...

    async def start(self) -> None:
        ...

    async def stop(self, clean: bool = False) -> None:
        ...


class LauncherFactory(Protocol):
    def __call__(
        self,
        config: AgentConfig,
        project: str | None,
        snapshot: Snapshot,
        settings: Settings | None,
    ) -> ProcessSupervisor:
        ...
