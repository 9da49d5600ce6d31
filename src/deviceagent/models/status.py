"""Status surface reported to the platform."""

from __future__ import annotations

from enum import StrEnum

from deviceagent.models._base import AgentBaseModel


class AgentStatus(StrEnum):
    """Lifecycle status driven by the reconciliation engine.

    ``CRASHED`` is only ever reported: it surfaces a held process whose
    launcher gave up restarting it.
    """

    UNKNOWN = "unknown"
    STOPPED = "stopped"
    UPDATING = "updating"
    RUNNING = "running"
    CRASHED = "crashed"


class Health(AgentBaseModel):
    """Derived health figures."""

    uptime: int = 0
    """Whole seconds since the agent started."""

    snapshot_restart_count: int = 0
    """Restarts of the managed process, as reported by its launcher."""


class StatusReport(AgentBaseModel):
    """Snapshot of the agent as reported upward.

    ``model_dump(by_alias=True)`` yields the wire shape
    ``{project, snapshot, settings, state, health: {uptime, snapshotRestartCount}}``.
    """

    project: str | None = None
    snapshot: str | None = None
    settings: str | None = None
    state: AgentStatus = AgentStatus.UNKNOWN
    health: Health = Health()

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)
