"""Typed records used by deviceagent."""

from deviceagent.models.desired import DesiredState
from deviceagent.models.state import LocalState, Settings, Snapshot
from deviceagent.models.status import AgentStatus, Health, StatusReport

__all__ = [
    "AgentStatus",
    "DesiredState",
    "Health",
    "LocalState",
    "Settings",
    "Snapshot",
    "StatusReport",
]
