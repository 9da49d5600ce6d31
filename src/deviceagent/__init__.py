"""deviceagent - Device-resident reconciliation agent."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("deviceagent")
except PackageNotFoundError:
    __version__ = "0+local"

from deviceagent.agent import Agent
from deviceagent.config import AgentConfig
from deviceagent.exceptions import (
    AgentApiError,
    AgentAuthenticationError,
    AgentConfigError,
    AgentError,
    AgentTransportError,
    LauncherError,
    StateStoreError,
)
from deviceagent.launcher import Launcher
from deviceagent.models import (
    AgentStatus,
    DesiredState,
    Health,
    LocalState,
    Settings,
    Snapshot,
    StatusReport,
)
from deviceagent.state import ProjectFileStore

__all__ = [
    "__version__",
    "Agent",
    "AgentApiError",
    "AgentAuthenticationError",
    "AgentConfig",
    "AgentConfigError",
    "AgentError",
    "AgentStatus",
    "AgentTransportError",
    "DesiredState",
    "Health",
    "Launcher",
    "LauncherError",
    "LocalState",
    "ProjectFileStore",
    "Settings",
    "Snapshot",
    "StateStoreError",
    "StatusReport",
]
