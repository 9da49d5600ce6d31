"""Custom exception hierarchy for deviceagent."""

from __future__ import annotations


class AgentError(Exception):
    """Base exception for all deviceagent errors."""


class AgentConfigError(AgentError):
    """Invalid or missing configuration."""


class AgentTransportError(AgentError):
    """HTTP-level failure (network, unexpected status, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class AgentApiError(AgentError):
    """The platform answered, but with something we cannot use."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class AgentAuthenticationError(AgentApiError):
    """Device credentials were rejected by the platform."""


class StateStoreError(AgentError):
    """The local project file could not be written."""

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class LauncherError(AgentError):
    """The managed process could not be configured or spawned."""
