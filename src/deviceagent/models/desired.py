"""Desired state pushed or polled from the platform."""

from __future__ import annotations

from pydantic import field_validator

from deviceagent.models._base import AgentBaseModel


class DesiredState(AgentBaseModel):
    """What the platform wants the device to run.

    Every field is tri-state: a key that was never provided means "no
    opinion", an explicit ``None`` means "clear", and anything else is a
    value. Presence is tracked through ``model_fields_set`` and exposed via
    the ``has_*`` properties, so ``DesiredState()`` and
    ``DesiredState(project=None)`` are different requests.
    """

    project: str | None = None
    snapshot: str | None = None
    """Snapshot id."""

    settings: str | None = None
    """Settings hash."""

    @field_validator("project", "snapshot", "settings", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: object) -> object:
        # The platform occasionally sends numeric ids.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def has_project(self) -> bool:
        return "project" in self.model_fields_set

    @property
    def has_snapshot(self) -> bool:
        return "snapshot" in self.model_fields_set

    @property
    def has_settings(self) -> bool:
        return "settings" in self.model_fields_set

    def describe(self) -> dict[str, str | None]:
        """Only the fields that were provided, for logging."""
        return {name: getattr(self, name) for name in sorted(self.model_fields_set)}
