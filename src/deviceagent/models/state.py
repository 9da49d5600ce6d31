"""Local deployment records: snapshot, settings and the persisted triple."""

from __future__ import annotations

from typing import Any

from pydantic import Field, ValidationInfo, model_validator

from deviceagent.models._base import AgentBaseModel, fold_into_payload


class Snapshot(AgentBaseModel):
    """A deployable artifact version. Equality that matters is by ``id``."""

    id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fold_flat_record(cls, values: Any) -> Any:
        return fold_into_payload(values, "id")

    @property
    def is_valid(self) -> bool:
        """Whether the snapshot carries a usable id."""
        return isinstance(self.id, str) and bool(self.id)


class Settings(AgentBaseModel):
    """Hashed configuration payload. Equality that matters is by ``hash``."""

    hash: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _fold_flat_record(cls, values: Any) -> Any:
        return fold_into_payload(values, "hash")

    @property
    def env(self) -> dict[str, str]:
        """Environment variables carried by the settings payload."""
        raw = self.payload.get("env")
        if not isinstance(raw, dict):
            return {}
        return {str(k): str(v) for k, v in raw.items() if v is not None}


class LocalState(AgentBaseModel):
    """What the device last converged to.

    Parameters
    ----------
    project : str or None
        Assigned project, ``None`` when unassigned.
    snapshot : Snapshot or None
        Deployed snapshot.
    settings : Settings or None
        Applied settings.

    A snapshot without a project is rejected unless validated with
    ``context={"legacy": True}``; legacy project files never recorded one.
    """

    project: str | None = None
    snapshot: Snapshot | None = None
    settings: Settings | None = None

    @model_validator(mode="after")
    def _require_project_for_snapshot(self, info: ValidationInfo) -> LocalState:
        legacy = bool(info.context and info.context.get("legacy"))
        if self.project is None and self.snapshot is not None and not legacy:
            raise ValueError("a snapshot cannot be deployed without a project")
        return self

    @property
    def is_empty(self) -> bool:
        return self.project is None and self.snapshot is None and self.settings is None

    @property
    def snapshot_id(self) -> str | None:
        return self.snapshot.id if self.snapshot is not None else None

    @property
    def settings_hash(self) -> str | None:
        return self.settings.hash if self.settings is not None else None

    def to_document(self) -> dict[str, Any]:
        """Serialise in the current on-disk schema."""
        return {
            "project": self.project,
            "snapshot": self.snapshot.model_dump(mode="json") if self.snapshot is not None else None,
            "settings": self.settings.model_dump(mode="json") if self.settings is not None else None,
        }
