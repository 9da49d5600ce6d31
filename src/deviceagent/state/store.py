"""Project file persistence with transparent legacy migration.

Two on-disk schemas exist:

* current: ``{"project": ..., "snapshot": {...}, "settings": {...}}``
* legacy: the snapshot record itself at the top level (it carries ``id``),
  optionally with the settings nested under ``device``. Legacy files never
  recorded a project.

Loading accepts both; saving always writes the current schema.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from deviceagent._constants import PROJECT_FILE
from deviceagent.exceptions import StateStoreError
from deviceagent.models.state import LocalState, Settings, Snapshot

_logger = logging.getLogger(__name__)


def is_legacy_document(document: dict[str, Any]) -> bool:
    return "id" in document and bool(document.get("id"))


def migrate_legacy_document(document: dict[str, Any]) -> LocalState:
    """Upgrade a legacy flat snapshot record into a ``LocalState``."""
    snapshot_data = dict(document)
    device = snapshot_data.pop("device", None)
    settings = Settings.model_validate(device) if isinstance(device, dict) else None
    return LocalState.model_validate(
        {"project": None, "snapshot": Snapshot.model_validate(snapshot_data), "settings": settings},
        context={"legacy": True},
    )


def parse_document(document: Any) -> LocalState:
    """Turn a decoded project file into a ``LocalState``.

    Raises ``ValueError`` (or pydantic's ``ValidationError``) for content
    that is neither schema.
    """
    if not isinstance(document, dict):
        raise ValueError(f"project file must hold an object, got {type(document).__name__}")
    if is_legacy_document(document):
        return migrate_legacy_document(document)
    return LocalState(
        project=document.get("project") or None,
        snapshot=Snapshot.model_validate(document["snapshot"]) if document.get("snapshot") else None,
        settings=Settings.model_validate(document["settings"]) if document.get("settings") else None,
    )


class ProjectFileStore:
    """Loads and saves the agent's ``LocalState`` to a single JSON file."""

    def __init__(self, directory: str | Path, *, filename: str = PROJECT_FILE) -> None:
        self._path = Path(directory) / filename

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> LocalState:
        """Load local state; a missing or malformed file yields empty state."""
        return await asyncio.to_thread(self._load_sync)

    async def save(self, state: LocalState) -> None:
        """Persist *state* in the current schema.

        Raises
        ------
        StateStoreError
            The file could not be written.
        """
        await asyncio.to_thread(self._save_sync, state)

    def _load_sync(self) -> LocalState:
        if not self._path.exists():
            _logger.debug("No project file at %s", self._path)
            return LocalState()
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
            state = parse_document(document)
        except (OSError, ValueError, ValidationError) as exc:
            _logger.warning("Invalid project file: %s (%s)", self._path, exc)
            return LocalState()

        if is_legacy_document(document):
            _logger.info("Migrated legacy project file %s", self._path)
        _logger.info("Project: %s", state.project or "unknown")
        _logger.info("Snapshot: %s", state.snapshot_id or "none")
        _logger.info("Settings: %s", state.settings_hash or "none")
        return state

    def _save_sync(self, state: LocalState) -> None:
        body = json.dumps(state.to_document(), separators=(",", ":"))
        directory = self._path.parent
        tmp_name: str | None = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=f".{self._path.name}.",
                delete=False,
            ) as handle:
                tmp_name = handle.name
                handle.write(body)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self._path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise StateStoreError(f"Cannot write project file {self._path}: {exc}", path=str(self._path)) from exc
        _logger.debug(
            "Saved project file project=%s snapshot=%s settings=%s",
            state.project,
            state.snapshot_id,
            state.settings_hash,
        )
