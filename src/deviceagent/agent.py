"""Reconciliation engine.

The agent owns the device's ``LocalState`` and the handle on the managed
process. Transports call :meth:`Agent.set_state` whenever the platform
reports a desired state; the agent converges the device towards it.

At most one reconciliation runs at a time. Requests arriving while one is
in progress overwrite a single pending slot (last write wins) which is
drained as soon as the running reconciliation finishes, so a burst of
notifications collapses into the most recent one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import Any

from deviceagent._http import HttpPoller
from deviceagent._mqtt import MqttClient
from deviceagent.config import AgentConfig
from deviceagent.exceptions import AgentApiError, AgentTransportError, StateStoreError
from deviceagent.interfaces import LauncherFactory, ProcessSupervisor, PushTransport, SnapshotSource, StateStore
from deviceagent.launcher import Launcher, LauncherState
from deviceagent.models.desired import DesiredState
from deviceagent.models.state import LocalState
from deviceagent.models.status import AgentStatus, Health, StatusReport
from deviceagent.state.store import ProjectFileStore

_logger = logging.getLogger(__name__)

# Marks an empty pending slot; ``None`` is a legitimate pending request.
_NOTHING_QUEUED: Any = object()

# Failures that abort the current reconciliation without crashing the agent.
_ABORTING_ERRORS = (StateStoreError, AgentTransportError, AgentApiError)


class Agent:
    """Device agent.

    Usage::

        agent = Agent(AgentConfig.from_env().validate())
        await agent.start()
        ...
        await agent.stop()
    """

    def __init__(
        self,
        config: AgentConfig,
        *,
        store: StateStore | None = None,
        http: SnapshotSource | None = None,
        mqtt: PushTransport | None = None,
        launcher_factory: LauncherFactory | None = None,
    ) -> None:
        self._config = config
        self._start_time = time.monotonic()
        self._store: StateStore = store if store is not None else ProjectFileStore(config.dir)
        self._http: SnapshotSource = http if http is not None else HttpPoller(self, config)
        self._mqtt_candidate = mqtt
        self._mqtt: PushTransport | None = None
        self._launcher_factory: LauncherFactory = launcher_factory if launcher_factory is not None else Launcher
        self._launcher: ProcessSupervisor | None = None
        self._state = LocalState()
        # Start in 'unknown' so the first check-in provokes a response.
        self._status = AgentStatus.UNKNOWN
        self._updating = False
        self._queued_update: DesiredState | None = _NOTHING_QUEUED
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def local_state(self) -> LocalState:
        return self._state

    @property
    def status(self) -> AgentStatus:
        return self._status

    @property
    def is_updating(self) -> bool:
        return self._updating

    @property
    def launcher(self) -> ProcessSupervisor | None:
        return self._launcher

    def get_state(self) -> StatusReport | None:
        """Report the current state, or ``None`` while a reconciliation runs."""
        if self._updating:
            return None
        launcher = self._launcher
        return StatusReport(
            project=self._state.project,
            snapshot=self._state.snapshot_id,
            settings=self._state.settings_hash,
            state=AgentStatus.CRASHED if self._launcher_crashed() else self._status,
            health=Health(
                uptime=int(time.monotonic() - self._start_time),
                snapshot_restart_count=launcher.restart_count if launcher is not None else 0,
            ),
        )

    async def wait_idle(self) -> None:
        """Wait until no reconciliation is in progress."""
        await self._idle.wait()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load local state and start listening for desired state."""
        self._state = await self._store.load()

        if self._config.push_enabled:
            mqtt = self._mqtt_candidate if self._mqtt_candidate is not None else MqttClient(self, self._config)
            self._mqtt = mqtt
            mqtt.start()
            mqtt.set_project(self._state.project)
        else:
            self._status = AgentStatus.STOPPED
            _logger.info("No broker configured; falling back to HTTP polling")
            self._http.start_polling()

    async def stop(self) -> None:
        """Stop both transports and the managed process (not clean)."""
        if self._mqtt is not None:
            self._mqtt.stop()
        # Stops polling and waits for an in-flight check-in to unwind.
        await self._http.close()
        await self._stop_launcher(clean=False)
        self._status = AgentStatus.STOPPED

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def set_state(self, desired: DesiredState | Mapping[str, Any] | None) -> None:
        """Converge the device towards *desired*.

        ``None`` means the device has been deauthorised and must wipe its
        local state. When called during a running reconciliation the
        request replaces any pending one and the call returns at once.
        """
        if desired is not None and not isinstance(desired, DesiredState):
            desired = DesiredState.model_validate(desired)
        _logger.debug("Desired state: %s", desired.describe() if desired is not None else None)

        if self._updating:
            self._queued_update = desired
            return

        self._updating = True
        self._idle.clear()
        try:
            while True:
                await self._reconcile(desired)
                if self._queued_update is _NOTHING_QUEUED:
                    break
                desired = self._queued_update
                self._queued_update = _NOTHING_QUEUED
        finally:
            self._queued_update = _NOTHING_QUEUED
            self._updating = False
            self._idle.set()

    async def _reconcile(self, desired: DesiredState | None) -> None:
        try:
            if desired is None:
                await self._deauthorize()
            elif desired.has_project and desired.project is None:
                await self._unassign()
            elif desired.has_snapshot and desired.snapshot is None:
                await self._clear_snapshot(desired)
            else:
                await self._converge(desired)
        except _ABORTING_ERRORS as exc:
            _logger.error("Update aborted: %s", exc)
        finally:
            self._status = AgentStatus.RUNNING if self._process_active() else AgentStatus.STOPPED

    async def _deauthorize(self) -> None:
        _logger.info("Device deauthorised; clearing local state")
        await self._stop_launcher(clean=False)
        await self._commit(LocalState())

    async def _unassign(self) -> None:
        if self._state.project:
            _logger.info("Removed from project %s", self._state.project)
        if self._mqtt is not None:
            self._mqtt.set_project(None)
        await self._stop_launcher(clean=True)
        await self._commit(self._state.model_copy(update={"project": None, "snapshot": None}))

    async def _clear_snapshot(self, desired: DesiredState) -> None:
        if self._state.snapshot is not None:
            _logger.info("Active snapshot removed")
            await self._commit(self._state.model_copy(update={"snapshot": None}))
        if desired.has_project and desired.project != self._state.project:
            await self._commit(self._state.model_copy(update={"project": desired.project}))
            if self._mqtt is not None:
                self._mqtt.set_project(desired.project)
        await self._stop_launcher(clean=True)

    async def _converge(self, desired: DesiredState) -> None:
        current = self._state
        project = current.project
        update_snapshot = False
        update_settings = False

        if desired.has_project and (current.snapshot is None or desired.project != current.project):
            _logger.info("New project assigned: %s", desired.project)
            project = desired.project
            update_snapshot = True
            update_settings = True
        else:
            if desired.has_snapshot and (current.snapshot is None or desired.snapshot != current.snapshot.id):
                _logger.info("New snapshot available: %s", desired.snapshot)
                update_snapshot = True
            if desired.has_settings and (current.settings is None or desired.settings != current.settings.hash):
                _logger.info("New settings available: %s", desired.settings)
                update_settings = True

        if not update_snapshot and not update_settings:
            if self._launcher_crashed():
                _logger.info("Managed process crashed; discarding it")
                await self._stop_launcher(clean=False)
            if self._launcher is None and current.snapshot is not None:
                _logger.info("Starting snapshot %s from local state", current.snapshot.id)
                await self._launch(current)
            return

        if project is None:
            _logger.warning("Ignoring update while no project is assigned")
            return

        self._status = AgentStatus.UPDATING
        if self._launcher is not None:
            _logger.info("Stopping current snapshot")
            await self._stop_launcher(clean=False)

        snapshot = await self._http.get_snapshot() if update_snapshot else current.snapshot
        settings = await self._http.get_settings() if update_settings else current.settings

        if snapshot is None or not snapshot.is_valid:
            _logger.warning("No deployable snapshot for project %s", project or "unknown")
            return

        updated = LocalState(project=project, snapshot=snapshot, settings=settings)
        _logger.info("Project: %s", updated.project or "unknown")
        _logger.info("Snapshot: %s", updated.snapshot_id)
        _logger.info("Settings: %s", updated.settings_hash or "none")
        await self._commit(updated)
        await self._launch(updated)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _launcher_crashed(self) -> bool:
        return self._launcher is not None and self._launcher.state == LauncherState.CRASHED

    def _process_active(self) -> bool:
        return self._launcher is not None and not self._launcher_crashed()

    async def _commit(self, state: LocalState) -> None:
        """Persist *state*, then adopt it; a failed write leaves memory as on disk."""
        await self._store.save(state)
        self._state = state

    async def _launch(self, state: LocalState) -> None:
        assert state.snapshot is not None  # noqa: S101
        launcher = self._launcher_factory(self._config, state.project, state.snapshot, state.settings)
        self._launcher = launcher
        try:
            await launcher.write_configuration()
            await launcher.start()
        except Exception as exc:
            _logger.warning("Error whilst starting project: %s", exc)
            self._launcher = None
            try:
                await launcher.stop(clean=True)
            except Exception:
                _logger.debug("Cleanup of failed launcher raised", exc_info=True)
            return

        if self._mqtt is not None:
            self._mqtt.set_project(state.project)
            self._mqtt.check_in()

    async def _stop_launcher(self, *, clean: bool) -> None:
        launcher = self._launcher
        self._launcher = None
        if launcher is not None:
            await launcher.stop(clean=clean)
