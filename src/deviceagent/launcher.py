"""Managed-process supervisor.

A `Launcher` is bound to one (project, snapshot, settings) deployment. It
writes the deployment's configuration files, spawns the configured
command, respawns it after unexpected exits, and stops it on request. A
stopped launcher is discarded by the agent, never restarted.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import shutil
from enum import StrEnum
from pathlib import Path

from deviceagent._constants import PROJECT_DIR, SETTINGS_FILE, SNAPSHOT_FILE, STABLE_RUN_SECONDS
from deviceagent.config import AgentConfig
from deviceagent.exceptions import LauncherError
from deviceagent.models.state import Settings, Snapshot

_logger = logging.getLogger(__name__)


class LauncherState(StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    CRASHED = "crashed"


class Launcher:
    """Runs the managed process for one deployment."""

    def __init__(
        self,
        config: AgentConfig,
        project: str | None,
        snapshot: Snapshot,
        settings: Settings | None,
    ) -> None:
        self._config = config
        self._project = project
        self._snapshot = snapshot
        self._settings = settings
        self._project_dir = Path(config.dir) / PROJECT_DIR
        self._proc: asyncio.subprocess.Process | None = None
        self._monitor: asyncio.Task[None] | None = None
        self._state = LauncherState.STOPPED
        self._restart_count = 0
        self._spawned_at = 0.0
        self._stopping = False

    @property
    def state(self) -> str:
        return self._state.value

    @property
    def restart_count(self) -> int:
        return self._restart_count

    @property
    def project_dir(self) -> Path:
        return self._project_dir

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    async def write_configuration(self) -> None:
        """Write snapshot and settings files for the managed process."""
        snapshot_doc = {"id": self._snapshot.id, **self._snapshot.payload}
        settings_doc = (
            {"hash": self._settings.hash, **self._settings.payload} if self._settings is not None else {}
        )
        try:
            await asyncio.to_thread(self._write_files, snapshot_doc, settings_doc)
        except OSError as exc:
            raise LauncherError(f"Cannot write project files to {self._project_dir}: {exc}") from exc
        _logger.debug("Wrote project files to %s", self._project_dir)

    def _write_files(self, snapshot_doc: dict[str, object], settings_doc: dict[str, object]) -> None:
        self._project_dir.mkdir(parents=True, exist_ok=True)
        (self._project_dir / SNAPSHOT_FILE).write_text(json.dumps(snapshot_doc, indent=2), encoding="utf-8")
        (self._project_dir / SETTINGS_FILE).write_text(json.dumps(settings_doc, indent=2), encoding="utf-8")

    def _command(self) -> list[str]:
        return [part.replace("{project_dir}", str(self._project_dir)) for part in self._config.launcher_command]

    def _environment(self) -> dict[str, str]:
        env = dict(os.environ)
        if self._settings is not None:
            env.update(self._settings.env)
        env["FF_PROJECT_ID"] = self._project or ""
        env["FF_SNAPSHOT_ID"] = self._snapshot.id or ""
        env["FF_SETTINGS_HASH"] = (self._settings.hash if self._settings is not None else None) or ""
        return env

    async def start(self) -> None:
        """Spawn the managed process and begin supervising it."""
        if self._monitor is not None:
            raise LauncherError("Launcher already started")
        self._stopping = False
        await self._spawn()
        self._monitor = asyncio.get_running_loop().create_task(self._supervise())

    async def _spawn(self) -> None:
        command = self._command()
        self._state = LauncherState.STARTING
        _logger.info("Starting snapshot %s: %s", self._snapshot.id, " ".join(command))
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *command,
                cwd=self._project_dir if self._project_dir.is_dir() else None,
                env=self._environment(),
            )
        except OSError as exc:
            self._state = LauncherState.CRASHED
            raise LauncherError(f"Cannot start {command[0]}: {exc}") from exc
        self._spawned_at = asyncio.get_running_loop().time()
        self._state = LauncherState.RUNNING
        _logger.debug("Managed process pid=%s", self._proc.pid)

    async def _supervise(self) -> None:
        exits = 0
        while True:
            proc = self._proc
            if proc is None:
                return
            code = await proc.wait()
            if self._stopping:
                return
            if asyncio.get_running_loop().time() - self._spawned_at >= STABLE_RUN_SECONDS:
                exits = 0
            exits += 1
            _logger.warning("Managed process exited unexpectedly code=%s", code)
            if exits > self._config.restart_limit:
                _logger.error("Managed process crashed %d times in a row; giving up", exits)
                self._state = LauncherState.CRASHED
                self._proc = None
                return
            await asyncio.sleep(self._config.restart_delay)
            if self._stopping:
                return
            self._restart_count += 1
            try:
                await self._spawn()
            except LauncherError as exc:
                _logger.error("Restart failed: %s", exc)
                self._proc = None
                return

    async def stop(self, clean: bool = False) -> None:
        """Stop the managed process.

        With ``clean`` the written project files are removed as well.
        """
        self._stopping = True
        proc = self._proc
        if proc is not None and proc.returncode is None:
            _logger.info("Stopping snapshot %s", self._snapshot.id)
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), self._config.stop_timeout)
            except TimeoutError:
                _logger.warning("Managed process did not exit in %.0fs; killing", self._config.stop_timeout)
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()

        monitor = self._monitor
        self._monitor = None
        if monitor is not None and not monitor.done():
            monitor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await monitor

        self._proc = None
        self._state = LauncherState.STOPPED
        if clean:
            await asyncio.to_thread(shutil.rmtree, self._project_dir, True)
            _logger.debug("Removed project files from %s", self._project_dir)
