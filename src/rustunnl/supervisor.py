"""Tunnel lifecycle state machine.

The supervisor keeps no state of its own: every call rederives a tunnel's
state from the config directory, the state directory and the process table.
"""

import signal
import subprocess
import time
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from .common.exceptions import (
    ConfigInvalidError,
    ConfigMissingError,
    LaunchFailedError,
    TerminationIncompleteError,
)
from .common.logging import get_logger
from .common.utils import validate_tunnel_name
from .config import ConfigLoader, TunnelConfig
from .probe import ProcessProbe
from .process import TunnelLauncher, command_pattern, send_signal
from .settings import ManagerSettings
from .state import StateStore, TunnelRecord

logger = get_logger(__name__)


class TunnelState(str, Enum):
    """Tunnel state derived from disk and the process table."""

    UNCONFIGURED = "unconfigured"
    STOPPED = "stopped"
    RUNNING = "running"
    STALE = "stale"


class Outcome(str, Enum):
    """What a lifecycle operation actually did."""

    STARTED = "started"
    ALREADY_RUNNING = "already_running"
    STOPPED = "stopped"
    NOT_RUNNING = "not_running"
    RESTARTED = "restarted"


class OperationResult(BaseModel):
    """Successful (or no-op) result of start/stop/restart."""

    model_config = ConfigDict(frozen=True)

    name: str
    outcome: Outcome
    pid: int | None = Field(default=None, description="Pid after the operation")
    previous_pid: int | None = Field(default=None, description="Pid before the operation")
    config: TunnelConfig | None = None


class TunnelStatusReport(BaseModel):
    """Data behind `status <name>`."""

    model_config = ConfigDict(frozen=True)

    name: str
    state: TunnelState
    pid: int | None = None
    description: str | None = None
    config_path: Path
    log_path: Path
    recent_logs: list[str] = Field(default_factory=list)

    @property
    def is_running(self) -> bool:
        return self.state == TunnelState.RUNNING


class TunnelSummary(BaseModel):
    """One line of `list`."""

    model_config = ConfigDict(frozen=True)

    name: str
    running: bool
    pid: int | None = None
    description: str | None = None


class TunnelSupervisor:
    """Starts, stops, restarts and inspects named autossh tunnels."""

    def __init__(
        self,
        settings: ManagerSettings,
        store: StateStore | None = None,
        loader: ConfigLoader | None = None,
        probe: ProcessProbe | None = None,
        launcher: TunnelLauncher | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the supervisor.

        Args:
            settings: Directories and timings
            store: State store (default: one rooted at settings.state_dir)
            loader: Config loader (default: one reading settings.config_dir)
            probe: Process table probe
            launcher: autossh launcher
            sleep: Sleep function used by polling loops
            clock: Monotonic clock used by polling loops
        """
        self.settings = settings
        self.store = store or StateStore(settings.state_dir, settings.config_dir)
        self.loader = loader or ConfigLoader(settings.config_dir)
        self.probe = probe or ProcessProbe()
        self.launcher = launcher or TunnelLauncher(settings.autossh_binary)
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # State derivation
    # ------------------------------------------------------------------

    def live_record(self, name: str) -> TunnelRecord | None:
        """Return the record only if its pid is alive; heal stale records."""
        record = self.store.get(name)
        if record is None:
            return None
        if self.probe.is_alive(record.pid):
            return record

        logger.info("Removing stale tunnel record", name=name, pid=record.pid)
        self.store.delete(name)
        return None

    def state(self, name: str) -> TunnelState:
        """Current state of a tunnel. A stale record is healed and reads as stopped."""
        validate_tunnel_name(name)
        if self.live_record(name) is not None:
            return TunnelState.RUNNING
        if not self.loader.exists(name):
            return TunnelState.UNCONFIGURED
        return TunnelState.STOPPED

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, name: str) -> OperationResult:
        """Start a tunnel; a no-op if it is already running.

        Raises:
            ConfigMissingError: If the tunnel has no config file
            ConfigInvalidError: If a required config field is missing
            KeyFileMissingError: If the SSH key does not exist
            BinaryNotFoundError: If autossh is not installed
            LaunchFailedError: If no live tunnel process could be identified
        """
        validate_tunnel_name(name)
        with self.store.lock(name):
            return self._start(name)

    def stop(self, name: str) -> OperationResult:
        """Stop a tunnel; safe to call on a stopped tunnel.

        Raises:
            TerminationIncompleteError: If the process survived SIGKILL.
                The record is removed before this is raised.
        """
        validate_tunnel_name(name)
        with self.store.lock(name):
            return self._stop(name)

    def restart(self, name: str) -> OperationResult:
        """Stop then start a tunnel; start is attempted even if stop was incomplete."""
        validate_tunnel_name(name)
        with self.store.lock(name):
            logger.info("Restarting tunnel", name=name)
            try:
                stopped = self._stop(name)
                previous_pid = stopped.previous_pid
            except TerminationIncompleteError as e:
                logger.warning("Stop incomplete, starting anyway", name=name, pid=e.pid)
                previous_pid = e.pid

            self._sleep(self.settings.restart_pause)
            started = self._start(name)

        return started.model_copy(
            update={"outcome": Outcome.RESTARTED, "previous_pid": previous_pid}
        )

    def _start(self, name: str) -> OperationResult:
        if not self.loader.exists(name):
            raise ConfigMissingError(f"Config not found: {self.loader.config_path(name)}")

        record = self.live_record(name)
        if record is not None:
            logger.info("Tunnel already running", name=name, pid=record.pid)
            return OperationResult(name=name, outcome=Outcome.ALREADY_RUNNING, pid=record.pid)

        config = self.loader.load(name)
        log_path = self.store.log_path(name)

        logger.info(
            "Starting tunnel",
            name=name,
            target_host=config.target_host,
            forward=config.forward_spec,
        )
        process = self.launcher.launch(config, log_path)
        pid = self._await_pid(name, process, config)

        self.store.put(TunnelRecord(name=name, pid=pid, log_path=log_path))
        self.store.append_log(name, f"Tunnel started (PID: {pid})")
        logger.info("Tunnel started", name=name, pid=pid)
        return OperationResult(name=name, outcome=Outcome.STARTED, pid=pid, config=config)

    def _await_pid(
        self, name: str, process: subprocess.Popen[bytes], config: TunnelConfig
    ) -> int:
        """Find the canonical pid of a freshly launched tunnel.

        The spawned pid is canonical if it survives the settle window. If it
        exits cleanly it has forked into the background, so the process table
        is searched for the tunnel's command line until the settle timeout.
        """
        deadline = self._clock() + self.settings.settle_time
        while True:
            returncode = process.poll()
            if returncode is not None:
                break
            if self._clock() >= deadline:
                if self.probe.is_alive(process.pid):
                    return process.pid
                break
            self._sleep(self.settings.poll_interval)

        if returncode not in (None, 0):
            raise self._launch_failed(
                name, f"autossh exited with status {returncode}"
            )

        pattern = command_pattern(config)
        logger.debug("Launched pid gone, searching process table", name=name, pattern=pattern)
        deadline = self._clock() + self.settings.settle_timeout
        while True:
            pid = self.probe.find_by_pattern(pattern)
            if pid is not None:
                return pid
            if self._clock() >= deadline:
                raise self._launch_failed(name, "no tunnel process found after launch")
            self._sleep(self.settings.poll_interval)

    def _launch_failed(self, name: str, reason: str) -> LaunchFailedError:
        log_tail = self.store.tail_log(name, self.settings.failure_log_lines)
        logger.error("Failed to start tunnel", name=name, reason=reason)
        return LaunchFailedError(
            f"Failed to start tunnel '{name}': {reason}", log_tail=log_tail
        )

    def _stop(self, name: str) -> OperationResult:
        record = self.live_record(name)
        if record is None:
            logger.info("Tunnel not running", name=name)
            self._sweep(name)
            return OperationResult(name=name, outcome=Outcome.NOT_RUNNING)

        pid = record.pid
        logger.info("Stopping tunnel", name=name, pid=pid)

        for child in self.probe.children(pid):
            send_signal(child, signal.SIGTERM)
        send_signal(pid, signal.SIGTERM)

        survived = not self._wait_for_exit(pid, self.settings.stop_grace_period)
        if survived:
            logger.warning("Tunnel ignored SIGTERM, killing", name=name, pid=pid)
            send_signal(pid, signal.SIGKILL)
            survived = not self._wait_for_exit(pid, self.settings.kill_wait)

        self._sweep(name)

        self.store.delete(name)

        if survived:
            self.store.append_log(name, f"Tunnel stop incomplete (PID: {pid})")
            logger.error("Tunnel process survived termination", name=name, pid=pid)
            raise TerminationIncompleteError(
                f"Tunnel '{name}' process {pid} is still alive after SIGKILL", pid=pid
            )

        self.store.append_log(name, "Tunnel stopped")
        logger.info("Tunnel stopped", name=name, pid=pid)
        return OperationResult(name=name, outcome=Outcome.STOPPED, previous_pid=pid)

    def _wait_for_exit(self, pid: int, timeout: float) -> bool:
        """Poll until the pid is gone or the timeout expires."""
        deadline = self._clock() + timeout
        while self.probe.is_alive(pid):
            if self._clock() >= deadline:
                return False
            self._sleep(self.settings.poll_interval)
        return True

    def _sweep(self, name: str) -> None:
        """SIGTERM stray processes running this tunnel's exact command line."""
        try:
            config = self.loader.load(name, require_key=False)
        except (ConfigMissingError, ConfigInvalidError) as e:
            logger.debug("Skipping orphan sweep", name=name, reason=str(e))
            return

        for pid in self.probe.find_all_by_pattern(command_pattern(config)):
            logger.info("Terminating orphaned tunnel process", name=name, pid=pid)
            send_signal(pid, signal.SIGTERM)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def status(self, name: str, log_lines: int | None = None) -> TunnelStatusReport:
        """Report the state of one tunnel, with recent log lines when running."""
        state = self.state(name)
        record = self.store.get(name) if state == TunnelState.RUNNING else None
        lines = self.settings.status_log_lines if log_lines is None else log_lines

        return TunnelStatusReport(
            name=name,
            state=state,
            pid=record.pid if record else None,
            description=self.loader.describe(name),
            config_path=self.loader.config_path(name),
            log_path=self.store.log_path(name),
            recent_logs=self.store.tail_log(name, lines) if record else [],
        )

    def list_tunnels(self) -> list[TunnelSummary]:
        """Every configured tunnel with its description and running flag."""
        summaries = []
        for name in self.store.list_names():
            record = self.live_record(name)
            summaries.append(
                TunnelSummary(
                    name=name,
                    running=record is not None,
                    pid=record.pid if record else None,
                    description=self.loader.describe(name),
                )
            )
        return summaries
