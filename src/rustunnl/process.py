"""Launching autossh and delivering signals to tunnel processes."""

import os
import re
import shutil
import signal
import subprocess
from pathlib import Path

from .common.exceptions import BinaryNotFoundError, LaunchFailedError
from .common.logging import get_logger
from .config import TunnelConfig

logger = get_logger(__name__)


def build_command(binary: str, config: TunnelConfig) -> list[str]:
    """Build the autossh argv for a tunnel.

    autossh stays in the foreground (no -f) so the spawned pid is the
    supervised pid; -M 0 leaves liveness detection to ServerAlive probes.
    """
    return [
        binary,
        "-M", "0",
        "-N",
        "-o", f"ServerAliveInterval={config.keepalive_interval}",
        "-o", f"ServerAliveCountMax={config.keepalive_count_max}",
        "-i", str(config.ssh_key_path),
        "-R", config.forward_spec,
        config.target_host,
    ]


def command_pattern(config: TunnelConfig) -> str:
    """Regular expression matching exactly this tunnel's autossh command line."""
    return (
        rf"\bautossh\b.* -R {re.escape(config.forward_spec)}"
        rf" {re.escape(config.target_host)}$"
    )


class TunnelLauncher:
    """Starts detached autossh processes."""

    def __init__(self, binary: str = "autossh"):
        self.binary = binary

    def resolve_binary(self) -> str:
        """Find the autossh executable.

        Raises:
            BinaryNotFoundError: If it is not on PATH or not executable
        """
        resolved = shutil.which(self.binary)
        if resolved is None:
            raise BinaryNotFoundError(
                f"autossh binary '{self.binary}' not found in PATH. "
                "Install autossh or set RUSTUNNL_AUTOSSH."
            )
        return resolved

    def launch(self, config: TunnelConfig, log_path: Path) -> subprocess.Popen[bytes]:
        """Spawn autossh in a new session with output appended to log_path.

        Raises:
            BinaryNotFoundError: If autossh cannot be found
            LaunchFailedError: If the process cannot be spawned
        """
        command = build_command(self.resolve_binary(), config)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Launching tunnel process", command=command, log_path=str(log_path))
        try:
            with open(log_path, "ab") as log_file:
                process = subprocess.Popen(
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                    close_fds=True,
                )
        except OSError as e:
            logger.error("Failed to spawn tunnel process", error=str(e))
            raise LaunchFailedError(f"Failed to start autossh: {e}") from e

        logger.debug("Tunnel process spawned", pid=process.pid)
        return process


def send_signal(pid: int, sig: signal.Signals) -> bool:
    """Deliver a signal, treating a vanished or foreign process as a no-op.

    Returns:
        True if the signal was delivered
    """
    try:
        os.kill(pid, sig)
        logger.debug("Signal sent", pid=pid, signal=sig.name)
        return True
    except ProcessLookupError:
        logger.debug("Process already gone", pid=pid, signal=sig.name)
    except PermissionError:
        logger.debug("Not permitted to signal process", pid=pid, signal=sig.name)
    return False
