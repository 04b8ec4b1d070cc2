"""On-disk tunnel state: pid records, append-only logs and per-name locks.

Everything the manager knows between invocations lives here. Each tunnel name
owns ``<name>.pid``, ``<name>.log`` and ``<name>.lock`` inside the state
directory; configured names are the ``<name>.env`` files of the config
directory.
"""

import fcntl
import os
import tempfile
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from .common.logging import get_logger
from .common.utils import TUNNEL_NAME_PATTERN, validate_tunnel_name
from .config import CONFIG_SUFFIX

logger = get_logger(__name__)

LOG_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class TunnelRecord(BaseModel):
    """Persisted claim that a tunnel process is running."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Tunnel name")
    pid: int = Field(ge=1, description="Process id of the supervised autossh")
    log_path: Path = Field(description="Append-only log of the tunnel")


class StateStore:
    """File-backed mapping from tunnel name to TunnelRecord."""

    def __init__(self, state_dir: Path, config_dir: Path):
        self.state_dir = Path(state_dir)
        self.config_dir = Path(config_dir)

    def ensure_dirs(self) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def pid_path(self, name: str) -> Path:
        return self.state_dir / f"{validate_tunnel_name(name)}.pid"

    def log_path(self, name: str) -> Path:
        return self.state_dir / f"{validate_tunnel_name(name)}.log"

    def lock_path(self, name: str) -> Path:
        return self.state_dir / f"{validate_tunnel_name(name)}.lock"

    def get(self, name: str) -> TunnelRecord | None:
        """Read the persisted record for a tunnel.

        A pid file whose content is not a positive integer is removed and
        treated as absent.

        Args:
            name: Tunnel name

        Returns:
            The record, or None if no (valid) record exists
        """
        pid_path = self.pid_path(name)
        try:
            content = pid_path.read_text().strip()
        except FileNotFoundError:
            return None

        try:
            pid = int(content)
        except ValueError:
            pid = 0
        if pid < 1:
            logger.warning("Discarding corrupt pid file", name=name, content=content)
            self.delete(name)
            return None

        return TunnelRecord(name=name, pid=pid, log_path=self.log_path(name))

    def put(self, record: TunnelRecord) -> None:
        """Atomically write a record (temp file in the same dir, then rename)."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        pid_path = self.pid_path(record.name)

        fd, temp_path = tempfile.mkstemp(
            dir=self.state_dir, prefix=f".{record.name}.", suffix=".pid.tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                f.write(f"{record.pid}\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, pid_path)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

        logger.debug("Tunnel record written", name=record.name, pid=record.pid)

    def delete(self, name: str) -> None:
        """Remove the record; deleting a missing record is not an error."""
        try:
            self.pid_path(name).unlink()
            logger.debug("Tunnel record deleted", name=name)
        except FileNotFoundError:
            pass

    def list_names(self) -> list[str]:
        """Names of every configured tunnel, running or not, sorted."""
        if not self.config_dir.is_dir():
            return []
        names = []
        for path in self.config_dir.glob(f"*{CONFIG_SUFFIX}"):
            if not path.is_file():
                continue
            if not TUNNEL_NAME_PATTERN.match(path.stem):
                logger.warning("Ignoring config with invalid name", path=str(path))
                continue
            names.append(path.stem)
        return sorted(names)

    def append_log(self, name: str, message: str) -> None:
        """Append a timestamped line to the tunnel log."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime(LOG_TIMESTAMP_FORMAT)
        with open(self.log_path(name), "a") as f:
            f.write(f"[{timestamp}] {message}\n")

    def tail_log(self, name: str, lines: int) -> list[str]:
        """Return the last lines of the tunnel log (empty if there is none)."""
        if lines <= 0:
            return []
        try:
            with open(self.log_path(name), errors="replace") as f:
                return [line.rstrip("\n") for line in deque(f, maxlen=lines)]
        except FileNotFoundError:
            return []

    @contextmanager
    def lock(self, name: str) -> Iterator[None]:
        """Hold an exclusive advisory lock on a tunnel for a whole transition."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path(name), "a") as handle:
            logger.debug("Acquiring tunnel lock", name=name)
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                logger.debug("Released tunnel lock", name=name)
