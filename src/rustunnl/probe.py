"""Read-only queries against the OS process table."""

import os
import re

import psutil

from .common.logging import get_logger

logger = get_logger(__name__)


class ProcessProbe:
    """Answers liveness and lookup questions about processes. Never signals."""

    def is_alive(self, pid: int | None) -> bool:
        """Check whether a process exists and can be signalled by this user.

        A pid reused by another user's process counts as dead, as do zombies:
        they have exited and only wait to be reaped.
        """
        if pid is None or pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except (ProcessLookupError, PermissionError, OverflowError):
            return False
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # Signalable but not inspectable
            return True
        except psutil.Error as e:
            logger.debug("Liveness check failed", pid=pid, error=str(e))
            return False

    def find_all_by_pattern(self, pattern: str) -> list[int]:
        """Pids whose full command line matches a regular expression, ascending.

        Args:
            pattern: Regular expression searched in the space-joined argv

        Returns:
            Matching pids, lowest first; the calling process is never included
        """
        regex = re.compile(pattern)
        own_pid = psutil.Process().pid
        matches = []
        for proc in psutil.process_iter(["pid", "cmdline"]):
            try:
                cmdline = proc.info["cmdline"]
                if not cmdline or proc.info["pid"] == own_pid:
                    continue
                if regex.search(" ".join(cmdline)) and self.is_alive(proc.info["pid"]):
                    matches.append(proc.info["pid"])
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return sorted(matches)

    def find_by_pattern(self, pattern: str) -> int | None:
        """First (lowest) pid whose command line matches, or None."""
        matches = self.find_all_by_pattern(pattern)
        return matches[0] if matches else None

    def children(self, pid: int) -> list[int]:
        """Pids of all descendants of a process; empty if it is gone."""
        try:
            return [child.pid for child in psutil.Process(pid).children(recursive=True)]
        except (psutil.NoSuchProcess, psutil.AccessDenied, ValueError):
            return []
