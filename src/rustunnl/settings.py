"""Manager-wide settings: directories, timings and the wrapped binary."""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

APP_NAME = "rustunnl"


def _xdg_dir(variable: str, fallback: str) -> Path:
    base = os.environ.get(variable) or str(Path.home() / fallback)
    return Path(base) / APP_NAME


class ManagerSettings(BaseModel):
    """Pydantic configuration for the tunnel manager"""

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    config_dir: Path = Field(description="Directory holding <name>.env tunnel configs")
    state_dir: Path = Field(description="Directory holding pid, log and lock files")
    autossh_binary: str = Field(default="autossh", min_length=1, description="autossh executable name or path")

    settle_time: float = Field(default=1.0, ge=0.0, le=30.0, description="Time a launched pid must stay alive")
    settle_timeout: float = Field(default=5.0, ge=0.0, le=60.0, description="Deadline for pattern-based pid recovery")
    poll_interval: float = Field(default=0.1, gt=0.0, le=5.0, description="Interval between liveness checks")
    stop_grace_period: float = Field(default=1.0, ge=0.0, le=60.0, description="Wait after SIGTERM before SIGKILL")
    kill_wait: float = Field(default=1.0, ge=0.0, le=30.0, description="Wait after SIGKILL before giving up")
    restart_pause: float = Field(default=1.0, ge=0.0, le=30.0, description="Pause between stop and start on restart")

    status_log_lines: int = Field(default=5, ge=0, le=1000, description="Log lines shown by status")
    failure_log_lines: int = Field(default=10, ge=0, le=1000, description="Log lines attached to launch failures")

    @classmethod
    def from_env(cls, **overrides: object) -> "ManagerSettings":
        """Build settings from RUSTUNNL_* and XDG environment variables.

        Explicit keyword overrides win over the environment; ``None`` values
        are ignored so CLI options can be passed through unconditionally.
        """
        values: dict[str, object] = {
            "config_dir": os.environ.get("RUSTUNNL_CONFIG_DIR")
            or _xdg_dir("XDG_CONFIG_HOME", ".config"),
            "state_dir": os.environ.get("RUSTUNNL_STATE_DIR")
            or _xdg_dir("XDG_STATE_HOME", ".local/state"),
        }
        binary = os.environ.get("RUSTUNNL_AUTOSSH")
        if binary:
            values["autossh_binary"] = binary

        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
