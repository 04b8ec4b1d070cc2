"""rustunnl - SSH reverse tunnel manager built on autossh."""

from .common.exceptions import (
    BinaryNotFoundError,
    ConfigInvalidError,
    ConfigMissingError,
    InvalidTunnelNameError,
    KeyFileMissingError,
    LaunchFailedError,
    RustunnlError,
    TerminationIncompleteError,
)
from .common.logging import get_logger, setup_logging
from .config import ConfigLoader, TunnelConfig
from .probe import ProcessProbe
from .process import TunnelLauncher
from .settings import ManagerSettings
from .state import StateStore, TunnelRecord
from .supervisor import (
    OperationResult,
    Outcome,
    TunnelState,
    TunnelStatusReport,
    TunnelSummary,
    TunnelSupervisor,
)

# Quiet by default; the CLI reconfigures from --log-level
setup_logging(level="WARNING")

logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # Lifecycle
    "TunnelSupervisor",
    "TunnelState",
    "Outcome",
    "OperationResult",
    "TunnelStatusReport",
    "TunnelSummary",
    # Building blocks
    "ManagerSettings",
    "ConfigLoader",
    "TunnelConfig",
    "StateStore",
    "TunnelRecord",
    "ProcessProbe",
    "TunnelLauncher",
    # Exceptions
    "RustunnlError",
    "InvalidTunnelNameError",
    "ConfigMissingError",
    "ConfigInvalidError",
    "KeyFileMissingError",
    "BinaryNotFoundError",
    "LaunchFailedError",
    "TerminationIncompleteError",
    # Logging
    "get_logger",
    "setup_logging",
]
