"""Common utilities and shared functionality."""

from .exceptions import (
    BinaryNotFoundError,
    ConfigInvalidError,
    ConfigMissingError,
    InvalidTunnelNameError,
    KeyFileMissingError,
    LaunchFailedError,
    RustunnlError,
    TerminationIncompleteError,
)
from .logging import get_logger, setup_logging
from .utils import (
    expand_path,
    validate_non_empty_string,
    validate_tunnel_name,
)

__all__ = [
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
    # Utils
    "validate_non_empty_string",
    "validate_tunnel_name",
    "expand_path",
]
