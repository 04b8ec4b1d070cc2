"""Custom exceptions for rustunnl."""


class RustunnlError(Exception):
    """Base exception for all rustunnl errors."""
    pass


class InvalidTunnelNameError(RustunnlError):
    """Raised when a tunnel name cannot be mapped to safe file names."""
    pass


class ConfigMissingError(RustunnlError):
    """Raised when no configuration file exists for a tunnel."""
    pass


class ConfigInvalidError(RustunnlError):
    """Raised when a tunnel configuration is missing required fields."""
    pass


class KeyFileMissingError(RustunnlError):
    """Raised when the SSH key referenced by a configuration does not exist."""
    pass


class BinaryNotFoundError(RustunnlError):
    """Raised when the autossh binary is not found or not executable."""
    pass


class LaunchFailedError(RustunnlError):
    """Raised when a tunnel process could not be launched or identified."""

    def __init__(self, message: str, log_tail: list[str] | None = None):
        super().__init__(message)
        self.log_tail = log_tail or []


class TerminationIncompleteError(RustunnlError):
    """Raised when a tunnel process survived both SIGTERM and SIGKILL."""

    def __init__(self, message: str, pid: int):
        super().__init__(message)
        self.pid = pid
