"""Utility functions for rustunnl."""

import os
import re
from pathlib import Path

from .exceptions import InvalidTunnelNameError

TUNNEL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def validate_non_empty_string(value: str, field_name: str) -> str:
    """Validate that a string is not empty or only whitespace.

    Args:
        value: String value to validate
        field_name: Name of the field for error messages

    Returns:
        Stripped string value

    Raises:
        ValueError: If string is empty or only whitespace
    """
    if not value or not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value.strip()


def validate_tunnel_name(name: str) -> str:
    """Validate that a tunnel name maps to safe, non-colliding file names.

    Args:
        name: Tunnel name (config file stem)

    Returns:
        The unchanged name

    Raises:
        InvalidTunnelNameError: If the name is empty or contains path characters
    """
    if not name or not TUNNEL_NAME_PATTERN.match(name):
        raise InvalidTunnelNameError(
            f"Invalid tunnel name '{name}': use letters, digits, '.', '_' or '-'"
        )
    return name


def expand_path(value: str) -> Path:
    """Expand environment variables and a leading '~' in a path string."""
    return Path(os.path.expanduser(os.path.expandvars(value)))
