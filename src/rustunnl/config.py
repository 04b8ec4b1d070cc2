"""Tunnel configuration model and loader for <name>.env files."""

from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .common.exceptions import ConfigInvalidError, ConfigMissingError, KeyFileMissingError
from .common.logging import get_logger
from .common.utils import expand_path, validate_non_empty_string, validate_tunnel_name

logger = get_logger(__name__)

# Config file key -> TunnelConfig field
ENV_KEYS: dict[str, str] = {
    "TARGET_HOST": "target_host",
    "SSH_KEY": "ssh_key_path",
    "REMOTE_PORT": "remote_port",
    "LOCAL_TARGET": "local_target",
    "KEEPALIVE_INTERVAL": "keepalive_interval",
    "KEEPALIVE_COUNT_MAX": "keepalive_count_max",
    "DESCRIPTION": "description",
}
FIELD_KEYS = {field: key for key, field in ENV_KEYS.items()}

CONFIG_SUFFIX = ".env"


class TunnelConfig(BaseModel):
    """Validated configuration of one reverse tunnel."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="forbid")

    target_host: str = Field(min_length=1, description="SSH destination, e.g. user@host")
    ssh_key_path: Path = Field(description="Private key passed to ssh -i")
    remote_port: int = Field(ge=1, le=65535, description="Port opened on the remote side")
    local_target: str = Field(min_length=1, description="host:port the remote port forwards to")
    keepalive_interval: int = Field(default=30, ge=1, description="ServerAliveInterval")
    keepalive_count_max: int = Field(default=3, ge=1, description="ServerAliveCountMax")
    description: str | None = Field(default=None, description="Free-form description")

    @field_validator("ssh_key_path", mode="before")
    @classmethod
    def expand_key_path(cls, v: Any) -> Any:
        """Expand $VARS and ~ the way a shell would."""
        if isinstance(v, str):
            return expand_path(validate_non_empty_string(v, "SSH_KEY"))
        return v

    @property
    def forward_spec(self) -> str:
        """The -R argument: remote_port:local_target."""
        return f"{self.remote_port}:{self.local_target}"


class ConfigLoader:
    """Reads tunnel configurations from a directory of dotenv files."""

    def __init__(self, config_dir: Path):
        self.config_dir = Path(config_dir)

    def config_path(self, name: str) -> Path:
        return self.config_dir / f"{validate_tunnel_name(name)}{CONFIG_SUFFIX}"

    def exists(self, name: str) -> bool:
        return self.config_path(name).is_file()

    def read_raw(self, name: str) -> dict[str, str]:
        """Return the raw key/value pairs of a config file.

        Raises:
            ConfigMissingError: If no config file exists for the name
        """
        path = self.config_path(name)
        if not path.is_file():
            raise ConfigMissingError(f"Config not found: {path}")
        values = dotenv_values(path)
        return {key: value for key, value in values.items() if value is not None}

    def load(self, name: str, require_key: bool = True) -> TunnelConfig:
        """Load and validate the configuration of a tunnel.

        Args:
            name: Tunnel name
            require_key: Also check that the SSH key file exists

        Returns:
            Validated TunnelConfig

        Raises:
            ConfigMissingError: If the config file does not exist
            ConfigInvalidError: If a required field is missing or malformed
            KeyFileMissingError: If require_key and the key file is absent
        """
        raw = self.read_raw(name)
        path = self.config_path(name)

        # Empty values count as missing, as in a sourced shell file
        data = {
            field: raw[key]
            for key, field in ENV_KEYS.items()
            if key in raw and raw[key].strip() != ""
        }

        try:
            config = TunnelConfig(**data)
        except ValidationError as e:
            raise ConfigInvalidError(
                f"Invalid config {path}: {self._describe_errors(e)}"
            ) from e

        if require_key and not config.ssh_key_path.is_file():
            raise KeyFileMissingError(f"SSH key not found: {config.ssh_key_path}")

        logger.debug(
            "Tunnel config loaded",
            name=name,
            target_host=config.target_host,
            forward=config.forward_spec,
        )
        return config

    def describe(self, name: str) -> str | None:
        """Best-effort DESCRIPTION lookup that never raises on bad configs."""
        try:
            description = self.read_raw(name).get("DESCRIPTION", "").strip()
        except (ConfigMissingError, OSError) as e:
            logger.debug("Could not read description", name=name, error=str(e))
            return None
        return description or None

    @staticmethod
    def _describe_errors(error: ValidationError) -> str:
        messages = []
        for item in error.errors():
            field = str(item["loc"][0]) if item["loc"] else "?"
            key = FIELD_KEYS.get(field, field)
            if item["type"] == "missing":
                messages.append(f"{key} not set")
            else:
                messages.append(f"{key}: {item['msg']}")
        return "; ".join(messages)
