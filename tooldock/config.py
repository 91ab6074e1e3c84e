"""Configuration for the orchestrator and the servers it launches."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = ".mcp.json"
DEFAULT_STATE_FILE = ".mcp-servers.json"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT_ARG = "--port"

# Seconds
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_TERMINATE_TIMEOUT = 5.0

NAME_SEPARATOR = "."


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or is invalid."""

    pass


def validate_server_name(name: str) -> str:
    """Check a server name can be used as a catalog namespace."""
    if not name:
        raise ValueError("Server name must not be empty")
    if NAME_SEPARATOR in name:
        raise ValueError(f"Server name '{name}' must not contain '{NAME_SEPARATOR}'")
    return name


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ServerConfig(_CamelModel):
    """How to launch one tool server."""

    command: str = Field(..., min_length=1)
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    cwd: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535, description="Preferred port")
    port_arg: str = Field(default=DEFAULT_PORT_ARG, alias="portArg")


class ReadinessConfig(_CamelModel):
    """Bounded probe used to decide when a launched server accepts requests."""

    path: str = "/tools"
    attempts: int = Field(default=10, ge=1)
    initial_delay: float = Field(default=0.1, ge=0.0, alias="initialDelay")
    backoff: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=2.0, ge=0.0, alias="maxDelay")


class OrchestratorConfig(_CamelModel):
    """Top-level orchestrator configuration."""

    mcp_servers: dict[str, ServerConfig] = Field(default_factory=dict, alias="mcpServers")
    enabled: bool = True
    state_file: str = Field(default=DEFAULT_STATE_FILE, alias="stateFile")
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0, alias="requestTimeout")
    terminate_timeout: float = Field(
        default=DEFAULT_TERMINATE_TIMEOUT, ge=0, alias="terminateTimeout"
    )
    port_range: tuple[int, int] = Field(default=(8000, 9000), alias="portRange")
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)

    @field_validator("mcp_servers")
    @classmethod
    def _check_server_names(cls, servers: dict[str, ServerConfig]) -> dict[str, ServerConfig]:
        for name in servers:
            validate_server_name(name)
        return servers

    @field_validator("port_range")
    @classmethod
    def _check_port_range(cls, port_range: tuple[int, int]) -> tuple[int, int]:
        low, high = port_range
        if not 1 <= low <= high <= 65535:
            raise ValueError(f"Invalid port range: {low}-{high}")
        return port_range


def load_config(path: Path | str | None = None) -> OrchestratorConfig:
    """Load orchestrator configuration from a JSON file.

    Args:
        path: Config file path (defaults to .mcp.json in the working directory)

    Returns:
        OrchestratorConfig; the defaults if the file does not exist

    Raises:
        ConfigError: If the file is unreadable or does not validate
    """
    config_path = Path(path) if path else Path.cwd() / DEFAULT_CONFIG_FILE

    if not config_path.exists():
        logger.info(f"No config at {config_path}; no MCP servers configured")
        return OrchestratorConfig()

    try:
        raw = json.loads(config_path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read config {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Config {config_path} must contain a JSON object")

    try:
        config = OrchestratorConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {config_path}: {e}") from e

    if not config.mcp_servers:
        logger.info("No MCP servers configured")
    return config
