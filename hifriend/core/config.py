"""Supervisor configuration.

The file layout mirrors the editor setting keys of the extension:

    server:
      path: /opt/hi-friend/bin/hi-friend   # hi-friend.server.path
    trace:
      server: off                          # hi-friend.trace.server
    timeouts:
      failed_status: 10
      toggle: 3
      progress_hide: 3
      handshake: 30                        # null = wait forever
    handshake:
      cumulative_parse: false
    log:
      file: ~/.hifriend/output.log

Search paths are checked in priority order; the first file found wins.
"""

import logging
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

CONFIG_DIR = ".hifriend"
CONFIG_FILE = "config.yaml"


class ConfigError(Exception):
    """Configuration file is unreadable or invalid."""

    pass


class SupervisorConfig(BaseModel):
    """Read-only settings consumed by the launcher and the supervisor."""

    server_path: str | None = None
    trace_server: Literal["off", "messages", "verbose"] = "off"

    # Seconds
    failed_status_delay: float = Field(default=10.0, ge=0)
    toggle_delay: float = Field(default=3.0, ge=0)
    progress_hide_delay: float = Field(default=3.0, ge=0)
    handshake_timeout: float | None = Field(default=30.0, gt=0)

    handshake_cumulative_parse: bool = False
    log_file: str | None = None

    @field_validator("trace_server", mode="before")
    @classmethod
    def _yaml_boolean_trace(cls, value: Any) -> Any:
        # YAML 1.1 reads a bare `off` as False
        if value is False or value is None:
            return "off"
        if value is True:
            return "messages"
        return value

    @field_validator("server_path", mode="before")
    @classmethod
    def _blank_path_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def trace_enabled(self) -> bool:
        return self.trace_server != "off"

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "SupervisorConfig":
        """Build from the nested YAML layout."""
        server = data.get("server") or {}
        trace = data.get("trace") or {}
        timeouts = data.get("timeouts") or {}
        handshake = data.get("handshake") or {}
        log = data.get("log") or {}

        fields: dict[str, Any] = {}
        if "path" in server:
            fields["server_path"] = server["path"]
        if "server" in trace:
            fields["trace_server"] = trace["server"]
        for key, name in (
            ("failed_status", "failed_status_delay"),
            ("toggle", "toggle_delay"),
            ("progress_hide", "progress_hide_delay"),
            ("handshake", "handshake_timeout"),
        ):
            if key in timeouts:
                fields[name] = timeouts[key]
        if "cumulative_parse" in handshake:
            fields["handshake_cumulative_parse"] = handshake["cumulative_parse"]
        if "file" in log:
            fields["log_file"] = log["file"]

        return cls(**fields)


def default_search_paths(project_dir: Path | None = None) -> list[Path]:
    """Project-specific first, then user-global."""
    project_dir = project_dir or Path.cwd()
    return [
        project_dir / CONFIG_DIR / CONFIG_FILE,
        Path.home() / CONFIG_DIR / CONFIG_FILE,
    ]


def load_config(search_paths: list[Path] | None = None) -> SupervisorConfig:
    """Load the first config file found, or defaults if there is none.

    Raises:
        ConfigError: If the file exists but is not valid YAML or fails validation
    """
    for path in search_paths if search_paths is not None else default_search_paths():
        if not path.is_file():
            continue

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Error parsing YAML file '{path}': {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"Invalid YAML content in '{path}'. "
                f"Expected a dictionary, got {type(data).__name__}."
            )

        try:
            config = SupervisorConfig.from_mapping(data)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigError(f"Invalid configuration in '{path}': {details}") from e

        logger.debug(f"Loaded configuration from {path}")
        return config

    return SupervisorConfig()
