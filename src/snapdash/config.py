"""Configuration loading and validation for snapdash."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from snapdash.logger import LogLevel
from snapdash.models import ConfigError

__all__ = [
    "BackendConfig",
    "Configuration",
    "ConfigurationError",
    "DashboardConfig",
]


@dataclass
class BackendConfig:
    """How the snapshot tool is invoked."""

    tool: str = "snapper"
    config_name: str | None = None
    use_sudo: bool = False
    host: str | None = None  # None = this machine
    timeout: float | None = None  # None = operations run to completion


@dataclass
class DashboardConfig:
    """Interactive dashboard behavior."""

    refresh_per_second: float = 10
    max_log_lines: int = 6
    auto_refresh: bool = True


@dataclass
class Configuration:
    """Parsed and validated configuration from YAML file."""

    log_file_level: LogLevel = LogLevel.INFO
    log_cli_level: LogLevel = LogLevel.INFO
    backend: BackendConfig = field(default_factory=BackendConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> Configuration:
        """Load and validate configuration from YAML file.

        Args:
            path: Path to config.yaml

        Returns:
            Validated Configuration instance

        Raises:
            ConfigurationError: If the file is missing, YAML is invalid or schema validation fails
        """
        errors: list[ConfigError] = []

        try:
            with path.open() as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            errors.append(ConfigError(path=str(path), message=f"Configuration file not found: {path}"))
            raise ConfigurationError(errors) from None
        except yaml.YAMLError as e:
            error_msg = str(e)
            # problem_mark only exists on MarkedYAMLError
            mark = getattr(e, "problem_mark", None)
            problem = getattr(e, "problem", None)
            if mark is not None and problem is not None:
                error_msg = f"YAML syntax error at line {mark.line + 1}, column {mark.column + 1}: {problem}"
            errors.append(ConfigError(path=str(path), message=error_msg))
            raise ConfigurationError(errors) from e

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Configuration:
        """Validate a configuration mapping against the schema and build the dataclasses.

        Raises:
            ConfigurationError: If schema validation fails
        """
        validator = jsonschema.Draft7Validator(_load_schema())
        errors = [
            ConfigError(
                path=".".join(str(p) for p in error.absolute_path) or "root",
                message=error.message,
            )
            for error in validator.iter_errors(data)
        ]
        if errors:
            raise ConfigurationError(errors)

        backend_data = data.get("backend", {})
        dashboard_data = data.get("dashboard", {})
        return cls(
            log_file_level=LogLevel[data.get("log_file_level", "INFO")],
            log_cli_level=LogLevel[data.get("log_cli_level", "INFO")],
            backend=BackendConfig(
                tool=backend_data.get("tool", "snapper"),
                config_name=backend_data.get("config_name"),
                use_sudo=backend_data.get("use_sudo", False),
                host=backend_data.get("host"),
                timeout=backend_data.get("timeout"),
            ),
            dashboard=DashboardConfig(
                refresh_per_second=dashboard_data.get("refresh_per_second", 10),
                max_log_lines=dashboard_data.get("max_log_lines", 6),
                auto_refresh=dashboard_data.get("auto_refresh", True),
            ),
        )

    @classmethod
    def load(cls, path: Path | None = None) -> Configuration:
        """Load ``path``, or the default file if it exists, or built-in defaults.

        An explicitly given path must exist.
        """
        if path is not None:
            return cls.from_yaml(path)
        default_path = cls.get_default_config_path()
        if default_path.exists():
            return cls.from_yaml(default_path)
        return cls()

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the default config file path."""
        return Path.home() / ".config" / "snapdash" / "config.yaml"


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    def __init__(self, errors: list[ConfigError]) -> None:
        self.errors = errors
        messages = [f"{e.path}: {e.message}" for e in errors]
        super().__init__("Configuration validation failed:\n" + "\n".join(messages))


def _load_schema() -> dict[str, Any]:
    """Load the config schema from package resources."""
    schema_path = Path(__file__).parent / "schemas" / "config-schema.yaml"
    with schema_path.open() as f:
        return yaml.safe_load(f)
