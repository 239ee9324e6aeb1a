"""Configuration loader for the WorkMatch engine."""

from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from pydantic import ValidationError

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .models import AppConfig
from .validators import check_for_warnings, emit_warnings

DEFAULT_CONFIG_LOCATIONS = (
    Path("config.yaml"),
    Path("config") / "config.yaml",
)


def load_config(config_path: Optional[Path] = None) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load and validate configuration from a YAML file and the environment.

    Config file lookup order:
    1. config_path if given
    2. config.yaml in the current directory
    3. config/config.yaml

    Args:
        config_path: Optional path to configuration file

    Returns:
        Tuple of (AppConfig, EnvironmentConfig)

    Raises:
        ConfigurationError: If configuration is invalid or no file is found
    """
    config_file = _find_config_file(config_path)
    app_config = parse_app_config(_read_yaml(config_file))

    try:
        env_config = load_environment_config(app_config.notifications.enabled_channels)
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load environment configuration: {e}",
            suggestions=["Copy .env.example to .env and fill in your settings"],
        ) from e

    return app_config, env_config


def parse_app_config(config_dict: Optional[Dict[str, Any]]) -> AppConfig:
    """
    Validate a raw configuration mapping.

    An empty document is valid and yields the defaults.

    Raises:
        ConfigurationError: With one readable entry per validation error
    """
    config_dict = config_dict or {}
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            "Configuration root must be a mapping",
            suggestions=["Review config.example.yaml for the expected layout"],
        )

    warnings = check_for_warnings(config_dict)
    if warnings:
        emit_warnings(warnings)

    try:
        return AppConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigurationError(
            "Configuration validation failed",
            errors=[_describe_error(error) for error in e.errors()],
            suggestions=[
                "Review config.example.yaml for correct format",
                "Verify field types and ranges match the expected schema",
            ],
        ) from e


def _describe_error(error: Dict[str, Any]) -> str:
    field_path = " -> ".join(str(loc) for loc in error["loc"]) or "<root>"
    error_type = error["type"]

    if error_type in ("string_type", "int_type", "int_parsing", "bool_type", "list_type"):
        expected_type = error_type.split("_")[0]
        return f"Invalid type for '{field_path}': expected {expected_type}, got {error.get('input')!r}"
    if "enum" in error_type:
        return f"Invalid value for '{field_path}': {error['msg']}"
    if error_type == "extra_forbidden":
        return f"Unknown field: {field_path}"
    return f"{field_path}: {error['msg']}"


def _read_yaml(config_file: Path) -> Optional[Dict[str, Any]]:
    try:
        with open(config_file, "r") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML configuration: {e}",
            suggestions=[
                "Check YAML syntax in your config file",
                "Ensure proper indentation (use spaces, not tabs)",
            ],
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read configuration file: {e}",
            suggestions=[f"Ensure {config_file} exists and is readable"],
        ) from e


def _find_config_file(config_path: Optional[Path] = None) -> Path:
    """
    Resolve the configuration file path.

    Raises:
        ConfigurationError: If no config file is found
    """
    if config_path:
        if not config_path.exists():
            raise ConfigurationError(
                f"Specified configuration file not found: {config_path}",
                suggestions=[f"Ensure {config_path} exists", "Check the path and try again"],
            )
        return config_path

    for candidate in DEFAULT_CONFIG_LOCATIONS:
        if candidate.exists():
            return candidate

    raise ConfigurationError(
        "Configuration file not found",
        errors=[f"Tried: {candidate}" for candidate in DEFAULT_CONFIG_LOCATIONS],
        suggestions=[
            "Copy config.example.yaml to config.yaml",
            "Use --config flag to specify a custom location",
        ],
    )
