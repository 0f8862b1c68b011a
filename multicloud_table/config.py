"""
Configuration management for multicloud table clients.

Handles loading, validation, and access to the provider selection, the
shared client settings and the logging setup.
"""

import os
import re
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional
from enum import Enum

import yaml
from pydantic import BaseModel, Field, field_validator, ValidationError, ConfigDict

from .logging_config import SensitiveDataFilter
from .models import TableProviderOptions, TableSettings

logger = logging.getLogger(__name__)

ENV_PREFIX = "MULTICLOUD_TABLE_"

REDACTED = "***REDACTED***"

# Option names whose values are credentials
_SECRET_OPTION = re.compile(r"(connectionstring|key|secret|password|token|credential)", re.IGNORECASE)


class LogLevel(str, Enum):
    """Valid log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = LogLevel.INFO
    format: str = "json"
    file: Optional[str] = None
    rotation_size: str = "10MB"
    rotation_count: int = 5
    module_levels: Optional[Dict[str, str]] = Field(
        default=None,
        description="Per-module log levels, e.g., {'multicloud_table.providers.azure': 'DEBUG'}"
    )


class MulticloudTableConfig(BaseModel):
    """Main configuration schema."""

    version: str = Field(default="0.1.0", description="Configuration version")

    table: TableProviderOptions = Field(default_factory=TableProviderOptions)

    settings: TableSettings = Field(default_factory=TableSettings)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate version format."""
        parts = v.split(".")
        if len(parts) != 3:
            raise ValueError("Version must be in format x.y.z")
        for part in parts:
            if not part.isdigit():
                raise ValueError("Version components must be numeric")
        return v

    model_config = ConfigDict(use_enum_values=True)


class ConfigManager:
    """
    Manages configuration loading and validation.

    Configuration precedence (highest to lowest):
    1. CLI arguments
    2. Environment variables (MULTICLOUD_TABLE_*)
    3. Configuration file (YAML/JSON)
    4. Defaults

    Example file:
        ```yaml
        table:
          provider: Azure.TableStorage
          options:
            ConnectionString: "DefaultEndpointsProtocol=https;AccountName=..."
        settings:
          enable_logging: true
        ```
    """

    def __init__(self):
        self._config: Optional[MulticloudTableConfig] = None

    def load(
        self,
        config_file: Optional[str] = None,
        cli_overrides: Optional[Dict[str, Any]] = None
    ) -> MulticloudTableConfig:
        """
        Load and validate configuration from multiple sources.

        Args:
            config_file: Path to configuration file (YAML or JSON)
            cli_overrides: Dictionary of CLI argument overrides

        Returns:
            Validated MulticloudTableConfig instance

        Raises:
            ValidationError: If configuration is invalid
            FileNotFoundError: If specified config file doesn't exist
            ValueError: If the file suffix is not supported
        """
        logger.info("Loading multicloud table configuration")

        config_dict: Dict[str, Any] = {}

        if config_file:
            config_dict = self._load_from_file(config_file)
            logger.info(f"Loaded configuration from file: {config_file}")

        env_config = self._load_from_env()
        config_dict = self._merge_configs(config_dict, env_config)
        if env_config:
            logger.info(f"Applied {len(env_config)} environment variable overrides")

        if cli_overrides:
            config_dict = self._merge_configs(config_dict, cli_overrides)
            logger.info(f"Applied {len(cli_overrides)} CLI argument overrides")

        try:
            self._config = MulticloudTableConfig(**config_dict)
            logger.info("Configuration validated successfully")
            self._log_configuration()
            return self._config
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file."""
        path = Path(file_path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        with open(path, 'r') as f:
            if path.suffix in ['.yaml', '.yml']:
                return yaml.safe_load(f) or {}
            elif path.suffix == '.json':
                return json.load(f)
            else:
                raise ValueError(f"Unsupported config file format: {path.suffix}")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        config: Dict[str, Any] = {}

        # Provider selection
        if provider := os.getenv(f"{ENV_PREFIX}PROVIDER"):
            config.setdefault("table", {})["provider"] = provider
        if connection_string := os.getenv(f"{ENV_PREFIX}CONNECTION_STRING"):
            config.setdefault("table", {}).setdefault("options", {})["ConnectionString"] = connection_string
        if project_id := os.getenv(f"{ENV_PREFIX}PROJECT_ID"):
            config.setdefault("table", {}).setdefault("options", {})["ProjectId"] = project_id

        # Shared settings
        if enable_logging := os.getenv(f"{ENV_PREFIX}ENABLE_LOGGING"):
            config.setdefault("settings", {})["enable_logging"] = enable_logging.lower() in ['true', '1', 'yes']
        if page_size := os.getenv(f"{ENV_PREFIX}PAGE_SIZE"):
            config.setdefault("settings", {})["page_size"] = int(page_size)

        # Logging configuration
        if log_level := os.getenv(f"{ENV_PREFIX}LOG_LEVEL"):
            config.setdefault("logging", {})["level"] = log_level.upper()
        if log_file := os.getenv(f"{ENV_PREFIX}LOG_FILE"):
            config.setdefault("logging", {})["file"] = log_file

        return config

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    @staticmethod
    def redact_options(options: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        """
        Copy a provider option map with credentials redacted.

        Connection strings keep their non-secret segments (account name,
        endpoints); other credential-like options are replaced entirely.
        """
        if options is None:
            return None

        redacted = {}
        for name, value in options.items():
            if name.lower() == "connectionstring" and isinstance(value, str):
                redacted[name] = SensitiveDataFilter.redact(value)
            elif _SECRET_OPTION.search(name):
                redacted[name] = REDACTED
            else:
                redacted[name] = value
        return redacted

    def _log_configuration(self) -> None:
        """Log the loaded configuration (with sensitive data redacted)."""
        if not self._config:
            return

        config_dict = self._config.model_dump()
        config_dict["table"]["options"] = self.redact_options(config_dict["table"]["options"])

        logger.info(f"Active configuration: {json.dumps(config_dict, indent=2)}")
