"""Configuration Manager for Storage Settings.

This module loads and validates the database configuration used by the
storage adapters.

Architecture:
    - Follows Hexagonal Architecture: Infrastructure layer isolated from domain
    - Supports environment variables (with optional .env file) and JSON files
    - Type-safe configuration using Pydantic models
    - Fail-fast validation prevents runtime errors
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Dict, Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

SUPPORTED_DB_TYPES = ["duckdb"]


class DatabaseConfig(BaseModel):
    """Database configuration model.

    Parameters:
        db_type: Type of database (currently 'duckdb')
        db_path: Path to database file, or ':memory:' for an in-memory database
        read_only: Open the database read-only (reporting commands)
    """

    db_type: str = Field("duckdb", description="Database type")
    db_path: Optional[str] = Field(None, description="Path to database file (for DuckDB)")
    read_only: bool = Field(False, description="Open the database read-only")

    @field_validator("db_type")
    @classmethod
    def validate_db_type(cls, v: str) -> str:
        """Validate database type."""
        if v.lower() not in SUPPORTED_DB_TYPES:
            raise ValueError(f"Unsupported database type: {v}. Supported: {SUPPORTED_DB_TYPES}")
        return v.lower()

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: Optional[str]) -> Optional[str]:
        """Validate database directory exists (if a path is provided)."""
        if v is None or v == ":memory:":
            return v

        db_path_obj = Path(v)
        # The file itself may not exist yet
        if not db_path_obj.parent.exists():
            raise ValueError(f"Database directory does not exist: {db_path_obj.parent}")

        return str(db_path_obj)

    def get_connection_string(self) -> str:
        """Get the DuckDB database location."""
        return self.db_path or ":memory:"


class ConfigManager:
    """Configuration manager for storage settings.

    Example Usage:
        ```python
        # Load from environment variables
        config = ConfigManager.from_environment()
        db_config = config.get_database_config()

        # Load from file
        config = ConfigManager.from_file("config.json")
        db_config = config.get_database_config()
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        """Initialize configuration manager.

        Parameters:
            config_data: Configuration dictionary
        """
        self._config_data = config_data
        self._database_config: Optional[DatabaseConfig] = None

    @classmethod
    def from_environment(cls) -> 'ConfigManager':
        """Load configuration from environment variables.

        Environment Variables:
            - AL_DB_TYPE: Database type (duckdb)
            - AL_DB_PATH: Path to database file
            - AL_DB_READ_ONLY: Open database read-only ("true"/"false")

        A .env file in the project root is loaded first when present.

        Returns:
            ConfigManager instance
        """
        env_path = Path(__file__).parent.parent.parent / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.debug(f"Loaded environment variables from {env_path}")

        config_data = {
            "database": {
                "db_type": os.getenv("AL_DB_TYPE", "duckdb"),
                "db_path": os.getenv("AL_DB_PATH"),
                "read_only": os.getenv("AL_DB_READ_ONLY", "false").lower() == "true",
            }
        }

        return cls(config_data)

    @classmethod
    def from_file(cls, config_path: str) -> 'ConfigManager':
        """Load configuration from a JSON file.

        Parameters:
            config_path: Path to configuration file

        Returns:
            ConfigManager instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {str(e)}")

        return cls(config_data)

    def get_database_config(self) -> DatabaseConfig:
        """Get database configuration (validated once, then cached)."""
        if self._database_config is None:
            db_config_data = self._config_data.get("database", {})
            self._database_config = DatabaseConfig(**db_config_data)

        return self._database_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key.

        Parameters:
            key: Configuration key (supports dot notation, e.g., "database.db_path")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config_data

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default


# ============================================================================
# Convenience Functions
# ============================================================================

def get_database_config() -> DatabaseConfig:
    """Load database configuration from the environment.

    Defaults to an in-memory DuckDB database when nothing is configured.
    """
    config_manager = ConfigManager.from_environment()
    return config_manager.get_database_config()
