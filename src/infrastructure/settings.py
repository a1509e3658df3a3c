"""Application Settings and Configuration.

This module provides application-wide settings that combine configuration
from the configuration manager with application-specific defaults.
"""

import os
from typing import Optional

from src.domain.allergy import OTHER_NON_CODED_UUID
from src.domain.services.reconciliation import (
    DEFAULT_RETIRE_REASON_EDITED,
    DEFAULT_RETIRE_REASON_REMOVED,
)
from src.infrastructure.config_manager import get_database_config, DatabaseConfig

# Application metadata
APP_NAME = "Allergy-Ledger"
APP_VERSION = "1.0.0"


class Settings:
    """Application settings loaded from configuration manager and environment.

    Environment Variables:
        - AL_APP_NAME: Application name
        - AL_LOG_LEVEL: Logging level (default INFO)
        - AL_LOG_JSON: Emit JSON logs ("true"/"false")
        - AL_OTHER_NON_CODED_UUID: Uuid of the "other non-coded" sentinel concept
        - AL_RETIRE_REASON_EDITED: Reason recorded when an edit retires an allergy
        - AL_RETIRE_REASON_REMOVED: Reason recorded when a removal retires an allergy
        - AL_CHANGED_BY: Identifier stamped on change audit entries
    """

    def __init__(self):
        """Initialize settings from configuration manager and environment."""
        self._db_config: Optional[DatabaseConfig] = None

        self.app_name = os.getenv("AL_APP_NAME", APP_NAME)

        # Logging
        self.log_level = os.getenv("AL_LOG_LEVEL", "INFO")
        self.log_json = os.getenv("AL_LOG_JSON", "false").lower() == "true"

        # Vocabulary
        self.other_non_coded_uuid = os.getenv("AL_OTHER_NON_CODED_UUID", OTHER_NON_CODED_UUID)

        # Reconciliation
        self.retire_reason_edited = os.getenv("AL_RETIRE_REASON_EDITED", DEFAULT_RETIRE_REASON_EDITED)
        self.retire_reason_removed = os.getenv("AL_RETIRE_REASON_REMOVED", DEFAULT_RETIRE_REASON_REMOVED)
        self.changed_by = os.getenv("AL_CHANGED_BY", "system")

    @property
    def db_config(self) -> DatabaseConfig:
        """Database configuration, loaded lazily on first access."""
        if self._db_config is None:
            self._db_config = get_database_config()
        return self._db_config

    def get_db_path(self) -> str:
        """Get database path for DuckDB.

        Returns:
            Database path or ':memory:' for in-memory database
        """
        return self.db_config.db_path or ":memory:"


# Global settings instance
settings = Settings()
