"""Storage adapters for Allergy Ledger.

This module contains storage adapters that implement the AllergyStoragePort
and VocabularyPort interfaces for persisting allergy versions, patient
status and audit trails.
"""

from src.adapters.storage.duckdb_adapter import DuckDBAdapter

__all__ = ["DuckDBAdapter"]
