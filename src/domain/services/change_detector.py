"""Change Detection Service.

This service detects field-level changes between a stored allergy version
and the caller's candidate version, and produces the INSERT / RETIRE events
that make up the change audit trail.

Architecture:
    - Pure domain service with no infrastructure dependencies
    - Always scans every comparison-relevant field; there is no incremental
      diff or early exit
    - Returns domain models (ChangeEvent) for use by the audit logger
"""

import logging
from typing import Any, List, Optional

import pandas as pd

from src.domain.allergy import Allergy
from src.domain.cdc_models import ChangeEvent
from src.domain.enums import ChangeType

logger = logging.getLogger(__name__)

ALLERGY_TABLE = "allergies"


class ChangeDetector:
    """Service for detecting field-level changes between allergy versions."""

    def __init__(
        self,
        reconciliation_id: Optional[str] = None,
        changed_by: Optional[str] = None,
        other_non_coded_uuid: Optional[str] = None
    ):
        """Initialize change detector.

        Parameters:
            reconciliation_id: ID of the current reconciliation run
            changed_by: System/user identifier stamped on every event
            other_non_coded_uuid: Sentinel uuid used when comparing missing
                coded references
        """
        self.reconciliation_id = reconciliation_id
        self.changed_by = changed_by
        self.other_non_coded_uuid = other_non_coded_uuid

    def detect_allergy_changes(self, stored: Allergy, candidate: Allergy) -> List[ChangeEvent]:
        """Compare two versions of an allergy field by field.

        Parameters:
            stored: Persisted version
            candidate: Caller's version carrying the same identity

        Returns:
            One UPDATE event per differing field; empty when the versions are
            semantically equal
        """
        old_fields = stored.comparison_fields(self.other_non_coded_uuid)
        new_fields = candidate.comparison_fields(self.other_non_coded_uuid)

        events = []
        for field_name, old_value in old_fields.items():
            new_value = new_fields.get(field_name)
            if self.values_equal(old_value, new_value):
                continue
            events.append(ChangeEvent(
                table_name=ALLERGY_TABLE,
                record_id=stored.allergy_id,
                field_name=field_name,
                old_value=old_value,
                new_value=new_value,
                change_type=ChangeType.UPDATE,
                reconciliation_id=self.reconciliation_id,
                changed_by=self.changed_by
            ))

        if events:
            logger.debug(
                f"Allergy {stored.allergy_id} changed fields: "
                f"{', '.join(e.field_name for e in events)}"
            )
        return events

    def generate_insert_changes(self, allergy: Allergy) -> List[ChangeEvent]:
        """Generate change events for a new allergy version.

        Every comparison-relevant field is recorded as an INSERT. The record
        id is filled in once the version has been persisted.
        """
        return [
            ChangeEvent(
                table_name=ALLERGY_TABLE,
                record_id=allergy.allergy_id,
                field_name=field_name,
                old_value=None,
                new_value=value,
                change_type=ChangeType.INSERT,
                reconciliation_id=self.reconciliation_id,
                changed_by=self.changed_by
            )
            for field_name, value in allergy.comparison_fields(self.other_non_coded_uuid).items()
        ]

    def generate_retire_change(
        self,
        allergy: Allergy,
        reason: str,
        superseded_by: Optional[str] = None
    ) -> ChangeEvent:
        """Generate the change event recording a retirement."""
        return ChangeEvent(
            table_name=ALLERGY_TABLE,
            record_id=allergy.allergy_id,
            field_name="retired",
            old_value=False,
            new_value={"reason": reason, "superseded_by": superseded_by},
            change_type=ChangeType.RETIRE,
            reconciliation_id=self.reconciliation_id,
            changed_by=self.changed_by
        )

    @staticmethod
    def values_equal(old: Any, new: Any) -> bool:
        """Compare two values accounting for NaN, None, sequences, etc.

        Parameters:
            old: Old value
            new: New value

        Returns:
            True if values are equal, False otherwise
        """
        # Handle sequences first (pd.isna() is elementwise on lists)
        if isinstance(old, (list, tuple)) and isinstance(new, (list, tuple)):
            return list(old) == list(new)
        if isinstance(old, (list, tuple)) or isinstance(new, (list, tuple)):
            return False

        if isinstance(old, dict) and isinstance(new, dict):
            return old == new
        if isinstance(old, dict) or isinstance(new, dict):
            return False

        # Values read back through DataFrames may carry NaN instead of None
        try:
            if pd.isna(old) and pd.isna(new):
                return True
            if pd.isna(old) or pd.isna(new):
                return False
        except (ValueError, TypeError):
            pass

        return old == new
