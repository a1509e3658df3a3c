"""Change Data Capture (CDC) Models.

This module defines models for tracking field-level changes to allergy
records and summarising the outcome of a reconciliation.

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Change logs are append-only; an edit appears as RETIRE of the old
      version plus INSERT of the new one, with UPDATE events describing
      which fields differed
"""

import json
import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from src.domain.enums import AllergyStatus, ChangeType


class ChangeEvent(BaseModel):
    """Represents a single field-level change to an allergy record.

    Parameters:
        table_name: Name of the table (allergies, patient_allergy_status)
        record_id: Identity of the affected record (allergy_id or patient_id)
        field_name: Name of the field that changed
        old_value: Previous value (before change)
        new_value: New value (after change)
        change_type: INSERT, UPDATE or RETIRE
        changed_at: Timestamp when change occurred
        reconciliation_id: ID of the save that caused this change
        changed_by: System/user identifier (optional)
    """

    table_name: str = Field(..., description="Name of the table")
    record_id: Optional[str] = Field(None, description="Identity of the record")
    field_name: str = Field(..., description="Name of the field that changed")
    old_value: Optional[Any] = Field(None, description="Previous value (before change)")
    new_value: Optional[Any] = Field(None, description="New value (after change)")
    change_type: ChangeType = Field(..., description="Type of change: INSERT, UPDATE or RETIRE")
    changed_at: datetime = Field(default_factory=datetime.now, description="Timestamp when change occurred")
    reconciliation_id: Optional[str] = Field(None, description="ID of the reconciliation run")
    changed_by: Optional[str] = Field(None, description="System/user identifier")

    @field_validator("change_type", mode="before")
    @classmethod
    def validate_change_type(cls, v) -> ChangeType:
        if isinstance(v, ChangeType):
            return v
        return ChangeType(str(v).strip().upper())

    def to_audit_dict(self) -> dict:
        """Convert to dictionary for audit log insertion.

        Returns:
            Dictionary with serialized values suitable for database insertion
        """
        return {
            'change_id': str(uuid.uuid4()),
            'table_name': self.table_name,
            'record_id': self.record_id,
            'field_name': self.field_name,
            'old_value': self._serialize_value(self.old_value),
            'new_value': self._serialize_value(self.new_value),
            'change_type': self.change_type.value,
            'changed_at': self.changed_at,
            'reconciliation_id': self.reconciliation_id,
            'changed_by': self.changed_by
        }

    def _serialize_value(self, value: Any) -> Optional[str]:
        """Serialize complex types to JSON string for database storage."""
        if value is None:
            return None

        if isinstance(value, (list, tuple, dict)):
            try:
                return json.dumps(value)
            except (TypeError, ValueError):
                return str(value)

        return str(value)

    model_config = {
        'frozen': False,  # record_id is filled in once an INSERT is persisted
        'validate_assignment': True,
    }


class ReconciliationResult(BaseModel):
    """Outcome of saving a candidate allergy list.

    Parameters:
        reconciliation_id: Identifier of this save (groups change log rows)
        patient_id: Patient whose list was saved
        allergies_unchanged: Stored entries carried over untouched
        allergies_created: New entries persisted (additions and edited versions)
        allergies_retired: Stored entries retired (removed or edited)
        allergies_edited: Subset of retirements caused by an edit
        fields_changed: Field-level differences found on edited entries
        changes_logged: Change events flushed to the audit trail
        status: Resulting allergy status
    """

    reconciliation_id: str = Field(..., description="Reconciliation run identifier")
    patient_id: str = Field(..., description="Patient identifier")
    allergies_unchanged: int = Field(0, description="Entries carried over unchanged")
    allergies_created: int = Field(0, description="Entries persisted as new")
    allergies_retired: int = Field(0, description="Entries retired")
    allergies_edited: int = Field(0, description="Retirements caused by an edit")
    fields_changed: int = Field(0, description="Field-level differences on edited entries")
    changes_logged: int = Field(0, description="Change events logged")
    status: AllergyStatus = Field(..., description="Resulting allergy status")

    model_config = {
        'frozen': True,
    }

    @property
    def active_count(self) -> int:
        return self.allergies_unchanged + self.allergies_created
