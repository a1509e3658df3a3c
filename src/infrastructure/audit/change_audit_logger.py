"""Change Audit Logger.

This module provides a buffer for the field-level change events produced by
one allergy list save. Events are flushed to storage inside the same
transaction as the save, so a rolled-back save leaves no audit rows behind.

Architecture:
    - Infrastructure layer component
    - Fed by the allergy service with ChangeEvents from ChangeDetector
    - Integrates with storage adapters for persistence (flush_change_logs)
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from src.domain.cdc_models import ChangeEvent
from src.domain.enums import ChangeType

logger = logging.getLogger(__name__)


class ChangeAuditLogger:
    """Logger for tracking allergy change events.

    Maintains an in-memory buffer of change events that is flushed to
    storage once per save.

    Example Usage:
        ```python
        audit = ChangeAuditLogger()
        audit.set_reconciliation_context(reconciliation_id="rec_123", changed_by="clinician-7")
        audit.log_changes_batch(detector.generate_insert_changes(allergy))
        storage.flush_change_logs(audit.get_logs())
        audit.clear_logs()
        ```
    """

    def __init__(self):
        """Initialize change audit logger."""
        self._logs: List[dict] = []
        self._reconciliation_id: Optional[str] = None
        self._changed_by: Optional[str] = None

    def set_reconciliation_context(
        self,
        reconciliation_id: Optional[str] = None,
        changed_by: Optional[str] = None
    ) -> None:
        """Set context used to group change events.

        Parameters:
            reconciliation_id: Unique identifier for this save
            changed_by: System/user identifier
        """
        self._reconciliation_id = reconciliation_id
        self._changed_by = changed_by

    def log_change(
        self,
        table_name: str,
        record_id: str,
        field_name: str,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
        change_type: ChangeType = ChangeType.UPDATE,
        reconciliation_id: Optional[str] = None,
        changed_by: Optional[str] = None
    ) -> None:
        """Log a single change event from raw values.

        Parameters:
            table_name: Name of the table (allergies, patient_allergy_status)
            record_id: Identity of the record that changed
            field_name: Name of the field that changed
            old_value: Previous value (before change)
            new_value: New value (after change)
            change_type: INSERT, UPDATE or RETIRE
            reconciliation_id: ID of the save (uses context if not provided)
            changed_by: System/user identifier (uses context if not provided)
        """
        log_entry = {
            "change_id": str(uuid.uuid4()),
            "table_name": table_name,
            "record_id": str(record_id),
            "field_name": field_name,
            "old_value": old_value,
            "new_value": new_value,
            "change_type": ChangeType(change_type).value,
            "changed_at": datetime.now(),
            "reconciliation_id": reconciliation_id or self._reconciliation_id,
            "changed_by": changed_by or self._changed_by or "system"
        }

        self._logs.append(log_entry)
        logger.debug(
            f"Logged change: {table_name}.{record_id}.{field_name} "
            f"({log_entry['change_type']})"
        )

    def log_change_event(self, change_event: ChangeEvent) -> None:
        """Log a ChangeEvent object, applying the current context."""
        audit_dict = change_event.to_audit_dict()
        if self._reconciliation_id:
            audit_dict['reconciliation_id'] = self._reconciliation_id
        if self._changed_by:
            audit_dict['changed_by'] = self._changed_by
        elif not audit_dict.get('changed_by'):
            audit_dict['changed_by'] = "system"

        self._logs.append(audit_dict)
        logger.debug(
            f"Logged change event: {change_event.table_name}."
            f"{change_event.record_id}.{change_event.field_name} "
            f"({change_event.change_type.value})"
        )

    def log_changes_batch(self, change_events: List[ChangeEvent]) -> None:
        """Log multiple change events."""
        for event in change_events:
            self.log_change_event(event)

    def get_logs(self) -> List[dict]:
        """Get a copy of all logged change entries (ready for database insertion)."""
        return self._logs.copy()

    def clear_logs(self) -> None:
        """Clear all logged events (after flushing to storage)."""
        self._logs.clear()
        logger.debug("Cleared change audit logs")

    def get_log_count(self) -> int:
        return len(self._logs)

    def has_logs(self) -> bool:
        return len(self._logs) > 0
