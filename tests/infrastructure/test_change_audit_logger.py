"""Unit tests for ChangeAuditLogger."""

import pytest

from src.infrastructure.audit.change_audit_logger import ChangeAuditLogger
from src.domain.cdc_models import ChangeEvent
from src.domain.enums import ChangeType


class TestChangeAuditLogger:
    """Test suite for ChangeAuditLogger."""

    def test_init(self):
        """Test ChangeAuditLogger initialization."""
        logger = ChangeAuditLogger()
        assert logger.get_log_count() == 0
        assert not logger.has_logs()
        assert logger._reconciliation_id is None
        assert logger._changed_by is None

    def test_set_reconciliation_context(self):
        """Test setting reconciliation context."""
        logger = ChangeAuditLogger()
        logger.set_reconciliation_context(
            reconciliation_id="rec-123",
            changed_by="clinician-7"
        )
        assert logger._reconciliation_id == "rec-123"
        assert logger._changed_by == "clinician-7"

    def test_log_change_single(self):
        """Test logging a single change."""
        logger = ChangeAuditLogger()
        logger.log_change(
            table_name="patient_allergy_status",
            record_id="2",
            field_name="allergy_status",
            old_value="SEE_LIST",
            new_value="UNKNOWN",
            change_type="UPDATE"
        )

        assert logger.get_log_count() == 1
        assert logger.has_logs()

        log_entry = logger.get_logs()[0]
        assert log_entry['table_name'] == "patient_allergy_status"
        assert log_entry['record_id'] == "2"
        assert log_entry['field_name'] == "allergy_status"
        assert log_entry['old_value'] == "SEE_LIST"
        assert log_entry['new_value'] == "UNKNOWN"
        assert log_entry['change_type'] == "UPDATE"
        assert log_entry['changed_by'] == "system"
        assert log_entry['reconciliation_id'] is None
        assert 'change_id' in log_entry
        assert 'changed_at' in log_entry

    def test_log_change_with_context(self):
        """Test that context is applied to logged changes."""
        logger = ChangeAuditLogger()
        logger.set_reconciliation_context(reconciliation_id="rec-123", changed_by="clinician-7")

        logger.log_change(
            table_name="allergies",
            record_id="a-1",
            field_name="comment",
            old_value="old",
            new_value="new"
        )

        log_entry = logger.get_logs()[0]
        assert log_entry['reconciliation_id'] == "rec-123"
        assert log_entry['changed_by'] == "clinician-7"
        assert log_entry['change_type'] == "UPDATE"

    def test_log_change_override_context(self):
        """Test that explicit parameters override context."""
        logger = ChangeAuditLogger()
        logger.set_reconciliation_context(reconciliation_id="rec-123", changed_by="clinician-7")

        logger.log_change(
            table_name="allergies",
            record_id="a-1",
            field_name="comment",
            reconciliation_id="rec-override",
            changed_by="importer"
        )

        log_entry = logger.get_logs()[0]
        assert log_entry['reconciliation_id'] == "rec-override"
        assert log_entry['changed_by'] == "importer"

    def test_log_change_retire(self):
        logger = ChangeAuditLogger()
        logger.log_change(
            table_name="allergies",
            record_id="a-1",
            field_name="retired",
            old_value="False",
            new_value="True",
            change_type=ChangeType.RETIRE
        )
        assert logger.get_logs()[0]['change_type'] == "RETIRE"

    def test_log_change_invalid_type(self):
        logger = ChangeAuditLogger()
        with pytest.raises(ValueError):
            logger.log_change(
                table_name="allergies",
                record_id="a-1",
                field_name="comment",
                change_type="DELETE"
            )
        assert not logger.has_logs()

    def test_log_change_event(self):
        """Test logging a ChangeEvent object."""
        logger = ChangeAuditLogger()
        event = ChangeEvent(
            table_name="allergies",
            record_id="a-1",
            field_name="severity",
            old_value="1500AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA",
            new_value="1498AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA",
            change_type=ChangeType.UPDATE,
            reconciliation_id="rec-123"
        )

        logger.log_change_event(event)

        log_entry = logger.get_logs()[0]
        assert log_entry['record_id'] == "a-1"
        assert log_entry['field_name'] == "severity"
        assert log_entry['reconciliation_id'] == "rec-123"
        assert log_entry['changed_by'] == "system"

    def test_log_change_event_with_context(self):
        """Test that context overrides ChangeEvent values."""
        logger = ChangeAuditLogger()
        logger.set_reconciliation_context(reconciliation_id="rec-ctx", changed_by="clinician-7")
        event = ChangeEvent(
            table_name="allergies",
            record_id="a-1",
            field_name="comment",
            change_type=ChangeType.INSERT,
            reconciliation_id="rec-event"
        )

        logger.log_change_event(event)

        log_entry = logger.get_logs()[0]
        assert log_entry['reconciliation_id'] == "rec-ctx"
        assert log_entry['changed_by'] == "clinician-7"

    def test_log_changes_batch(self):
        """Test logging multiple change events."""
        logger = ChangeAuditLogger()
        events = [
            ChangeEvent(
                table_name="allergies",
                record_id=f"a-{i}",
                field_name="comment",
                new_value=f"comment {i}",
                change_type=ChangeType.INSERT
            )
            for i in range(3)
        ]

        logger.log_changes_batch(events)

        assert logger.get_log_count() == 3
        assert [e['record_id'] for e in logger.get_logs()] == ["a-0", "a-1", "a-2"]

    def test_log_changes_batch_complex_values(self):
        """Test that reaction lists are serialized to JSON."""
        logger = ChangeAuditLogger()
        logger.log_changes_batch([ChangeEvent(
            table_name="allergies",
            record_id="a-1",
            field_name="reactions",
            old_value=[["u1", None], ["u2", None]],
            new_value=[["u1", None]],
            change_type=ChangeType.UPDATE
        )])

        log_entry = logger.get_logs()[0]
        assert log_entry['old_value'] == '[["u1", null], ["u2", null]]'
        assert log_entry['new_value'] == '[["u1", null]]'

    def test_get_logs_returns_copy(self):
        """Test that get_logs returns a copy, not the internal list."""
        logger = ChangeAuditLogger()
        logger.log_change(table_name="allergies", record_id="a-1", field_name="comment")

        logs = logger.get_logs()
        logs.clear()

        assert logger.get_log_count() == 1

    def test_clear_logs(self):
        """Test clearing logs."""
        logger = ChangeAuditLogger()
        logger.log_change(table_name="allergies", record_id="a-1", field_name="comment")
        logger.log_change(table_name="allergies", record_id="a-2", field_name="comment")

        logger.clear_logs()

        assert logger.get_log_count() == 0
        assert not logger.has_logs()
        assert logger.get_logs() == []
