"""Allergy Service - Caller-facing Allergy List Operations.

This service is the entry point for reading and saving a patient's allergy
list. It orchestrates the storage and vocabulary collaborators, the
reconciliation engine and the change audit trail.

Security Impact:
    - A save never deletes clinical data: removed and edited entries are
      retired, so the full history stays available for review
    - A save is atomic: every retirement, insertion, status change and audit
      row is written in one transaction, or none are
    - Every save is attributable through its reconciliation_id and changed_by

Architecture:
    - Domain service: depends only on ports, never on concrete adapters
    - Storage Result failures inside the transaction are raised as
      StorageError so the adapter rolls everything back
"""

import logging
import uuid
from typing import Optional

from src.domain.allergies import Allergies
from src.domain.allergy import Allergy, Concept
from src.domain.cdc_models import ReconciliationResult
from src.domain.enums import AllergyStatus, ChangeType
from src.domain.ports import AllergyStoragePort, VocabularyPort
from src.domain.services.change_detector import ChangeDetector
from src.domain.services.reconciliation import ReconciliationEngine, ReconciliationPlan
from src.infrastructure.audit.change_audit_logger import ChangeAuditLogger

logger = logging.getLogger(__name__)

STATUS_TABLE = "patient_allergy_status"
RECONCILED_EVENT = "ALLERGIES_RECONCILED"


class AllergyService:
    """Reads and reconciles patient allergy lists.

    Parameters:
        storage: Persistence collaborator
        vocabulary: Controlled vocabulary collaborator
        engine: Reconciliation engine (default settings when omitted)
        audit_logger: Buffer for change events (a fresh one when omitted)
        changed_by: Identifier stamped on every change event

    Example Usage:
        ```python
        service = AllergyService(storage=adapter, vocabulary=adapter)
        allergies = service.get_allergies("2")
        allergies.remove(0)
        result = service.set_allergies("2", allergies)
        print(result.status, result.allergies_retired)
        ```
    """

    def __init__(
        self,
        storage: AllergyStoragePort,
        vocabulary: VocabularyPort,
        engine: Optional[ReconciliationEngine] = None,
        audit_logger: Optional[ChangeAuditLogger] = None,
        changed_by: Optional[str] = None
    ):
        self.storage = storage
        self.vocabulary = vocabulary
        self.engine = engine or ReconciliationEngine()
        self.audit_logger = audit_logger or ChangeAuditLogger()
        self.changed_by = changed_by or "system"

    def get_allergies(self, patient_id: str) -> Allergies:
        """Return the patient's active allergy list.

        Raises:
            StorageError: If the list cannot be loaded
        """
        return self.storage.load_active_allergies(patient_id).unwrap("load_active_allergies")

    def get_allergy_history(self, patient_id: str) -> list[Allergy]:
        """Return every allergy version for the patient, retired ones included."""
        return self.storage.load_allergy_history(patient_id).unwrap("load_allergy_history")

    def set_allergies(self, patient_id: str, candidate: Allergies) -> ReconciliationResult:
        """Reconcile the caller's allergy list against the stored one and save it.

        Parameters:
            patient_id: Patient whose list is being saved
            candidate: Desired end state of the active allergy list; after a
                successful save its new entries carry their assigned identity
                and completed non-coded references

        Returns:
            ReconciliationResult: Counts of unchanged, created and retired entries
            plus the resulting status

        Raises:
            InvalidStateError: If the candidate list belongs to another patient
            StorageError: If any storage step fails (nothing is saved)
            VocabularyError: If the "other non-coded" concept is not configured
        """
        reconciliation_id = str(uuid.uuid4())

        stored = self.get_allergies(patient_id)
        resolved = self._resolve_concepts(candidate)
        other_non_coded = self.vocabulary.get_other_non_coded_concept()
        detector = ChangeDetector(
            reconciliation_id=reconciliation_id,
            changed_by=self.changed_by,
            other_non_coded_uuid=other_non_coded.uuid
        )

        plan = self.engine.reconcile(
            patient_id,
            stored,
            resolved,
            other_non_coded=other_non_coded,
            change_detector=detector
        )

        self.audit_logger.set_reconciliation_context(
            reconciliation_id=reconciliation_id,
            changed_by=self.changed_by
        )
        try:
            changes_logged = self.storage.run_in_transaction(
                lambda: self._apply_plan(plan, stored.allergy_status, detector, reconciliation_id)
            )
        finally:
            self.audit_logger.clear_logs()

        self._write_back(candidate, plan)

        result = ReconciliationResult(
            reconciliation_id=reconciliation_id,
            patient_id=patient_id,
            allergies_unchanged=len(plan.unchanged),
            allergies_created=len(plan.created),
            allergies_retired=len(plan.retirements),
            allergies_edited=len(plan.edits),
            fields_changed=sum(len(r.changes) for r in plan.edits),
            changes_logged=changes_logged,
            status=plan.status
        )

        logger.info(
            f"Saved allergies for patient {patient_id}: {result.allergies_created} persisted, "
            f"{result.allergies_retired} retired, status {result.status.value}",
            extra={"patient_id": patient_id, "reconciliation_id": reconciliation_id}
        )
        return result

    def confirm_no_known_allergies(self, patient_id: str) -> ReconciliationResult:
        """Record that the patient has no known allergies.

        Any active entries are retired as removed.
        """
        candidate = Allergies(patient_id=patient_id)
        candidate.confirm_no_known_allergies()
        return self.set_allergies(patient_id, candidate)

    def _apply_plan(
        self,
        plan: ReconciliationPlan,
        previous_status: AllergyStatus,
        detector: ChangeDetector,
        reconciliation_id: str
    ) -> int:
        """Write a reconciliation plan. Runs inside the storage transaction."""
        for position, allergy in enumerate(plan.active):
            if allergy.allergy_id is None:
                allergy.allergy_id = self.storage.persist(allergy, position).unwrap("persist")
                self.audit_logger.log_changes_batch(detector.generate_insert_changes(allergy))
            else:
                self.storage.update_position(allergy.allergy_id, position).unwrap("update_position")

        for retirement in plan.retirements:
            superseded_by = retirement.replacement.allergy_id if retirement.is_edit else None
            self.storage.retire(retirement.allergy, retirement.reason, superseded_by).unwrap("retire")
            self.audit_logger.log_changes_batch(list(retirement.changes))
            self.audit_logger.log_change_event(
                detector.generate_retire_change(retirement.allergy, retirement.reason, superseded_by)
            )

        self.storage.save_allergy_status(plan.patient_id, plan.status).unwrap("save_allergy_status")
        if plan.status != previous_status:
            self.audit_logger.log_change(
                table_name=STATUS_TABLE,
                record_id=plan.patient_id,
                field_name="allergy_status",
                old_value=previous_status.value,
                new_value=plan.status.value,
                change_type=ChangeType.UPDATE
            )

        changes_logged = self.audit_logger.get_log_count()
        self.storage.flush_change_logs(self.audit_logger.get_logs()).unwrap("flush_change_logs")
        self.storage.log_audit_event(
            RECONCILED_EVENT,
            plan.patient_id,
            {
                "reconciliation_id": reconciliation_id,
                "created": len(plan.created),
                "retired": len(plan.retirements),
                "unchanged": len(plan.unchanged),
                "status": plan.status.value,
            }
        ).unwrap("log_audit_event")
        return changes_logged

    @staticmethod
    def _write_back(candidate: Allergies, plan: ReconciliationPlan) -> None:
        """Copy assigned identities and completed references onto the caller's entries.

        Only called after the transaction commits. Saving the same list again
        is then a no-op.
        """
        for position, saved in plan.created_by_position.items():
            entry = candidate.get(position)
            entry.allergy_id = saved.allergy_id
            entry.patient_id = saved.patient_id
            entry.allergen = saved.allergen.model_copy(deep=True)
            entry.reactions = [r.model_copy(deep=True) for r in saved.reactions]
        if candidate.patient_id is None:
            candidate.patient_id = plan.patient_id

    def _resolve_concepts(self, candidate: Allergies) -> Allergies:
        """Copy of candidate with coded references replaced by vocabulary entries.

        Unknown references are kept as given and logged; comparison only
        relies on the uuid.
        """
        resolved = candidate.copy()
        for allergy in resolved:
            allergen = allergy.allergen
            if allergen.coded_allergen is not None:
                allergen.coded_allergen = self._resolve(allergen.coded_allergen)
            if allergy.severity is not None:
                allergy.severity = self._resolve(allergy.severity)
            for reaction in allergy.reactions:
                if reaction.reaction is not None:
                    reaction.reaction = self._resolve(reaction.reaction)
        return resolved

    def _resolve(self, concept: Concept) -> Concept:
        known = self.vocabulary.get_concept_by_uuid(concept.uuid)
        if known is None:
            logger.warning(f"Concept {concept.uuid} is not in the vocabulary")
            return concept
        return known
