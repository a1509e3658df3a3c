"""Allergy List Reconciliation Engine.

Given a patient's stored active allergy list and the caller's candidate list
(the desired end state), decide which stored versions survive unchanged,
which must be retired, which candidate entries are persisted as new, and what
the resulting allergy status is.

Algorithm:
    1. Candidate entries whose identity matches a stored entry are compared
       field by field. Equal -> the stored version survives. Different -> the
       stored version is retired and the candidate is persisted as a brand
       new version (no history merge).
    2. Stored entries whose identity is absent from the candidate list are
       retired.
    3. Candidate entries without identity are new. Allergens and reactions
       with free text but no coded reference are completed with the
       "other non-coded" sentinel concept.
    4. The status is SEE_LIST when the active set is non-empty, otherwise the
       candidate's explicit choice (default UNKNOWN).

Architecture:
    - Pure, synchronous, in-memory; performs no I/O and never mutates its
      inputs (new versions are deep copies)
    - Identity matching uses an identity-indexed dict: O(n + m)
    - Persistence of the resulting plan is the caller's job and must happen
      in a single transaction
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from src.domain.allergy import Allergen, Allergy, Concept
from src.domain.cdc_models import ChangeEvent
from src.domain.enums import AllergyStatus
from src.domain.ports import InvalidStateError
from src.domain.services.change_detector import ChangeDetector
from src.domain.services.status import derive_allergy_status

if TYPE_CHECKING:
    from src.domain.allergies import Allergies

logger = logging.getLogger(__name__)

DEFAULT_RETIRE_REASON_EDITED = "Allergy edited"
DEFAULT_RETIRE_REASON_REMOVED = "Allergy removed"


@dataclass(frozen=True)
class Retirement:
    """Decision to retire one stored allergy version.

    Attributes:
        allergy: The stored version to retire
        reason: Retirement reason
        replacement: New version carrying the edited content (edits only)
        changes: Field-level differences that triggered an edit
    """

    allergy: Allergy
    reason: str
    replacement: Optional[Allergy] = None
    changes: tuple[ChangeEvent, ...] = ()

    @property
    def is_edit(self) -> bool:
        return self.replacement is not None


@dataclass
class ReconciliationPlan:
    """Outcome of reconciling a candidate list against the stored list.

    Attributes:
        patient_id: Patient the plan applies to
        active: Resulting active entries in candidate order; unchanged stored
            versions keep their identity, new versions have none yet
        unchanged: Stored versions carried over untouched
        created: New versions to persist (additions and edits)
        created_by_position: Candidate list position -> new version built
            from the entry at that position
        retirements: Stored versions to retire
        status: Resulting allergy status
    """

    patient_id: str
    active: list[Allergy] = field(default_factory=list)
    unchanged: list[Allergy] = field(default_factory=list)
    created: list[Allergy] = field(default_factory=list)
    created_by_position: dict[int, Allergy] = field(default_factory=dict)
    retirements: list[Retirement] = field(default_factory=list)
    status: AllergyStatus = AllergyStatus.UNKNOWN

    @property
    def edits(self) -> list[Retirement]:
        return [r for r in self.retirements if r.is_edit]

    @property
    def has_changes(self) -> bool:
        return bool(self.created or self.retirements)


class ReconciliationEngine:
    """Maps (stored list, candidate list) to a ReconciliationPlan.

    Parameters:
        retire_reason_edited: Reason recorded when an edit retires a version
        retire_reason_removed: Reason recorded when a removal retires a version

    Example Usage:
        ```python
        engine = ReconciliationEngine()
        plan = engine.reconcile("2", stored, candidate, other_non_coded)
        for retirement in plan.retirements:
            ...
        ```
    """

    def __init__(
        self,
        retire_reason_edited: str = DEFAULT_RETIRE_REASON_EDITED,
        retire_reason_removed: str = DEFAULT_RETIRE_REASON_REMOVED
    ):
        self.retire_reason_edited = retire_reason_edited
        self.retire_reason_removed = retire_reason_removed

    def reconcile(
        self,
        patient_id: str,
        stored: 'Allergies',
        candidate: 'Allergies',
        other_non_coded: Optional[Concept] = None,
        change_detector: Optional[ChangeDetector] = None
    ) -> ReconciliationPlan:
        """Reconcile a candidate allergy list against the stored one.

        Parameters:
            patient_id: Patient whose list is being saved
            stored: Active allergies currently persisted for the patient
            candidate: Caller's desired end state
            other_non_coded: Sentinel concept used for non-coded completion
            change_detector: Detector used for the field scan (and audit events)

        Returns:
            ReconciliationPlan: Retirements, active set and resulting status

        Raises:
            InvalidStateError: If the candidate list belongs to another patient
        """
        self._check_owner(patient_id, candidate)

        sentinel = other_non_coded or Concept(uuid=Allergen.OTHER_NON_CODED_UUID)
        detector = change_detector or ChangeDetector(other_non_coded_uuid=sentinel.uuid)
        plan = ReconciliationPlan(patient_id=patient_id)

        stored_by_id = {a.allergy_id: a for a in stored if a.allergy_id is not None}
        matched_ids: set[str] = set()

        for position, entry in enumerate(candidate):
            stored_entry = stored_by_id.get(entry.allergy_id) if entry.allergy_id is not None else None

            if stored_entry is None:
                if entry.allergy_id is not None:
                    logger.warning(
                        f"Candidate allergy {entry.allergy_id} has no active stored match "
                        f"for patient {patient_id}; saving it as a new allergy"
                    )
                self._add_new(plan, position, self._as_new(entry, patient_id, sentinel))
                continue

            if entry.allergy_id in matched_ids:
                logger.warning(
                    f"Allergy {entry.allergy_id} appears more than once in candidate list "
                    f"for patient {patient_id}; saving the repeat as a new allergy"
                )
                self._add_new(plan, position, self._as_new(entry, patient_id, sentinel))
                continue

            matched_ids.add(entry.allergy_id)
            changes = detector.detect_allergy_changes(stored_entry, entry)

            if not changes:
                logger.debug(f"Allergy {stored_entry.allergy_id} unchanged")
                plan.unchanged.append(stored_entry)
                plan.active.append(stored_entry)
                continue

            new_entry = self._as_new(entry, patient_id, sentinel)
            self._add_new(plan, position, new_entry)
            plan.retirements.append(Retirement(
                allergy=stored_entry,
                reason=self.retire_reason_edited,
                replacement=new_entry,
                changes=tuple(changes)
            ))
            logger.debug(f"Allergy {stored_entry.allergy_id} edited; retiring and replacing")

        for stored_entry in stored:
            if stored_entry.allergy_id in matched_ids:
                continue
            plan.retirements.append(Retirement(
                allergy=stored_entry,
                reason=self.retire_reason_removed
            ))
            logger.debug(f"Allergy {stored_entry.allergy_id} removed; retiring")

        plan.status = derive_allergy_status(len(plan.active), candidate.explicit_status)

        logger.info(
            f"Reconciled allergies for patient {patient_id}: "
            f"{len(plan.unchanged)} unchanged, {len(plan.created)} new, "
            f"{len(plan.retirements)} retired, status {plan.status.value}"
        )
        return plan

    @staticmethod
    def _check_owner(patient_id: str, candidate: 'Allergies') -> None:
        owners = {candidate.patient_id} | {a.patient_id for a in candidate}
        owners.discard(None)
        foreign = sorted(o for o in owners if o != patient_id)
        if foreign:
            raise InvalidStateError(
                f"Candidate allergy list belongs to patient {foreign[0]}, not {patient_id}",
                patient_id=patient_id,
                owner_id=foreign[0]
            )

    @staticmethod
    def _add_new(plan: ReconciliationPlan, position: int, new_entry: Allergy) -> None:
        plan.created.append(new_entry)
        plan.created_by_position[position] = new_entry
        plan.active.append(new_entry)

    @staticmethod
    def _as_new(entry: Allergy, patient_id: str, sentinel: Concept) -> Allergy:
        """Deep copy of entry without identity, with non-coded completion applied."""
        new_entry = entry.copy_as_new()
        new_entry.patient_id = patient_id

        allergen = new_entry.allergen
        if allergen.coded_allergen is None:
            new_entry.allergen = Allergen(
                allergen_type=allergen.allergen_type,
                coded_allergen=sentinel,
                non_coded_allergen=allergen.non_coded_allergen
            )

        for reaction in new_entry.reactions:
            if reaction.reaction is None:
                reaction.reaction = sentinel

        return new_entry
