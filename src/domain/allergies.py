"""Allergy List Container.

Holds a patient's ordered active allergy entries together with the allergy
status tag, and keeps the two consistent: the status is derived from the
entries on every read instead of being trusted as a stored field.

Architecture:
    - Pure in-memory container, never touches persistence
    - Removing an entry does not retire it; retirement is decided by the
      reconciliation engine at save time
"""

from typing import Iterator, Optional

from src.domain.allergy import Allergen, Allergy
from src.domain.enums import AllergyStatus
from src.domain.ports import IndexOutOfRangeError
from src.domain.services.status import derive_allergy_status


class Allergies:
    """Ordered collection of active allergies plus a derived status.

    The caller may record an explicit status choice (UNKNOWN or
    NO_KNOWN_ALLERGIES). It only takes effect while the list is empty; as soon
    as an entry exists the status reads SEE_LIST.

    Parameters:
        allergies: Initial entries (copied into the container)
        patient_id: Owning patient, if known
        explicit_status: Caller's explicit status choice

    Example Usage:
        ```python
        allergies = service.get_allergies("2")
        allergies.remove(0)
        allergies[0].comment = "edited"
        service.set_allergies("2", allergies)
        ```
    """

    def __init__(
        self,
        allergies: Optional[list[Allergy]] = None,
        patient_id: Optional[str] = None,
        explicit_status: Optional[AllergyStatus] = None,
    ):
        self._allergies: list[Allergy] = list(allergies or [])
        self.patient_id = patient_id
        self.explicit_status = explicit_status

    @property
    def allergy_status(self) -> AllergyStatus:
        return derive_allergy_status(len(self._allergies), self.explicit_status)

    def size(self) -> int:
        return len(self._allergies)

    def add(self, allergy: Allergy) -> None:
        self._allergies.append(allergy)

    def remove(self, index: int) -> Allergy:
        """Remove and return the entry at index without retiring it.

        Raises:
            IndexOutOfRangeError: If index does not address an entry
        """
        if not 0 <= index < len(self._allergies):
            raise IndexOutOfRangeError(
                f"Allergy index {index} out of range for list of size {len(self._allergies)}"
            )
        return self._allergies.pop(index)

    def get(self, index: int) -> Allergy:
        if not 0 <= index < len(self._allergies):
            raise IndexOutOfRangeError(
                f"Allergy index {index} out of range for list of size {len(self._allergies)}"
            )
        return self._allergies[index]

    def contains(self, allergy: Allergy) -> bool:
        """Membership check used to see whether a record survived a save.

        Entries carrying an identity are matched by identity; entries without
        one are matched by semantic value.
        """
        if allergy.allergy_id is not None:
            return any(a.allergy_id == allergy.allergy_id for a in self._allergies)
        return any(a.has_same_values(allergy) for a in self._allergies)

    def contains_allergen(self, allergen: Allergen) -> bool:
        return any(a.allergen.is_same_allergen(allergen) for a in self._allergies)

    def get_allergy(self, allergy_id: str) -> Optional[Allergy]:
        for allergy in self._allergies:
            if allergy.allergy_id == allergy_id:
                return allergy
        return None

    def confirm_no_known_allergies(self) -> None:
        """Record that the patient has no known allergies.

        Only meaningful while the list is empty; the status keeps reading
        SEE_LIST while entries exist.
        """
        self.explicit_status = AllergyStatus.NO_KNOWN_ALLERGIES

    def mark_status_unknown(self) -> None:
        self.explicit_status = AllergyStatus.UNKNOWN

    def copy(self) -> "Allergies":
        """Deep copy that callers can mutate without touching this list."""
        return Allergies(
            [a.model_copy(deep=True) for a in self._allergies],
            patient_id=self.patient_id,
            explicit_status=self.explicit_status,
        )

    def __len__(self) -> int:
        return len(self._allergies)

    def __iter__(self) -> Iterator[Allergy]:
        return iter(self._allergies)

    def __getitem__(self, index: int) -> Allergy:
        return self.get(index)

    def __contains__(self, allergy: object) -> bool:
        return isinstance(allergy, Allergy) and self.contains(allergy)

    def __repr__(self) -> str:
        return (
            f"Allergies(patient_id={self.patient_id!r}, "
            f"status={self.allergy_status.value}, size={len(self._allergies)})"
        )
