"""Domain Ports - Abstract Contracts for Allergy Persistence and Vocabulary.

This module defines the Port interfaces (abstract contracts) that Adapters must implement.
Following Hexagonal Architecture, the Domain Core defines what it needs, not how it's provided.

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Storage adapters implement AllergyStoragePort (load, persist, retire, transaction)
    - Vocabulary adapters implement VocabularyPort (concept lookups, sentinel concept)
    - Adapter failures are reported as Result values; the domain service turns
      a failed Result into a raised StorageError so the surrounding transaction
      rolls back
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, Optional, TypeVar, Union

if TYPE_CHECKING:
    from src.domain.allergies import Allergies
    from src.domain.allergy import Allergy, Concept
    from src.domain.enums import AllergyStatus

# Type variable for Result generic
T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error information (only present if success=False)
        error_type: Type of error (StorageError, VocabularyError, etc.)
        error_details: Additional error context (operation, patient_id, etc.)

    Example:
        ```python
        result = storage.load_active_allergies("2")
        if result.is_success():
            allergies = result.value
        else:
            logger.error(result.error, extra={"details": result.error_details})
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result."""
        return cls(success=True, value=value)

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (defaults to the exception class name)
            error_details: Additional context

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {}
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success

    def unwrap(self, operation: str) -> T:
        """Return the value or raise StorageError for a failed result.

        Used inside transactions, where a failed step must abort the whole
        unit of work.
        """
        if self.success:
            return self.value
        raise StorageError(
            self.error or f"{operation} failed",
            operation=operation,
            details=self.error_details
        )


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class AllergyLedgerError(Exception):
    """Base exception for all allergy list errors."""
    pass


class InvalidStateError(AllergyLedgerError):
    """Raised when a candidate list belongs to a different patient.

    This is a caller bug and is never retried.

    Attributes:
        patient_id: The patient the save targeted
        owner_id: The owner implied by the candidate list
    """

    def __init__(self, message: str, patient_id: Optional[str] = None, owner_id: Optional[str] = None):
        super().__init__(message)
        self.patient_id = patient_id
        self.owner_id = owner_id


class IndexOutOfRangeError(AllergyLedgerError, IndexError):
    """Raised when an allergy list is addressed with an invalid index."""
    pass


class StorageError(AllergyLedgerError):
    """Raised when a persistence operation fails.

    Attributes:
        operation: The storage operation that failed (load, persist, retire, ...)
        details: Additional error context
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.operation = operation
        self.details = details or {}


class VocabularyError(AllergyLedgerError):
    """Raised when the controlled vocabulary cannot satisfy a lookup.

    Attributes:
        concept_uuid: The concept that could not be resolved
    """

    def __init__(self, message: str, concept_uuid: Optional[str] = None):
        super().__init__(message)
        self.concept_uuid = concept_uuid


# ============================================================================
# Storage Port
# ============================================================================

class AllergyStoragePort(ABC):
    """Abstract contract for allergy persistence adapters.

    Key Principles:
        - Soft delete: records are retired, never deleted
        - Atomic saves: run_in_transaction() wraps all retirements, inserts
          and status changes of one save; any failure rolls back everything
        - Identity: persist() assigns the stable allergy identity

    Example Usage:
        ```python
        def apply():
            new_id = storage.persist(allergy, position=0).unwrap("persist")
            storage.retire(old, "allergy edited", superseded_by=new_id).unwrap("retire")

        storage.run_in_transaction(apply)
        ```
    """

    @abstractmethod
    def initialize_schema(self) -> Result[None]:
        """Create tables and seed data required by the adapter."""
        pass

    @abstractmethod
    def load_active_allergies(self, patient_id: str) -> Result['Allergies']:
        """Load the active (non-retired) allergy list for a patient.

        Parameters:
            patient_id: Patient identifier

        Returns:
            Result[Allergies]: Entries in stored order, with the stored
            explicit status (status reads SEE_LIST when entries exist)
        """
        pass

    @abstractmethod
    def load_allergy_history(self, patient_id: str) -> Result[list['Allergy']]:
        """Load every allergy version for a patient, retired ones included."""
        pass

    @abstractmethod
    def persist(self, allergy: 'Allergy', position: int) -> Result[str]:
        """Insert a new allergy version and its reactions.

        Parameters:
            allergy: Allergy without identity
            position: Display position within the patient's active list

        Returns:
            Result[str]: Assigned allergy identity
        """
        pass

    @abstractmethod
    def update_position(self, allergy_id: str, position: int) -> Result[None]:
        """Move an unchanged allergy to a new display position."""
        pass

    @abstractmethod
    def retire(
        self,
        allergy: 'Allergy',
        reason: str,
        superseded_by: Optional[str] = None
    ) -> Result[None]:
        """Retire (void) an allergy version.

        Parameters:
            allergy: Stored allergy to retire
            reason: Retirement reason
            superseded_by: Identity of the version replacing it (edits only)
        """
        pass

    @abstractmethod
    def save_allergy_status(self, patient_id: str, status: 'AllergyStatus') -> Result[None]:
        """Persist the patient's allergy status tag."""
        pass

    @abstractmethod
    def run_in_transaction(self, fn: Callable[[], T]) -> T:
        """Run fn inside a single transaction.

        Commits when fn returns; rolls back and re-raises when it raises.
        """
        pass

    def flush_change_logs(self, change_logs: list[dict]) -> Result[int]:
        """Persist buffered change audit entries (optional, adapter-specific).

        Note:
            This default implementation persists nothing.
        """
        return Result.success_result(0)

    def log_audit_event(
        self,
        event_type: str,
        record_id: Optional[str],
        details: Optional[dict] = None
    ) -> Result[str]:
        """Record a coarse-grained audit event (optional, adapter-specific)."""
        return Result.success_result("")

    def close(self) -> None:
        """Release adapter resources."""
        pass


# ============================================================================
# Vocabulary Port
# ============================================================================

class VocabularyPort(ABC):
    """Abstract contract for controlled vocabulary lookups."""

    @abstractmethod
    def get_concept_by_uuid(self, uuid: str) -> Optional['Concept']:
        """Resolve a concept by uuid, or None when it is unknown."""
        pass

    @abstractmethod
    def get_other_non_coded_concept(self) -> 'Concept':
        """Return the reserved "other non-coded" sentinel concept.

        Raises:
            VocabularyError: If the sentinel concept is not configured
        """
        pass

    def is_other_non_coded(self, concept: Optional['Concept']) -> bool:
        """Check whether concept is the "other non-coded" sentinel."""
        if concept is None:
            return False
        return concept.uuid == self.get_other_non_coded_concept().uuid


def describe_failure(result: Result[Any]) -> str:
    """Human-readable summary of a failed result for logs and CLI output."""
    return f"{result.error_type}: {result.error}"
