"""Domain Services.

This package contains domain services that implement business logic
without infrastructure dependencies.
"""

from src.domain.services.status import derive_allergy_status
from src.domain.services.change_detector import ChangeDetector
from src.domain.services.reconciliation import (
    ReconciliationEngine,
    ReconciliationPlan,
    Retirement,
)

__all__ = [
    'derive_allergy_status',
    'ChangeDetector',
    'ReconciliationEngine',
    'ReconciliationPlan',
    'Retirement',
]
