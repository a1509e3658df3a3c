"""Domain layer for the allergy ledger.

This module contains the allergy models, the allergy list container and the
reconciliation logic. All domain models are pure Python with no external
dependencies beyond Pydantic.
"""

from .enums import AllergenType, AllergyStatus
from .allergy import (
    Concept,
    Allergen,
    AllergyReaction,
    Allergy,
)
from .allergies import Allergies

__all__ = [
    "AllergenType",
    "AllergyStatus",
    "Concept",
    "Allergen",
    "AllergyReaction",
    "Allergy",
    "Allergies",
]
