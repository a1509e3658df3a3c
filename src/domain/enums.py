"""Domain Enumerations.

Controlled value sets used by the allergy domain models.
"""

from enum import Enum


class AllergenType(str, Enum):
    """Category of the agent that triggers an allergic reaction."""
    DRUG = "DRUG"
    FOOD = "FOOD"
    ENVIRONMENT = "ENVIRONMENT"


class AllergyStatus(str, Enum):
    """Patient-level summary of allergy documentation completeness.

    - UNKNOWN: no entries and no explicit confirmation recorded
    - SEE_LIST: one or more active entries exist
    - NO_KNOWN_ALLERGIES: absence of allergies explicitly confirmed
    """
    UNKNOWN = "UNKNOWN"
    SEE_LIST = "SEE_LIST"
    NO_KNOWN_ALLERGIES = "NO_KNOWN_ALLERGIES"


class ChangeType(str, Enum):
    """Kind of change recorded in the change audit trail."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    RETIRE = "RETIRE"
