"""Allergy status derivation.

The status tag is never trusted at face value: whenever active entries exist
it reads SEE_LIST. Only an empty list lets the caller's explicit choice
between UNKNOWN and NO_KNOWN_ALLERGIES through.
"""

from typing import Optional

from src.domain.enums import AllergyStatus


def derive_allergy_status(
    active_count: int,
    requested: Optional[AllergyStatus] = None
) -> AllergyStatus:
    """Resolve the effective status for a list with active_count entries.

    Parameters:
        active_count: Number of active (non-retired) allergies
        requested: Status explicitly chosen by the caller, if any

    Returns:
        AllergyStatus: SEE_LIST when active_count > 0, else the requested
        status, defaulting to UNKNOWN
    """
    if active_count > 0:
        return AllergyStatus.SEE_LIST
    if requested is None or requested == AllergyStatus.SEE_LIST:
        # SEE_LIST cannot be set independently of entries
        return AllergyStatus.UNKNOWN
    return requested
