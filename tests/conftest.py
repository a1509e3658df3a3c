"""Shared fixtures: vocabulary concepts, an in-memory DuckDB store and patient data.

Patient "2" starts with four active allergies whose reaction counts are
2, 2, 0 and 0. Patients "6" and "7" have no allergies.
"""

import pytest

from src.adapters.storage.duckdb_adapter import DuckDBAdapter
from src.domain.allergies import Allergies
from src.domain.allergy import Allergen, Allergy, AllergyReaction, Concept, OTHER_NON_CODED_UUID
from src.domain.enums import AllergenType
from src.domain.services.allergy_service import AllergyService

# Allergens
PENICILLIN = Concept(uuid="71617AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", concept_id=71617, name="Penicillin")
ASPIRIN = Concept(uuid="71073AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", concept_id=71073, name="Aspirin")
CODEINE = Concept(uuid="73667AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", concept_id=73667, name="Codeine")
EGGS = Concept(uuid="162301AAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", concept_id=162301, name="Eggs")
DUST = Concept(uuid="162535AAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", concept_id=162535, name="Dust")

# Reactions
HIVES = Concept(uuid="111061AAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", concept_id=111061, name="Hives")
RASH = Concept(uuid="512AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", concept_id=512, name="Rash")
FEVER = Concept(uuid="140238AAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", concept_id=140238, name="Fever")
COUGH = Concept(uuid="143264AAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", concept_id=143264, name="Cough")

# Severities
MILD = Concept(uuid="1498AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", concept_id=1498, name="Mild")
MODERATE = Concept(uuid="1499AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", concept_id=1499, name="Moderate")
SEVERE = Concept(uuid="1500AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA", concept_id=1500, name="Severe")

VOCABULARY = [
    PENICILLIN, ASPIRIN, CODEINE, EGGS, DUST,
    HIVES, RASH, FEVER, COUGH,
    MILD, MODERATE, SEVERE,
]


def patient_two_allergies() -> list[Allergy]:
    """Initial allergy list of patient "2" (reaction counts 2, 2, 0, 0)."""
    return [
        Allergy(
            patient_id="2",
            allergen=Allergen(allergen_type=AllergenType.DRUG, coded_allergen=PENICILLIN),
            severity=SEVERE,
            comment="some comment 1",
            reactions=[AllergyReaction(reaction=HIVES), AllergyReaction(reaction=RASH)],
        ),
        Allergy(
            patient_id="2",
            allergen=Allergen(allergen_type=AllergenType.DRUG, coded_allergen=ASPIRIN),
            severity=MILD,
            comment="some comment 2",
            reactions=[AllergyReaction(reaction=FEVER), AllergyReaction(reaction_non_coded="Headache")],
        ),
        Allergy(
            patient_id="2",
            allergen=Allergen(allergen_type=AllergenType.FOOD, coded_allergen=EGGS),
            severity=MODERATE,
        ),
        Allergy(
            patient_id="2",
            allergen=Allergen(allergen_type=AllergenType.ENVIRONMENT, non_coded_allergen="Cat dander"),
        ),
    ]


@pytest.fixture(autouse=True)
def reset_other_non_coded_uuid():
    """Restore the sentinel uuid after tests that reconfigure it."""
    yield
    Allergen.set_other_non_coded_uuid(OTHER_NON_CODED_UUID)


@pytest.fixture
def adapter():
    """Initialized in-memory DuckDB adapter with the test vocabulary."""
    adapter = DuckDBAdapter(db_path=":memory:")
    result = adapter.initialize_schema()
    assert result.is_success()
    for concept in VOCABULARY:
        assert adapter.register_concept(concept).is_success()
    yield adapter
    adapter.close()


@pytest.fixture
def service(adapter):
    """AllergyService backed by the in-memory adapter."""
    return AllergyService(storage=adapter, vocabulary=adapter, changed_by="test-clinician")


@pytest.fixture
def seeded_service(service):
    """Service whose store holds the initial list of patient "2"."""
    service.set_allergies("2", Allergies(patient_two_allergies(), patient_id="2"))
    return service
