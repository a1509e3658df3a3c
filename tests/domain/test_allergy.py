"""Unit tests for the allergy value models."""

import pytest
from pydantic import ValidationError

from src.domain.allergy import Allergen, Allergy, AllergyReaction, Concept, OTHER_NON_CODED_UUID
from src.domain.enums import AllergenType

from conftest import ASPIRIN, FEVER, HIVES, MILD, PENICILLIN, RASH, SEVERE


def make_allergy(**overrides) -> Allergy:
    values = {
        "allergy_id": "a-1",
        "patient_id": "2",
        "allergen": Allergen(allergen_type=AllergenType.DRUG, coded_allergen=PENICILLIN),
        "severity": SEVERE,
        "comment": "some comment",
        "reactions": [AllergyReaction(reaction=HIVES), AllergyReaction(reaction=RASH)],
    }
    values.update(overrides)
    return Allergy(**values)


class TestConcept:
    """Test suite for Concept references."""

    def test_same_as_compares_uuid_only(self):
        """Concepts with the same uuid are the same reference regardless of name."""
        assert PENICILLIN.same_as(Concept(uuid=PENICILLIN.uuid, name="Penicillin G"))
        assert not PENICILLIN.same_as(ASPIRIN)
        assert not PENICILLIN.same_as(None)

    def test_uuid_required(self):
        with pytest.raises(ValidationError):
            Concept(uuid="")

    def test_frozen(self):
        with pytest.raises(ValidationError):
            PENICILLIN.name = "changed"


class TestAllergen:
    """Test suite for Allergen validation and helpers."""

    def test_allergen_type_case_insensitive(self):
        allergen = Allergen(allergen_type="food", non_coded_allergen="Peanuts")
        assert allergen.allergen_type == AllergenType.FOOD

    def test_invalid_allergen_type(self):
        with pytest.raises(ValidationError):
            Allergen(allergen_type="MINERAL", coded_allergen=PENICILLIN)

    def test_requires_coded_or_non_coded(self):
        with pytest.raises(ValidationError):
            Allergen(allergen_type=AllergenType.DRUG)

    def test_blank_non_coded_is_none(self):
        with pytest.raises(ValidationError):
            Allergen(allergen_type=AllergenType.DRUG, non_coded_allergen="   ")

    def test_sentinel_without_text_is_invalid(self):
        """The "other non-coded" concept is only valid together with a description."""
        with pytest.raises(ValidationError):
            Allergen(allergen_type=AllergenType.DRUG, coded_allergen=Concept(uuid=OTHER_NON_CODED_UUID))

    def test_sentinel_with_text(self):
        allergen = Allergen(
            allergen_type=AllergenType.DRUG,
            coded_allergen=Concept(uuid=OTHER_NON_CODED_UUID),
            non_coded_allergen="Some drug"
        )
        assert allergen.is_other_non_coded_reference
        assert not allergen.is_coded
        assert str(allergen) == "Some drug"

    def test_coded_allergen(self):
        allergen = Allergen(allergen_type=AllergenType.DRUG, coded_allergen=PENICILLIN)
        assert allergen.is_coded
        assert allergen.resolved_coded_uuid == PENICILLIN.uuid
        assert str(allergen) == "Penicillin"

    def test_resolved_coded_uuid_defaults_to_sentinel(self):
        allergen = Allergen(allergen_type=AllergenType.FOOD, non_coded_allergen="Peanuts")
        assert allergen.resolved_coded_uuid == OTHER_NON_CODED_UUID

    def test_configurable_sentinel(self):
        """A reconfigured sentinel uuid is recognised by allergens."""
        Allergen.set_other_non_coded_uuid("CUSTOM-OTHER")
        allergen = Allergen(
            allergen_type=AllergenType.DRUG,
            coded_allergen=Concept(uuid="CUSTOM-OTHER"),
            non_coded_allergen="Some drug"
        )
        assert allergen.is_other_non_coded_reference
        assert Allergen(
            allergen_type=AllergenType.DRUG,
            coded_allergen=Concept(uuid=OTHER_NON_CODED_UUID)
        ).is_coded

    def test_set_non_coded(self):
        allergen = Allergen(allergen_type=AllergenType.DRUG, coded_allergen=PENICILLIN)

        allergen.set_non_coded("Some drug")

        assert allergen.coded_allergen.uuid == OTHER_NON_CODED_UUID
        assert allergen.non_coded_allergen == "Some drug"
        assert allergen.is_other_non_coded_reference

    def test_set_non_coded_with_vocabulary_sentinel(self):
        sentinel = Concept(uuid=OTHER_NON_CODED_UUID, name="Other non-coded")
        allergen = Allergen(allergen_type=AllergenType.FOOD, non_coded_allergen="Peanuts")

        allergen.set_non_coded("Tree nuts", other_non_coded=sentinel)

        assert allergen.coded_allergen == sentinel
        assert allergen.non_coded_allergen == "Tree nuts"

    def test_set_non_coded_blank_leaves_allergen_unchanged(self):
        allergen = Allergen(allergen_type=AllergenType.DRUG, coded_allergen=PENICILLIN)

        with pytest.raises(ValidationError):
            allergen.set_non_coded("   ")

        assert allergen.coded_allergen == PENICILLIN
        assert allergen.non_coded_allergen is None

    def test_is_same_allergen(self):
        coded = Allergen(allergen_type=AllergenType.DRUG, coded_allergen=PENICILLIN)
        text = Allergen(allergen_type=AllergenType.DRUG, non_coded_allergen="Cat dander")

        assert coded.is_same_allergen(Allergen(allergen_type=AllergenType.DRUG, coded_allergen=PENICILLIN))
        assert not coded.is_same_allergen(text)
        assert text.is_same_allergen(Allergen(allergen_type=AllergenType.ENVIRONMENT, non_coded_allergen="cat DANDER"))


class TestAllergyReaction:
    """Test suite for AllergyReaction."""

    def test_requires_reaction(self):
        with pytest.raises(ValidationError):
            AllergyReaction()

    def test_comparison_key_uses_sentinel_for_non_coded(self):
        reaction = AllergyReaction(reaction_non_coded="Headache")
        assert reaction.comparison_key() == [OTHER_NON_CODED_UUID, "Headache"]

    def test_comparison_key_with_given_sentinel(self):
        reaction = AllergyReaction(reaction_non_coded="Headache")
        assert reaction.comparison_key("CUSTOM-OTHER") == ["CUSTOM-OTHER", "Headache"]

    def test_comparison_key_coded(self):
        assert AllergyReaction(reaction=FEVER).comparison_key() == [FEVER.uuid, None]


class TestAllergy:
    """Test suite for Allergy comparison and copying."""

    def test_reactions_default_empty(self):
        allergy = make_allergy(reactions=None)
        assert allergy.reactions == []

    def test_add_reaction(self):
        allergy = make_allergy(reactions=[])
        allergy.add_reaction(AllergyReaction(reaction=FEVER))
        assert len(allergy.reactions) == 1

    def test_same_values_ignores_identity_and_lifecycle(self):
        other = make_allergy(allergy_id="a-2", patient_id="6", retired=True, retire_reason="x")
        assert make_allergy().has_same_values(other)

    def test_reaction_order_does_not_matter(self):
        reordered = make_allergy(reactions=[AllergyReaction(reaction=RASH), AllergyReaction(reaction=HIVES)])
        assert make_allergy().has_same_values(reordered)

    def test_reaction_cardinality_matters(self):
        duplicated = make_allergy(reactions=[
            AllergyReaction(reaction=HIVES),
            AllergyReaction(reaction=HIVES),
            AllergyReaction(reaction=RASH),
        ])
        assert not make_allergy().has_same_values(duplicated)

    def test_zero_reactions_equal(self):
        assert make_allergy(reactions=[]).has_same_values(make_allergy(reactions=None))

    @pytest.mark.parametrize("overrides", [
        {"comment": "another comment"},
        {"severity": MILD},
        {"severity": None},
        {"allergen": Allergen(allergen_type=AllergenType.DRUG, coded_allergen=ASPIRIN)},
        {"allergen": Allergen(allergen_type=AllergenType.FOOD, coded_allergen=PENICILLIN)},
        {"reactions": [AllergyReaction(reaction=HIVES)]},
    ])
    def test_field_changes_detected(self, overrides):
        assert not make_allergy().has_same_values(make_allergy(**overrides))

    def test_blank_comment_equals_missing(self):
        assert make_allergy(comment=" ").has_same_values(make_allergy(comment=None))

    def test_null_coded_allergen_equals_sentinel(self):
        """A free-text allergen compares equal to its completed form."""
        plain = make_allergy(allergen=Allergen(allergen_type=AllergenType.DRUG, non_coded_allergen="Some drug"))
        completed = make_allergy(allergen=Allergen(
            allergen_type=AllergenType.DRUG,
            coded_allergen=Concept(uuid=OTHER_NON_CODED_UUID),
            non_coded_allergen="Some drug"
        ))
        assert plain.has_same_values(completed)

    def test_comparison_uses_given_sentinel(self):
        """Missing coded references compare against the sentinel passed in."""
        plain = make_allergy(
            allergen=Allergen(allergen_type=AllergenType.DRUG, non_coded_allergen="Some drug"),
            reactions=[AllergyReaction(reaction_non_coded="Headache")]
        )
        completed = make_allergy(
            allergen=Allergen(
                allergen_type=AllergenType.DRUG,
                coded_allergen=Concept(uuid="CUSTOM-OTHER"),
                non_coded_allergen="Some drug"
            ),
            reactions=[AllergyReaction(reaction=Concept(uuid="CUSTOM-OTHER"), reaction_non_coded="Headache")]
        )

        assert not plain.has_same_values(completed)
        assert plain.has_same_values(completed, other_non_coded_uuid="CUSTOM-OTHER")
        assert plain.comparison_fields("CUSTOM-OTHER")["coded_allergen"] == "CUSTOM-OTHER"

    def test_copy_as_new(self):
        original = make_allergy(retired=True, retire_reason="edited", superseded_by="a-9")
        copy = original.copy_as_new()

        assert copy.allergy_id is None
        assert copy.retired is False
        assert copy.retire_reason is None
        assert copy.superseded_by is None
        assert copy.has_same_values(original)

        copy.reactions.pop()
        assert len(original.reactions) == 2

    def test_validate_assignment(self):
        allergy = make_allergy()
        with pytest.raises(ValidationError):
            allergy.allergen = None
