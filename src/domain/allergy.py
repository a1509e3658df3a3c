"""Allergy Domain Models.

This module defines the value records that make up a patient's allergy list:
coded references, allergens, reactions and the allergy entry itself.

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Models are validated on construction and on assignment (Pydantic V2)
    - Identity (allergy_id) is nullable: it is assigned by the persistence
      collaborator and carried through load -> edit -> save round trips
    - Semantic comparison is exposed through comparison_fields() so the
      reconciliation engine and change detector scan the same field set
"""

from datetime import datetime
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.domain.enums import AllergenType

# Reserved vocabulary entry meaning "no coded match; see free text"
OTHER_NON_CODED_UUID = "5622AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"


def _blank_to_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v_stripped = str(v).strip()
    return v_stripped or None


class Concept(BaseModel):
    """Reference to an entry in the controlled vocabulary.

    Two concepts refer to the same vocabulary entry when their uuids match;
    concept_id and name are informational and do not take part in comparison.

    Parameters:
        uuid: Stable vocabulary identifier
        concept_id: Numeric identifier in the source dictionary (optional)
        name: Display name (optional)
    """

    uuid: str = Field(..., min_length=1, description="Vocabulary identifier")
    concept_id: Optional[int] = Field(None, description="Numeric concept identifier")
    name: Optional[str] = Field(None, description="Display name")

    model_config = ConfigDict(frozen=True)

    def same_as(self, other: Optional["Concept"]) -> bool:
        return other is not None and self.uuid == other.uuid


class Allergen(BaseModel):
    """The trigger of an allergy: a drug, food or environmental agent.

    A coded reference is preferred. When no coded match exists the free-text
    description is used and the coded reference is (or will be completed to)
    the "other non-coded" sentinel concept.

    Parameters:
        allergen_type: DRUG, FOOD or ENVIRONMENT
        coded_allergen: Controlled vocabulary reference
        non_coded_allergen: Free-text description
    """

    OTHER_NON_CODED_UUID: ClassVar[str] = OTHER_NON_CODED_UUID

    allergen_type: AllergenType = Field(..., description="Allergen category")
    coded_allergen: Optional[Concept] = Field(None, description="Coded allergen reference")
    non_coded_allergen: Optional[str] = Field(None, description="Free-text allergen description")

    model_config = ConfigDict(validate_assignment=True)

    @classmethod
    def set_other_non_coded_uuid(cls, uuid: str) -> None:
        """Configure the sentinel uuid recognised by all allergens."""
        cls.OTHER_NON_CODED_UUID = uuid

    @field_validator("allergen_type", mode="before")
    @classmethod
    def validate_allergen_type(cls, v) -> AllergenType:
        """Accept enum members or case-insensitive names ("drug", "Food", ...)."""
        if isinstance(v, AllergenType):
            return v
        return AllergenType(str(v).strip().upper())

    @field_validator("non_coded_allergen", mode="before")
    @classmethod
    def normalize_non_coded(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)

    @model_validator(mode="after")
    def validate_completeness(self) -> "Allergen":
        """Reject allergens that cannot resolve to a coded reference.

        The sentinel concept is shorthand for "see free text" and is only
        valid together with a description.
        """
        if self.coded_allergen is None and self.non_coded_allergen is None:
            raise ValueError("Allergen requires a coded reference or a non-coded description")
        if self.is_other_non_coded_reference and self.non_coded_allergen is None:
            raise ValueError("Non-coded allergen requires a description")
        return self

    @property
    def is_other_non_coded_reference(self) -> bool:
        return (
            self.coded_allergen is not None
            and self.coded_allergen.uuid == self.OTHER_NON_CODED_UUID
        )

    @property
    def is_coded(self) -> bool:
        """True when the allergen points at a real vocabulary entry."""
        return self.coded_allergen is not None and not self.is_other_non_coded_reference

    @property
    def resolved_coded_uuid(self) -> str:
        """Coded uuid after non-coded completion is applied."""
        if self.coded_allergen is None:
            return self.OTHER_NON_CODED_UUID
        return self.coded_allergen.uuid

    def set_non_coded(self, description: str, other_non_coded: Optional[Concept] = None) -> None:
        """Switch to a free-text allergen pointing at the sentinel concept.

        Both fields are validated together before either one changes, so a
        blank description leaves the allergen untouched.

        Raises:
            ValidationError: If the description is blank
        """
        sentinel = other_non_coded or Concept(uuid=self.OTHER_NON_CODED_UUID)
        validated = Allergen(
            allergen_type=self.allergen_type,
            coded_allergen=sentinel,
            non_coded_allergen=description
        )
        # Description first: the sentinel alone is never a valid state
        self.non_coded_allergen = validated.non_coded_allergen
        self.coded_allergen = validated.coded_allergen

    def is_same_allergen(self, other: "Allergen") -> bool:
        """Check whether two allergens name the same agent.

        Coded allergens match on vocabulary identity; non-coded ones match on
        their description, ignoring case.
        """
        if self.is_coded or other.is_coded:
            return self.is_coded and other.is_coded and self.coded_allergen.same_as(other.coded_allergen)
        return (self.non_coded_allergen or "").lower() == (other.non_coded_allergen or "").lower()

    def __str__(self) -> str:
        if self.is_coded:
            return self.coded_allergen.name or self.coded_allergen.uuid
        return self.non_coded_allergen or ""


class AllergyReaction(BaseModel):
    """A documented reaction belonging to exactly one allergy.

    Reactions have no identity of their own; they are compared by content.
    """

    reaction: Optional[Concept] = Field(None, description="Coded reaction")
    reaction_non_coded: Optional[str] = Field(None, description="Free-text reaction")

    model_config = ConfigDict(validate_assignment=True)

    @field_validator("reaction_non_coded", mode="before")
    @classmethod
    def normalize_non_coded(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)

    @model_validator(mode="after")
    def validate_reaction_present(self) -> "AllergyReaction":
        if self.reaction is None and self.reaction_non_coded is None:
            raise ValueError("Reaction requires a coded reaction or a non-coded description")
        return self

    def comparison_key(self, other_non_coded_uuid: Optional[str] = None) -> list:
        """Content key used for order-independent reaction comparison.

        A reaction without a coded reference is keyed as if it were already
        completed with the sentinel concept.
        """
        if self.reaction is not None:
            coded = self.reaction.uuid
        else:
            coded = other_non_coded_uuid or Allergen.OTHER_NON_CODED_UUID
        return [coded, self.reaction_non_coded]


class Allergy(BaseModel):
    """One allergy record for a patient.

    Every semantic edit is modelled as {retire old version, create new
    version}; retirement fields are written by the persistence collaborator
    when the reconciliation engine decides a version is superseded.

    Parameters:
        allergy_id: Stable identity assigned at first persistence
        patient_id: Owning patient (reference only)
        allergen: The allergy trigger
        severity: Coded severity (optional)
        comment: Free-text comment (optional)
        reactions: Ordered reactions owned by this allergy
        retired: Whether this version has been retired
        retire_reason: Why this version was retired
        date_retired: When this version was retired
        superseded_by: Identity of the version that replaced this one (lookup only)
        date_created: When this version was first persisted
    """

    allergy_id: Optional[str] = Field(None, description="Stable identity")
    patient_id: Optional[str] = Field(None, description="Owning patient identifier")
    allergen: Allergen = Field(..., description="Allergy trigger")
    severity: Optional[Concept] = Field(None, description="Coded severity")
    comment: Optional[str] = Field(None, description="Free-text comment")
    reactions: list[AllergyReaction] = Field(default_factory=list, description="Reactions")
    retired: bool = Field(False, description="Retirement flag")
    retire_reason: Optional[str] = Field(None, description="Retirement reason")
    date_retired: Optional[datetime] = Field(None, description="Retirement timestamp")
    superseded_by: Optional[str] = Field(None, description="Identity of the replacing version")
    date_created: Optional[datetime] = Field(None, description="Creation timestamp")

    model_config = ConfigDict(validate_assignment=True)

    @field_validator("comment", mode="before")
    @classmethod
    def normalize_comment(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)

    @field_validator("reactions", mode="before")
    @classmethod
    def default_reactions(cls, v) -> list:
        return [] if v is None else v

    def add_reaction(self, reaction: AllergyReaction) -> None:
        self.reactions.append(reaction)

    def comparison_fields(self, other_non_coded_uuid: Optional[str] = None) -> dict[str, Any]:
        """Normalised values of every comparison-relevant field.

        Reactions are reduced to a sorted list of content keys: order does
        not matter, cardinality does.

        Parameters:
            other_non_coded_uuid: Sentinel uuid standing in for missing coded
                references (the configured class-wide sentinel when omitted)
        """
        sentinel_uuid = other_non_coded_uuid or Allergen.OTHER_NON_CODED_UUID
        reaction_keys = sorted(
            (r.comparison_key(sentinel_uuid) for r in self.reactions),
            key=lambda k: (k[0] or "", k[1] or ""),
        )
        coded_allergen = self.allergen.coded_allergen
        return {
            "allergen_type": self.allergen.allergen_type.value,
            "coded_allergen": coded_allergen.uuid if coded_allergen is not None else sentinel_uuid,
            "non_coded_allergen": self.allergen.non_coded_allergen,
            "severity": self.severity.uuid if self.severity is not None else None,
            "comment": self.comment,
            "reactions": reaction_keys,
        }

    def has_same_values(self, other: "Allergy", other_non_coded_uuid: Optional[str] = None) -> bool:
        """Full-field semantic equality, ignoring identity and lifecycle fields."""
        return (
            self.comparison_fields(other_non_coded_uuid)
            == other.comparison_fields(other_non_coded_uuid)
        )

    def copy_as_new(self) -> "Allergy":
        """Deep copy stripped of identity and lifecycle state."""
        return self.model_copy(
            deep=True,
            update={
                "allergy_id": None,
                "retired": False,
                "retire_reason": None,
                "date_retired": None,
                "superseded_by": None,
                "date_created": None,
            },
        )
