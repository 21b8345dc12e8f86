"""
Canonical Asset Schema

An Asset is an animal identity anchored on the ledger.
The ledger holds the minimum (owner, content URI, health state).
Everything descriptive lives in the off-chain metadata document.
"""

from enum import IntEnum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class HealthState(IntEnum):
    """
    Current health of an animal, as stored on the ledger (uint8).

    Overwritten on every medical-record append. Not a log.
    """
    SANO = 0        # healthy
    ENFERMO = 1     # sick
    FALLECIDO = 2   # deceased

    @classmethod
    def from_raw(cls, value: Any) -> "HealthState":
        """
        Normalize a raw ledger value.

        Accepts ints, numeric strings, and existing members.

        Raises:
            ValueError: if the value is not one of 0/1/2
        """
        if isinstance(value, HealthState):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Not a health state: {value!r}")
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise ValueError(f"Not a health state: {value!r}")

    @property
    def label(self) -> str:
        return {
            HealthState.SANO: "Healthy",
            HealthState.ENFERMO: "Sick",
            HealthState.FALLECIDO: "Deceased",
        }[self]


# Trait names as they appear in pinned metadata documents
TRAIT_SPECIES = "Especie"
TRAIT_BREED = "Raza"
TRAIT_BIRTH_DATE = "Fecha de Nacimiento"
TRAIT_COLOR = "Color"
TRAIT_FEATURES = "Características"


class Attribute(BaseModel):
    """One trait/value pair of a metadata document."""
    trait_type: str
    value: Union[str, int, float, bool, None] = None


class AssetProperties(BaseModel):
    """Embedded properties block of a metadata document."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    chip_id: Union[int, str, None] = Field(default=None, alias="chipId")
    owner_address: Optional[str] = Field(default=None, alias="duenoAddress")


class AssetMetadata(BaseModel):
    """
    Off-chain metadata document referenced by an asset's content URI.

    Immutable once pinned. Follows the common NFT metadata layout.
    Unknown keys are kept so that nothing an older writer pinned is lost.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = ""
    description: str = ""
    image: Optional[str] = None
    attributes: list[Attribute] = Field(default_factory=list)
    properties: Optional[AssetProperties] = None


class AnimalProfile(BaseModel):
    """
    What a veterinarian enters when registering an animal.

    Becomes the metadata document's name, description and attributes.
    """
    name: str = Field(..., min_length=1, description="Animal name")
    species: str = Field(..., min_length=1, description="Species code, e.g. CANINA")
    breed: str = Field(default="", description="Breed")
    birth_date: str = Field(default="", description="Birth date (YYYY-MM-DD)")
    color: str = Field(default="", description="Color / physical description")
    features: str = Field(default="", description="Scars, marks, other features")

    @property
    def description(self) -> str:
        return f"{self.species} - {self.breed}"

    def to_attributes(self) -> list[Attribute]:
        return [
            Attribute(trait_type=TRAIT_SPECIES, value=self.species),
            Attribute(trait_type=TRAIT_BREED, value=self.breed),
            Attribute(trait_type=TRAIT_BIRTH_DATE, value=self.birth_date),
            Attribute(trait_type=TRAIT_COLOR, value=self.color),
            Attribute(trait_type=TRAIT_FEATURES, value=self.features),
        ]


class AssetView(BaseModel):
    """
    Denormalized view of one asset: ledger fields merged into its document.

    Ledger fields win over anything the document claims
    (the document's embedded chipId is informational only).
    """
    model_config = ConfigDict(extra="allow")

    asset_id: int
    health_state: HealthState
    content_uri: str
    name: str = ""
    description: str = ""
    image: Optional[str] = None
    image_url: Optional[str] = None
    attributes: list[Attribute] = Field(default_factory=list)
    properties: Optional[AssetProperties] = None

    @property
    def traits(self) -> dict[str, Any]:
        """Attributes as a trait → value mapping."""
        return {a.trait_type: a.value for a in self.attributes}

    @property
    def health_label(self) -> str:
        return self.health_state.label
