# Canonical Schemas for the veterinary asset ledger
# Off-chain documents and the denormalized views built from them.

from .asset import (
    AnimalProfile,
    AssetMetadata,
    AssetProperties,
    AssetView,
    Attribute,
    HealthState,
)
from .medical import MedicalRecord, MedicalRecordInput, MedicalRecordView
from .veterinarian import VeterinarianView

__all__ = [
    # Asset
    "AnimalProfile",
    "AssetMetadata",
    "AssetProperties",
    "AssetView",
    "Attribute",
    "HealthState",
    # Medical
    "MedicalRecord",
    "MedicalRecordInput",
    "MedicalRecordView",
    # Veterinarian
    "VeterinarianView",
]
