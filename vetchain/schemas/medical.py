"""
Canonical Medical Record Schema

Each record is one append to an asset's history.
The ledger stores only the CID (append-only list) and the current health
state; the record itself is an immutable off-chain document.

Wire keys are the ones existing pinned records use (chipId, fecha,
diagnostico, ...). Python code uses the English field names.
"""

from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .asset import HealthState


def _split_medications(value: Any) -> Any:
    """Accept "a, b, c" as well as a list."""
    if value is None:
        return []
    if isinstance(value, str):
        return [m.strip() for m in value.split(",") if m.strip()]
    return value


class MedicalRecord(BaseModel):
    """
    Medical record document as authored by a veterinarian.

    The timestamp is client-generated at authorship time, NOT ledger time.
    It is a display hint; append order on the ledger is authoritative.
    """
    model_config = ConfigDict(populate_by_name=True)

    asset_id: int = Field(..., gt=0, alias="chipId")
    timestamp: str = Field(..., alias="fecha")
    diagnosis: str = Field(..., alias="diagnostico")
    treatment: str = Field(default="", alias="tratamiento")
    medications: list[str] = Field(default_factory=list, alias="medicamentos")
    notes: str = Field(default="", alias="notas")
    author_address: str = Field(..., alias="veterinario")

    @field_validator("medications", mode="before")
    @classmethod
    def split_medications(cls, v: Any) -> Any:
        return _split_medications(v)

    @staticmethod
    def now_timestamp() -> str:
        """ISO-8601 UTC with milliseconds."""
        now = datetime.now(timezone.utc)
        return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"

    def to_document(self) -> dict:
        """The JSON document pinned to the content store."""
        return self.model_dump(mode="json", by_alias=True)


class MedicalRecordInput(BaseModel):
    """What a veterinarian fills in; the coordinator adds the rest."""
    asset_id: int = Field(..., gt=0)
    diagnosis: str = Field(..., min_length=1)
    treatment: str = ""
    medications: list[str] = Field(default_factory=list)
    notes: str = ""
    health_state: HealthState = HealthState.SANO

    @field_validator("medications", mode="before")
    @classmethod
    def split_medications(cls, v: Any) -> Any:
        return _split_medications(v)


class MedicalRecordView(BaseModel):
    """
    One resolved history entry: the fetched document plus its CID.

    Every document field is optional. Records pinned by older writers may
    lack any of them, and a partial record is still worth showing.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    cid: str
    position: int = Field(..., ge=0, description="Index in the ledger's append-only list")
    asset_id: Union[int, str, None] = Field(default=None, alias="chipId")
    timestamp: Optional[str] = Field(default=None, alias="fecha")
    diagnosis: Optional[str] = Field(default=None, alias="diagnostico")
    treatment: Optional[str] = Field(default=None, alias="tratamiento")
    medications: list[str] = Field(default_factory=list, alias="medicamentos")
    notes: Optional[str] = Field(default=None, alias="notas")
    author_address: Optional[str] = Field(default=None, alias="veterinario")

    @field_validator("medications", mode="before")
    @classmethod
    def split_medications(cls, v: Any) -> Any:
        return _split_medications(v)
