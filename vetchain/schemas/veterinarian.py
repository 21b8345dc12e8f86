"""Veterinarian views."""

from pydantic import BaseModel


class VeterinarianView(BaseModel):
    """An address an owner authorized, annotated with its credential status."""
    address: str
    has_valid_credential: bool = False
