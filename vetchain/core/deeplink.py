"""
Authorization deep links.

An owner's signer app scans a QR code that encodes a pre-filled call to
authorizeVeterinarian on the medical ledger:

    ethereum:{medicalLedger}@{chainIdHex}/authorizeVeterinarian?param-0={vet}
"""

import io
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl, urlencode

import qrcode

from ..chain.address import is_address
from ..config import Settings
from .errors import ValidationError

AUTHORIZE_FUNCTION = "authorizeVeterinarian"

_LINK_PATTERN = re.compile(
    r"ethereum:(?P<contract>0x[0-9a-fA-F]{40})"
    r"@(?P<chain>0x[0-9a-fA-F]+|\d+)"
    r"/(?P<function>[A-Za-z_][A-Za-z0-9_]*)"
    r"(?:\?(?P<query>.*))?"
)
_PARAM_KEY = re.compile(r"param-(\d+)")


@dataclass(frozen=True)
class AuthorizationLink:
    contract: str
    chain_id: int
    function: str
    params: tuple[str, ...] = ()

    def to_uri(self) -> str:
        query = urlencode([(f"param-{i}", p) for i, p in enumerate(self.params)], safe="")
        uri = f"ethereum:{self.contract}@{hex(self.chain_id)}/{self.function}"
        return f"{uri}?{query}" if query else uri


def build_authorization_link(vet_address: str, settings: Optional[Settings] = None) -> str:
    """
    Deep link that asks the scanning owner to authorize `vet_address`.

    Raises:
        ValidationError: if the address is malformed
    """
    if not is_address(vet_address):
        raise ValidationError(f"Invalid veterinarian address: {vet_address!r}")
    settings = settings or Settings()
    return AuthorizationLink(
        contract=settings.contracts.medical_ledger,
        chain_id=settings.network.chain_id,
        function=AUTHORIZE_FUNCTION,
        params=(vet_address,),
    ).to_uri()


def parse_authorization_link(uri: str) -> AuthorizationLink:
    """
    Parse a deep link back into its parts.

    Raises:
        ValidationError: if the URI is not a well-formed deep link
    """
    match = _LINK_PATTERN.fullmatch(uri or "")
    if match is None:
        raise ValidationError(f"Not a ledger deep link: {uri!r}")

    chain = match.group("chain")
    chain_id = int(chain, 16) if chain.startswith("0x") else int(chain)

    indexed = []
    for key, value in parse_qsl(match.group("query") or ""):
        param = _PARAM_KEY.fullmatch(key)
        if param is None:
            raise ValidationError(f"Unexpected deep link parameter: {key}")
        indexed.append((int(param.group(1)), value))
    indexed.sort()
    if [i for i, _ in indexed] != list(range(len(indexed))):
        raise ValidationError("Deep link parameters are not contiguous")

    return AuthorizationLink(
        contract=match.group("contract"),
        chain_id=chain_id,
        function=match.group("function"),
        params=tuple(v for _, v in indexed),
    )


def render_qr_png(uri: str) -> bytes:
    """Render `uri` as a PNG QR code."""
    img = qrcode.make(uri)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
