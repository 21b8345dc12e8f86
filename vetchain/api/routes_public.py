"""
Public API Routes

Read-only endpoints over the aggregation orchestrator, plus the
authorization deep link (as text and as a QR code) an owner scans to
authorize a veterinarian.

Reads degrade instead of failing: an asset whose document cannot be
fetched is simply missing from the list.
"""

from fastapi import APIRouter, Path, Request
from fastapi.responses import Response
from pydantic import BaseModel

from ..chain.address import is_address
from ..core.deeplink import build_authorization_link, parse_authorization_link, render_qr_png
from ..core.errors import ValidationError
from ..schemas.asset import AssetView
from ..schemas.medical import MedicalRecordView
from ..schemas.veterinarian import VeterinarianView


router = APIRouter(prefix="/api", tags=["Public API"])

# QR codes only change if the deployment's contract or network changes
CACHE_CONTROL_QR = "public, max-age=300"


class AuthorizationLinkResponse(BaseModel):
    uri: str
    contract: str
    chain_id: int
    function: str
    veterinarian: str


def get_runtime(request: Request):
    """Get the shared runtime from app state."""
    return request.app.state.runtime


def _require_address(address: str) -> str:
    if not is_address(address):
        raise ValidationError(f"Invalid address: {address!r}")
    return address


@router.get("/owners/{address}/assets", response_model=list[AssetView])
async def list_owner_assets(request: Request, address: str):
    """Every asset `address` holds that resolves, sorted by asset id."""
    aggregator = get_runtime(request).aggregator
    return await aggregator.resolve_owned_assets(_require_address(address))


@router.get("/assets/{asset_id}/history", response_model=list[MedicalRecordView])
async def get_asset_history(request: Request, asset_id: int = Path(..., gt=0)):
    """Medical history in ledger append order."""
    return await get_runtime(request).aggregator.resolve_medical_history(asset_id)


@router.get("/owners/{address}/veterinarians", response_model=list[VeterinarianView])
async def list_owner_veterinarians(request: Request, address: str):
    aggregator = get_runtime(request).aggregator
    return await aggregator.resolve_authorized_veterinarians(_require_address(address))


@router.get("/veterinarians/{address}/authorization-link", response_model=AuthorizationLinkResponse)
async def get_authorization_link(request: Request, address: str):
    uri = build_authorization_link(address, get_runtime(request).settings)
    link = parse_authorization_link(uri)
    return AuthorizationLinkResponse(
        uri=uri,
        contract=link.contract,
        chain_id=link.chain_id,
        function=link.function,
        veterinarian=address,
    )


@router.get("/veterinarians/{address}/authorization-qr.png")
async def get_authorization_qr(request: Request, address: str):
    uri = build_authorization_link(address, get_runtime(request).settings)
    return Response(
        content=render_qr_png(uri),
        media_type="image/png",
        headers={"Cache-Control": CACHE_CONTROL_QR},
    )
