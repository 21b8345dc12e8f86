"""
Aggregation Orchestrator

Builds denormalized read views from ledger reads plus content-store
fetches.

FAN-OUT:
Every per-item task is started before any is awaited, then all are
awaited to settlement (structured join). Each item yields an Outcome
(value or error); failed items are dropped, logged, and counted.
There is no concurrency limit: N ids means N concurrent fetches.

DEGRADATION:
Aggregate reads never fail wholesale. A bad content URI, a fetch error,
or a malformed document omits that single item.

Aggregator instances hold no caches, so concurrent calls cannot
contaminate each other.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, Iterable, Optional, TypeVar

from ..config import CONTENT_URI_SCHEME, ContentStoreConfig, cid_from_uri
from ..observability import get_logger, get_metrics
from ..schemas.asset import AssetView
from ..schemas.medical import MedicalRecordView
from ..schemas.veterinarian import VeterinarianView
from .errors import VetchainError

logger = get_logger(__name__)

T = TypeVar("T")


# ============================================================
# Structured join
# ============================================================

@dataclass
class Outcome(Generic[T]):
    """Settled result of one fan-out task."""
    key: Any
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def settle(key: Any, awaitable: Awaitable[T]) -> Outcome[T]:
    """
    Await one task, capturing routine failures as an Outcome.

    Lookup and type errors from a malformed document or a third-party
    store count as a failed item. Anything else, cancellation included,
    propagates.
    """
    try:
        return Outcome(key=key, value=await awaitable)
    except (VetchainError, ValueError, LookupError, TypeError) as e:
        return Outcome(key=key, error=e)


async def settle_all(tasks: Iterable[tuple[Any, Awaitable[T]]]) -> list[Outcome[T]]:
    """Start every task, then wait for all of them to settle."""
    return list(await asyncio.gather(*(settle(key, aw) for key, aw in tasks)))


def _successes(outcomes: list[Outcome[T]], what: str) -> list[T]:
    failed = [o for o in outcomes if not o.ok]
    for outcome in failed:
        logger.warning(
            f"{what} omitted",
            key=outcome.key,
            kind=getattr(getattr(outcome.error, "kind", None), "value", "malformed"),
            error=str(outcome.error),
        )
    if failed:
        get_metrics().record_degraded(len(failed))
    return [o.value for o in outcomes if o.ok]


# ============================================================
# Aggregator
# ============================================================

class Aggregator:
    """
    Read-side orchestration over a LedgerGateway and a ContentStore.

    Usage:
        aggregator = Aggregator(gateway, store)
        views = await aggregator.resolve_owned_assets(owner)
    """

    def __init__(self, gateway, store, content_config: Optional[ContentStoreConfig] = None):
        self._gateway = gateway
        self._store = store
        self._content_config = content_config or ContentStoreConfig()

    @property
    def session(self):
        return self._gateway.session

    # ------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------

    async def list_owned_asset_ids(self, owner: Optional[str] = None) -> list[int]:
        """
        Asset ids held by `owner` (default: the connected account).

        Never fails: returns [] when the owner is absent, the session is
        disconnected, or the ledger cannot be read.
        """
        owner = owner or self.session.account
        if not owner or not self.session.is_connected:
            return []

        balance = await self._gateway.balance_of(owner)
        if balance <= 0:
            return []

        outcomes = await settle_all(
            (index, self._gateway.asset_of_owner_by_index(owner, index, strict=True))
            for index in range(balance)
        )
        return _successes(outcomes, "Owned asset index")

    async def resolve_owned_assets(self, owner: Optional[str] = None) -> list[AssetView]:
        """Owned asset views, sorted by asset id."""
        asset_ids = await self.list_owned_asset_ids(owner)
        views = await self.resolve_asset_views(asset_ids)
        return sorted(views, key=lambda v: v.asset_id)

    # ------------------------------------------------------------
    # Asset views
    # ------------------------------------------------------------

    async def resolve_asset_views(self, asset_ids: Iterable[int]) -> list[AssetView]:
        """
        Resolve each id to a denormalized view.

        The result holds a subset of the input ids. Output order is not
        guaranteed; re-sort by asset_id where order matters.
        """
        outcomes = await settle_all(
            (asset_id, self._resolve_asset_view(asset_id)) for asset_id in asset_ids
        )
        return _successes(outcomes, "Asset view")

    async def _resolve_asset_view(self, asset_id: int) -> AssetView:
        content_uri, health_state = await asyncio.gather(
            self._gateway.content_uri(asset_id, strict=True),
            self._gateway.health_state(asset_id, strict=True),
        )
        document = await self._store.get_json(cid_from_uri(content_uri))

        # Ledger fields win over whatever the document claims
        return AssetView.model_validate({
            **document,
            "asset_id": asset_id,
            "health_state": health_state,
            "content_uri": content_uri,
            "image_url": self._image_url(document.get("image")),
        })

    def _image_url(self, image: Any) -> Optional[str]:
        if not isinstance(image, str) or not image:
            return None
        if image.startswith(CONTENT_URI_SCHEME):
            try:
                return self._content_config.gateway_url_for(cid_from_uri(image))
            except ValueError:
                return None
        if image.startswith(("http://", "https://")):
            return image
        return None

    # ------------------------------------------------------------
    # Medical history
    # ------------------------------------------------------------

    async def resolve_medical_history(self, asset_id: int) -> list[MedicalRecordView]:
        """
        Every record document that resolves, in ledger append order.

        Append order is authoritative; each record's timestamp is only a
        display hint. An asset with no records yields [].
        """
        cids = await self._gateway.medical_history(asset_id)
        if not cids:
            return []

        outcomes = await settle_all(
            (cid, self._resolve_record(cid, position)) for position, cid in enumerate(cids)
        )
        records = _successes(outcomes, "Medical record")
        return sorted(records, key=lambda r: r.position)

    async def _resolve_record(self, cid: str, position: int) -> MedicalRecordView:
        document = await self._store.get_json(cid)
        return MedicalRecordView.model_validate({**document, "cid": cid, "position": position})

    # ------------------------------------------------------------
    # Veterinarians
    # ------------------------------------------------------------

    async def resolve_authorized_veterinarians(self, owner: Optional[str] = None) -> list[VeterinarianView]:
        """Veterinarians `owner` authorized, each with its credential status."""
        owner = owner or self.session.account
        if not owner or not self.session.is_connected:
            return []

        vets = await self._gateway.authorized_veterinarians(owner)
        credentials = await asyncio.gather(
            *(self._gateway.has_valid_credential(vet) for vet in vets)
        )
        return [
            VeterinarianView(address=vet, has_valid_credential=valid)
            for vet, valid in zip(vets, credentials)
        ]
