"""
Shared Runtime

Wires one Session, LedgerGateway, Aggregator and MutationCoordinator over
a ledger backend, a signer provider and a content store.

The ledger follows VETCHAIN_LEDGER: the in-memory emulation with a
service account as signer (default), or a JSON-RPC node (rpc). The
content store follows VETCHAIN_CONTENT_STORE (memory or http).

SEEDING:
- Auto-seeding is DISABLED by default
- Set VETCHAIN_ENABLE_AUTO_SEED=1 to register demo animals at startup
- Seeding only happens if the demo owner holds no assets yet
- Seeding needs the in-memory ledger; it is skipped against a node
"""

import os
from dataclasses import dataclass
from typing import Optional

from .chain.backend import LedgerBackend
from .chain.memory import InMemoryLedger
from .chain.provider import InMemoryProvider, SignerProvider
from .chain.rpc import create_rpc_backend
from .config import LedgerDriver, Settings, get_ledger_driver
from .core.aggregator import Aggregator
from .core.deeplink import render_qr_png
from .core.gateway import LedgerGateway
from .core.mutations import MutationCoordinator
from .core.session import Session
from .observability import get_logger
from .schemas.asset import AnimalProfile, HealthState
from .schemas.medical import MedicalRecordInput
from .storage import ContentStore, InMemoryContentStore

logger = get_logger(__name__)

# Development identities for the in-memory ledger
SERVICE_ACCOUNT = "0x" + "a1" * 20
DEMO_OWNER = "0x" + "b2" * 20

DEMO_ANIMALS = [
    (9410001, AnimalProfile(name="Luna", species="CANINA", breed="Labrador",
                            birth_date="2021-03-14", color="Dorado", features="Mancha blanca en el pecho")),
    (9410002, AnimalProfile(name="Michi", species="FELINA", breed="Siames",
                            birth_date="2022-07-01", color="Crema", features="Ojos azules")),
]


@dataclass
class Runtime:
    settings: Settings
    ledger: LedgerBackend
    provider: SignerProvider
    session: Session
    gateway: LedgerGateway
    aggregator: Aggregator
    coordinator: MutationCoordinator
    store: ContentStore

    async def aclose(self) -> None:
        self.session.close()
        await self.store.aclose()
        await self.ledger.aclose()


def create_runtime(
    settings: Optional[Settings] = None,
    store: Optional[ContentStore] = None,
    account: str = SERVICE_ACCOUNT,
) -> Runtime:
    """
    Build a runtime over the configured ledger driver.

    On the in-memory ledger the service account holds a veterinary
    credential and the identity manager role, so it can enable owners
    and register animals. Against a node, roles are whatever the
    deployed contracts grant the signing account.
    """
    settings = settings or Settings.from_env()
    store = store or InMemoryContentStore()

    if get_ledger_driver() == LedgerDriver.RPC:
        ledger, provider = create_rpc_backend(settings)
    else:
        ledger = InMemoryLedger()
        ledger.grant_credential(account)
        ledger.add_identity_manager(account)
        provider = InMemoryProvider(accounts=[account], chain_id=settings.network.chain_id)

    session = Session(provider, ledger, settings.network)
    gateway = LedgerGateway(session)

    return Runtime(
        settings=settings,
        ledger=ledger,
        provider=provider,
        session=session,
        gateway=gateway,
        aggregator=Aggregator(gateway, store, settings.content_store),
        coordinator=MutationCoordinator(
            session, gateway, store, verify_credentials=settings.verify_credentials
        ),
        store=store,
    )


def auto_seed_enabled() -> bool:
    return os.environ.get("VETCHAIN_ENABLE_AUTO_SEED", "").lower() in ("1", "true", "yes")


async def seed_demo_data(runtime: Runtime, owner: str = DEMO_OWNER) -> list[int]:
    """
    Register the demo animals for `owner` and append one follow-up record.

    Returns the asset ids that were minted (empty if already seeded).
    """
    if not isinstance(runtime.ledger, InMemoryLedger) or not isinstance(runtime.provider, InMemoryProvider):
        logger.info("Demo seeding skipped, ledger is not the in-memory emulation")
        return []

    if not runtime.session.is_connected:
        await runtime.session.connect()
    if await runtime.gateway.balance_of(owner) > 0:
        logger.info("Demo data already present", owner=owner)
        return []

    await runtime.coordinator.set_owner_enabled(owner, True)

    minted = []
    for asset_id, profile in DEMO_ANIMALS:
        image = render_qr_png(f"{profile.name}:{asset_id}")
        await runtime.coordinator.mint(asset_id, profile, image, owner=owner)
        minted.append(asset_id)

    # The owner authorizes the service vet from their own wallet
    service_account = runtime.session.account
    runtime.provider.switch_account(owner)
    try:
        await runtime.coordinator.authorize_veterinarian(service_account)
    finally:
        runtime.provider.switch_account(service_account)

    await runtime.coordinator.add_medical_record(MedicalRecordInput(
        asset_id=DEMO_ANIMALS[0][0],
        diagnosis="Otitis externa",
        treatment="Limpieza y gotas óticas",
        medications="Otomax, Meloxicam",
        notes="Control en 10 días",
        health_state=HealthState.ENFERMO,
    ))

    logger.info("Demo data seeded", owner=owner, assets=len(minted))
    return minted
