"""
Shared fixtures.

Every test gets its own ledger, wallet and store, so sessions never share
state across tests.
"""

import pytest

from vetchain.chain import (
    ContractName,
    ExecutionReverted,
    InMemoryLedger,
    InMemoryProvider,
    LedgerBackend,
    TransportFailure,
)
from vetchain.config import SEPOLIA_CHAIN_ID, ContentStoreConfig
from vetchain.core import Aggregator, LedgerGateway, MutationCoordinator, Session
from vetchain.observability import reset_metrics
from vetchain.schemas import AnimalProfile
from vetchain.storage import InMemoryContentStore

VET = "0x" + "11" * 20
OWNER = "0x" + "22" * 20
OTHER = "0x" + "33" * 20

GATEWAY = "https://gateway.test/ipfs/"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class StubLedger(LedgerBackend):
    """
    Read-only backend answering from a fixed table.

    responses: {(abi_name, args): value or exception}
    """

    def __init__(self, responses: dict):
        self.responses = responses
        self.calls: list[tuple[str, tuple]] = []

    async def call(self, contract: ContractName, function: str, args: tuple):
        key = (function, tuple(args))
        self.calls.append(key)
        if key not in self.responses:
            raise ExecutionReverted(f"no stub for {function}{tuple(args)}")
        value = self.responses[key]
        if isinstance(value, Exception):
            raise value
        return value

    async def transact(self, contract, function, args, sender):
        raise TransportFailure("stub ledger is read-only")


def make_profile(name: str = "Luna") -> AnimalProfile:
    return AnimalProfile(
        name=name,
        species="CANINA",
        breed="Labrador",
        birth_date="2021-03-14",
        color="Dorado",
        features="Mancha blanca",
    )


@pytest.fixture(autouse=True)
def fresh_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def ledger():
    ledger = InMemoryLedger()
    ledger.grant_credential(VET)
    ledger.add_identity_manager(VET)
    ledger.enable_owner(OWNER)
    ledger.enable_owner(OTHER)
    return ledger


@pytest.fixture
def provider():
    return InMemoryProvider(accounts=[VET], chain_id=SEPOLIA_CHAIN_ID)


@pytest.fixture
def session(provider, ledger):
    return Session(provider, ledger)


@pytest.fixture
def gateway(session):
    return LedgerGateway(session)


@pytest.fixture
def store():
    return InMemoryContentStore()


@pytest.fixture
def aggregator(gateway, store):
    return Aggregator(gateway, store, ContentStoreConfig(gateway_url=GATEWAY))


@pytest.fixture
def coordinator(session, gateway, store):
    return MutationCoordinator(session, gateway, store)


@pytest.fixture
def owner_session(ledger):
    """A second, independent session for the owner's wallet."""
    return Session(InMemoryProvider(accounts=[OWNER], chain_id=SEPOLIA_CHAIN_ID), ledger)
