"""
Tests for the Ledger Gateway.

Reads are normalized and degrade to neutral values; strict reads and
writes propagate failures as taxonomy kinds. Submission is not finality.
"""

import pytest

from conftest import OWNER, VET, StubLedger
from vetchain.chain import InMemoryProvider, TransportFailure
from vetchain.config import SEPOLIA_CHAIN_ID
from vetchain.core import (
    FUNCTIONS,
    GatewayUnavailable,
    LedgerGateway,
    LedgerRejected,
    Session,
    UserCancelled,
)
from vetchain.core import gateway as gateway_module
from vetchain.core.gateway import (
    AppendMedicalRecord,
    BalanceOf,
    LedgerRequest,
    Mint,
)
from vetchain.observability import get_metrics
from vetchain.schemas import HealthState


def _request_types():
    return [
        obj for obj in vars(gateway_module).values()
        if isinstance(obj, type) and issubclass(obj, LedgerRequest) and obj is not LedgerRequest
    ]


class TestDispatchTable:

    def test_every_request_has_an_entry(self):
        for request_type in _request_types():
            assert request_type.function in FUNCTIONS

    def test_closed_set(self):
        assert len(FUNCTIONS) == len(_request_types()) == 14

    def test_view_flags(self):
        assert FUNCTIONS[BalanceOf.function].view
        assert not FUNCTIONS[Mint.function].view

    def test_health_state_encoded_as_uint8(self):
        request = AppendMedicalRecord(7, "cid", HealthState.FALLECIDO)
        assert request.args() == (7, "cid", 2)

    @pytest.mark.asyncio
    async def test_read_rejects_write_request(self, gateway, session):
        await session.connect()
        with pytest.raises(ValueError):
            await gateway.read(Mint(OWNER, 1, "a", "b"))

    @pytest.mark.asyncio
    async def test_submit_rejects_view_request(self, gateway, session):
        await session.connect()
        with pytest.raises(ValueError):
            await gateway.submit(BalanceOf(OWNER))


class TestReads:

    @pytest.mark.asyncio
    async def test_credential_check(self, gateway, session, ledger):
        await session.connect()

        assert await gateway.has_valid_credential(VET) is True
        assert await gateway.has_valid_credential(OWNER) is False

        ledger.revoke_credential(VET)
        assert await gateway.has_valid_credential(VET) is False

    @pytest.mark.asyncio
    async def test_absent_values_are_neutral(self, gateway, session):
        await session.connect()

        assert await gateway.balance_of(OWNER) == 0
        assert await gateway.medical_history(99) == []
        assert await gateway.authorized_veterinarians(OWNER) == []
        assert await gateway.is_authorized(OWNER, VET) is False
        assert await gateway.health_state(99) == HealthState.SANO

    @pytest.mark.asyncio
    async def test_revert_degrades_unless_strict(self, gateway, session):
        await session.connect()

        assert await gateway.content_uri(99) is None
        with pytest.raises(LedgerRejected) as exc_info:
            await gateway.content_uri(99, strict=True)
        assert exc_info.value.reason == "ERC721: invalid token ID"

    @pytest.mark.asyncio
    async def test_transport_failure_degrades_unless_strict(self, gateway, session, ledger):
        await session.connect()
        ledger.set_offline()

        assert await gateway.balance_of(OWNER) == 0
        assert await gateway.has_valid_credential(VET) is False
        with pytest.raises(GatewayUnavailable):
            await gateway.has_valid_credential(VET, strict=True)


class TestNormalization:

    def _gateway(self, responses):
        stub = StubLedger(responses)
        session = Session(InMemoryProvider([VET], chain_id=SEPOLIA_CHAIN_ID), stub)
        return LedgerGateway(session), session

    @pytest.mark.asyncio
    async def test_numeric_strings_and_tuples(self):
        gateway, session = self._gateway({
            ("balanceOf", (OWNER,)): "0x2",
            ("obtenerHistorialMedico", (7,)): ("Qa", "Qb"),
            ("obtenerEstadoSalud", (7,)): "1",
        })
        await session.connect()

        assert await gateway.balance_of(OWNER) == 2
        assert await gateway.medical_history(7) == ["Qa", "Qb"]
        assert await gateway.health_state(7) is HealthState.ENFERMO

    @pytest.mark.asyncio
    async def test_malformed_results(self):
        gateway, session = self._gateway({
            ("obtenerHistorialMedico", (7,)): "Qa",
            ("obtenerEstadoSalud", (7,)): 7,
            ("isVetAuthorized", (OWNER, VET)): "yes",
        })
        await session.connect()

        assert await gateway.medical_history(7) == []
        assert await gateway.is_authorized(OWNER, VET) is False
        with pytest.raises(GatewayUnavailable):
            await gateway.medical_history(7, strict=True)
        with pytest.raises(GatewayUnavailable):
            await gateway.health_state(7, strict=True)

    @pytest.mark.asyncio
    async def test_address_list_drops_malformed_entries(self):
        gateway, session = self._gateway({
            ("obtenerVeterinariosAutorizados", (OWNER,)): [VET, "0x123", None],
        })
        await session.connect()

        assert await gateway.authorized_veterinarians(OWNER) == [VET]


class TestWrites:

    @pytest.mark.asyncio
    async def test_submission_is_not_finality(self, gateway, session, ledger):
        await session.connect()

        tx = await gateway.mint(OWNER, 5, "cid-meta", "cid-record")
        assert tx.tx_hash.startswith("0x")
        assert ledger.owner_of(5) is None

        receipt = await tx.wait()
        assert receipt.succeeded
        assert receipt.tx_hash == tx.tx_hash
        assert ledger.owner_of(5) == OWNER
        assert await gateway.content_uri(5) == "ipfs://cid-meta"
        assert await gateway.medical_history(5) == ["cid-record"]

    @pytest.mark.asyncio
    async def test_signer_decline_is_user_cancelled(self, gateway, session, ledger):
        await session.connect()
        ledger.decline_next_transaction()

        with pytest.raises(UserCancelled):
            await gateway.mint(OWNER, 5, "a", "b")
        assert get_metrics().transactions_submitted == 0

    @pytest.mark.asyncio
    async def test_revert_at_finality_is_ledger_rejected(self, gateway, session, ledger):
        await session.connect()
        ledger.revert_next_at_finality("paused")

        tx = await gateway.mint(OWNER, 5, "a", "b")
        with pytest.raises(LedgerRejected) as exc_info:
            await tx.wait()

        assert exc_info.value.reason == "paused"
        assert ledger.owner_of(5) is None
        assert get_metrics().transactions_failed == 1

    @pytest.mark.asyncio
    async def test_contract_revert_carries_reason(self, gateway, session):
        await session.connect()

        tx = await gateway.mint("0x" + "44" * 20, 5, "a", "b")
        with pytest.raises(LedgerRejected) as exc_info:
            await tx.wait()
        assert exc_info.value.reason == "owner is not enabled"

    @pytest.mark.asyncio
    async def test_transport_failure_on_submit(self, gateway, session, ledger):
        await session.connect()
        ledger.set_offline()

        with pytest.raises(GatewayUnavailable):
            await gateway.authorize_veterinarian(OWNER)

    @pytest.mark.asyncio
    async def test_write_requires_connected_session(self, gateway, ledger):
        with pytest.raises(GatewayUnavailable):
            await gateway.mint(OWNER, 5, "a", "b")
        assert ledger.transactions == []

    @pytest.mark.asyncio
    async def test_wait_is_idempotent(self, gateway, session, ledger):
        await session.connect()
        tx = await gateway.set_owner_enabled("0x" + "44" * 20, True)

        first = await tx.wait()
        second = await tx.wait()

        assert first == second
        assert ledger.block_number == 1

    @pytest.mark.asyncio
    async def test_metrics(self, gateway, session):
        await session.connect()
        tx = await gateway.mint(OWNER, 5, "a", "b")
        await tx.wait()

        metrics = get_metrics()
        assert metrics.transactions_submitted == 1
        assert metrics.transactions_confirmed == 1


class TestTransportFailureFromBackend:

    @pytest.mark.asyncio
    async def test_stub_backend_transport_error(self):
        stub = StubLedger({("balanceOf", (OWNER,)): TransportFailure("timeout")})
        session = Session(InMemoryProvider([VET], chain_id=SEPOLIA_CHAIN_ID), stub)
        gateway = LedgerGateway(session)
        await session.connect()

        assert await gateway.balance_of(OWNER) == 0
        with pytest.raises(GatewayUnavailable):
            await gateway.balance_of(OWNER, strict=True)
