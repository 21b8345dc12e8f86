"""
Tests for the Session / Connectivity Manager.

Covers the connect/switch/add flow, passive account and network change
handling, and the no-call-unless-connected invariant.
"""

import pytest

from conftest import OWNER, VET
from vetchain.chain import InMemoryProvider
from vetchain.config import SEPOLIA_CHAIN_ID, NetworkConfig
from vetchain.core import (
    GatewayUnavailable,
    LedgerGateway,
    NetworkSetupFailed,
    ProviderUnavailable,
    Session,
    SessionState,
    UserCancelled,
)


class TestEnsureNetwork:

    @pytest.mark.asyncio
    async def test_already_on_network_is_noop(self, session, provider):
        await session.ensure_network()
        await session.ensure_network()

        assert provider.count("wallet_switchEthereumChain") == 0
        assert provider.count("wallet_addEthereumChain") == 0

    @pytest.mark.asyncio
    async def test_known_network_switches_only(self, ledger):
        provider = InMemoryProvider([VET], chain_id=1, known_chains={1, SEPOLIA_CHAIN_ID})
        session = Session(provider, ledger)

        await session.ensure_network()

        assert provider.chain_id == SEPOLIA_CHAIN_ID
        assert provider.count("wallet_switchEthereumChain") == 1
        assert provider.count("wallet_addEthereumChain") == 0

    @pytest.mark.asyncio
    async def test_unknown_network_is_added_then_switched(self, ledger):
        provider = InMemoryProvider([VET], chain_id=1)
        session = Session(provider, ledger)

        await session.ensure_network()

        assert provider.chain_id == SEPOLIA_CHAIN_ID
        assert provider.count("wallet_addEthereumChain") == 1
        assert provider.count("wallet_switchEthereumChain") == 2

        add_params = next(p for m, p in provider.requests if m == "wallet_addEthereumChain")[0]
        assert add_params == NetworkConfig().to_add_chain_params()
        assert add_params["chainId"] == "0xaa36a7"
        assert add_params["nativeCurrency"]["symbol"] == "SEP"

    @pytest.mark.asyncio
    async def test_declined_switch(self, ledger):
        provider = InMemoryProvider([VET], chain_id=1, known_chains={1, SEPOLIA_CHAIN_ID})
        provider.decline_switch = True
        session = Session(provider, ledger)

        with pytest.raises(UserCancelled):
            await session.ensure_network()

    @pytest.mark.asyncio
    async def test_declined_add(self, ledger):
        provider = InMemoryProvider([VET], chain_id=1)
        provider.decline_add = True
        session = Session(provider, ledger)

        with pytest.raises(UserCancelled):
            await session.ensure_network()

    @pytest.mark.asyncio
    async def test_switch_failing_after_add(self, ledger):
        provider = InMemoryProvider([VET], chain_id=1)
        provider.fail_switch_after_add = True
        session = Session(provider, ledger)

        with pytest.raises(NetworkSetupFailed):
            await session.ensure_network()

        assert provider.count("wallet_addEthereumChain") == 1
        assert provider.count("wallet_switchEthereumChain") == 2

    @pytest.mark.asyncio
    async def test_no_provider(self, ledger):
        session = Session(None, ledger)
        with pytest.raises(ProviderUnavailable):
            await session.ensure_network()


class TestConnect:

    @pytest.mark.asyncio
    async def test_connect_returns_primary_account(self, session):
        account = await session.connect()

        assert account == VET
        assert session.account == VET
        assert session.state == SessionState.CONNECTED
        assert session.is_connected

    @pytest.mark.asyncio
    async def test_connect_runs_network_setup_first(self, ledger):
        provider = InMemoryProvider([VET], chain_id=1)
        session = Session(provider, ledger)

        await session.connect()

        methods = [m for m, _ in provider.requests]
        assert methods.index("wallet_addEthereumChain") < methods.index("eth_requestAccounts")
        assert session.is_connected

    @pytest.mark.asyncio
    async def test_connect_without_provider(self, ledger):
        session = Session(None, ledger)

        with pytest.raises(ProviderUnavailable):
            await session.connect()
        assert session.state == SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_declined_connect(self, session, provider):
        provider.decline_account_request = True

        with pytest.raises(UserCancelled) as exc_info:
            await session.connect()

        assert exc_info.value.user_facing is False
        assert session.state == SessionState.DISCONNECTED
        assert session.account is None

    @pytest.mark.asyncio
    async def test_connect_with_no_accounts(self, ledger):
        session = Session(InMemoryProvider([], chain_id=SEPOLIA_CHAIN_ID), ledger)

        with pytest.raises(UserCancelled):
            await session.connect()
        assert session.state == SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_restore_is_passive(self, session, provider, ledger):
        await session.connect()

        restored = Session(provider, ledger)
        account = await restored.restore()

        assert account == VET
        assert restored.is_connected
        assert provider.count("eth_requestAccounts") == 1

    @pytest.mark.asyncio
    async def test_restore_without_prior_authorization(self, session, provider):
        assert await session.restore() is None
        assert session.state == SessionState.DISCONNECTED
        assert provider.count("eth_requestAccounts") == 0

    @pytest.mark.asyncio
    async def test_disconnect(self, session):
        await session.connect()
        session.disconnect()

        assert session.state == SessionState.DISCONNECTED
        assert session.account is None

    def test_independent_sessions(self, ledger, provider):
        a = Session(provider, ledger)
        b = Session(InMemoryProvider([OWNER], chain_id=SEPOLIA_CHAIN_ID), ledger)
        assert a.state == b.state == SessionState.DISCONNECTED
        assert a is not b


class TestProviderEvents:

    @pytest.mark.asyncio
    async def test_account_switch_updates_identity_without_reconnect(self, session, provider):
        await session.connect()
        seen = []
        session.on_accounts_changed(seen.append)

        provider.switch_account(OWNER)

        assert session.account == OWNER
        assert session.is_connected
        assert seen == [OWNER]
        assert provider.count("eth_requestAccounts") == 1

    @pytest.mark.asyncio
    async def test_account_removal_disconnects(self, session, provider):
        await session.connect()
        states = []
        session.on_state_changed(states.append)

        provider.remove_accounts()

        assert session.state == SessionState.DISCONNECTED
        assert session.account is None
        assert states == [SessionState.DISCONNECTED]

    @pytest.mark.asyncio
    async def test_provider_disconnect(self, session, provider):
        await session.connect()
        provider.disconnect()
        assert session.state == SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_network_change_is_mismatch(self, session, provider):
        await session.connect()
        chains = []
        session.on_chain_changed(chains.append)

        provider.change_chain(1)

        assert session.state == SessionState.NETWORK_MISMATCH
        assert session.account == VET
        assert chains == [1]
        with pytest.raises(GatewayUnavailable):
            session.handle()

    @pytest.mark.asyncio
    async def test_acquire_repairs_mismatch(self, session, provider):
        await session.connect()
        provider.change_chain(1)

        handle = await session.acquire()

        assert session.is_connected
        assert handle.account == VET
        assert handle.chain_id == SEPOLIA_CHAIN_ID
        assert provider.chain_id == SEPOLIA_CHAIN_ID

    @pytest.mark.asyncio
    async def test_acquire_declined_repair_keeps_mismatch(self, session, provider):
        await session.connect()
        provider.change_chain(1)
        provider.decline_switch = True

        with pytest.raises(UserCancelled):
            await session.acquire()
        assert session.state == SessionState.NETWORK_MISMATCH

    @pytest.mark.asyncio
    async def test_unsubscribe(self, session, provider):
        await session.connect()
        seen = []
        unsubscribe = session.on_accounts_changed(seen.append)

        unsubscribe()
        provider.switch_account(OWNER)

        assert seen == []

    def test_close_removes_provider_listeners(self, session, provider):
        assert provider.listener_count("accountsChanged") == 1
        session.close()
        assert provider.listener_count("accountsChanged") == 0
        assert provider.listener_count("chainChanged") == 0
        assert provider.listener_count("disconnect") == 0


class TestConnectedInvariant:

    @pytest.mark.asyncio
    async def test_no_ledger_call_while_disconnected(self, session, ledger):
        gateway = LedgerGateway(session)

        assert await gateway.balance_of(OWNER) == 0
        assert await gateway.medical_history(1) == []
        assert ledger.calls == []

    @pytest.mark.asyncio
    async def test_strict_read_while_disconnected(self, session, ledger):
        gateway = LedgerGateway(session)

        with pytest.raises(GatewayUnavailable):
            await gateway.has_valid_credential(VET, strict=True)
        assert ledger.calls == []

    def test_handle_requires_connected(self, session):
        with pytest.raises(GatewayUnavailable):
            session.handle()
