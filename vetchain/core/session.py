"""
Session / Connectivity Manager

One explicit Session value per caller. It owns the binding between a
signer provider (the wallet), the ledger backend, and the single network
this deployment is pinned to.

State machine:

    Disconnected --connect()--> Connecting --> Connected
    Connected --chainChanged(other)--> NetworkMismatch
    NetworkMismatch --acquire()--> Connecting --> Connected
    any --disconnect()/accounts removed/provider gone--> Disconnected

INVARIANT:
No ledger call is attempted while the session is not Connected.
Ledger handles are minted only in Connected.

Account and network changes arrive through the provider's events; the
session re-publishes them through its own subscription interface
(on_accounts_changed, on_chain_changed, on_state_changed).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from ..chain.backend import LedgerBackend
from ..chain.provider import SignerProvider
from ..config import NetworkConfig
from ..observability import account_var, get_logger
from .errors import (
    GatewayUnavailable,
    NetworkSetupFailed,
    ProviderRpcError,
    ProviderUnavailable,
    UserCancelled,
)

logger = get_logger(__name__)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    NETWORK_MISMATCH = "network_mismatch"


@dataclass(frozen=True)
class LedgerHandle:
    """
    Capability to talk to the ledger as `account`.

    Only Session.handle()/acquire() create these, and only when Connected.
    """
    backend: LedgerBackend
    account: str
    chain_id: int


Unsubscribe = Callable[[], None]


class Session:
    """
    Connection to exactly one ledger network through one signer provider.

    Independent instances never share state, so tests (and servers) can
    hold as many sessions as they like.
    """

    def __init__(
        self,
        provider: Optional[SignerProvider],
        backend: LedgerBackend,
        network: Optional[NetworkConfig] = None,
    ):
        self._provider = provider
        self._backend = backend
        self._network = network or NetworkConfig()
        self._state = SessionState.DISCONNECTED
        self._account: Optional[str] = None

        self._account_handlers: list[Callable[[Optional[str]], None]] = []
        self._chain_handlers: list[Callable[[int], None]] = []
        self._state_handlers: list[Callable[[SessionState], None]] = []

        if provider is not None:
            provider.on("accountsChanged", self._handle_accounts_changed)
            provider.on("chainChanged", self._handle_chain_changed)
            provider.on("disconnect", self._handle_provider_disconnect)

    # ================================================================
    # Properties
    # ================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def account(self) -> Optional[str]:
        """Current signing identity (None unless Connected or NetworkMismatch)."""
        return self._account

    @property
    def is_connected(self) -> bool:
        return self._state == SessionState.CONNECTED

    @property
    def network(self) -> NetworkConfig:
        return self._network

    @property
    def has_provider(self) -> bool:
        return self._provider is not None

    # ================================================================
    # Subscriptions
    # ================================================================

    def on_accounts_changed(self, handler: Callable[[Optional[str]], None]) -> Unsubscribe:
        self._account_handlers.append(handler)
        return lambda: _discard(self._account_handlers, handler)

    def on_chain_changed(self, handler: Callable[[int], None]) -> Unsubscribe:
        self._chain_handlers.append(handler)
        return lambda: _discard(self._chain_handlers, handler)

    def on_state_changed(self, handler: Callable[[SessionState], None]) -> Unsubscribe:
        self._state_handlers.append(handler)
        return lambda: _discard(self._state_handlers, handler)

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        logger.debug("Session state change", previous=self._state.value, state=state.value)
        self._state = state
        for handler in list(self._state_handlers):
            handler(state)

    # ================================================================
    # Network
    # ================================================================

    def _require_provider(self) -> SignerProvider:
        if self._provider is None:
            raise ProviderUnavailable("No compatible signer detected")
        return self._provider

    async def current_chain_id(self) -> int:
        provider = self._require_provider()
        try:
            raw = await provider.request("eth_chainId")
        except ProviderRpcError as e:
            raise ProviderUnavailable(f"Signer did not report a network: {e.message}")
        return int(raw, 16) if isinstance(raw, str) else int(raw)

    async def ensure_network(self) -> None:
        """
        Make the signer use the required network.

        No-op (zero switch/add requests) when already on it. Otherwise
        requests a switch; if the signer does not know the network, adds it
        with the fixed configuration and retries the switch once.

        Raises:
            UserCancelled: the user declined the switch/add prompt
            NetworkSetupFailed: both attempts failed
            ProviderUnavailable: no signer
        """
        provider = self._require_provider()
        if await self.current_chain_id() == self._network.chain_id:
            return

        switch_params = [{"chainId": self._network.chain_id_hex}]
        try:
            await provider.request("wallet_switchEthereumChain", switch_params)
            logger.info("Switched network", chain_id=self._network.chain_id)
            return
        except ProviderRpcError as e:
            if e.is_user_rejection:
                raise UserCancelled("Network switch declined")
            if e.code != ProviderRpcError.UNRECOGNIZED_CHAIN:
                raise NetworkSetupFailed(f"Network switch failed: {e.message}")

        logger.info(
            "Adding network to signer",
            chain_id=self._network.chain_id,
            config_version=self._network.version,
        )
        try:
            await provider.request("wallet_addEthereumChain", [self._network.to_add_chain_params()])
            await provider.request("wallet_switchEthereumChain", switch_params)
        except ProviderRpcError as e:
            if e.is_user_rejection:
                raise UserCancelled("Network setup declined")
            raise NetworkSetupFailed(f"Could not add network {self._network.chain_name}: {e.message}")

    # ================================================================
    # Lifecycle
    # ================================================================

    async def connect(self) -> str:
        """
        Request account access (after ensure_network()).

        Returns:
            The primary address

        Raises:
            UserCancelled: account or network prompt declined
            ProviderUnavailable: no signer
            NetworkSetupFailed: the required network could not be selected
        """
        provider = self._require_provider()
        self._set_state(SessionState.CONNECTING)
        try:
            await self.ensure_network()
            accounts = await provider.request("eth_requestAccounts")
        except ProviderRpcError as e:
            self._reset()
            if e.is_user_rejection:
                raise UserCancelled("Connection declined")
            raise ProviderUnavailable(f"Signer refused account access: {e.message}")
        except Exception:
            self._reset()
            raise

        if not accounts:
            self._reset()
            raise UserCancelled("No account exposed by the signer")

        self._bind_account(accounts[0])
        self._set_state(SessionState.CONNECTED)
        logger.info("Session connected", account=self._account, chain_id=self._network.chain_id)
        return self._account

    async def restore(self) -> Optional[str]:
        """
        Passive reconnection: no prompts.

        Picks up an account the signer already exposes to us. Lands in
        NetworkMismatch if the signer sits on another network.
        """
        if self._provider is None:
            return None
        try:
            accounts = await self._provider.request("eth_accounts")
            chain_id = await self.current_chain_id()
        except (ProviderRpcError, ProviderUnavailable) as e:
            logger.warning("Could not restore session", error=str(e))
            return None

        if not accounts:
            return None

        self._bind_account(accounts[0])
        if chain_id == self._network.chain_id:
            self._set_state(SessionState.CONNECTED)
        else:
            self._set_state(SessionState.NETWORK_MISMATCH)
        return self._account

    def disconnect(self) -> None:
        """Forget the account. Safe to call in any state."""
        if self._state != SessionState.DISCONNECTED:
            logger.info("Session disconnected", account=self._account)
        self._reset()

    def close(self) -> None:
        """Disconnect and stop listening to the provider."""
        self.disconnect()
        if self._provider is not None:
            self._provider.remove_listener("accountsChanged", self._handle_accounts_changed)
            self._provider.remove_listener("chainChanged", self._handle_chain_changed)
            self._provider.remove_listener("disconnect", self._handle_provider_disconnect)

    def _bind_account(self, account: str) -> None:
        self._account = account
        account_var.set(account)

    def _reset(self) -> None:
        self._account = None
        account_var.set("")
        self._set_state(SessionState.DISCONNECTED)

    # ================================================================
    # Handles
    # ================================================================

    def handle(self) -> LedgerHandle:
        """
        Mint a ledger handle.

        Raises:
            GatewayUnavailable: the session is not Connected
        """
        if self._state != SessionState.CONNECTED or self._account is None:
            raise GatewayUnavailable(f"Session is {self._state.value}, not connected")
        return LedgerHandle(
            backend=self._backend,
            account=self._account,
            chain_id=self._network.chain_id,
        )

    async def acquire(self) -> LedgerHandle:
        """
        Like handle(), but first repairs a NetworkMismatch.

        Raises:
            GatewayUnavailable: the session is Disconnected
            UserCancelled / NetworkSetupFailed: the repair failed
        """
        if self._state == SessionState.NETWORK_MISMATCH:
            self._set_state(SessionState.CONNECTING)
            try:
                await self.ensure_network()
            except Exception:
                if self._account is not None:
                    self._set_state(SessionState.NETWORK_MISMATCH)
                else:
                    self._set_state(SessionState.DISCONNECTED)
                raise
            if self._account is not None:
                self._set_state(SessionState.CONNECTED)
        return self.handle()

    # ================================================================
    # Provider events
    # ================================================================

    def _handle_accounts_changed(self, accounts: Any) -> None:
        if not accounts:
            self.disconnect()
            new_account = None
        else:
            new_account = accounts[0]
            if self._state in (SessionState.CONNECTED, SessionState.NETWORK_MISMATCH):
                self._bind_account(new_account)
                logger.info("Account changed", account=new_account)
        for handler in list(self._account_handlers):
            handler(new_account)

    def _handle_chain_changed(self, chain_id: Any) -> None:
        chain = int(chain_id, 16) if isinstance(chain_id, str) else int(chain_id)
        if chain != self._network.chain_id and self._state == SessionState.CONNECTED:
            logger.warning("Signer left the required network", chain_id=chain)
            self._set_state(SessionState.NETWORK_MISMATCH)
        elif chain == self._network.chain_id and self._state == SessionState.NETWORK_MISMATCH:
            self._set_state(SessionState.CONNECTED)
        for handler in list(self._chain_handlers):
            handler(chain)

    def _handle_provider_disconnect(self, _error: Any) -> None:
        self.disconnect()


def _discard(handlers: list, handler: Callable) -> None:
    if handler in handlers:
        handlers.remove(handler)
