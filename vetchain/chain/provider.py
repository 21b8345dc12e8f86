"""
Signer Provider

The signing environment (a wallet) as seen by the session: an
EIP-1193-shaped request/response interface plus event subscription.

Methods the session relies on:
- eth_chainId -> hex chain id
- eth_accounts -> [address] (no prompt)
- eth_requestAccounts -> [address] (prompts the user)
- wallet_switchEthereumChain [{chainId}]
- wallet_addEthereumChain [{chainId, chainName, nativeCurrency, rpcUrls, blockExplorerUrls}]

Events: accountsChanged(list), chainChanged(hex), disconnect(error)

Key management and the signing UI are the wallet's business, not ours.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from ..core.errors import ProviderRpcError


class SignerProvider(ABC):
    """Abstract EIP-1193 provider."""

    @abstractmethod
    async def request(self, method: str, params: Optional[list] = None) -> Any:
        """
        Perform a provider RPC.

        Raises:
            ProviderRpcError: with an EIP-1193 code
        """
        pass

    @abstractmethod
    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        pass

    @abstractmethod
    def remove_listener(self, event: str, handler: Callable[[Any], None]) -> None:
        pass


class InMemoryProvider(SignerProvider):
    """
    Scriptable wallet for development and tests.

    Holds a list of accounts, a current chain, and the set of chains the
    wallet knows about. Records every request for call-count assertions.
    """

    def __init__(
        self,
        accounts: Optional[list[str]] = None,
        chain_id: int = 1,
        known_chains: Optional[set[int]] = None,
    ):
        self._accounts = list(accounts or [])
        self._chain_id = chain_id
        self._known_chains = set(known_chains) if known_chains is not None else {chain_id}
        self._authorized = False
        self._listeners: dict[str, list[Callable[[Any], None]]] = {}

        # Scripted behaviour
        self.decline_account_request = False
        self.decline_switch = False
        self.decline_add = False
        self.fail_switch_after_add = False

        self.requests: list[tuple[str, Optional[list]]] = []

    @property
    def chain_id(self) -> int:
        return self._chain_id

    def count(self, method: str) -> int:
        """How many times `method` was requested."""
        return sum(1 for m, _ in self.requests if m == method)

    # ================================================================
    # SignerProvider
    # ================================================================

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        self.requests.append((method, params))

        if method == "eth_chainId":
            return hex(self._chain_id)

        if method == "eth_accounts":
            return list(self._accounts) if self._authorized else []

        if method == "eth_requestAccounts":
            if self.decline_account_request:
                raise ProviderRpcError(ProviderRpcError.USER_REJECTED, "User rejected the request.")
            self._authorized = True
            return list(self._accounts)

        if method == "wallet_switchEthereumChain":
            target = int(params[0]["chainId"], 16)
            if self.decline_switch:
                raise ProviderRpcError(ProviderRpcError.USER_REJECTED, "User rejected the request.")
            if target not in self._known_chains:
                raise ProviderRpcError(
                    ProviderRpcError.UNRECOGNIZED_CHAIN,
                    f"Unrecognized chain ID {params[0]['chainId']}.",
                )
            if self.fail_switch_after_add and self.count("wallet_addEthereumChain") > 0:
                raise ProviderRpcError(-32603, "Internal error switching chain.")
            self._set_chain(target)
            return None

        if method == "wallet_addEthereumChain":
            if self.decline_add:
                raise ProviderRpcError(ProviderRpcError.USER_REJECTED, "User rejected the request.")
            self._known_chains.add(int(params[0]["chainId"], 16))
            return None

        raise ProviderRpcError(ProviderRpcError.UNSUPPORTED_METHOD, f"Unsupported method {method}")

    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        self._listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable[[Any], None]) -> None:
        handlers = self._listeners.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    # ================================================================
    # Simulated wallet activity
    # ================================================================

    def _emit(self, event: str, payload: Any) -> None:
        for handler in list(self._listeners.get(event, [])):
            handler(payload)

    def _set_chain(self, chain_id: int) -> None:
        changed = chain_id != self._chain_id
        self._chain_id = chain_id
        if changed:
            self._emit("chainChanged", hex(chain_id))

    def switch_account(self, account: str) -> None:
        """The user picked another account in the wallet."""
        self._accounts = [account] + [a for a in self._accounts if a != account]
        if self._authorized:
            self._emit("accountsChanged", list(self._accounts))

    def remove_accounts(self) -> None:
        """The user disconnected every account from the app."""
        self._accounts = []
        self._authorized = False
        self._emit("accountsChanged", [])

    def change_chain(self, chain_id: int) -> None:
        """The user switched networks in the wallet."""
        self._known_chains.add(chain_id)
        self._set_chain(chain_id)

    def disconnect(self) -> None:
        """The provider went away."""
        self._emit("disconnect", ProviderRpcError(ProviderRpcError.DISCONNECTED, "Disconnected"))
