"""
JSON-RPC Ledger Backend

Binds the three deployed contracts through web3.py's AsyncWeb3.

Error mapping:
- a revert (eth_call, eth_estimateGas, status 0 receipt) -> ExecutionReverted
- signer declined (EIP-1193 code 4001) -> RequestRejected
- anything the node or the transport raised otherwise -> TransportFailure

Writes are estimated first, so a call that would revert is rejected
before anything is signed.

Signing:
- VETCHAIN_SIGNER_KEY set: transactions are signed locally and sent raw
- otherwise the node must hold the sender's account (dev nodes)
"""

import asyncio
from typing import Any, Callable, Optional

import aiohttp
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception, Web3RPCError
from web3.middleware import SignAndSendRawMiddlewareBuilder

from ..config import ContractAddresses, RpcConfig, Settings
from ..core.errors import ProviderRpcError
from ..observability import get_logger
from .abis import ABIS
from .backend import (
    BackendError,
    ContractName,
    ExecutionReverted,
    LedgerBackend,
    PendingTransaction,
    RequestRejected,
    TransactionReceipt,
    TransportFailure,
)
from .provider import SignerProvider

logger = get_logger(__name__)

_REVERT_PREFIX = "execution reverted"

_RPC_ERRORS = (Web3Exception, aiohttp.ClientError, OSError, asyncio.TimeoutError)


# ============================================================
# ERROR MAPPING
# ============================================================

def _rpc_error(e: Exception) -> dict:
    response = getattr(e, "rpc_response", None)
    error = response.get("error") if isinstance(response, dict) else None
    return error if isinstance(error, dict) else {}


def _revert_reason(message: str) -> Optional[str]:
    if message.startswith(_REVERT_PREFIX):
        message = message[len(_REVERT_PREFIX):].lstrip(": ")
    return message.strip() or None


def _backend_error(e: Exception) -> BackendError:
    if isinstance(e, ContractLogicError):
        message = getattr(e, "message", None) or (str(e.args[0]) if e.args else "")
        return ExecutionReverted(_revert_reason(message))
    if isinstance(e, Web3RPCError):
        error = _rpc_error(e)
        if error.get("code") == ProviderRpcError.USER_REJECTED:
            return RequestRejected(error.get("message") or "User rejected the request")
        message = str(error.get("message") or "")
        if message.startswith(_REVERT_PREFIX):
            return ExecutionReverted(_revert_reason(message))
    return TransportFailure(str(e) or type(e).__name__)


def _abi_arg(abi_type: str, value: Any) -> Any:
    # web3 only accepts checksummed addresses
    if abi_type == "address":
        return Web3.to_checksum_address(value)
    if abi_type == "address[]":
        return [Web3.to_checksum_address(v) for v in value]
    return value


# ============================================================
# TRANSACTIONS
# ============================================================

class RpcPendingTransaction(PendingTransaction):
    """A transaction accepted by the node; finality is polled for."""

    def __init__(
        self,
        w3: AsyncWeb3,
        tx_hash: str,
        contract: ContractName,
        function: str,
        config: RpcConfig,
    ):
        self._w3 = w3
        self._tx_hash = tx_hash
        self._contract = contract
        self._function = function
        self._config = config
        self._receipt: Optional[TransactionReceipt] = None

    @property
    def tx_hash(self) -> str:
        return self._tx_hash

    async def wait(self) -> TransactionReceipt:
        if self._receipt is None:
            try:
                raw = await self._w3.eth.wait_for_transaction_receipt(
                    self._tx_hash,
                    timeout=self._config.receipt_timeout,
                    poll_latency=self._config.poll_latency,
                )
            except TimeExhausted as e:
                raise TransportFailure(
                    f"No receipt for {self._tx_hash} after {self._config.receipt_timeout}s"
                ) from e
            except _RPC_ERRORS as e:
                raise TransportFailure(str(e) or type(e).__name__) from e

            self._receipt = TransactionReceipt(
                tx_hash=self._tx_hash,
                block_number=int(raw["blockNumber"]),
                status=int(raw["status"]),
                sender=str(raw["from"]).lower(),
                contract=self._contract,
                function=self._function,
            )

        if not self._receipt.succeeded:
            # Receipts carry no revert reason
            raise ExecutionReverted()
        return self._receipt


# ============================================================
# LEDGER
# ============================================================

class RpcLedger(LedgerBackend):
    """
    The deployed contracts behind a JSON-RPC node.

    Args:
        w3: Connected AsyncWeb3 instance
        contracts: Deployed contract addresses
        config: Finality wait settings
        owns_provider: Disconnect the provider on aclose()
    """

    def __init__(
        self,
        w3: AsyncWeb3,
        contracts: ContractAddresses,
        config: Optional[RpcConfig] = None,
        owns_provider: bool = False,
    ):
        self._w3 = w3
        self._config = config or RpcConfig()
        self._owns_provider = owns_provider
        self._contracts = {
            name: w3.eth.contract(
                address=Web3.to_checksum_address(getattr(contracts, name.value)),
                abi=abi,
            )
            for name, abi in ABIS.items()
        }
        self._input_types = {
            (name, entry["name"]): [i["type"] for i in entry["inputs"]]
            for name, abi in ABIS.items()
            for entry in abi
        }

    @property
    def w3(self) -> AsyncWeb3:
        return self._w3

    def _bind(self, contract: ContractName, function: str, args: tuple):
        try:
            types = self._input_types[(contract, function)]
        except KeyError:
            raise ValueError(f"Unknown ledger function: {contract.value}.{function}")
        if len(types) != len(args):
            raise ValueError(f"{function} takes {len(types)} arguments, got {len(args)}")
        bound = [_abi_arg(t, a) for t, a in zip(types, args)]
        return getattr(self._contracts[contract].functions, function)(*bound)

    async def call(self, contract: ContractName, function: str, args: tuple) -> Any:
        fn = self._bind(contract, function, args)
        try:
            return await fn.call()
        except _RPC_ERRORS as e:
            raise _backend_error(e) from e

    async def transact(
        self,
        contract: ContractName,
        function: str,
        args: tuple,
        sender: str,
    ) -> RpcPendingTransaction:
        fn = self._bind(contract, function, args)
        tx = {"from": Web3.to_checksum_address(sender)}
        try:
            tx["gas"] = await fn.estimate_gas(tx)
            tx_hash = Web3.to_hex(await fn.transact(tx))
        except _RPC_ERRORS as e:
            raise _backend_error(e) from e

        logger.debug("Transaction sent", function=function, tx_hash=tx_hash, gas=tx["gas"])
        return RpcPendingTransaction(self._w3, tx_hash, contract, function, self._config)

    async def aclose(self) -> None:
        if self._owns_provider:
            await self._w3.provider.disconnect()


# ============================================================
# SIGNER
# ============================================================

class RpcAccountProvider(SignerProvider):
    """
    Signer view of a node for unattended use.

    Exposes one configured account, or the node's own accounts, and the
    node's chain. It cannot switch or add networks, so a node on another
    chain fails the session's network check.
    """

    def __init__(self, w3: AsyncWeb3, account: Optional[str] = None):
        self._w3 = w3
        self._account = account
        self._listeners: dict[str, list[Callable[[Any], None]]] = {}

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        try:
            if method == "eth_chainId":
                return hex(await self._w3.eth.chain_id)
            if method in ("eth_accounts", "eth_requestAccounts"):
                if self._account is not None:
                    return [self._account]
                return [str(a) for a in await self._w3.eth.accounts]
        except _RPC_ERRORS as e:
            raise ProviderRpcError(ProviderRpcError.DISCONNECTED, str(e) or type(e).__name__) from e

        raise ProviderRpcError(ProviderRpcError.UNSUPPORTED_METHOD, f"Unsupported method {method}")

    # A node emits no wallet events; handlers are kept for symmetry only
    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        self._listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event: str, handler: Callable[[Any], None]) -> None:
        handlers = self._listeners.get(event, [])
        if handler in handlers:
            handlers.remove(handler)


def create_rpc_backend(settings: Settings) -> tuple[RpcLedger, RpcAccountProvider]:
    """
    Ledger and signer over the node at settings.network.rpc_url.

    With a signer key, writes are signed locally from that account.
    """
    w3 = AsyncWeb3(AsyncHTTPProvider(settings.network.rpc_url))

    account = None
    if settings.rpc.signer_key:
        signer = Account.from_key(settings.rpc.signer_key)
        w3.middleware_onion.inject(SignAndSendRawMiddlewareBuilder.build(signer), layer=0)
        account = signer.address

    logger.info("RPC ledger configured", chain_id=settings.network.chain_id, local_signer=account is not None)
    ledger = RpcLedger(w3, settings.contracts, settings.rpc, owns_provider=True)
    return ledger, RpcAccountProvider(w3, account)
