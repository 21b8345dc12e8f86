"""
Tests for the JSON-RPC ledger backend.

web3.py runs against an in-process node that answers JSON-RPC requests
from a script; nothing leaves the process.
"""

import pytest
from eth_abi import encode
from web3 import AsyncWeb3, Web3
from web3.providers.async_base import AsyncBaseProvider

from conftest import OWNER, VET
from vetchain.chain import ContractName, ExecutionReverted, RequestRejected, TransportFailure
from vetchain.chain.rpc import RpcAccountProvider, RpcLedger, create_rpc_backend
from vetchain.config import (
    SEPOLIA_CHAIN_ID,
    ContractAddresses,
    LedgerDriver,
    NetworkConfig,
    RpcConfig,
    Settings,
    get_ledger_driver,
)
from vetchain.core import LedgerGateway, NetworkSetupFailed, Session
from vetchain.core.gateway import BalanceOf

CONTRACTS = ContractAddresses()
TX_HASH = "0x" + "ab" * 32


def _selector(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature)[:4])


def _revert(reason: str) -> dict:
    data = "0x08c379a0" + encode(["string"], [reason]).hex()
    return {"code": 3, "message": f"execution reverted: {reason}", "data": data}


class ScriptedNode(AsyncBaseProvider):
    """
    Answers the JSON-RPC methods web3.py needs for calls and writes.

    View results and reverts are keyed by function selector.
    """

    def __init__(self, chain_id: int = SEPOLIA_CHAIN_ID):
        super().__init__()
        self.chain_id = chain_id
        self.results: dict[str, str] = {}
        self.reverts: dict[str, str] = {}
        self.receipt_status = 1
        self.error: dict = {}
        self.offline = False
        self.requests: list[tuple[str, list]] = []

    def answer(self, signature: str, types: list, values: list) -> None:
        self.results[_selector(signature)] = "0x" + encode(types, values).hex()

    def revert(self, signature: str, reason: str) -> None:
        self.reverts[_selector(signature)] = reason

    def sent(self, method: str) -> list:
        return [params for m, params in self.requests if m == method]

    async def make_request(self, method, params):
        self.requests.append((method, params))
        if self.offline:
            raise ConnectionError("connection refused")

        outcome = self._handle(method, list(params or []))
        if "error" in outcome:
            return {"jsonrpc": "2.0", "id": 1, "error": outcome["error"]}
        return {"jsonrpc": "2.0", "id": 1, "result": outcome["result"]}

    def _handle(self, method: str, params: list) -> dict:
        if method == "eth_chainId":
            return {"result": hex(self.chain_id)}
        if method == "eth_accounts":
            return {"result": [Web3.to_checksum_address(VET)]}
        if method in ("eth_call", "eth_estimateGas"):
            tx = params[0]
            selector = (tx.get("data") or tx.get("input") or "")[:10]
            if selector in self.reverts:
                return {"error": _revert(self.reverts[selector])}
            if method == "eth_estimateGas":
                return {"result": "0x5208"}
            if selector not in self.results:
                return {"error": {"code": 3, "message": "execution reverted"}}
            return {"result": self.results[selector]}
        if method == "eth_sendTransaction":
            if self.error:
                return {"error": self.error}
            return {"result": TX_HASH}
        if method == "eth_getTransactionReceipt":
            return {"result": self._receipt(params[0])}
        if method in ("eth_maxPriorityFeePerGas", "eth_gasPrice"):
            return {"result": "0x3b9aca00"}
        if method == "eth_getBlockByNumber":
            return {"result": {
                "number": "0x29",
                "hash": "0x" + "cd" * 32,
                "baseFeePerGas": "0x7",
                "gasLimit": "0x1c9c380",
                "timestamp": "0x65000000",
                "transactions": [],
            }}
        if method == "eth_getTransactionCount":
            return {"result": "0x0"}
        return {"error": {"code": -32601, "message": f"the method {method} does not exist"}}

    def _receipt(self, tx_hash: str) -> dict:
        sent = self.sent("eth_sendTransaction")[-1][0]
        return {
            "transactionHash": tx_hash,
            "transactionIndex": "0x0",
            "blockHash": "0x" + "cd" * 32,
            "blockNumber": "0x2a",
            "from": sent["from"],
            "to": sent["to"],
            "cumulativeGasUsed": "0x5208",
            "gasUsed": "0x5208",
            "effectiveGasPrice": "0x3b9aca07",
            "contractAddress": None,
            "logs": [],
            "logsBloom": "0x" + "00" * 256,
            "status": hex(self.receipt_status),
            "type": "0x2",
        }


@pytest.fixture
def node():
    return ScriptedNode()


@pytest.fixture
def rpc_ledger(node):
    return RpcLedger(AsyncWeb3(node), CONTRACTS, RpcConfig(receipt_timeout=1.0, poll_latency=0.01))


class TestCalls:

    @pytest.mark.asyncio
    async def test_uint_result(self, node, rpc_ledger):
        node.answer("balanceOf(address)", ["uint256"], [2])

        assert await rpc_ledger.call(ContractName.IDENTITY_REGISTRY, "balanceOf", (OWNER,)) == 2

        tx = node.sent("eth_call")[-1][0]
        assert tx["to"].lower() == CONTRACTS.identity_registry.lower()
        assert tx["data"].startswith(_selector("balanceOf(address)"))

    @pytest.mark.asyncio
    async def test_string_list_result(self, node, rpc_ledger):
        node.answer("obtenerHistorialMedico(uint256)", ["string[]"], [["Qa", "Qb"]])

        history = await rpc_ledger.call(ContractName.MEDICAL_LEDGER, "obtenerHistorialMedico", (7,))

        assert list(history) == ["Qa", "Qb"]

    @pytest.mark.asyncio
    async def test_revert_reason(self, node, rpc_ledger):
        node.revert("tokenURI(uint256)", "token does not exist")

        with pytest.raises(ExecutionReverted) as exc_info:
            await rpc_ledger.call(ContractName.IDENTITY_REGISTRY, "tokenURI", (99,))
        assert exc_info.value.reason == "token does not exist"

    @pytest.mark.asyncio
    async def test_unreachable_node(self, node, rpc_ledger):
        node.offline = True

        with pytest.raises(TransportFailure):
            await rpc_ledger.call(ContractName.IDENTITY_REGISTRY, "balanceOf", (OWNER,))

    @pytest.mark.asyncio
    async def test_unknown_function(self, rpc_ledger):
        with pytest.raises(ValueError):
            await rpc_ledger.call(ContractName.IDENTITY_REGISTRY, "burn", (1,))


class TestTransactions:

    @pytest.mark.asyncio
    async def test_submit_and_wait(self, node, rpc_ledger):
        pending = await rpc_ledger.transact(
            ContractName.IDENTITY_REGISTRY, "mint", (OWNER, 7, "bafkanimal", "bafkreport"), VET
        )

        assert pending.tx_hash == TX_HASH
        receipt = await pending.wait()
        assert receipt.succeeded
        assert receipt.block_number == 42
        assert receipt.sender == VET
        assert receipt.function == "mint"

        tx = node.sent("eth_sendTransaction")[-1][0]
        assert tx["from"].lower() == VET
        assert tx["to"].lower() == CONTRACTS.identity_registry.lower()
        assert int(tx["gas"], 16) == 0x5208

    @pytest.mark.asyncio
    async def test_reverted_receipt(self, node, rpc_ledger):
        node.receipt_status = 0
        pending = await rpc_ledger.transact(ContractName.MEDICAL_LEDGER, "authorizeVeterinarian", (VET,), OWNER)

        with pytest.raises(ExecutionReverted):
            await pending.wait()

    @pytest.mark.asyncio
    async def test_revert_at_estimation_sends_nothing(self, node, rpc_ledger):
        node.revert("mint(address,uint256,string,string)", "owner is not enabled")

        with pytest.raises(ExecutionReverted) as exc_info:
            await rpc_ledger.transact(
                ContractName.IDENTITY_REGISTRY, "mint", (OWNER, 7, "bafkanimal", "bafkreport"), VET
            )
        assert exc_info.value.reason == "owner is not enabled"
        assert node.sent("eth_sendTransaction") == []

    @pytest.mark.asyncio
    async def test_declined_by_signer(self, node, rpc_ledger):
        node.error = {"code": 4001, "message": "User denied transaction signature."}

        with pytest.raises(RequestRejected):
            await rpc_ledger.transact(ContractName.MEDICAL_LEDGER, "revokeVeterinarian", (VET,), OWNER)


class TestSessionOverNode:

    @pytest.mark.asyncio
    async def test_connect_and_read(self, node, rpc_ledger):
        node.answer("balanceOf(address)", ["uint256"], [3])
        session = Session(RpcAccountProvider(rpc_ledger.w3), rpc_ledger)

        account = await session.connect()
        balance = await LedgerGateway(session).read(BalanceOf(OWNER), strict=True)

        assert account == VET
        assert balance == 3

    @pytest.mark.asyncio
    async def test_node_on_another_chain(self, rpc_ledger):
        other = ScriptedNode(chain_id=1)
        session = Session(RpcAccountProvider(AsyncWeb3(other)), rpc_ledger)

        with pytest.raises(NetworkSetupFailed):
            await session.connect()

    @pytest.mark.asyncio
    async def test_local_signer_account(self):
        settings = Settings(
            network=NetworkConfig(rpc_url="http://127.0.0.1:8545"),
            rpc=RpcConfig(signer_key="0x" + "11" * 32),
        )
        ledger, provider = create_rpc_backend(settings)

        (account,) = await provider.request("eth_requestAccounts")

        assert Web3.is_checksum_address(account)
        assert isinstance(ledger, RpcLedger)


class TestLedgerDriver:

    def test_default_is_memory(self, monkeypatch):
        monkeypatch.delenv("VETCHAIN_LEDGER", raising=False)
        monkeypatch.delenv("VETCHAIN_RPC_URL", raising=False)
        assert get_ledger_driver() == LedgerDriver.MEMORY

    def test_rpc_url_selects_rpc(self, monkeypatch):
        monkeypatch.delenv("VETCHAIN_LEDGER", raising=False)
        monkeypatch.setenv("VETCHAIN_RPC_URL", "http://127.0.0.1:8545")
        assert get_ledger_driver() == LedgerDriver.RPC

    def test_explicit_driver_wins(self, monkeypatch):
        monkeypatch.setenv("VETCHAIN_LEDGER", "memory")
        monkeypatch.setenv("VETCHAIN_RPC_URL", "http://127.0.0.1:8545")
        assert get_ledger_driver() == LedgerDriver.MEMORY

    def test_unknown_driver(self, monkeypatch):
        monkeypatch.setenv("VETCHAIN_LEDGER", "ipc")
        with pytest.raises(ValueError):
            get_ledger_driver()
