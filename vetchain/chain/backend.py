"""
Ledger Backend Abstraction

This module defines the boundary to the already-deployed ledger.
The ledger's consensus and execution are opaque: all we get is a
read (view) call and a write (transaction) submission per contract
function.

The LedgerBackend is responsible for:
- Executing view calls and returning raw results
- Submitting transactions on behalf of a sender
- Reporting finality through PendingTransaction.wait()

The Ledger Gateway retains responsibility for:
- Typed requests per function, argument encoding
- Result normalization
- Mapping failures to the error taxonomy

FINALITY CONTRACT:
A submitted transaction is NOT durable until wait() returns a receipt
with status=1. Acceptance of the submission implies nothing.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


# ============================================================
# EXCEPTIONS
# ============================================================

class BackendError(Exception):
    """Base exception for ledger backend errors."""
    pass


class RequestRejected(BackendError):
    """The signer declined to sign/submit the transaction."""
    pass


class ExecutionReverted(BackendError):
    """The ledger reverted the call or transaction."""

    def __init__(self, reason: Optional[str] = None):
        super().__init__(f"execution reverted: {reason}" if reason else "execution reverted")
        self.reason = reason


class TransportFailure(BackendError):
    """RPC/transport failure; the ledger's answer is unknown."""
    pass


# ============================================================
# TYPES
# ============================================================

class ContractName(str, Enum):
    """The three logical contracts."""
    CREDENTIAL_REGISTRY = "credential_registry"   # Authority Registry
    IDENTITY_REGISTRY = "identity_registry"       # assets, ownership, enable flags
    MEDICAL_LEDGER = "medical_ledger"             # CID history, health, vet auth


@dataclass(frozen=True)
class TransactionReceipt:
    """Proof that a transaction reached finality."""
    tx_hash: str
    block_number: int
    status: int  # 1 = success, 0 = reverted
    sender: str
    contract: ContractName
    function: str

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class PendingTransaction(ABC):
    """A submitted transaction that has not necessarily reached finality."""

    @property
    @abstractmethod
    def tx_hash(self) -> str:
        """Hash assigned at submission."""
        pass

    @abstractmethod
    async def wait(self) -> TransactionReceipt:
        """
        Wait for finality.

        Raises:
            ExecutionReverted: if the transaction reverted on-ledger
            TransportFailure: if finality could not be observed
        """
        pass


class LedgerBackend(ABC):
    """
    Abstract ledger transport.

    Implementations:
    - InMemoryLedger: full emulation of the three contracts (dev/tests)
    - RpcLedger: JSON-RPC node bound to the deployed contracts
    """

    @abstractmethod
    async def call(
        self,
        contract: ContractName,
        function: str,
        args: tuple,
    ) -> Any:
        """
        Execute a view function.

        Raises:
            ExecutionReverted: the view reverted (e.g. unknown token)
            TransportFailure: the ledger could not be reached
        """
        pass

    @abstractmethod
    async def transact(
        self,
        contract: ContractName,
        function: str,
        args: tuple,
        sender: str,
    ) -> PendingTransaction:
        """
        Submit a state-changing function.

        Raises:
            RequestRejected: the signer declined
            ExecutionReverted: rejected at submission (gas estimation revert)
            TransportFailure: the ledger could not be reached
        """
        pass

    async def aclose(self) -> None:
        """Release transport resources. No-op by default."""
        pass
