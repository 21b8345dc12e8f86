# Ledger boundary: backend transport, signer provider, in-memory emulations
from .address import ADDRESS_PATTERN, ZERO_ADDRESS, is_address, normalize_address, same_address
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
from .memory import InMemoryLedger, RecordedCall
from .provider import InMemoryProvider, SignerProvider

__all__ = [
    "ADDRESS_PATTERN",
    "ZERO_ADDRESS",
    "is_address",
    "normalize_address",
    "same_address",
    "BackendError",
    "ContractName",
    "ExecutionReverted",
    "LedgerBackend",
    "PendingTransaction",
    "RequestRejected",
    "TransactionReceipt",
    "TransportFailure",
    "InMemoryLedger",
    "RecordedCall",
    "InMemoryProvider",
    "SignerProvider",
]
