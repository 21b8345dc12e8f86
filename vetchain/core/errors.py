"""
Error Taxonomy

Every failure that leaves the orchestration layer is one of a closed set
of kinds. Callers (UI, API, CLI) branch on the kind, never on messages.

Kinds:
- USER_CANCELLED: a signer/account prompt was declined. Not an alarm.
- PROVIDER_UNAVAILABLE: no compatible signer detected
- NETWORK_SETUP_FAILED: the required network could not be selected/added
- VALIDATION_ERROR: a local precondition failed (no ledger round-trip)
- STORE_UNAVAILABLE: content upload/fetch failed
- LEDGER_REJECTED: the ledger reverted the write
- GATEWAY_UNAVAILABLE: RPC/transport failure talking to the ledger

Read paths degrade instead of raising. Write paths always propagate.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of failure kinds surfaced to callers."""
    USER_CANCELLED = "user_cancelled"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    NETWORK_SETUP_FAILED = "network_setup_failed"
    VALIDATION_ERROR = "validation_error"
    STORE_UNAVAILABLE = "store_unavailable"
    LEDGER_REJECTED = "ledger_rejected"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"


class VetchainError(Exception):
    """Base exception for every failure kind."""

    kind: ErrorKind = ErrorKind.GATEWAY_UNAVAILABLE

    # False for failures the UI should not present as alarming
    user_facing: bool = True

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value

    def to_dict(self) -> dict:
        """Serialize for API responses and structured logs."""
        return {"kind": self.kind.value, "message": self.message}


class UserCancelled(VetchainError):
    """The user declined a signer or account prompt."""
    kind = ErrorKind.USER_CANCELLED
    user_facing = False


class ProviderUnavailable(VetchainError):
    """No compatible signer provider is present."""
    kind = ErrorKind.PROVIDER_UNAVAILABLE


class NetworkSetupFailed(VetchainError):
    """Switching to (or adding) the required network failed."""
    kind = ErrorKind.NETWORK_SETUP_FAILED


class ValidationError(VetchainError):
    """A local precondition failed before any network call."""
    kind = ErrorKind.VALIDATION_ERROR


class StoreUnavailable(VetchainError):
    """The content store rejected, timed out, or returned garbage."""
    kind = ErrorKind.STORE_UNAVAILABLE


class LedgerRejected(VetchainError):
    """The ledger reverted a write."""
    kind = ErrorKind.LEDGER_REJECTED

    def __init__(self, message: str = "", reason: Optional[str] = None):
        super().__init__(message or (f"Transaction reverted: {reason}" if reason else ""))
        self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class GatewayUnavailable(VetchainError):
    """Transport/RPC failure, or no connected session to carry the call."""
    kind = ErrorKind.GATEWAY_UNAVAILABLE


class ProviderRpcError(Exception):
    """
    Error raised by a signer provider (EIP-1193 shape).

    Not part of the taxonomy: the session maps it to one of the kinds above.
    """

    USER_REJECTED = 4001
    UNAUTHORIZED = 4100
    UNSUPPORTED_METHOD = 4200
    DISCONNECTED = 4900
    UNRECOGNIZED_CHAIN = 4902

    def __init__(self, code: int, message: str = ""):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message

    @property
    def is_user_rejection(self) -> bool:
        return self.code == self.USER_REJECTED
