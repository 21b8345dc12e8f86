"""
Ledger Gateway

Typed wrappers around every ledger function the application uses.

Each logical function is a request type in a closed set. A lookup table
maps it to its contract, its deployed function name, whether it is a
view, a result normalizer, and the neutral value returned when a routine
read fails.

READ POLICY:
- Raw results are never trusted: every result goes through its normalizer
  (always a list for multi-value reads, an int/HealthState for enums).
- Non-strict reads (the default) never raise: absence or failure becomes
  the neutral value (False / 0 / empty list / None).
- Strict reads (preconditions of a write) propagate the failure.

WRITE POLICY:
- submit() returns a Transaction as soon as the ledger accepts it.
- Nothing is durable until Transaction.wait() returns.
- Signer declined -> UserCancelled
- On-ledger revert -> LedgerRejected (with reason)
- Transport failure -> GatewayUnavailable
"""

import time
from dataclasses import dataclass, fields
from typing import Any, Callable, ClassVar, Optional

from ..chain.address import is_address
from ..chain.backend import (
    ContractName,
    ExecutionReverted,
    PendingTransaction,
    RequestRejected,
    TransactionReceipt,
    TransportFailure,
)
from ..observability import get_logger, get_metrics
from ..schemas.asset import HealthState
from .errors import GatewayUnavailable, LedgerRejected, UserCancelled, VetchainError

logger = get_logger(__name__)


# ============================================================
# Normalizers
# ============================================================

def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValueError(f"Expected bool, got {value!r}")


def _as_uint(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Expected uint, got {value!r}")
    if isinstance(value, str):
        value = int(value, 0)
    if not isinstance(value, int) or value < 0:
        raise ValueError(f"Expected uint, got {value!r}")
    return value


def _as_string(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"Expected string, got {type(value).__name__}")
    return value


def _as_string_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"Expected string[], got {type(value).__name__}")
    return [str(v) for v in value]


def _as_address_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"Expected address[], got {type(value).__name__}")
    return [v for v in value if is_address(v)]


def _as_health_state(value: Any) -> HealthState:
    return HealthState.from_raw(value)


def _no_result(value: Any) -> None:
    return None


# ============================================================
# Requests (closed variant set)
# ============================================================

@dataclass(frozen=True)
class LedgerRequest:
    """Base for every typed ledger request."""
    function: ClassVar[str]

    def args(self) -> tuple:
        """Positional arguments in ABI order."""
        return tuple(getattr(self, f.name) for f in fields(self))


# --- Reads ---

@dataclass(frozen=True)
class HasValidCredential(LedgerRequest):
    function: ClassVar[str] = "hasValidCredential"
    vet: str


@dataclass(frozen=True)
class BalanceOf(LedgerRequest):
    function: ClassVar[str] = "balanceOf"
    owner: str


@dataclass(frozen=True)
class AssetOfOwnerByIndex(LedgerRequest):
    function: ClassVar[str] = "assetOfOwnerByIndex"
    owner: str
    index: int


@dataclass(frozen=True)
class ContentURI(LedgerRequest):
    function: ClassVar[str] = "contentURI"
    asset_id: int


@dataclass(frozen=True)
class MedicalHistory(LedgerRequest):
    function: ClassVar[str] = "medicalHistory"
    asset_id: int


@dataclass(frozen=True)
class HealthStateOf(LedgerRequest):
    function: ClassVar[str] = "healthState"
    asset_id: int


@dataclass(frozen=True)
class AuthorizedVeterinarians(LedgerRequest):
    function: ClassVar[str] = "authorizedVeterinarians"
    owner: str


@dataclass(frozen=True)
class IsAuthorized(LedgerRequest):
    function: ClassVar[str] = "isAuthorized"
    owner: str
    vet: str


# --- Writes ---

@dataclass(frozen=True)
class Mint(LedgerRequest):
    function: ClassVar[str] = "mint"
    owner: str
    asset_id: int
    metadata_cid: str
    first_record_cid: str


@dataclass(frozen=True)
class SetOwnerEnabled(LedgerRequest):
    function: ClassVar[str] = "setOwnerEnabled"
    owner: str
    enabled: bool


@dataclass(frozen=True)
class Transfer(LedgerRequest):
    function: ClassVar[str] = "transfer"
    from_address: str
    to_address: str
    asset_id: int


@dataclass(frozen=True)
class AppendMedicalRecord(LedgerRequest):
    function: ClassVar[str] = "appendMedicalRecord"
    asset_id: int
    cid: str
    health_state: HealthState

    def args(self) -> tuple:
        return (self.asset_id, self.cid, int(self.health_state))


@dataclass(frozen=True)
class AuthorizeVeterinarian(LedgerRequest):
    function: ClassVar[str] = "authorizeVeterinarian"
    vet: str


@dataclass(frozen=True)
class RevokeVeterinarian(LedgerRequest):
    function: ClassVar[str] = "revokeVeterinarian"
    vet: str


# ============================================================
# Dispatch table
# ============================================================

@dataclass(frozen=True)
class LedgerFunction:
    """How one logical function maps onto the deployed contracts."""
    contract: ContractName
    abi_name: str
    view: bool
    normalize: Callable[[Any], Any]
    default: Callable[[], Any] = lambda: None


FUNCTIONS: dict[str, LedgerFunction] = {
    # Authority Registry
    HasValidCredential.function: LedgerFunction(
        ContractName.CREDENTIAL_REGISTRY, "tieneCredencialValida", True, _as_bool, lambda: False),

    # Identity Registry
    BalanceOf.function: LedgerFunction(
        ContractName.IDENTITY_REGISTRY, "balanceOf", True, _as_uint, lambda: 0),
    AssetOfOwnerByIndex.function: LedgerFunction(
        ContractName.IDENTITY_REGISTRY, "tokenOfOwnerByIndex", True, _as_uint),
    ContentURI.function: LedgerFunction(
        ContractName.IDENTITY_REGISTRY, "tokenURI", True, _as_string),
    Mint.function: LedgerFunction(
        ContractName.IDENTITY_REGISTRY, "mint", False, _no_result),
    SetOwnerEnabled.function: LedgerFunction(
        ContractName.IDENTITY_REGISTRY, "setOwnerEnabled", False, _no_result),
    Transfer.function: LedgerFunction(
        ContractName.IDENTITY_REGISTRY, "transferFrom", False, _no_result),

    # Medical Ledger
    MedicalHistory.function: LedgerFunction(
        ContractName.MEDICAL_LEDGER, "obtenerHistorialMedico", True, _as_string_list, list),
    HealthStateOf.function: LedgerFunction(
        ContractName.MEDICAL_LEDGER, "obtenerEstadoSalud", True, _as_health_state,
        lambda: HealthState.SANO),
    AuthorizedVeterinarians.function: LedgerFunction(
        ContractName.MEDICAL_LEDGER, "obtenerVeterinariosAutorizados", True, _as_address_list, list),
    IsAuthorized.function: LedgerFunction(
        ContractName.MEDICAL_LEDGER, "isVetAuthorized", True, _as_bool, lambda: False),
    AppendMedicalRecord.function: LedgerFunction(
        ContractName.MEDICAL_LEDGER, "agregarRegistroMedico", False, _no_result),
    AuthorizeVeterinarian.function: LedgerFunction(
        ContractName.MEDICAL_LEDGER, "authorizeVeterinarian", False, _no_result),
    RevokeVeterinarian.function: LedgerFunction(
        ContractName.MEDICAL_LEDGER, "revokeVeterinarian", False, _no_result),
}


def lookup(request: LedgerRequest) -> LedgerFunction:
    try:
        return FUNCTIONS[request.function]
    except KeyError:
        raise ValueError(f"Unknown ledger function: {request.function}")


# ============================================================
# Transactions
# ============================================================

class Transaction:
    """
    A write accepted by the ledger, not yet final.

    Callers must await wait() before treating the effect as durable.
    """

    def __init__(self, pending: PendingTransaction, function: str, account: str):
        self._pending = pending
        self.function = function
        self.account = account
        self._submitted_at = time.perf_counter()

    @property
    def tx_hash(self) -> str:
        return self._pending.tx_hash

    async def wait(self) -> TransactionReceipt:
        """
        Await finality.

        Raises:
            LedgerRejected: the transaction reverted
            GatewayUnavailable: finality could not be observed
        """
        try:
            receipt = await self._pending.wait()
        except ExecutionReverted as e:
            self._record(success=False)
            logger.warning("Transaction reverted", function=self.function,
                           tx_hash=self.tx_hash, reason=e.reason)
            raise LedgerRejected(reason=e.reason)
        except TransportFailure as e:
            self._record(success=False)
            raise GatewayUnavailable(f"Lost track of {self.tx_hash}: {e}")

        self._record(success=True)
        logger.info("Transaction final", function=self.function,
                    tx_hash=receipt.tx_hash, block_number=receipt.block_number)
        return receipt

    def _record(self, success: bool) -> None:
        latency_ms = (time.perf_counter() - self._submitted_at) * 1000
        get_metrics().record_finality(latency_ms, success=success)


# ============================================================
# Gateway
# ============================================================

class LedgerGateway:
    """
    Typed read/write access to the three contracts through a Session.

    Every call goes through Session.acquire(), so no call is attempted
    unless the session is Connected on the required network.
    """

    def __init__(self, session):
        self._session = session

    @property
    def session(self):
        return self._session

    # ------------------------------------------------------------
    # Generic dispatch
    # ------------------------------------------------------------

    async def read(self, request: LedgerRequest, strict: bool = False) -> Any:
        """
        Execute a view request and normalize its result.

        Args:
            request: A read request
            strict: Propagate failures instead of returning the neutral value
        """
        fn = lookup(request)
        if not fn.view:
            raise ValueError(f"{request.function} is not a view function")

        try:
            handle = await self._session.acquire()
            try:
                raw = await handle.backend.call(fn.contract, fn.abi_name, request.args())
            except ExecutionReverted as e:
                raise LedgerRejected(reason=e.reason)
            except TransportFailure as e:
                raise GatewayUnavailable(f"Ledger unreachable: {e}")

            try:
                return fn.normalize(raw)
            except (TypeError, ValueError) as e:
                raise GatewayUnavailable(f"Malformed {request.function} result: {e}")

        except VetchainError as e:
            if strict:
                raise
            logger.debug("Read normalized to default", function=request.function,
                         kind=e.kind.value, error=e.message)
            return fn.default()

    async def submit(self, request: LedgerRequest) -> Transaction:
        """
        Submit a write request. Does NOT wait for finality.

        Raises:
            GatewayUnavailable: not connected, or transport failure
            UserCancelled: the signer declined
            LedgerRejected: rejected at submission
        """
        fn = lookup(request)
        if fn.view:
            raise ValueError(f"{request.function} is a view function")

        handle = await self._session.acquire()
        try:
            pending = await handle.backend.transact(
                fn.contract, fn.abi_name, request.args(), handle.account
            )
        except RequestRejected:
            logger.info("Transaction declined by signer", function=request.function)
            raise UserCancelled("Transaction cancelled")
        except ExecutionReverted as e:
            raise LedgerRejected(reason=e.reason)
        except TransportFailure as e:
            raise GatewayUnavailable(f"Ledger unreachable: {e}")

        get_metrics().record_submission()
        logger.info("Transaction submitted", function=request.function,
                    tx_hash=pending.tx_hash, account=handle.account)
        return Transaction(pending, request.function, handle.account)

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    async def has_valid_credential(self, vet: str, strict: bool = False) -> bool:
        return await self.read(HasValidCredential(vet), strict=strict)

    async def balance_of(self, owner: str, strict: bool = False) -> int:
        return await self.read(BalanceOf(owner), strict=strict)

    async def asset_of_owner_by_index(self, owner: str, index: int, strict: bool = False) -> Optional[int]:
        return await self.read(AssetOfOwnerByIndex(owner, index), strict=strict)

    async def content_uri(self, asset_id: int, strict: bool = False) -> Optional[str]:
        return await self.read(ContentURI(asset_id), strict=strict)

    async def medical_history(self, asset_id: int, strict: bool = False) -> list[str]:
        return await self.read(MedicalHistory(asset_id), strict=strict)

    async def health_state(self, asset_id: int, strict: bool = False) -> HealthState:
        return await self.read(HealthStateOf(asset_id), strict=strict)

    async def authorized_veterinarians(self, owner: str, strict: bool = False) -> list[str]:
        return await self.read(AuthorizedVeterinarians(owner), strict=strict)

    async def is_authorized(self, owner: str, vet: str, strict: bool = False) -> bool:
        return await self.read(IsAuthorized(owner, vet), strict=strict)

    # ------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------

    async def mint(self, owner: str, asset_id: int, metadata_cid: str, first_record_cid: str) -> Transaction:
        return await self.submit(Mint(owner, asset_id, metadata_cid, first_record_cid))

    async def set_owner_enabled(self, owner: str, enabled: bool) -> Transaction:
        return await self.submit(SetOwnerEnabled(owner, enabled))

    async def transfer(self, from_address: str, to_address: str, asset_id: int) -> Transaction:
        return await self.submit(Transfer(from_address, to_address, asset_id))

    async def append_medical_record(self, asset_id: int, cid: str, health_state: HealthState) -> Transaction:
        return await self.submit(AppendMedicalRecord(asset_id, cid, HealthState.from_raw(health_state)))

    async def authorize_veterinarian(self, vet: str) -> Transaction:
        return await self.submit(AuthorizeVeterinarian(vet))

    async def revoke_veterinarian(self, vet: str) -> Transaction:
        return await self.submit(RevokeVeterinarian(vet))
