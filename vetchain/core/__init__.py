# Core orchestration services
from .errors import (
    ErrorKind,
    VetchainError,
    UserCancelled,
    ProviderUnavailable,
    NetworkSetupFailed,
    ValidationError,
    StoreUnavailable,
    LedgerRejected,
    GatewayUnavailable,
    ProviderRpcError,
)
from .hasher import Hasher, CanonicalSerializationError
from .session import Session, SessionState, LedgerHandle
from .gateway import LedgerGateway, LedgerFunction, LedgerRequest, Transaction, FUNCTIONS
from .aggregator import Aggregator, Outcome, settle, settle_all
from .mutations import (
    MutationCoordinator,
    Mutation,
    MutationState,
    MintResult,
    MedicalRecordResult,
)
from .deeplink import (
    AuthorizationLink,
    build_authorization_link,
    parse_authorization_link,
    render_qr_png,
)

__all__ = [
    "ErrorKind",
    "VetchainError",
    "UserCancelled",
    "ProviderUnavailable",
    "NetworkSetupFailed",
    "ValidationError",
    "StoreUnavailable",
    "LedgerRejected",
    "GatewayUnavailable",
    "ProviderRpcError",
    "Hasher",
    "CanonicalSerializationError",
    "Session",
    "SessionState",
    "LedgerHandle",
    "LedgerGateway",
    "LedgerFunction",
    "LedgerRequest",
    "Transaction",
    "FUNCTIONS",
    "Aggregator",
    "Outcome",
    "settle",
    "settle_all",
    "MutationCoordinator",
    "Mutation",
    "MutationState",
    "MintResult",
    "MedicalRecordResult",
    "AuthorizationLink",
    "build_authorization_link",
    "parse_authorization_link",
    "render_qr_png",
]
