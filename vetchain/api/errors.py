"""
HTTP mapping for the error taxonomy.

Handlers raise VetchainError subclasses; the app-level handler turns the
kind into a status code and a {"kind", "message"} body.
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from ..core.errors import ErrorKind, VetchainError
from ..observability import get_logger

logger = get_logger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION_ERROR: 422,
    ErrorKind.USER_CANCELLED: 409,
    ErrorKind.LEDGER_REJECTED: 409,
    ErrorKind.STORE_UNAVAILABLE: 502,
    ErrorKind.GATEWAY_UNAVAILABLE: 502,
    ErrorKind.PROVIDER_UNAVAILABLE: 503,
    ErrorKind.NETWORK_SETUP_FAILED: 503,
}


def status_for(kind: ErrorKind) -> int:
    return STATUS_BY_KIND.get(kind, 500)


async def vetchain_error_handler(request: Request, exc: VetchainError) -> JSONResponse:
    status_code = status_for(exc.kind)
    if status_code >= 500:
        logger.warning("Request failed", path=request.url.path, kind=exc.kind.value, error=exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())
