"""
VetChain - Veterinary Asset Ledger

Main application entry point.

Animals are registered as ledger assets by licensed veterinarians.
Descriptive data and medical records live in content-addressed storage;
the ledger only holds references, ownership and the current health state.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vetchain.api.errors import vetchain_error_handler
from vetchain.config import Settings
from vetchain.core.errors import VetchainError
from vetchain.observability import (
    setup_logging,
    get_logger,
    RequestContextMiddleware,
    check_health,
    get_metrics,
)
from vetchain.runtime import auto_seed_enabled, create_runtime, seed_demo_data
from vetchain.storage import create_content_store

# Setup logging at import time
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = Settings.from_env()
    runtime = create_runtime(settings, store=create_content_store(settings.content_store))
    app.state.runtime = runtime

    await runtime.session.connect()

    if auto_seed_enabled():
        await seed_demo_data(runtime)

    logger.info(
        "Application startup complete",
        chain_id=settings.network.chain_id,
        account=runtime.session.account,
        store_type=type(runtime.store).__name__,
        ledger_type=type(runtime.ledger).__name__,
    )

    yield

    await runtime.aclose()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="VetChain",
    description="""
## Veterinary Asset Ledger

Orchestration layer between veterinarians/owners, a content-addressed
store, and the deployed ledger contracts.

### Reads

- Owned assets, each merged with its metadata document
- Medical history in ledger append order
- Veterinarians an owner has authorized

Reads degrade per item: an asset whose document cannot be fetched is
omitted, never the whole list.

### Writes

Uploads happen first, then one ledger transaction, then finality.
A failed upload never leaves an on-chain reference behind.

### Storage Backends

- **InMemoryContentStore**: Development/testing (default)
- **PinningServiceStore**: Pinning service uploads + public gateway reads

Set `VETCHAIN_PINNING_JWT` (or `VETCHAIN_CONTENT_STORE=http`) to use the pinning service.
    """,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add request context middleware for logging
app.add_middleware(RequestContextMiddleware)

# CORS configuration for the dApp dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(VetchainError, vetchain_error_handler)

from vetchain.api.routes_public import router as public_api_router
from vetchain.api.routes_store import router as store_api_router
app.include_router(public_api_router)
app.include_router(store_api_router)


@app.get("/health", tags=["System"])
async def health(request: Request):
    """
    Health check.

    Returns 200 if the session is connected to the required network,
    503 otherwise.
    """
    runtime = request.app.state.runtime
    health_status = check_health(session=runtime.session, content_store=runtime.store)

    return JSONResponse(
        status_code=200 if health_status.healthy else 503,
        content={
            "status": "healthy" if health_status.healthy else "unhealthy",
            "checks": health_status.checks,
            "duration_ms": health_status.duration_ms,
        },
    )


@app.get("/metrics", tags=["System"])
async def metrics():
    """
    Get application metrics.

    Returns counters and latency percentiles.
    """
    return get_metrics().get_summary()


@app.get("/api", tags=["System"])
async def api_info(request: Request):
    """API info for the frontend."""
    runtime = request.app.state.runtime
    return {
        "name": "VetChain API",
        "version": "0.1.0",
        "chain_id": runtime.settings.network.chain_id,
        "contracts": {
            "credential_registry": runtime.settings.contracts.credential_registry,
            "identity_registry": runtime.settings.contracts.identity_registry,
            "medical_ledger": runtime.settings.contracts.medical_ledger,
        },
        "storage_backend": type(runtime.store).__name__,
        "endpoints": {
            "assets": "/api/owners/{address}/assets",
            "history": "/api/assets/{asset_id}/history",
            "veterinarians": "/api/owners/{address}/veterinarians",
            "authorization_link": "/api/veterinarians/{address}/authorization-link",
            "authorization_qr": "/api/veterinarians/{address}/authorization-qr.png",
            "upload_file": "/api/ipfs/upload",
            "upload_json": "/api/ipfs/json",
        },
    }
