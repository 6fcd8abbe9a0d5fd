"""
Auto-Sweep API - HTTP bridge for the front-end's registration flow.

Provides REST endpoints for:
- Registering wallets (POST /wallets)
- Unregistering wallets (DELETE /wallets/{address})
- Sweep history (GET /wallets/{address}/history)
- Owner wallets (GET /owners/{owner}/wallets)
- Stats and health checks (GET /stats, GET /health)
"""

from typing import Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader

from . import __version__
from .errors import InvalidWalletError, StorageError, WalletNotFoundError
from .models import (
    AddWalletRequest,
    HealthResponse,
    RemoveWalletResponse,
    StatsResponse,
    SweepRecordResponse,
    WalletResponse,
)
from .service import AutoSweepService

logger = structlog.get_logger()

# API key via header only
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_service(request: Request) -> AutoSweepService:
    return request.app.state.service


async def verify_api_token(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header),
) -> bool:
    """
    Verify API token if configured.

    With no token configured, authentication is disabled (local development).
    Once configured, every request must carry it in X-API-Key.
    """
    expected = request.app.state.api_token
    if not expected:
        return True

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API token required. Provide via X-API-Key header.",
            headers={"WWW-Authenticate": "X-API-Key"},
        )
    if api_key != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API token",
        )
    return True


def create_app(service: AutoSweepService, api_token: Optional[str] = None) -> FastAPI:
    """Build the registration API around a running service."""
    app = FastAPI(
        title="Auto-Sweep API",
        description="Registration interface for the auto-sweep service",
        version=__version__,
    )
    app.state.service = service
    app.state.api_token = api_token

    @app.exception_handler(WalletNotFoundError)
    async def wallet_not_found_handler(request: Request, exc: WalletNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(InvalidWalletError)
    async def invalid_wallet_handler(request: Request, exc: InvalidWalletError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("api_storage_error", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Storage unavailable"},
        )

    # ========================================================================
    # Health Check
    # ========================================================================

    @app.get("/health", response_model=HealthResponse)
    def health_check(svc: AutoSweepService = Depends(get_service)) -> HealthResponse:
        """Check service health and chain connectivity."""
        try:
            block_number: Optional[int] = svc.reader.get_block_number()
        except Exception as e:
            logger.warning("health_chain_unreachable", error=str(e))
            block_number = None

        return HealthResponse(
            status="ok" if block_number is not None else "degraded",
            version=__version__,
            chain_rpc=block_number is not None,
            block_number=block_number,
            phase=svc.state.phase.value,
            relayer=getattr(svc.relayer, "address", None),
        )

    @app.get("/stats", response_model=StatsResponse, dependencies=[Depends(verify_api_token)])
    def stats(svc: AutoSweepService = Depends(get_service)) -> StatsResponse:
        result = svc.get_stats()
        return StatsResponse(total_wallets=result.total_wallets, total_sweeps=result.total_sweeps)

    # ========================================================================
    # Wallet registration
    # ========================================================================

    @app.post(
        "/wallets",
        response_model=WalletResponse,
        status_code=status.HTTP_201_CREATED,
        dependencies=[Depends(verify_api_token)],
    )
    def add_wallet(
        request: AddWalletRequest, svc: AutoSweepService = Depends(get_service)
    ) -> WalletResponse:
        """Register a burner wallet for auto-sweep."""
        wallet = svc.add_wallet(request.address, request.owner, request.salt)
        return WalletResponse.from_wallet(wallet)

    @app.delete(
        "/wallets/{address}",
        response_model=RemoveWalletResponse,
        dependencies=[Depends(verify_api_token)],
    )
    def remove_wallet(address: str, svc: AutoSweepService = Depends(get_service)) -> RemoveWalletResponse:
        """Stop monitoring a wallet. Its sweep history is kept."""
        svc.remove_wallet(address)
        return RemoveWalletResponse(success=True, address=address)

    @app.get(
        "/wallets/{address}/history",
        response_model=list[SweepRecordResponse],
        dependencies=[Depends(verify_api_token)],
    )
    def wallet_history(
        address: str, svc: AutoSweepService = Depends(get_service)
    ) -> list[SweepRecordResponse]:
        """Sweep history for a wallet, most recent first."""
        return [SweepRecordResponse.from_record(r) for r in svc.get_wallet_history(address)]

    @app.get(
        "/owners/{owner}/wallets",
        response_model=list[WalletResponse],
        dependencies=[Depends(verify_api_token)],
    )
    def owner_wallets(owner: str, svc: AutoSweepService = Depends(get_service)) -> list[WalletResponse]:
        """Wallets registered for an owner, newest first."""
        return [WalletResponse.from_wallet(w) for w in svc.get_owner_wallets(owner)]

    return app
