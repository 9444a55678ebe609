"""REST API endpoints for the Shadow Pool engine."""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from shadowpool import __version__
from shadowpool.config import configure_logging, get_settings
from shadowpool.core.engine import ShieldedPoolEngine
from shadowpool.core.ledger import InMemoryLedger
from shadowpool.core.verifier import TranscriptVerifier
from shadowpool.models.schemas import (
    CreatePoolRequest,
    CreatePoolResponse,
    DepositRequest,
    DepositResponse,
    ErrorResponse,
    MerklePathResponse,
    NullifierStatusResponse,
    PoolListResponse,
    PoolStateResponse,
    RootStatusResponse,
    WithdrawalRequest,
    WithdrawalResponse,
)
from shadowpool.storage import get_db_manager
from shadowpool.utils.encoding import bytes_to_hex, hex_to_bytes
from shadowpool.exceptions import (
    AlreadySpentError,
    DuplicateCommitmentError,
    FeeRecipientMismatchError,
    InvalidDenominationError,
    InvalidFeeError,
    InvalidLeafIndexError,
    InvalidProofError,
    InvalidRecipientError,
    InvalidRootError,
    PayoutFailedError,
    PayoutNotFoundError,
    PoolExistsError,
    PoolFullError,
    PoolInactiveError,
    PoolNotFoundError,
    ShadowPoolError,
    StorageError,
    TransferFailedError,
)

logger = logging.getLogger(__name__)

# Most specific first: the first matching class decides the status code
ERROR_STATUS = [
    (PoolNotFoundError, 404, "pool_not_found"),
    (PayoutNotFoundError, 404, "payout_not_found"),
    (InvalidLeafIndexError, 404, "leaf_not_found"),
    (PoolExistsError, 409, "pool_exists"),
    (PoolInactiveError, 409, "pool_inactive"),
    (PoolFullError, 409, "pool_full"),
    (DuplicateCommitmentError, 409, "duplicate_commitment"),
    (AlreadySpentError, 409, "already_spent"),
    (InvalidRootError, 400, "invalid_root"),
    (InvalidProofError, 400, "invalid_proof"),
    (FeeRecipientMismatchError, 400, "fee_recipient_mismatch"),
    (InvalidRecipientError, 400, "invalid_recipient"),
    (InvalidDenominationError, 400, "invalid_denomination"),
    (InvalidFeeError, 400, "invalid_fee"),
    (TransferFailedError, 402, "transfer_failed"),
    (PayoutFailedError, 502, "payout_failed"),
    (StorageError, 500, "storage_error"),
]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())
    version: str = __version__


ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


class StuckPayoutListResponse(BaseModel):
    """Payouts waiting for operator retry."""

    stuck_payouts: List[dict]


def build_default_engine() -> ShieldedPoolEngine:
    """
    Engine wired from settings, with the in-memory ledger and dev verifier.

    The in-memory ledger is not durable. Accounts are seeded from
    ``genesis_balances`` on every start, and when pools are reloaded from
    storage each custody account is re-credited with the value its pool
    still holds.
    """
    settings = get_settings()
    store = None
    if settings.persist:
        store = get_db_manager(settings.database_url)

    ledger = InMemoryLedger(settings.genesis_balances)
    engine = ShieldedPoolEngine(
        ledger=ledger,
        verifier=TranscriptVerifier(),
        store=store,
        settings=settings,
    )
    for pool_id in engine.load_from_store():
        pool = engine.get_pool(pool_id)
        if pool.custody_balance > 0:
            ledger.credit(pool.custody_account, pool.custody_balance)
    return engine


def get_engine(request: Request) -> ShieldedPoolEngine:
    return request.app.state.engine


def create_app(engine: Optional[ShieldedPoolEngine] = None) -> FastAPI:
    """Build the FastAPI application around an engine."""
    app = FastAPI(
        title="Shadow Pool REST API",
        description="Fixed-denomination shielded pool with nullifier-based withdrawals",
        version=__version__,
        responses=ERROR_RESPONSES,
    )
    app.state.engine = engine if engine is not None else build_default_engine()

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert Pydantic validation errors (422) to 400 Bad Request."""
        error_messages = []
        for error in exc.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            error_messages.append(f"{field}: {error['msg']}")

        return JSONResponse(status_code=400, content={"detail": "; ".join(error_messages)})

    @app.exception_handler(ShadowPoolError)
    async def pool_exception_handler(request: Request, exc: ShadowPoolError):
        for error_class, status_code, code in ERROR_STATUS:
            if isinstance(exc, error_class):
                break
        else:
            status_code, code = 400, "pool_error"

        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"error": str(exc), "code": code})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        """Malformed digests in path parameters."""
        return JSONResponse(status_code=400, content={"error": str(exc), "code": "invalid_input"})

    # ============================================================================
    # Health
    # ============================================================================

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check():
        return HealthResponse(status="operational")

    # ============================================================================
    # Pools
    # ============================================================================

    @app.post("/pools", response_model=CreatePoolResponse, status_code=201, tags=["Pools"])
    def create_pool(
        request: CreatePoolRequest, engine: ShieldedPoolEngine = Depends(get_engine)
    ):
        pool_id = engine.init_pool(
            denomination=request.denomination,
            fee_bps=request.fee_bps,
            authority=request.authority,
            fee_recipient=request.fee_recipient,
        )
        return CreatePoolResponse(pool_id=pool_id)

    @app.get("/pools", response_model=PoolListResponse, tags=["Pools"])
    def list_pools(engine: ShieldedPoolEngine = Depends(get_engine)):
        return PoolListResponse(pools=engine.list_pools())

    @app.get("/pools/{pool_id}", response_model=PoolStateResponse, tags=["Pools"])
    def get_pool_state(pool_id: str, engine: ShieldedPoolEngine = Depends(get_engine)):
        return PoolStateResponse(**engine.get_pool_state(pool_id))

    @app.get("/pools/{pool_id}/roots/{root}", response_model=RootStatusResponse, tags=["Pools"])
    def get_root_status(pool_id: str, root: str, engine: ShieldedPoolEngine = Depends(get_engine)):
        return RootStatusResponse(root=root, known=engine.is_known_root(pool_id, root))

    @app.get(
        "/pools/{pool_id}/nullifiers/{nullifier_hash}",
        response_model=NullifierStatusResponse,
        tags=["Pools"],
    )
    def get_nullifier_status(
        pool_id: str, nullifier_hash: str, engine: ShieldedPoolEngine = Depends(get_engine)
    ):
        return NullifierStatusResponse(
            nullifier_hash=nullifier_hash, spent=engine.is_spent(pool_id, nullifier_hash)
        )

    @app.get(
        "/pools/{pool_id}/paths/{leaf_index}", response_model=MerklePathResponse, tags=["Pools"]
    )
    def get_merkle_path(
        pool_id: str, leaf_index: int, engine: ShieldedPoolEngine = Depends(get_engine)
    ):
        path = engine.get_merkle_path(pool_id, leaf_index)
        return MerklePathResponse(
            leaf_index=path.leaf_index,
            siblings=[bytes_to_hex(sibling) for sibling in path.siblings],
            path_bits=path.path_bits,
            root=bytes_to_hex(path.root),
        )

    # ============================================================================
    # Deposit / Withdrawal
    # ============================================================================

    @app.post("/pools/{pool_id}/deposits", response_model=DepositResponse, tags=["Deposit"])
    def deposit(
        pool_id: str, request: DepositRequest, engine: ShieldedPoolEngine = Depends(get_engine)
    ):
        receipt = engine.deposit(pool_id, request.commitment, depositor=request.depositor)
        return DepositResponse(**receipt.to_dict())

    @app.post(
        "/pools/{pool_id}/withdrawals", response_model=WithdrawalResponse, tags=["Withdrawal"]
    )
    def withdraw(
        pool_id: str, request: WithdrawalRequest, engine: ShieldedPoolEngine = Depends(get_engine)
    ):
        receipt = engine.withdraw(
            pool_id,
            nullifier_hash=request.nullifier_hash,
            root=request.root,
            recipient=request.recipient,
            fee_recipient=request.fee_recipient,
            proof=hex_to_bytes(request.proof),
        )
        return WithdrawalResponse(**receipt.to_dict())

    @app.get(
        "/pools/{pool_id}/stuck-payouts",
        response_model=StuckPayoutListResponse,
        tags=["Withdrawal"],
    )
    def list_stuck_payouts(pool_id: str, engine: ShieldedPoolEngine = Depends(get_engine)):
        return StuckPayoutListResponse(
            stuck_payouts=[stuck.to_dict() for stuck in engine.stuck_payouts(pool_id)]
        )

    @app.post(
        "/pools/{pool_id}/stuck-payouts/{nullifier_hash}/retry",
        response_model=WithdrawalResponse,
        tags=["Withdrawal"],
    )
    def retry_stuck_payout(
        pool_id: str, nullifier_hash: str, engine: ShieldedPoolEngine = Depends(get_engine)
    ):
        receipt = engine.retry_payout(pool_id, nullifier_hash)
        return WithdrawalResponse(**receipt.to_dict())

    return app


def create_default_app() -> FastAPI:
    """Entry point for ``uvicorn --factory shadowpool.api.routes:create_default_app``."""
    configure_logging(get_settings().log_level)
    return create_app()
