from fastapi import APIRouter, FastAPI, HTTPException, Request, Depends, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
import structlog
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from config import Settings, configure_logging, get_settings
from decoder import DecodeError, validate_record
from errors import PaymentsError
from models import AccountSnapshot, ErrorResponse, HealthResponse, TransactionRecord, TransactionResponse
from report import render_report
from services import PaymentsEngine, TransactionService

logger = structlog.get_logger()

router = APIRouter()


# Dependency injection
def get_service(request: Request) -> TransactionService:
    return request.app.state.service


# Health check endpoint
@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check API health and get ledger statistics"
)
async def health_check(service: TransactionService = Depends(get_service)):
    return HealthResponse(
        status="healthy",
        accounts_count=await service.account_count(),
        transactions_processed=service.processed,
        transactions_rejected=service.rejected,
        open_disputes=await service.open_disputes()
    )


# Main transaction endpoint
@router.post(
    "/transactions",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Process Transaction",
    description="Apply a deposit, withdrawal, dispute, resolve or chargeback to the ledger",
    responses={
        201: {"description": "Transaction applied"},
        400: {"description": "Insufficient funds"},
        403: {"description": "Transaction belongs to another client"},
        404: {"description": "Referenced transaction or client not found"},
        409: {"description": "Duplicate transaction or invalid dispute state"},
        422: {"description": "Validation error"},
        423: {"description": "Account locked"},
        429: {"description": "Rate limit exceeded"},
    }
)
async def create_transaction(
    record: TransactionRecord,
    service: TransactionService = Depends(get_service)
):
    try:
        record = validate_record(record)
    except DecodeError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    logger.info(
        "Transaction request received",
        type=record.type.value,
        client=record.client,
        tx=record.tx
    )

    snapshot = await service.process_transaction(record)
    return TransactionResponse(type=record.type, tx=record.tx, account=snapshot)


@router.get("/accounts", response_model=List[AccountSnapshot], summary="List client accounts")
async def list_accounts(service: TransactionService = Depends(get_service)):
    return await service.snapshot()


@router.get("/accounts/{client_id}", response_model=AccountSnapshot, summary="Get one client account")
async def get_account(client_id: int, service: TransactionService = Depends(get_service)):
    return await service.get_account(client_id)


@router.get("/report", response_class=PlainTextResponse, summary="Balance report as CSV")
async def get_report(service: TransactionService = Depends(get_service)):
    return PlainTextResponse(render_report(await service.snapshot()), media_type="text/csv")


# Root endpoint
@router.get("/", include_in_schema=False)
async def root():
    return {"message": "Payments Engine API", "docs": "/docs"}


# Request logging middleware
async def log_requests(request: Request, call_next):
    start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        client_ip=request.client.host if request.client else None
    )

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time=round(process_time, 4)
    )

    return response


async def payments_exception_handler(request: Request, exc: PaymentsError):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            detail=str(exc),
            error_code=exc.error_code
        ).model_dump(mode="json")
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            detail=str(exc.detail),
            error_code=f"HTTP_{exc.status_code}"
        ).model_dump(mode="json")
    )


async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail="Internal server error",
            error_code="INTERNAL_ERROR"
        ).model_dump(mode="json")
    )


def create_app(settings: Optional[Settings] = None, engine: Optional[PaymentsEngine] = None) -> FastAPI:
    """Build the API around its own engine; nothing is shared between apps."""
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Payments Engine API", version=settings.app_version)
        yield
        logger.info("Shutting down Payments Engine API")

    app = FastAPI(
        title=settings.app_name,
        description="In-memory payments ledger with dispute, resolve and chargeback handling",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.service = TransactionService(engine or PaymentsEngine())

    # Rate limiting
    app.state.limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[f"{settings.rate_limit_per_minute}/minute"],
        enabled=settings.rate_limit_enabled,
    )
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(log_requests)

    app.add_exception_handler(PaymentsError, payments_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
