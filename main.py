from fastapi import FastAPI, HTTPException, Request, Response, Depends, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from typing import Optional
import structlog
import time
from contextlib import asynccontextmanager

from config import get_settings
from exceptions import BalanceStoreError
from logging_config import configure_logging
from models import ChargeRequest, ChargeResult, ErrorResponse, HealthResponse, ResetRequest
from repositories import (
    BalanceRepository,
    close_balance_repository,
    get_balance_repository,
    init_balance_repository,
)
from services import AuthorizationService, get_authorization_service

settings = get_settings()
configure_logging(settings)

logger = structlog.get_logger()

# Rate limiting
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)

# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Charge Authorization API", store_backend=settings.store_backend)
    init_balance_repository(settings)
    yield
    # Shutdown
    await close_balance_repository()
    logger.info("Shutting down Charge Authorization API")

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Atomic balance check-and-debit authorization for account charges",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=settings.allowed_methods,
    allow_headers=settings.allowed_headers,
)

# Request logging middleware
@app.middleware("http")
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

# Dependency injection
def get_service(
    balance_repo: BalanceRepository = Depends(get_balance_repository)
) -> AuthorizationService:
    return get_authorization_service(balance_repo, settings.default_balance)

rate_limit = f"{settings.rate_limit_per_minute}/minute"

# Health check endpoint
@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check that the balance store is reachable",
    responses={503: {"description": "Balance store unreachable"}}
)
async def health_check(
    response: Response,
    balance_repo: BalanceRepository = Depends(get_balance_repository)
):
    if await balance_repo.ping():
        return HealthResponse(status="healthy", store=settings.store_backend)

    logger.error("Health check failed", store_backend=settings.store_backend)
    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthResponse(status="unhealthy", store=settings.store_backend)

@app.post(
    "/reset",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Reset Balance",
    description="Set an account balance back to the default balance",
    responses={
        204: {"description": "Balance reset"},
        500: {"model": ErrorResponse, "description": "Balance store failure"}
    }
)
@limiter.limit(rate_limit)
async def reset_account(
    request: Request,
    reset_request: Optional[ResetRequest] = None,
    service: AuthorizationService = Depends(get_service)
):
    account = (reset_request or ResetRequest()).account

    try:
        await service.reset(account)
    except Exception as e:
        logger.error("Error while resetting account", account=account, error=str(e), exc_info=True)
        raise

    logger.info("Successfully reset account", account=account)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@app.post(
    "/charge",
    response_model=ChargeResult,
    status_code=status.HTTP_200_OK,
    summary="Charge Account",
    description="Atomically check funds and debit an account; unauthorized charges still return 200",
    responses={
        200: {"description": "Charge evaluated (authorized or not)"},
        422: {"description": "Validation error"},
        429: {"description": "Rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Balance store failure"}
    }
)
@limiter.limit(rate_limit)
async def charge_account(
    request: Request,
    charge_request: Optional[ChargeRequest] = None,
    service: AuthorizationService = Depends(get_service)
):
    if charge_request is None:
        charge_request = ChargeRequest()

    try:
        result = await service.charge(charge_request.account, charge_request.charges)
    except Exception as e:
        logger.error(
            "Error while charging account",
            account=charge_request.account,
            error=str(e),
            exc_info=True
        )
        raise

    if result.isAuthorized:
        logger.info(
            "Authorized and successfully charged account",
            account=charge_request.account,
            charges=result.charges,
            remaining_balance=result.remainingBalance
        )
    else:
        logger.info("Not authorized for account", account=charge_request.account)

    return result

# Global exception handlers
@app.exception_handler(BalanceStoreError)
async def balance_store_exception_handler(request: Request, exc: BalanceStoreError):
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=str(exc),
            error_code="STORE_UNAVAILABLE"
        ).model_dump(mode="json")
    )

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=str(exc.detail),
            error_code=f"HTTP_{exc.status_code}"
        ).model_dump(mode="json")
    )

@app.exception_handler(Exception)
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
            error="Internal server error",
            error_code="INTERNAL_ERROR"
        ).model_dump(mode="json")
    )

# Root endpoint
@app.get("/", include_in_schema=False)
async def root():
    return {"message": settings.app_name, "docs": "/docs"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
