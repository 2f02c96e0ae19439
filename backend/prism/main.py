"""
PRISM — HTTP API entry point.

Privacy-preserving identity contexts and solvency proofs over a ledger
program. The application owns one PrismClient, created at startup from
settings (or injected by ``create_app`` for tests and embedding).

Error mapping:
    PrismValidationError / ProofWouldFailError   422
    NotFoundError                                404
    other LifecycleError                         409
    InsufficientFundsError                       402
    WalletNotReadyError                          503
    ConfirmationTimeoutError                     504
    ProgramRejectedError                         400
    other PrismNetworkError                      502
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from prism.api import identity, proofs
from prism.core.config import Settings, settings as default_settings
from prism.core.errors import (
    ConfirmationTimeoutError,
    InsufficientFundsError,
    LifecycleError,
    NotFoundError,
    PrismError,
    PrismNetworkError,
    PrismValidationError,
    ProgramRejectedError,
    ProofWouldFailError,
    WalletNotReadyError,
)
from prism.services.prism_client import VERSION, PrismClient

logger = logging.getLogger(__name__)

_STATUS_MAP = [
    ((PrismValidationError, ProofWouldFailError), status.HTTP_422_UNPROCESSABLE_ENTITY),
    ((NotFoundError,), status.HTTP_404_NOT_FOUND),
    ((LifecycleError,), status.HTTP_409_CONFLICT),
    ((InsufficientFundsError,), status.HTTP_402_PAYMENT_REQUIRED),
    ((WalletNotReadyError,), status.HTTP_503_SERVICE_UNAVAILABLE),
    ((ConfirmationTimeoutError,), status.HTTP_504_GATEWAY_TIMEOUT),
    ((ProgramRejectedError,), status.HTTP_400_BAD_REQUEST),
    ((PrismNetworkError,), status.HTTP_502_BAD_GATEWAY),
]


def status_for(exc: PrismError) -> int:
    for types, code in _STATUS_MAP:
        if isinstance(exc, types):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(client: Optional[PrismClient] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        prism = client or PrismClient.from_settings(settings)
        app.state.prism = prism
        app.state.boot_time = time.time()
        await prism.initialize()
        if prism.prover.is_mock_mode():
            logger.warning("[MAIN] Solvency prover is SIMULATED: proofs are not cryptographically sound")
        try:
            yield
        finally:
            await prism.aclose()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Privacy-preserving identity contexts and solvency proofs",
        version=VERSION,
        openapi_url=f"{settings.API_V1_STR}/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PrismError)
    async def prism_error_handler(request: Request, exc: PrismError):
        code = status_for(exc)
        log = logger.error if code >= 500 else logger.info
        log(f"[MAIN] {request.method} {request.url.path} -> {code} {exc.code}: {exc.message}")
        return JSONResponse(status_code=code, content={"detail": exc.to_dict()})

    app.include_router(identity.router, prefix=settings.API_V1_STR)
    app.include_router(proofs.router, prefix=settings.API_V1_STR)

    @app.get("/health", tags=["System"])
    def health_check(request: Request) -> dict:
        prism: PrismClient = request.app.state.prism
        return {
            "status": "operational",
            "uptime_seconds": round(time.time() - request.app.state.boot_time, 2),
            **prism.get_info(),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("prism.main:app", host="0.0.0.0", port=default_settings.PORT)
