"""
Microloan API Application Factory
"""

from typing import Optional
import logging

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .loans import router as loans_router
from .schedule import router as schedule_router
from ..audit import AuditTrail
from ..config import get_config
from ..loans import LoanManager
from ..logging_config import setup_logging
from ..storage import create_storage
from ..validation import ConsistencyError, ValidationError


logger = logging.getLogger("microloan.api")


def _build_manager() -> LoanManager:
    config = get_config()
    storage = create_storage(config.database_url)
    return LoanManager(storage, AuditTrail(storage), config)


def create_app(manager: Optional[LoanManager] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Microloan Engine API",
        description="Flat-interest EMI schedules and payment reconciliation for microloans",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.loan_manager = manager or _build_manager()

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc), "violations": exc.violations}
        )

    @app.exception_handler(ConsistencyError)
    async def consistency_error_handler(request: Request, exc: ConsistencyError):
        logger.error(f"Stored loan data is inconsistent: {exc}")
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": str(exc), "violations": exc.violations}
        )

    @app.exception_handler(PermissionError)
    async def permission_error_handler(request: Request, exc: PermissionError):
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"detail": str(exc)}
        )

    # Include routers
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(schedule_router, prefix="/schedule", tags=["Schedule"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "microloan_api",
            "version": "1.0.0"
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file
    )
    uvicorn.run(
        "microloan.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level="info"
    )
