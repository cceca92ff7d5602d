"""
FastAPI application for RiskMate
Billing reconciliation, proof packs, exports and job reports
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .billing_routes import router as billing_router
from .config import config
from .db.engine import check_database_health, init_db
from .exceptions import (
    ApiError,
    api_error_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .logging_config import RequestIDMiddleware, setup_logging
from .proof_pack_routes import router as proof_pack_router
from .report_routes import router as report_router
from .report_routes import verify_router
from .subscription_routes import router as subscription_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and start background jobs when enabled"""
    try:
        init_db()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    if config.ENABLE_SCHEDULER:
        from .services.scheduled_jobs import start_scheduler
        start_scheduler()

    yield

    if config.ENABLE_SCHEDULER:
        from .services.scheduled_jobs import stop_scheduler
        stop_scheduler()


def create_app() -> FastAPI:
    """Build the API application"""
    app = FastAPI(title="RiskMate API", version=config.BUILD_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Report-Hash", "X-Manifest-Hash", "Retry-After"],
    )
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(subscription_router)
    app.include_router(billing_router)
    app.include_router(proof_pack_router)
    app.include_router(report_router)
    app.include_router(verify_router)

    @app.get("/")
    async def root():
        return {"message": "RiskMate API", "status": "running"}

    @app.get("/health")
    async def health():
        """Health check endpoint for the load balancer and monitoring"""
        database_ok = check_database_health()
        body = {
            "status": "healthy" if database_ok else "unhealthy",
            "service": "riskmate",
            "version": config.BUILD_VERSION,
            "database": "ok" if database_ok else "unavailable",
        }
        return JSONResponse(status_code=200 if database_ok else 503, content=body)

    return app


setup_logging(env=config.ENV, log_level=config.LOG_LEVEL, log_format=config.LOG_FORMAT)
app = create_app()
