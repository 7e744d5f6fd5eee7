"""Ledgerflow API - Main FastAPI application."""

import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from ledgerflow_api.coprocessor.service import AggregationService
from ledgerflow_api.db.session import SessionLocal
from ledgerflow_api.errors import register_exception_handlers
from ledgerflow_api.indexer.service import EventIndexer
from ledgerflow_api.ledger.chain import LocalChainClient
from ledgerflow_api.middleware.correlation import CorrelationIDMiddleware
from ledgerflow_api.middleware.rate_limit import RateLimitMiddleware
from ledgerflow_api.routes import aggregate, content, ledger, records
from ledgerflow_api.settings import get_settings
from ledgerflow_api.storage.content_store import get_content_store

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", "module": "%(name)s"}',
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire collaborators and run the indexer for the life of the process."""
    logger.info("Starting Ledgerflow API...")
    try:
        settings.validate_production_settings()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise ValueError(f"Invalid configuration: {e}") from e

    chain_client = LocalChainClient(SessionLocal, chain_id=settings.ledger_chain_id)
    content_store = get_content_store()
    app.state.chain_client = chain_client
    app.state.content_store = content_store
    app.state.aggregation_service = AggregationService(content_store)

    indexer = EventIndexer(chain_client, SessionLocal)
    app.state.indexer = indexer
    if settings.indexer_enabled:
        await indexer.start()
    else:
        logger.info("Indexer disabled by configuration")

    yield

    logger.info("Shutting down Ledgerflow API...")
    await indexer.stop()


# Create FastAPI app
app = FastAPI(
    title="Ledgerflow API",
    description="Attested encrypted records with blind aggregation",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Custom middleware (order matters - last added is first executed)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(CorrelationIDMiddleware)

register_exception_handlers(app)

# Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Register routers
app.include_router(records.router)
app.include_router(ledger.router)
app.include_router(content.router)
app.include_router(aggregate.router)


@app.get("/health")
async def health_check():
    """Liveness, plus indexer status when one is attached."""
    indexer = getattr(app.state, "indexer", None)
    return {
        "status": "healthy",
        "service": "ledgerflow-api",
        "version": "0.1.0",
        "indexer": indexer.status() if indexer else {"state": "inactive"},
    }


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint (verifies dependencies)."""
    import redis
    from sqlalchemy import text

    checks = {
        "database": False,
        "migrations": False,
        "redis": False,
    }

    # Check database connectivity
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error(f"Database check failed: {e}")
    finally:
        db.close()

    # Check Alembic migrations are at head
    if checks["database"]:
        try:
            from alembic.config import Config
            from alembic.runtime.migration import MigrationContext
            from alembic.script import ScriptDirectory

            db = SessionLocal()
            try:
                context = MigrationContext.configure(db.connection())
                current_rev = context.get_current_revision()

                alembic_ini_path = os.path.join(os.path.dirname(__file__), "..", "alembic.ini")
                alembic_cfg = Config(alembic_ini_path)
                alembic_cfg.set_main_option(
                    "script_location", os.path.join(os.path.dirname(__file__), "..", "alembic")
                )
                head_rev = ScriptDirectory.from_config(alembic_cfg).get_current_head()

                if current_rev == head_rev:
                    checks["migrations"] = True
                else:
                    logger.warning(f"Migrations not at head: current={current_rev}, head={head_rev}")
            finally:
                db.close()
        except Exception as e:
            logger.error(f"Migration check failed: {e}")

    # Check Redis
    try:
        redis.from_url(settings.redis_url, decode_responses=True).ping()
        checks["redis"] = True
    except Exception as e:
        logger.error(f"Redis check failed: {e}")

    all_ready = all(checks.values())
    return JSONResponse(
        content={
            "status": "ready" if all_ready else "not_ready",
            "checks": checks,
        },
        status_code=200 if all_ready else 503,
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Ledgerflow API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
