from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import database components
from servistech.database.database import sync_engine, Base

# Import middleware
from servistech.common.middleware import StoreContextMiddleware, SecurityHeadersMiddleware

# Import routers
from servistech.modules.rates.router import rates_router
from servistech.modules.invoices.router import invoices_router
from servistech.modules.commissions.router import commissions_router
from servistech.modules.targets.router import targets_router
from servistech.modules.audit.router import audit_router

# Import models for table creation
import servistech.modules.rates.models
import servistech.modules.invoices.models
import servistech.modules.commissions.models
import servistech.modules.targets.models
import servistech.modules.audit.models

from servistech.core.config import settings
from servistech.modules.rates.cache import RateCache
from servistech.modules.rates.service import new_sync_locks

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="SERVISTECH Financial Core",
    description="Tasas de cambio, facturación multimoneda, comisiones y metas diarias",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Estado del proceso: caché de tasas y locks de sincronización
app.state.rate_cache = RateCache()
app.state.rate_sync_locks = new_sync_locks()

# Add middleware (order matters!)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(StoreContextMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rates_router, prefix="/api")
app.include_router(invoices_router, prefix="/api")
app.include_router(commissions_router, prefix="/api")
app.include_router(targets_router, prefix="/api")
app.include_router(audit_router, prefix="/api")

# Create database tables (only for development)
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=sync_engine)


@app.get("/")
async def read_root():
    return {
        "message": "SERVISTECH Financial Core is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info("SERVISTECH Financial Core starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    logger.info(f"Rate sync enabled: {settings.RATE_SYNC_ENABLED} (daily at {settings.RATE_SYNC_HOUR}:00)")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("SERVISTECH Financial Core shutting down...")
    app.state.rate_cache.clear_all()
