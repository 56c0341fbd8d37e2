"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rbac_admin.core.config import settings
from rbac_admin.core.middleware import setup_middleware
from rbac_admin.core.exceptions import RBACError

from rbac_admin.api.roles import router as roles_router
from rbac_admin.api.access import router as access_router
from rbac_admin.api.catalog import router as catalog_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("rbac_admin")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting RBAC Admin API")
    if settings.RBAC_CACHE_ENABLED:
        from rbac_admin.services.cache_service import cache_service
        if cache_service.health_check():
            logger.info("Redis connected, permission cache enabled")
        else:
            logger.warning("Redis not available, permission lookups will hit the database")

    yield

    from rbac_admin.services.audit_service import audit_service
    audit_service.shutdown(wait=True)
    logger.info("Shutting down RBAC Admin API")


app = FastAPI(
    title="RBAC Admin API",
    description="Hierarchical role-based access control administration",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Middleware
setup_middleware(app)


@app.exception_handler(RBACError)
async def rbac_exception_handler(request: Request, exc: RBACError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
    )

# Register routers
app.include_router(roles_router, prefix="/api")
app.include_router(access_router, prefix="/api")
app.include_router(catalog_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/api/health")
async def health():
    """Quick health check endpoint."""
    return {"status": "ok"}
