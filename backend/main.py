"""
FastAPI application entry point for shopsight.

Shopify ingestion (connect, manual sync, data webhooks) and per-tenant
storefront analytics. Tenant context comes from the bearer JWT on every
/api route; webhooks authenticate with HMAC instead.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shopsight import __version__
from shopsight.api.routes import dashboard, health, shopify, webhooks
from shopsight.database.session import init_db

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting shopsight API", extra={"version": __version__})

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        logger.error("DATABASE_URL is not set. Database-backed endpoints will return 503.")
        app.state.database_configured = False
    else:
        # Mask credentials for safe logging
        masked = database_url.split("@")[-1] if "@" in database_url else "(local)"
        logger.info("DATABASE_URL configured", extra={"host_db": masked})
        app.state.database_configured = True
        init_db()

    for var in ("JWT_SECRET", "ENCRYPTION_KEY", "SHOPIFY_WEBHOOK_SECRET"):
        if not os.getenv(var):
            logger.warning("%s is not set", var)

    yield

    logger.info("Shutting down shopsight API")


app = FastAPI(
    title="shopsight API",
    description="Multi-tenant Shopify ingestion and storefront analytics",
    version=__version__,
    lifespan=lifespan
)

cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Health (no authentication)
app.include_router(health.router)

# Shopify data webhooks (HMAC, not JWT)
app.include_router(webhooks.router)

# Tenant-scoped API (JWT)
app.include_router(shopify.router)
app.include_router(dashboard.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
