"""
FastAPI application entry point.
Configures routes, middleware, and lifecycle events.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import close_db
from app.logging_config import configure_logging
from app.redis import RedisClient
import logging

# Import routers - MUST BE AT TOP LEVEL
from app.api.webhooks.yoco import router as yoco_router
from app.api.payments import router as payments_router
from app.api.cron import router as cron_router
from app.api.affiliate import router as affiliate_router
from app.api.admin.payments import router as admin_payments_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifecycle manager."""
    # Startup
    configure_logging()
    logging.info(f"Starting up {settings.app_name}...")

    # Initialize Redis
    try:
        RedisClient.get_client()
    except Exception as e:
        logging.warning(f"Failed to initialize Redis: {e}")

    yield

    # Shutdown
    await RedisClient.close()
    await close_db()
    logging.info("Shutting down...")


app = FastAPI(
    title="ChartPay",
    description="Subscription and credit payments with exactly-once activation",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)


# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logging.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal Server Error"},
    )


# CORS middleware
origins = [settings.public_site_url]
if settings.is_development:
    origins.append("*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "env": settings.app_env,
    }


# Register webhook routes
app.include_router(
    yoco_router,
    prefix="/webhooks",
    tags=["webhooks"],
)

# Register API routes
app.include_router(payments_router)
app.include_router(cron_router)
app.include_router(affiliate_router)

# Register admin routes
app.include_router(
    admin_payments_router,
    prefix="/admin",
    tags=["admin"],
)
