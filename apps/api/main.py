"""
SREF Gallery - FastAPI Backend
Main application entry point with health check and API routing.
"""

import asyncio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    search,
    catalog,
    taxonomy,
    analytics,
    admin,
)
from services.catalog_maintenance import refresh_catalog_counters_service


async def _periodic_counter_refresh() -> None:
    interval_minutes = max(int(settings.COUNTER_REFRESH_INTERVAL_MINUTES), 0)
    if interval_minutes <= 0:
        return
    while True:
        await asyncio.sleep(interval_minutes * 60)
        try:
            result = await refresh_catalog_counters_service()
            print(
                f"📊 Counter refresh: categories={result.get('categories', 0)} "
                f"tags={result.get('tags', 0)} items={result.get('items', 0)}"
            )
        except Exception as exc:
            print(f"⚠️ Counter refresh tick failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting SREF Gallery API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    counter_refresh_task = None
    if int(settings.COUNTER_REFRESH_INTERVAL_MINUTES) > 0:
        counter_refresh_task = asyncio.create_task(_periodic_counter_refresh())
        print(
            "📅 Counter refresh loop enabled "
            f"(every {int(settings.COUNTER_REFRESH_INTERVAL_MINUTES)} min)."
        )
    yield
    # Shutdown
    if counter_refresh_task is not None:
        counter_refresh_task.cancel()
        try:
            await counter_refresh_task
        except asyncio.CancelledError:
            pass
    print("👋 Shutting down API...")


app = FastAPI(
    title="SREF Gallery API",
    description="Search, browse and rank Midjourney style reference codes",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(search.router, prefix="/search", tags=["Search"])
app.include_router(catalog.router, prefix="/sref", tags=["Catalog"])
app.include_router(taxonomy.router, tags=["Taxonomy"])
app.include_router(analytics.router, prefix="/analytics", tags=["Analytics"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "SREF Gallery API",
        "version": "0.1.0",
        "status": "running"
    }
