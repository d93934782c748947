"""
Market Intelligence API - FastAPI Backend
Main application entry point with health check and API routing.
"""

import asyncio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings
from database import engine, Base
import models  # noqa: F401
from routers import health, market_intelligence
from services.research_store import recover_stalled_requests
from services.research_worker import NO_PENDING_MESSAGE, run_research_cycle


async def _recover_stalled_research() -> int:
    recovered = await recover_stalled_requests(settings.RESEARCH_CLAIM_TIMEOUT_MINUTES)
    if recovered:
        print(f"♻️ Failed {recovered} research requests whose claim timed out.")
    return recovered


async def _periodic_research_poll() -> None:
    interval_seconds = max(int(settings.RESEARCH_POLL_INTERVAL_SECONDS), 0)
    if interval_seconds <= 0:
        return
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await _recover_stalled_research()
            result = await run_research_cycle()
            if result.message != NO_PENDING_MESSAGE:
                print(
                    f"🔎 Research poll tick: status={result.status_code} "
                    f"request={result.request_id} message={result.message}"
                )
        except Exception as exc:
            print(f"⚠️ Research poll tick failed: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Market Intelligence API...")
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        await _recover_stalled_research()
    except Exception as exc:
        print(f"⚠️ Stalled research recovery skipped: {exc}")
    poll_task = None
    if int(settings.RESEARCH_POLL_INTERVAL_SECONDS) > 0:
        poll_task = asyncio.create_task(_periodic_research_poll())
        print(
            "📅 Research poll loop enabled "
            f"(every {int(settings.RESEARCH_POLL_INTERVAL_SECONDS)} s)."
        )
    yield
    # Shutdown
    if poll_task is not None:
        poll_task.cancel()
        try:
            await poll_task
        except asyncio.CancelledError:
            pass
    print("👋 Shutting down API...")


app = FastAPI(
    title="Market Intelligence API",
    description="Competitor research requests analyzed into structured market reports",
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
app.include_router(market_intelligence.router, prefix="/market-intelligence", tags=["Market Intelligence"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Market Intelligence API",
        "version": "0.1.0",
        "status": "running"
    }
