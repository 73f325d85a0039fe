"""Clubhouse FastAPI application."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging

from clubhouse.config import settings
from clubhouse.database import AsyncSessionLocal, Base, async_engine
from clubhouse.exception_handlers import register_exception_handlers
from clubhouse.services.audit_service import purge_audit_retention, write_audit_log
from clubhouse.store import SqlDocumentStore, get_memory_store

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def _with_store(fn, *args):
    """Run ``fn(store, *args)`` outside a request."""
    if settings.STORE_BACKEND == "memory":
        return await fn(get_memory_store(), *args)
    async with AsyncSessionLocal() as session:
        return await fn(SqlDocumentStore(session), *args)


async def _system_event(action: str, details: dict | None = None) -> None:
    try:
        await _with_store(write_audit_log, None, action, "system", None, details)
    except Exception as e:
        logger.error(f"Could not record {action}: {e}")


async def run_audit_retention_purge():
    """Purge expired audit events."""
    await _system_event("system.scheduler.audit_retention_purge", {"status": "started"})
    try:
        summary = await _with_store(purge_audit_retention)
        await _system_event("system.scheduler.audit_retention_purge", {
            "status": "completed", **summary,
        })
    except Exception as e:
        logger.error(f"Audit retention purge failed: {e}")
        await _system_event("system.scheduler.audit_retention_purge", {
            "status": "failed", "error": str(e),
        })


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Clubhouse API...")

    if settings.STORE_BACKEND != "memory":
        # Verify DB connection and make sure the records table exists
        try:
            from clubhouse.models import StoredRecord  # noqa: F401

            async with async_engine.begin() as conn:
                await conn.exec_driver_sql("SELECT 1")
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database connection verified")
        except Exception as e:
            logger.error(f"Database connection failed: {e}")

    await _system_event("system.startup", {"store": settings.STORE_BACKEND})

    # Schedule jobs
    scheduler.add_job(run_audit_retention_purge, "interval", hours=24, id="audit_retention_purge")
    scheduler.start()
    logger.info("Scheduled jobs started (audit retention)")

    logger.info("Clubhouse API started successfully")
    yield

    # Shutdown
    await _system_event("system.shutdown")
    scheduler.shutdown()
    await async_engine.dispose()
    logger.info("Clubhouse API shut down")


app = FastAPI(
    title="Clubhouse",
    description="Club management API: rosters, schedules, content and finances behind role-based access",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Import and register routers
from clubhouse.routes import admin, auth, feeds, finances, navigation, resources

app.include_router(auth.router)
app.include_router(navigation.router)
app.include_router(resources.router)
app.include_router(admin.router)
app.include_router(finances.router)
app.include_router(feeds.router)


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "Clubhouse API", "version": "1.0.0"}
