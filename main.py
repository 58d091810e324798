"""
Karat Pricing - Application Entry Point
=========================================
FastAPI app initialization, exception handling, background scheduler and
router registration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from apscheduler.schedulers.background import BackgroundScheduler

from config import settings
from config.database import SessionLocal, Base, engine
from config.logging_config import setup_logging
from common.events import bus, JOB_QUEUED
from common.exceptions import JobAlreadyInProgressError, KaratError

scheduler_logger = logging.getLogger("karat.scheduler")


# ==========================================
# Import ALL models so Alembic/Base can see them
# ==========================================
from modules.catalog.models import Subcategory, Product, ProductVariant  # noqa: F401
from modules.pricing.models import (  # noqa: F401
    MetalPrice, MetalPriceHistory, PriceComponent, PricingConfiguration,
    ConfigComponent, FreezeHistoryEntry,
)
from modules.recalculation.models import RecalculationJob  # noqa: F401

# ==========================================
# Import routers
# ==========================================
from modules.catalog.api_routes import router as catalog_api_router
from modules.pricing.api_routes import router as pricing_api_router
from modules.recalculation.api_routes import router as recalculation_api_router


# ==========================================
# Background jobs
# ==========================================
def _run_pending_jobs():
    """Pick up PENDING recalculation jobs (queued, or waiting for a retry)."""
    from modules.recalculation.service import recalculation_service
    try:
        ran = recalculation_service.run_pending_jobs(SessionLocal)
        if ran:
            scheduler_logger.info(f"Ran {ran} pending recalculation job(s)")
    except Exception as e:
        scheduler_logger.error(f"Pending job runner error: {e}")


def _run_single_job(job_id: int):
    from modules.recalculation.service import recalculation_service
    db = SessionLocal()
    try:
        recalculation_service.run_job(db, job_id)
    except Exception as e:
        scheduler_logger.error(f"Recalculation job {job_id} runner error: {e}")
    finally:
        db.close()


def _auto_update_prices():
    """Fetch metal prices, store them, and recalculate products of every metal whose rate moved."""
    from modules.pricing.feed_service import fetch_metal_prices
    from modules.pricing.service import apply_feed_prices, recent_manual_update
    from modules.recalculation.service import RecalculationTarget, recalculation_service

    db = SessionLocal()
    try:
        manual = recent_manual_update(db)
        if manual is not None:
            scheduler_logger.info(f"Skipping feed update: manual {manual.metal_type} change at {manual.created_at}")
            return

        prices = fetch_metal_prices()
        changed = apply_feed_prices(db, prices, updated_by="system:feed")
        db.commit()

        for metal_type in changed:
            try:
                result = recalculation_service.execute_recalculation(
                    db, RecalculationTarget.for_metal_type(metal_type), triggered_by="system:feed",
                )
                scheduler_logger.info(f"Recalculation for {metal_type}: {result}")
            except JobAlreadyInProgressError as e:
                scheduler_logger.warning(e.message)
    except Exception as e:
        db.rollback()
        scheduler_logger.error(f"Price update error: {e}")
    finally:
        db.close()


def _cleanup_old_jobs():
    from modules.recalculation.service import recalculation_service
    db = SessionLocal()
    try:
        recalculation_service.cleanup_old_jobs(db)
    except Exception as e:
        db.rollback()
        scheduler_logger.error(f"Job cleanup error: {e}")
    finally:
        db.close()


def _startup_housekeeping():
    """Seed system components and default prices; recover jobs left RUNNING by a crash."""
    from modules.pricing.component_service import component_service
    from modules.pricing.service import initialize_default_prices
    from modules.recalculation.service import recalculation_service

    db = SessionLocal()
    try:
        component_service.seed_system_components(db)
        initialize_default_prices(db)
        db.commit()
        recovered = recalculation_service.recover_stale_jobs(db)
        if recovered:
            scheduler_logger.warning(f"Recovered {recovered} stale recalculation job(s)")
    finally:
        db.close()


scheduler = BackgroundScheduler()


def _on_job_queued(payload: dict):
    """Start a queued job right away instead of waiting for the next poll."""
    if not scheduler.running:
        return
    job_id = payload["job_id"]
    scheduler.add_job(_run_single_job, args=[job_id], id=f"recalc_{job_id}", replace_existing=True)


@asynccontextmanager
async def lifespan(app):
    setup_logging()
    # Auto-create any missing tables (safe for existing tables)
    Base.metadata.create_all(bind=engine)
    _startup_housekeeping()

    if settings.SCHEDULER_ENABLED:
        bus.subscribe(JOB_QUEUED, _on_job_queued)
        scheduler.add_job(_run_pending_jobs, 'interval', seconds=settings.JOB_POLL_SECONDS,
                          id='pending_recalculations', max_instances=1, coalesce=True)
        scheduler.add_job(_auto_update_prices, 'interval', minutes=settings.METAL_PRICE_REFRESH_MINUTES,
                          id='metal_price_update', max_instances=1, coalesce=True)
        scheduler.add_job(_cleanup_old_jobs, 'interval', hours=6, id='job_cleanup')
        scheduler.start()
        scheduler_logger.info(
            f"Background scheduler started (jobs: {settings.JOB_POLL_SECONDS}s, "
            f"prices: {settings.METAL_PRICE_REFRESH_MINUTES}m, cleanup: 6h)"
        )
    yield
    if scheduler.running:
        scheduler.shutdown()
        bus.unsubscribe(JOB_QUEUED, _on_job_queued)
        scheduler_logger.info("Background scheduler stopped")


# ==========================================
# Create App
# ==========================================
app = FastAPI(
    title="Karat Pricing",
    description="Dynamic jewelry pricing and recalculation engine",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)


# ==========================================
# Exception handler: business errors → JSON
# ==========================================
async def karat_exception_handler(request: Request, exc: KaratError):
    return JSONResponse(
        {"success": False, "error": exc.message, "code": type(exc).__name__},
        status_code=exc.status_code,
    )


app.add_exception_handler(KaratError, karat_exception_handler)


# ==========================================
# Register Routers
# ==========================================
app.include_router(catalog_api_router)
app.include_router(pricing_api_router)
app.include_router(recalculation_api_router)


# ==========================================
# Health check
# ==========================================
@app.get("/health")
async def health():
    return {"status": "ok", "version": "1.0.0"}
