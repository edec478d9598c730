"""Main FastAPI application"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from apscheduler.schedulers.background import BackgroundScheduler

from src.hospitality_engine.api.endpoints import health, events, admin_rules, scheduler_api
from src.hospitality_engine.config import settings
from src.hospitality_engine.database import SessionLocal, engine
from src.hospitality_engine.services.named_lock import build_lock_provider
from src.hospitality_engine.services.rule_catalog import RuleCatalog

logger = logging.getLogger(__name__)

settings.validate_secrets_for_production()
settings.validate_funnel_thresholds()

scheduler: BackgroundScheduler | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler

    logger.info(f"Starting Hospitality Engine API in {settings.APP_ENV} environment")

    if settings.SCHEDULER_ENABLED:
        from src.hospitality_engine.services.scheduler import run_action_sweep, run_daily_reset
        scheduler = BackgroundScheduler(timezone="UTC")
        scheduler.add_job(
            run_action_sweep,
            'interval',
            minutes=settings.ACTION_SWEEP_INTERVAL_MINUTES,
            id='action_sweep',
            replace_existing=True
        )
        scheduler.add_job(
            run_daily_reset,
            'cron',
            hour=0,
            minute=0,
            id='daily_counter_reset',
            replace_existing=True
        )
        scheduler.start()
        logger.info(f"Scheduler started - action sweep every {settings.ACTION_SWEEP_INTERVAL_MINUTES} minutes, daily reset at 00:00 UTC")

    yield

    if scheduler:
        scheduler.shutdown()
        scheduler = None
        logger.info("Scheduler stopped")
    logger.info("Shutting down Hospitality Engine API")


app = FastAPI(
    title="Hospitality Engine - Engagement Rules",
    description="Event-driven engagement scoring and hospitality rule evaluation",
    version="0.1.0",
    lifespan=lifespan
)

app.state.rule_catalog = RuleCatalog(SessionLocal, ttl_seconds=settings.RULES_CACHE_TTL_SECONDS)
app.state.lock_provider = build_lock_provider(engine)

app.include_router(health.router, tags=["Health"])
app.include_router(events.router)
app.include_router(admin_rules.router)
app.include_router(scheduler_api.router, tags=["Scheduler"])


@app.get("/")
def root():
    return {
        "message": "Hospitality Engine API",
        "environment": settings.APP_ENV,
        "docs": "/docs"
    }
