"""Scheduler management endpoints for manual runs and monitoring"""
from fastapi import APIRouter
from sqlalchemy import select, func

from src.hospitality_engine.api.deps import DbSession, AdminActor, Catalog
from src.hospitality_engine.config import get_settings
from src.hospitality_engine.models.engagement_state import EngagementState
from src.hospitality_engine.services.action_ledger import count_actions_by_outcome
from src.hospitality_engine.services.scheduler import run_action_sweep, run_daily_reset
from src.hospitality_engine.timeutil import utcnow

router = APIRouter(prefix="/scheduler")


@router.post("/sweep")
def trigger_action_sweep(actor: AdminActor):
    result = run_action_sweep()
    return {"message": "Action sweep executed", "timestamp": utcnow().isoformat(), **result}


@router.post("/daily-reset")
def trigger_daily_reset(actor: AdminActor):
    result = run_daily_reset()
    return {"message": "Daily counters reset", "timestamp": utcnow().isoformat(), **result}


@router.get("/status")
def get_scheduler_status(db: DbSession, catalog: Catalog):
    settings = get_settings()

    tracked_identities = db.execute(
        select(func.count()).select_from(EngagementState)
    ).scalar()

    return {
        "current_time_utc": utcnow().isoformat(),
        "scheduler_enabled": settings.SCHEDULER_ENABLED,
        "sweep_interval_minutes": settings.ACTION_SWEEP_INTERVAL_MINUTES,
        "pending_action_max_age_minutes": settings.PENDING_ACTION_MAX_AGE_MINUTES,
        "actions": count_actions_by_outcome(db),
        "tracked_identities": tracked_identities,
        "active_rules": len(catalog.get_active_rules()),
    }
