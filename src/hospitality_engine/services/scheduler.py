"""APScheduler jobs: pending-action expiry sweep and daily counter reset"""
import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session

from src.hospitality_engine.database import SessionLocal
from src.hospitality_engine.services.action_ledger import expire_old_pending_actions
from src.hospitality_engine.services.audit import log_action
from src.hospitality_engine.services.engagement_state import reset_daily_popup_counters
from src.hospitality_engine.services.rule_evaluator import reset_daily_trigger_counts
from src.hospitality_engine.timeutil import utcnow

logger = logging.getLogger(__name__)


def reset_daily_counters(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or utcnow()
    states = reset_daily_popup_counters(db)
    cooldowns = reset_daily_trigger_counts(db, now.date())
    return {"states_reset": states, "cooldowns_reset": cooldowns}


def run_action_sweep(now: Optional[datetime] = None) -> Dict[str, int]:
    logger.info("Action sweep started")
    now = now or utcnow()
    result = {"expired": 0}

    db = SessionLocal()
    try:
        result["expired"] = expire_old_pending_actions(db, now=now)
        if result["expired"]:
            log_action(db, "system", "actions_expired", "system", None, result)
        db.commit()
    except Exception:
        logger.exception("Error in action sweep")
        db.rollback()
    finally:
        db.close()

    logger.info(f"Action sweep completed: {result['expired']} expired")
    return result


def run_daily_reset(now: Optional[datetime] = None) -> Dict[str, int]:
    logger.info("Daily counter reset started")
    result = {"states_reset": 0, "cooldowns_reset": 0}

    db = SessionLocal()
    try:
        result = reset_daily_counters(db, now)
        log_action(db, "system", "daily_counters_reset", "system", None, result)
        db.commit()
    except Exception:
        logger.exception("Error in daily counter reset")
        db.rollback()
    finally:
        db.close()

    logger.info(f"Daily counter reset completed: {result}")
    return result
