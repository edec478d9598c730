"""Health check endpoint"""
from fastapi import APIRouter, Request
from sqlalchemy import text

from src.hospitality_engine.database import SessionLocal
from src.hospitality_engine.config import settings

router = APIRouter()


@router.get("/health")
def health_check(request: Request):
    db_status = "unknown"
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            db_status = "connected"
    except Exception as e:
        db_status = f"error: {str(e)}"

    catalog = request.app.state.rule_catalog
    return {
        "status": "ok",
        "environment": settings.APP_ENV,
        "database": db_status,
        "active_rules": len(catalog.get_active_rules()),
    }
