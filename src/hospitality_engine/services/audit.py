"""Audit logging service"""
import json
from typing import Optional
from sqlalchemy.orm import Session

from src.hospitality_engine.models.audit_log import AuditLog


def log_action(
    db: Session,
    actor: str,
    action: str,
    target_type: str,
    target_id: Optional[int] = None,
    meta: Optional[dict] = None
) -> AuditLog:
    audit_log = AuditLog(
        actor=actor,
        action=action,
        target_type=target_type,
        target_id=target_id,
        meta_json=json.dumps(meta, default=str) if meta else None
    )
    db.add(audit_log)
    db.flush()
    return audit_log
