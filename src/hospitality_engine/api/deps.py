"""API dependencies - admin authentication, database session, engine components"""
import hmac
from typing import Annotated, Optional
from fastapi import Depends, HTTPException, Header, Query, Request
from sqlalchemy.orm import Session

from src.hospitality_engine.config import get_settings
from src.hospitality_engine.database import get_db
from src.hospitality_engine.services.identity import Identity
from src.hospitality_engine.services.rule_catalog import RuleCatalog


def require_admin(x_admin_token: Optional[str] = Header(default=None)) -> str:
    settings = get_settings()
    if not x_admin_token or not hmac.compare_digest(x_admin_token, settings.ADMIN_API_TOKEN):
        raise HTTPException(status_code=403, detail="Admin access required")
    return "admin"


def get_rule_catalog(request: Request) -> RuleCatalog:
    return request.app.state.rule_catalog


def get_lock_provider(request: Request):
    return request.app.state.lock_provider


def get_query_identity(
    account_id: Optional[int] = Query(None),
    session_id: Optional[str] = Query(None, min_length=1, max_length=255)
) -> Identity:
    try:
        return Identity.resolve(account_id=account_id, session_id=session_id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


def identity_from(payload) -> Identity:
    return Identity.resolve(account_id=payload.account_id, session_id=payload.session_id)


DbSession = Annotated[Session, Depends(get_db)]
AdminActor = Annotated[str, Depends(require_admin)]
Catalog = Annotated[RuleCatalog, Depends(get_rule_catalog)]
LockProvider = Annotated[object, Depends(get_lock_provider)]
QueryIdentity = Annotated[Identity, Depends(get_query_identity)]
