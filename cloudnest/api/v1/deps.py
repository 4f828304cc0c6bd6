"""
Shared FastAPI dependencies for v1 endpoints.
"""
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from cloudnest.core.security import Principal, get_principal
from cloudnest.db import get_db
from cloudnest.storage.engine import StorageEngine
from cloudnest.storage.quota import QuotaState


def get_engine(request: Request) -> StorageEngine:
    """The storage engine created in the application lifespan."""
    return request.app.state.engine


def load_quota(
    principal: Principal = Depends(get_principal),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
) -> QuotaState:
    """Make sure the caller's quota is hydrated (and its limit current)."""
    return engine.ensure_quota_loaded(db, principal.user_id, principal.storage_limit_bytes)
