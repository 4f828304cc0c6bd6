"""
Quota endpoints: current usage, batch checks and cleanup suggestions.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cloudnest.api.v1.deps import get_engine, load_quota
from cloudnest.core.security import Principal, get_principal
from cloudnest.db import get_db
from cloudnest.schemas.file import BatchCheckRequest
from cloudnest.schemas.quota import (
    CapacityCheckResponse,
    CleanupResponse,
    CleanupSuggestionResponse,
    QuotaResponse,
)
from cloudnest.storage.engine import StorageEngine
from cloudnest.storage.quota import QuotaState

router = APIRouter(prefix="/quota", tags=["quota"])


@router.get("", response_model=QuotaResponse)
async def get_quota(quota: QuotaState = Depends(load_quota)):
    return QuotaResponse(**quota.to_dict())


@router.post("/check", response_model=CapacityCheckResponse)
async def check_batch(
    data: BatchCheckRequest,
    principal: Principal = Depends(get_principal),
    quota: QuotaState = Depends(load_quota),
    engine: StorageEngine = Depends(get_engine),
):
    """Check whether a batch of uploads fits the remaining quota."""
    check = engine.ledger.check_many(principal.user_id, data.sizes)
    return CapacityCheckResponse(**check.to_dict())


@router.get("/cleanup-suggestions", response_model=CleanupResponse)
async def cleanup_suggestions(
    target_bytes: Optional[int] = Query(default=None, gt=0),
    principal: Principal = Depends(get_principal),
    quota: QuotaState = Depends(load_quota),
    engine: StorageEngine = Depends(get_engine),
    db: Session = Depends(get_db),
):
    """
    Files worth deleting to free `target_bytes`.

    Without a target, suggests enough to bring usage back under the
    warning threshold.
    """
    if target_bytes is None:
        threshold_bytes = int(quota.limit_bytes * quota.warning_threshold)
        target_bytes = max(0, quota.used_bytes - threshold_bytes)

    suggestions = engine.cleanup(db).suggest(principal.user_id, target_bytes)
    return CleanupResponse(
        owner_id=principal.user_id,
        target_bytes=target_bytes,
        suggested_bytes=sum(s.size for s in suggestions),
        suggestions=[CleanupSuggestionResponse(**s.to_dict()) for s in suggestions],
    )
