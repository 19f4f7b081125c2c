"""用户历史记录 API"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.core.auth_deps import get_current_profile_optional
from concierge.core.database import get_db
from concierge.middleware.rate_limit import rate_limit
from concierge.models.user import UserProfile
from concierge.models.user_history import HistoryType, UserHistory

router = APIRouter(prefix="/api/history", tags=["history"])
logger = logging.getLogger(__name__)


# ============================================================================
# Schemas
# ============================================================================

class HistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: Optional[UUID] = None
    type: str
    title: str
    description: Optional[str] = None
    status: Optional[str] = None
    completion_rate: Optional[float] = None
    details: Optional[dict] = None
    created_at: datetime


class HistoryListResponse(BaseModel):
    histories: List[HistoryOut]
    total: int
    limit: int
    offset: int


# ============================================================================
# 历史记录 API
# ============================================================================

@router.get("", response_model=HistoryListResponse)
@rate_limit(max_requests=50, window=60)
async def list_history(
    request: Request,
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    type: Optional[HistoryType] = Query(None),
    profile: Optional[UserProfile] = Depends(get_current_profile_optional),
    db: AsyncSession = Depends(get_db),
):
    """
    获取当前用户的历史记录（新的在前）

    - limit: 返回数量限制（默认 10）
    - offset: 偏移量（默认 0）
    - type: QUESTIONNAIRE / RECOMMENDATION
    """
    if profile is None:
        return HistoryListResponse(histories=[], total=0, limit=limit, offset=offset)

    conditions = [UserHistory.user_profile_id == profile.id]
    if type is not None:
        conditions.append(UserHistory.type == type.value)

    total = await db.scalar(select(func.count(UserHistory.id)).where(*conditions))
    result = await db.execute(
        select(UserHistory)
        .where(*conditions)
        .order_by(UserHistory.created_at.desc(), UserHistory.id)
        .limit(limit)
        .offset(offset)
    )
    return HistoryListResponse(
        histories=[HistoryOut.model_validate(h) for h in result.scalars().all()],
        total=total or 0,
        limit=limit,
        offset=offset,
    )
