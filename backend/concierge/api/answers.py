"""答案 API"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.api.schemas import AnswerOut
from concierge.core.auth_deps import get_current_profile
from concierge.core.database import get_db
from concierge.middleware.rate_limit import rate_limit
from concierge.models.user import UserProfile
from concierge.services.session import AnswerInput, SessionService

router = APIRouter(prefix="/api/answers", tags=["answers"])
logger = logging.getLogger(__name__)


# ============================================================================
# Schemas
# ============================================================================

class AnswerItem(BaseModel):
    """单个答案（按题型填写对应字段）"""
    question_id: UUID
    question_option_id: Optional[UUID] = None
    question_option_ids: Optional[List[UUID]] = None
    range_value: Optional[float] = None
    text_value: Optional[str] = None

    def to_input(self) -> AnswerInput:
        return AnswerInput(**self.model_dump())


class SubmitAnswerRequest(AnswerItem):
    session_id: UUID

    def to_input(self) -> AnswerInput:
        return AnswerInput(**self.model_dump(exclude={"session_id"}))


class BatchAnswerRequest(BaseModel):
    session_id: UUID
    answers: List[AnswerItem] = Field(..., min_length=1, max_length=200)


class AnswerResponse(BaseModel):
    answer: AnswerOut


class AnswerListResponse(BaseModel):
    session_id: UUID
    answers: List[AnswerOut]
    total: int


# ============================================================================
# 答案 API
# ============================================================================

@router.post("", response_model=AnswerResponse)
@rate_limit(max_requests=100, window=60)
async def submit_answer(
    payload: SubmitAnswerRequest,
    request: Request,
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """提交单个答案，同一问题再次提交会覆盖"""
    service = SessionService(db)
    session = await service.get_owned(payload.session_id, profile)
    answer = await service.submit_answer(session, payload.to_input())
    return AnswerResponse(answer=AnswerOut.from_answer(answer))


@router.put("", response_model=AnswerListResponse)
@rate_limit(max_requests=20, window=60)
async def submit_answers(
    payload: BatchAnswerRequest,
    request: Request,
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """批量提交答案（全部成功或全部不写入）"""
    service = SessionService(db)
    session = await service.get_owned(payload.session_id, profile)
    answers = await service.submit_answers(session, [item.to_input() for item in payload.answers])
    logger.info(f"Saved {len(answers)} answers for session {payload.session_id}")
    return AnswerListResponse(
        session_id=payload.session_id,
        answers=[AnswerOut.from_answer(a) for a in answers],
        total=len(answers),
    )


@router.get("", response_model=AnswerListResponse)
@rate_limit(max_requests=100, window=60)
async def list_answers(
    request: Request,
    session_id: UUID = Query(...),
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    service = SessionService(db)
    session = await service.get_owned(session_id, profile)
    answers = await service.list_answers(session)
    return AnswerListResponse(
        session_id=session.id,
        answers=[AnswerOut.from_answer(a) for a in answers],
        total=len(answers),
    )
