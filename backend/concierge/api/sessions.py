"""问卷会话 API"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.api.schemas import AnswerOut, CategoryOut, MessageOut, QuestionOut, QuestionRef, SessionOut
from concierge.core.auth_deps import get_current_profile, get_current_profile_optional, get_or_create_profile
from concierge.core.database import get_db
from concierge.core.responses import localized_message
from concierge.middleware.rate_limit import rate_limit
from concierge.models.user import UserProfile
from concierge.services.session import SessionService

router = APIRouter(prefix="/api/sessions", tags=["sessions"])
logger = logging.getLogger(__name__)


# ============================================================================
# Schemas
# ============================================================================

class CreateSessionRequest(BaseModel):
    category_id: UUID


class CreateSessionResponse(BaseModel):
    session: SessionOut
    is_existing: bool


class SessionSummaryOut(SessionOut):
    category_name: str
    answer_count: int


class SessionListResponse(BaseModel):
    sessions: List[SessionSummaryOut]
    total: int


class SessionDetailResponse(BaseModel):
    session: SessionOut
    category: CategoryOut
    answers: List[AnswerOut]


class SessionStateResponse(BaseModel):
    session: SessionOut
    message: str


class AdvanceResponse(BaseModel):
    session: SessionOut
    next_question: Optional[QuestionOut] = None
    is_completed: bool
    answered_count: int
    total_questions: int
    unanswered_required: List[QuestionRef]


class CompleteResponse(BaseModel):
    session: SessionOut
    already_completed: bool
    message: str


class ProgressResponse(BaseModel):
    session: SessionOut
    total_questions: int
    required_questions: int
    answered_questions: int
    completion_rate: int
    can_complete: bool
    is_completed: bool
    missing_required: List[QuestionRef]


# ============================================================================
# 会话 CRUD
# ============================================================================

@router.post("", response_model=CreateSessionResponse)
@rate_limit(max_requests=20, window=60)
async def create_session(
    payload: CreateSessionRequest,
    request: Request,
    profile: UserProfile = Depends(get_or_create_profile),
    db: AsyncSession = Depends(get_db),
):
    """创建会话；同一分类已有进行中的会话时返回该会话"""
    session, created = await SessionService(db).create(profile, payload.category_id)
    return CreateSessionResponse(session=SessionOut.model_validate(session), is_existing=not created)


@router.get("", response_model=SessionListResponse)
@rate_limit(max_requests=50, window=60)
async def list_sessions(
    request: Request,
    profile: Optional[UserProfile] = Depends(get_current_profile_optional),
    db: AsyncSession = Depends(get_db),
):
    """最新 20 个会话"""
    if profile is None:
        return SessionListResponse(sessions=[], total=0)
    summaries = await SessionService(db).list_sessions(profile)
    sessions = [
        SessionSummaryOut(
            **SessionOut.model_validate(s.session).model_dump(),
            category_name=s.category_name,
            answer_count=s.answer_count,
        )
        for s in summaries
    ]
    return SessionListResponse(sessions=sessions, total=len(sessions))


@router.get("/{session_id}", response_model=SessionDetailResponse)
@rate_limit(max_requests=100, window=60)
async def get_session(
    session_id: UUID,
    request: Request,
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    detail = await SessionService(db).get_detail(session_id, profile)
    return SessionDetailResponse(
        session=SessionOut.model_validate(detail.session),
        category=CategoryOut.model_validate(detail.category),
        answers=[AnswerOut.from_answer(a) for a in detail.answers],
    )


@router.delete("/{session_id}", response_model=MessageOut)
@rate_limit(max_requests=10, window=60)
async def delete_session(
    session_id: UUID,
    request: Request,
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    await SessionService(db).delete(session_id, profile)
    return MessageOut(message=localized_message(request, "success.session_deleted"))


# ============================================================================
# 进度与状态迁移
# ============================================================================

@router.post("/{session_id}/next", response_model=AdvanceResponse)
@rate_limit(max_requests=100, window=60)
async def advance_session(
    session_id: UUID,
    request: Request,
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """获取下一个未回答的问题（不改变会话状态）"""
    service = SessionService(db)
    session = await service.get_owned(session_id, profile)
    result = await service.advance(session)
    return AdvanceResponse(
        session=SessionOut.model_validate(session),
        next_question=QuestionOut.model_validate(result.next_question) if result.next_question else None,
        is_completed=result.is_completed,
        answered_count=result.answered_count,
        total_questions=result.total_questions,
        unanswered_required=[QuestionRef.model_validate(q) for q in result.unanswered_required],
    )


async def _transition(action: str, session_id: UUID, request: Request, profile: UserProfile, db: AsyncSession):
    service = SessionService(db)
    session = await service.get_owned(session_id, profile)
    session = await getattr(service, action)(session)
    message_key = {
        "pause": "success.session_paused",
        "abandon": "success.session_abandoned",
        "resume": "success.session_resumed",
    }[action]
    return SessionStateResponse(
        session=SessionOut.model_validate(session),
        message=localized_message(request, message_key),
    )


@router.post("/{session_id}/pause", response_model=SessionStateResponse)
@rate_limit(max_requests=30, window=60)
async def pause_session(
    session_id: UUID,
    request: Request,
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await _transition("pause", session_id, request, profile, db)


@router.post("/{session_id}/abandon", response_model=SessionStateResponse)
@rate_limit(max_requests=30, window=60)
async def abandon_session(
    session_id: UUID,
    request: Request,
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await _transition("abandon", session_id, request, profile, db)


@router.post("/{session_id}/resume", response_model=SessionStateResponse)
@rate_limit(max_requests=30, window=60)
async def resume_session(
    session_id: UUID,
    request: Request,
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    return await _transition("resume", session_id, request, profile, db)


@router.put("/{session_id}/complete", response_model=CompleteResponse)
@rate_limit(max_requests=20, window=60)
async def complete_session(
    session_id: UUID,
    request: Request,
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """完成会话；必答题未全部回答时返回缺失列表"""
    service = SessionService(db)
    session = await service.get_owned(session_id, profile)
    result = await service.complete(session)
    key = "success.session_already_completed" if result.already_completed else "success.session_completed"
    return CompleteResponse(
        session=SessionOut.model_validate(result.session),
        already_completed=result.already_completed,
        message=localized_message(request, key),
    )


@router.get("/{session_id}/complete", response_model=ProgressResponse)
@rate_limit(max_requests=50, window=60)
async def get_completion_status(
    session_id: UUID,
    request: Request,
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """查询完成进度"""
    service = SessionService(db)
    session = await service.get_owned(session_id, profile)
    progress = await service.get_progress(session)
    return ProgressResponse(
        session=SessionOut.model_validate(session),
        total_questions=progress.total_questions,
        required_questions=progress.required_questions,
        answered_questions=progress.answered_questions,
        completion_rate=progress.completion_rate,
        can_complete=progress.can_complete,
        is_completed=progress.is_completed,
        missing_required=[QuestionRef.model_validate(q) for q in progress.missing_required],
    )
