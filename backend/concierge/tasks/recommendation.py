"""推荐生成的后台任务

- generate_recommendations_task：为单个已完成的会话生成推荐
- generate_pending_recommendations_task：beat 定时触发，找出已完成但还没有
  推荐的会话，逐个派发上面的任务

每个任务都在新的事件循环里运行，数据库会话来自 worker_session。
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.core.celery_app import celery_app
from concierge.core.config import get_settings
from concierge.core.database import worker_session
from concierge.core.errors import AlreadyGeneratedError, NotFoundError
from concierge.models.recommendation import Recommendation
from concierge.models.session import QuestionnaireSession, SessionStatus
from concierge.services.generation_agent import GenerationAgent
from concierge.services.recommendation import RecommendationService

settings = get_settings()
logger = logging.getLogger(__name__)


async def run_generation(
    session_id: str,
    db: Optional[AsyncSession] = None,
    agent: Optional[GenerationAgent] = None,
) -> Dict[str, Any]:
    """
    为会话生成推荐

    已生成过时视为成功的空操作。

    Returns:
        {"session_id", "status": "generated" | "skipped", "source", "count"}
    """
    if db is None:
        async with worker_session() as session:
            return await run_generation(session_id, session, agent)

    questionnaire = await db.get(QuestionnaireSession, UUID(session_id))
    if questionnaire is None:
        raise NotFoundError("session")

    try:
        result = await RecommendationService(db, agent=agent).generate(questionnaire)
    except AlreadyGeneratedError:
        logger.info(f"Recommendations already exist for session {session_id}, skipping")
        return {"session_id": session_id, "status": "skipped", "source": None, "count": 0}

    return {
        "session_id": session_id,
        "status": "generated",
        "source": result.source,
        "count": len(result.recommendations),
    }


async def find_pending_session_ids(db: Optional[AsyncSession] = None, limit: Optional[int] = None) -> List[str]:
    """已完成但还没有任何推荐的会话，先完成的在前"""
    if db is None:
        async with worker_session() as session:
            return await find_pending_session_ids(session, limit)

    has_recommendations = exists().where(Recommendation.session_id == QuestionnaireSession.id)
    result = await db.execute(
        select(QuestionnaireSession.id)
        .where(
            QuestionnaireSession.status == SessionStatus.COMPLETED.value,
            ~has_recommendations,
        )
        .order_by(QuestionnaireSession.completed_at, QuestionnaireSession.id)
        .limit(limit or settings.pending_generation_batch_size)
    )
    return [str(session_id) for session_id in result.scalars().all()]


@celery_app.task(bind=True, name="concierge.generate_recommendations", max_retries=0)
def generate_recommendations_task(self, session_id: str) -> Dict[str, Any]:
    """Celery 任务：为已完成的会话生成推荐"""
    logger.info(f"Task {self.request.id}: generating recommendations for session {session_id}")
    return asyncio.run(run_generation(session_id))


@celery_app.task(bind=True, name="concierge.generate_pending_recommendations", max_retries=0)
def generate_pending_recommendations_task(self) -> Dict[str, Any]:
    """Celery 定时任务：为遗漏的会话派发生成任务"""
    session_ids = asyncio.run(find_pending_session_ids())
    for session_id in session_ids:
        generate_recommendations_task.delay(session_id)
    if session_ids:
        logger.info(f"Task {self.request.id}: dispatched generation for {len(session_ids)} pending sessions")
    return {"dispatched": len(session_ids), "session_ids": session_ids}
