"""问卷会话状态机

状态：IN_PROGRESS、COMPLETED、ABANDONED。
所有状态迁移都通过 UPDATE ... WHERE status = <期望状态> 的比较并交换完成，
影响行数为 0 时重新读取状态并报告非法迁移。
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.core.config import get_settings
from concierge.core.database import utcnow
from concierge.core.errors import (
    CategoryMismatchError,
    ConciergeError,
    IncompleteRequiredAnswersError,
    InternalError,
    InvalidAnswerError,
    InvalidStateError,
    NotFoundError,
)
from concierge.core.i18n import t
from concierge.models.catalog import Category, Question
from concierge.models.recommendation import Recommendation
from concierge.models.session import Answer, QuestionnaireSession, SessionStatus
from concierge.models.user import UserProfile
from concierge.models.user_history import HistoryType, UserHistory
from concierge.services.answer_validator import (
    MultipleChoiceAnswer,
    RangeAnswer,
    SingleChoiceAnswer,
    answer_from_row,
    answer_from_submission,
    describe_violation,
    is_answer_valid,
)
from concierge.services.catalog import CatalogService

settings = get_settings()
logger = logging.getLogger(__name__)

SESSION_LIST_LIMIT = 20


# ============================================================================
# 数据结构
# ============================================================================

@dataclass
class AnswerInput:
    """单个答案提交（扁平字段，按题型取用）"""
    question_id: UUID
    question_option_id: Optional[UUID] = None
    question_option_ids: Optional[List[UUID]] = None
    range_value: Optional[float] = None
    text_value: Optional[str] = None


@dataclass
class SessionSummary:
    session: QuestionnaireSession
    category_name: str
    answer_count: int


@dataclass
class SessionDetail:
    session: QuestionnaireSession
    category: Category
    answers: List[Answer]


@dataclass
class AdvanceResult:
    next_question: Optional[Question]
    is_completed: bool
    answered_count: int
    total_questions: int
    unanswered_required: List[Question] = field(default_factory=list)


@dataclass
class Progress:
    total_questions: int
    required_questions: int
    answered_questions: int
    completion_rate: int
    can_complete: bool
    is_completed: bool
    missing_required: List[Question] = field(default_factory=list)


@dataclass
class CompletionResult:
    session: QuestionnaireSession
    already_completed: bool
    completed_at: Optional[datetime]


@dataclass
class _Coverage:
    """问卷覆盖情况"""
    questions: List[Question]
    answers: Dict[UUID, Answer]
    missing_required: List[Question]


# ============================================================================
# 服务实现
# ============================================================================

class SessionService:
    """问卷会话服务"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.catalog = CatalogService(db)

    # ------------------------------------------------------------------
    # 创建与查询
    # ------------------------------------------------------------------

    async def create(self, profile: UserProfile, category_id: UUID) -> tuple[QuestionnaireSession, bool]:
        """
        创建会话；同一用户同一分类已有进行中的会话时直接复用

        Returns:
            (会话, 是否新建)
        """
        await self.catalog.get_category(category_id)

        result = await self.db.execute(
            select(QuestionnaireSession)
            .where(
                QuestionnaireSession.user_profile_id == profile.id,
                QuestionnaireSession.category_id == category_id,
                QuestionnaireSession.status == SessionStatus.IN_PROGRESS.value,
            )
            .order_by(QuestionnaireSession.started_at.desc())
            .limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing, False

        session = QuestionnaireSession(
            user_profile_id=profile.id,
            category_id=category_id,
            status=SessionStatus.IN_PROGRESS.value,
        )
        self.db.add(session)
        await self._commit()
        logger.info(f"Session created: {session.id} (category={category_id})")
        return session, True

    async def get_owned(self, session_id: UUID, profile: UserProfile) -> QuestionnaireSession:
        """获取属于该用户的会话，否则视为不存在"""
        result = await self.db.execute(
            select(QuestionnaireSession).where(
                QuestionnaireSession.id == session_id,
                QuestionnaireSession.user_profile_id == profile.id,
            )
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise NotFoundError("session")
        return session

    async def get_detail(self, session_id: UUID, profile: UserProfile) -> SessionDetail:
        session = await self.get_owned(session_id, profile)
        category = await self.catalog.get_category(session.category_id)
        answers = await self.list_answers(session)
        return SessionDetail(session=session, category=category, answers=answers)

    async def list_sessions(self, profile: UserProfile, limit: int = SESSION_LIST_LIMIT) -> List[SessionSummary]:
        """最新的会话列表，附带分类名和回答数"""
        answer_count = (
            select(func.count(Answer.id))
            .where(Answer.session_id == QuestionnaireSession.id)
            .correlate(QuestionnaireSession)
            .scalar_subquery()
        )
        result = await self.db.execute(
            select(QuestionnaireSession, Category.name, answer_count)
            .join(Category, Category.id == QuestionnaireSession.category_id)
            .where(QuestionnaireSession.user_profile_id == profile.id)
            .order_by(QuestionnaireSession.started_at.desc())
            .limit(limit)
        )
        return [
            SessionSummary(session=row[0], category_name=row[1], answer_count=row[2] or 0)
            for row in result.all()
        ]

    async def delete(self, session_id: UUID, profile: UserProfile) -> None:
        """删除会话及其答案和推荐，历史记录保留但解除关联"""
        session = await self.get_owned(session_id, profile)
        await self.db.execute(delete(Answer).where(Answer.session_id == session.id))
        await self.db.execute(delete(Recommendation).where(Recommendation.session_id == session.id))
        await self.db.execute(
            update(UserHistory)
            .where(UserHistory.session_id == session.id)
            .values(session_id=None)
        )
        await self.db.execute(delete(QuestionnaireSession).where(QuestionnaireSession.id == session.id))
        await self._commit()
        logger.info(f"Session deleted: {session_id}")

    # ------------------------------------------------------------------
    # 答案
    # ------------------------------------------------------------------

    async def list_answers(self, session: QuestionnaireSession) -> List[Answer]:
        """按问题顺序列出会话的答案"""
        result = await self.db.execute(
            select(Answer)
            .join(Question, Question.id == Answer.question_id)
            .where(Answer.session_id == session.id)
            .order_by(Question.created_at, Question.id)
        )
        return list(result.scalars().all())

    async def submit_answer(self, session: QuestionnaireSession, item: AnswerInput) -> Answer:
        """提交单个答案（按问题覆盖）"""
        answers = await self.submit_answers(session, [item])
        return answers[0]

    async def submit_answers(self, session: QuestionnaireSession, items: Sequence[AnswerInput]) -> List[Answer]:
        """
        批量提交答案

        先校验全部答案，再在同一事务中写入；任一失败则整体不写入。

        Raises:
            InvalidStateError: 会话不在进行中
            NotFoundError: 问题不存在
            CategoryMismatchError: 问题不属于会话分类
            InvalidAnswerError: 答案不符合题型规则
        """
        session_id = session.id
        if session.status != SessionStatus.IN_PROGRESS.value:
            raise InvalidStateError(session.status, "answer")
        if not items:
            raise InvalidAnswerError("no_answers")

        prepared = []
        for item in items:
            question = await self.catalog.get_question(item.question_id)
            if question.category_id != session.category_id:
                raise CategoryMismatchError(
                    f"question {question.id} is not in category {session.category_id}",
                    details={"question_id": str(question.id)},
                )
            value = answer_from_submission(
                question.question_type,
                option_id=item.question_option_id,
                option_ids=item.question_option_ids,
                range_value=item.range_value,
                text_value=item.text_value,
            )
            violation = describe_violation(question, value)
            if violation is not None:
                raise InvalidAnswerError(
                    violation.key,
                    details={"question_id": str(question.id)},
                    reason_params=violation.params,
                )
            # 回滚会使 ORM 对象过期，这里只保留普通值
            prepared.append((question.id, value, [option.id for option in question.options]))

        # 并发插入同一问题时唯一约束冲突，重试一次走更新分支
        for attempt in range(2):
            try:
                await self._touch_in_progress(session_id, "answer")
                saved = [await self._upsert_answer(session_id, *args) for args in prepared]
                await self.db.commit()
            except IntegrityError as e:
                await self.db.rollback()
                if attempt:
                    logger.error(f"Answer upsert conflict persisted for session {session_id}: {e}")
                    raise InternalError("answer upsert failed") from e
                continue
            except ConciergeError:
                await self.db.rollback()
                raise
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.exception(f"Failed to save answers for session {session_id}")
                raise InternalError("failed to save answers") from e

            if attempt:
                # 重试前的回滚使调用方持有的会话对象过期
                await self.db.refresh(session)
            return saved
        raise InternalError("answer upsert failed")

    async def _upsert_answer(
        self, session_id: UUID, question_id: UUID, value, option_order: List[UUID]
    ) -> Answer:
        result = await self.db.execute(
            select(Answer).where(Answer.session_id == session_id, Answer.question_id == question_id)
        )
        answer = result.scalar_one_or_none()
        if answer is None:
            answer = Answer(session_id=session_id, question_id=question_id)
            self.db.add(answer)

        # 先清空再按题型写入，保证每行只有一种取值
        answer.question_option_id = None
        answer.option_ids = None
        answer.range_value = None
        answer.text_value = None
        if isinstance(value, SingleChoiceAnswer):
            answer.question_option_id = value.option_id
        elif isinstance(value, MultipleChoiceAnswer):
            ordered = [option_id for option_id in option_order if option_id in value.option_ids]
            answer.option_ids = [str(option_id) for option_id in ordered]
            answer.question_option_id = ordered[0]
        elif isinstance(value, RangeAnswer):
            answer.range_value = float(value.value)
        else:
            answer.text_value = value.text.strip()
        answer.updated_at = utcnow()

        await self.db.flush()
        return answer

    # ------------------------------------------------------------------
    # 进度
    # ------------------------------------------------------------------

    async def _coverage(self, session: QuestionnaireSession) -> _Coverage:
        questions = await self.catalog.list_questions(session.category_id)
        answers = {answer.question_id: answer for answer in await self.list_answers(session)}
        missing = [
            question
            for question in questions
            if not is_answer_valid(
                question,
                answer_from_row(question.question_type, answers[question.id])
                if question.id in answers
                else None,
            )
        ]
        return _Coverage(questions=questions, answers=answers, missing_required=missing)

    async def advance(self, session: QuestionnaireSession) -> AdvanceResult:
        """计算下一个未回答的问题，不改变会话状态"""
        if session.status == SessionStatus.COMPLETED.value:
            raise InvalidStateError(session.status, "advance")

        coverage = await self._coverage(session)
        next_question = next(
            (q for q in coverage.questions if q.id not in coverage.answers),
            None,
        )
        return AdvanceResult(
            next_question=next_question,
            is_completed=not coverage.missing_required,
            answered_count=sum(1 for q in coverage.questions if q.id in coverage.answers),
            total_questions=len(coverage.questions),
            unanswered_required=coverage.missing_required,
        )

    async def get_progress(self, session: QuestionnaireSession) -> Progress:
        coverage = await self._coverage(session)
        total = len(coverage.questions)
        answered = sum(1 for q in coverage.questions if q.id in coverage.answers)
        return Progress(
            total_questions=total,
            required_questions=sum(1 for q in coverage.questions if q.is_required),
            answered_questions=answered,
            completion_rate=round(answered / total * 100) if total else 0,
            can_complete=(
                session.status == SessionStatus.IN_PROGRESS.value
                and not coverage.missing_required
            ),
            is_completed=session.status == SessionStatus.COMPLETED.value,
            missing_required=coverage.missing_required,
        )

    # ------------------------------------------------------------------
    # 状态迁移
    # ------------------------------------------------------------------

    async def pause(self, session: QuestionnaireSession) -> QuestionnaireSession:
        return await self._transition(session, SessionStatus.IN_PROGRESS, SessionStatus.ABANDONED, "pause")

    async def abandon(self, session: QuestionnaireSession) -> QuestionnaireSession:
        return await self._transition(session, SessionStatus.IN_PROGRESS, SessionStatus.ABANDONED, "abandon")

    async def resume(self, session: QuestionnaireSession) -> QuestionnaireSession:
        return await self._transition(session, SessionStatus.ABANDONED, SessionStatus.IN_PROGRESS, "resume")

    async def complete(self, session: QuestionnaireSession) -> CompletionResult:
        """
        完成会话

        必答题全部有效回答后，在同一事务中：状态改为 COMPLETED、
        累加用户问卷计数、追加历史记录。对已完成的会话重复调用直接返回原结果。

        Raises:
            IncompleteRequiredAnswersError: 有必答题未回答
            InvalidStateError: 会话已中断
        """
        if session.status == SessionStatus.COMPLETED.value:
            return CompletionResult(session=session, already_completed=True, completed_at=session.completed_at)
        if session.status != SessionStatus.IN_PROGRESS.value:
            raise InvalidStateError(session.status, "complete")

        coverage = await self._coverage(session)
        if coverage.missing_required:
            raise IncompleteRequiredAnswersError(
                [{"id": str(q.id), "text": q.text} for q in coverage.missing_required]
            )

        session_id = session.id
        now = utcnow()
        try:
            result = await self.db.execute(
                update(QuestionnaireSession)
                .where(
                    QuestionnaireSession.id == session_id,
                    QuestionnaireSession.status == SessionStatus.IN_PROGRESS.value,
                )
                .values(status=SessionStatus.COMPLETED.value, completed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # 并发调用方已经迁移了状态
                await self.db.rollback()
                await self.db.refresh(session)
                if session.status == SessionStatus.COMPLETED.value:
                    return CompletionResult(session=session, already_completed=True, completed_at=session.completed_at)
                raise InvalidStateError(session.status, "complete")

            await self.db.execute(
                update(UserProfile)
                .where(UserProfile.id == session.user_profile_id)
                .values(question_count=UserProfile.question_count + 1)
            )
            category = await self.catalog.get_category(session.category_id)
            locale = settings.default_locale
            self.db.add(UserHistory(
                user_profile_id=session.user_profile_id,
                session_id=session_id,
                type=HistoryType.QUESTIONNAIRE.value,
                title=t("history.questionnaire_title", locale, category=category.name),
                description=t("history.questionnaire_description", locale, count=len(coverage.answers)),
                status=SessionStatus.COMPLETED.value,
                completion_rate=100.0,
                details={
                    "category_id": str(category.id),
                    "answer_count": len(coverage.answers),
                    "required_count": sum(1 for q in coverage.questions if q.is_required),
                },
            ))
            await self.db.commit()
        except ConciergeError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Failed to complete session {session_id}")
            raise InternalError("failed to complete session") from e

        await self.db.refresh(session)
        logger.info(f"Session completed: {session_id}")
        return CompletionResult(session=session, already_completed=False, completed_at=session.completed_at)

    async def _transition(
        self,
        session: QuestionnaireSession,
        source: SessionStatus,
        target: SessionStatus,
        action: str,
    ) -> QuestionnaireSession:
        """比较并交换式状态迁移"""
        if session.status != source.value:
            raise InvalidStateError(session.status, action)

        result = await self.db.execute(
            update(QuestionnaireSession)
            .where(
                QuestionnaireSession.id == session.id,
                QuestionnaireSession.status == source.value,
            )
            .values(status=target.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            await self.db.refresh(session)
            raise InvalidStateError(session.status, action)

        await self._commit()
        await self.db.refresh(session)
        logger.info(f"Session {session.id}: {source.value} -> {target.value} ({action})")
        return session

    async def _touch_in_progress(self, session_id: UUID, action: str) -> None:
        """写答案前确认会话仍在进行中，同时锁定会话行"""
        result = await self.db.execute(
            update(QuestionnaireSession)
            .where(
                QuestionnaireSession.id == session_id,
                QuestionnaireSession.status == SessionStatus.IN_PROGRESS.value,
            )
            .values(updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = await self.db.scalar(
                select(QuestionnaireSession.status).where(QuestionnaireSession.id == session_id)
            )
            raise InvalidStateError(current or "UNKNOWN", action)

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception("Database commit failed")
            raise InternalError("database commit failed") from e
