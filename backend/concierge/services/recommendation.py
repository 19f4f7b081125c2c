"""推荐生成服务

流程：读取回答与候选商品 -> 生成 prompt -> 调用生成代理 ->
解析 JSON -> 按商品名精确匹配 -> 事务内保存。
AI 调用或解析的任何失败都会转入回退逻辑（按评分取前几名）。
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.core.config import Settings, get_settings
from concierge.core.errors import (
    AIParseError,
    AlreadyGeneratedError,
    ConciergeError,
    InternalError,
    NoAnswersError,
    NoCandidateProductsError,
    NotFoundError,
    SessionNotCompletedError,
)
from concierge.core.i18n import t
from concierge.models.catalog import Category, Question, QuestionType
from concierge.models.product import Product
from concierge.models.recommendation import Recommendation
from concierge.models.session import Answer, QuestionnaireSession, SessionStatus
from concierge.models.user import UserProfile
from concierge.models.user_history import HistoryType, UserHistory
from concierge.services.catalog import CatalogService
from concierge.services.generation_agent import GenerationAgent, GrokGenerationAgent

logger = logging.getLogger(__name__)

FALLBACK_TOP_SCORE = 0.9
FALLBACK_SCORE_STEP = 0.1
FALLBACK_SCORE_FLOOR = 0.6


# ============================================================================
# 数据结构
# ============================================================================

@dataclass
class AnswerSummary:
    """人类可读的回答摘要"""
    question_text: str
    question_type: str
    answer_text: str


@dataclass
class SuggestedItem:
    """AI 建议的一项（尚未与商品目录匹配）"""
    product_name: str
    reason: Optional[str] = None
    score: Optional[float] = None
    rank: Optional[int] = None


@dataclass
class RecommendationDraft:
    product: Product
    rank: int
    score: float
    reason: str


@dataclass
class RecommendationView:
    recommendation: Recommendation
    product: Product


@dataclass
class GenerationResult:
    recommendations: List[RecommendationView]
    source: str  # "ai" | "fallback"
    fallback_reason: Optional[str] = None


class AIRecommendationItem(BaseModel):
    """AI 输出中的单个推荐项"""
    model_config = ConfigDict(populate_by_name=True)

    product_name: str = Field(..., alias="productName", min_length=1)
    reason: Optional[str] = None
    score: Optional[float] = None
    rank: Optional[int] = Field(default=None, ge=1)


class AIRecommendationPayload(BaseModel):
    """AI 输出的顶层结构，逐项校验在外层进行"""
    recommendations: List[Any] = Field(..., min_length=1)


# ============================================================================
# Prompt
# ============================================================================

RECOMMENDATION_PROMPT_TEMPLATE = """以下のアンケート回答をもとに、「{category_name}」カテゴリの候補商品からユーザーに最適な商品を選び、順位を付けてください。

## カテゴリ
{category_name}
{category_description}

## ユーザーの回答
{answers}

## 候補商品
{products}

## 要件
1. 候補商品の中からのみ選んでください（商品名は一字一句そのまま使用すること）
2. 最大{max_recommendations}件まで、おすすめ順に並べてください
3. 各商品について、回答内容と結び付けた推薦理由を書いてください
4. score は 0.0〜1.0 の適合度です

## 出力形式
次の JSON のみを返してください：
```json
{{
    "recommendations": [
        {{
            "productName": "商品名",
            "reason": "推薦理由",
            "score": 0.85,
            "rank": 1
        }}
    ]
}}
```
"""


def _format_price(price: Optional[float]) -> str:
    return f"{int(price):,}円" if price is not None else "不明"


def build_prompt(
    category: Category,
    answers: Sequence[AnswerSummary],
    products: Sequence[Product],
    max_recommendations: int,
) -> str:
    """根据分类、回答摘要和候选商品生成 prompt"""
    answer_lines = "\n".join(
        f"- Q: {a.question_text}\n  A: {a.answer_text}" for a in answers
    )
    product_lines = "\n".join(
        "- {name} | ショップ: {shop} | 価格: {price} | 評価: {rating} | 特徴: {features} | 説明: {description}".format(
            name=p.name,
            shop=p.shop_name or "不明",
            price=_format_price(p.price),
            rating=p.rating if p.rating is not None else "なし",
            features=(p.features or "なし")[:200],
            description=(p.description or "なし")[:200],
        )
        for p in products
    )
    return RECOMMENDATION_PROMPT_TEMPLATE.format(
        category_name=category.name,
        category_description=category.description or "",
        answers=answer_lines,
        products=product_lines,
        max_recommendations=max_recommendations,
    )


# ============================================================================
# 解析与匹配
# ============================================================================

_FENCED_JSON = re.compile(r"```json\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def parse_agent_response(text: Any) -> List[SuggestedItem]:
    """
    解析生成代理的原始输出

    优先使用 ```json 代码块，否则把整段文本当作 JSON。
    缺少商品名等不合格的单项会被丢弃。

    Raises:
        AIParseError: 无法解析或 recommendations 不是非空数组
    """
    if not isinstance(text, str):
        raise AIParseError(f"response is not text: {type(text).__name__}")
    if not text.strip():
        raise AIParseError("empty response")

    match = _FENCED_JSON.search(text)
    raw = match.group(1) if match else text.strip()

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise AIParseError(f"response is not valid JSON: {e}") from e

    try:
        payload = AIRecommendationPayload.model_validate(data)
    except ValidationError as e:
        raise AIParseError(f"unexpected response shape: {e.error_count()} errors") from e

    items = []
    for index, raw_item in enumerate(payload.recommendations):
        try:
            item = AIRecommendationItem.model_validate(raw_item)
        except ValidationError:
            logger.warning(f"Dropping malformed AI recommendation #{index + 1}: {str(raw_item)[:100]}")
            continue
        items.append(SuggestedItem(
            product_name=item.product_name.strip(),
            reason=item.reason.strip() if item.reason else None,
            score=item.score,
            rank=item.rank,
        ))

    if not items:
        raise AIParseError("no usable recommendation items")
    return items


def normalize_score(score: Optional[float], default: float) -> float:
    """把分数统一到 0-1；大于 1 的视为百分制"""
    if score is None:
        return default
    if score > 1:
        score = score / 100
    return max(0.0, min(1.0, score))


def map_to_products(
    items: Sequence[SuggestedItem],
    products: Sequence[Product],
    category_name: str,
    default_score: float,
    limit: int,
    locale: str = "ja",
) -> List[RecommendationDraft]:
    """
    按商品名精确匹配候选商品

    未匹配的建议记录警告后丢弃；同一商品只保留第一次出现。
    排名按 AI 给出的 rank（缺省为列表位置）排序后重新编号为 1..k。
    """
    by_name = {}
    for product in products:
        by_name.setdefault(product.name, product)

    matched = []
    seen = set()
    for position, item in enumerate(items, start=1):
        product = by_name.get(item.product_name)
        if product is None:
            logger.warning(f"AI suggested unknown product, dropped: {item.product_name!r}")
            continue
        if product.id in seen:
            continue
        seen.add(product.id)
        matched.append((item.rank or position, position, item, product))

    matched.sort(key=lambda m: (m[0], m[1]))

    drafts = []
    for rank, (_, _, item, product) in enumerate(matched[:limit], start=1):
        drafts.append(RecommendationDraft(
            product=product,
            rank=rank,
            score=normalize_score(item.score, default_score),
            reason=item.reason or t(
                "recommendation.default_reason", locale, category=category_name, product=product.name
            ),
        ))
    return drafts


def build_fallback(
    category_name: str,
    products: Sequence[Product],
    count: int,
    locale: str = "ja",
) -> List[RecommendationDraft]:
    """按评分取前 count 个商品，分数 0.9、0.8、0.7… 不低于 0.6"""
    ranked = sorted(
        products,
        key=lambda p: (-(p.rating if p.rating is not None else -1), p.name, str(p.id)),
    )
    return [
        RecommendationDraft(
            product=product,
            rank=index + 1,
            score=max(FALLBACK_SCORE_FLOOR, round(FALLBACK_TOP_SCORE - FALLBACK_SCORE_STEP * index, 2)),
            reason=t("recommendation.fallback_reason", locale, category=category_name),
        )
        for index, product in enumerate(ranked[:count])
    ]


# ============================================================================
# 服务
# ============================================================================

class RecommendationService:
    """推荐生成与查询"""

    def __init__(
        self,
        db: AsyncSession,
        agent: Optional[GenerationAgent] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.agent = agent or GrokGenerationAgent(self.settings)
        self.catalog = CatalogService(db)

    async def generate(self, session: QuestionnaireSession) -> GenerationResult:
        """
        为已完成的会话生成推荐（每个会话只生成一次）

        Raises:
            SessionNotCompletedError: 会话未完成
            AlreadyGeneratedError: 已生成过推荐
            NoAnswersError: 没有回答
            NoCandidateProductsError: 分类下没有商品
        """
        if session.status != SessionStatus.COMPLETED.value:
            raise SessionNotCompletedError(f"session {session.id} is {session.status}")
        if await self._has_recommendations(session.id):
            raise AlreadyGeneratedError(f"session {session.id} already has recommendations")

        answers = await self.load_answer_summaries(session)
        if not answers:
            raise NoAnswersError(f"session {session.id} has no answers")

        products = await self.catalog.list_candidate_products(
            session.category_id, self.settings.candidate_product_limit
        )
        if not products:
            raise NoCandidateProductsError(f"category {session.category_id} has no products")

        category = await self.catalog.get_category(session.category_id)
        locale = self.settings.default_locale
        logger.info(
            f"Generating recommendations for session {session.id}: "
            f"{len(answers)} answers, {len(products)} candidates"
        )

        source = "ai"
        fallback_reason = None
        try:
            prompt = build_prompt(category, answers, products, self.settings.max_recommendations)
            text = await asyncio.wait_for(
                self.agent.generate(prompt),
                timeout=self.settings.ai_request_timeout,
            )
            items = parse_agent_response(text)
            drafts = map_to_products(
                items,
                products,
                category.name,
                self.settings.default_recommendation_score,
                self.settings.max_recommendations,
                locale,
            )
            if not drafts:
                raise AIParseError("no suggested product matched the catalog")
        except Exception as e:
            # 代理是可注入的外部协作者：除业务错误外的任何异常都转入回退
            if isinstance(e, ConciergeError) and not isinstance(e, AIParseError):
                raise
            source = "fallback"
            fallback_reason = str(e) or type(e).__name__
            logger.warning(f"AI recommendation failed for session {session.id}, using fallback: {fallback_reason}")
            drafts = build_fallback(category.name, products, self.settings.fallback_recommendation_count, locale)

        views = await self._save(session, category, drafts, source)
        logger.info(f"Saved {len(views)} recommendations for session {session.id} (source={source})")
        return GenerationResult(recommendations=views, source=source, fallback_reason=fallback_reason)

    async def get_recommendations(self, session: QuestionnaireSession) -> List[RecommendationView]:
        """按排名获取会话的推荐"""
        result = await self.db.execute(
            select(Recommendation, Product)
            .join(Product, Product.id == Recommendation.product_id)
            .where(Recommendation.session_id == session.id)
            .order_by(Recommendation.rank)
        )
        views = [RecommendationView(recommendation=row[0], product=row[1]) for row in result.all()]
        if not views:
            raise NotFoundError("recommendation")
        return views

    async def load_answer_summaries(self, session: QuestionnaireSession) -> List[AnswerSummary]:
        """读取回答并转换成带问题文本和选项标签的摘要"""
        result = await self.db.execute(
            select(Answer, Question)
            .join(Question, Question.id == Answer.question_id)
            .where(Answer.session_id == session.id)
            .order_by(Question.created_at, Question.id)
        )
        summaries = []
        for answer, question in result.all():
            summaries.append(AnswerSummary(
                question_text=question.text,
                question_type=question.type,
                answer_text=self._answer_text(question, answer),
            ))
        return summaries

    @staticmethod
    def _answer_text(question: Question, answer: Answer) -> str:
        labels = {option.id: option.label for option in question.options}
        question_type = question.question_type
        if question_type == QuestionType.SINGLE_CHOICE:
            return labels.get(answer.question_option_id, "未回答")
        if question_type == QuestionType.MULTIPLE_CHOICE:
            ids = [UUID(v) for v in (answer.option_ids or [])]
            if not ids and answer.question_option_id:
                ids = [answer.question_option_id]
            return "、".join(labels[i] for i in ids if i in labels) or "未回答"
        if question_type == QuestionType.RANGE:
            return f"{answer.range_value:g}" if answer.range_value is not None else "未回答"
        return answer.text_value or "未回答"

    async def _has_recommendations(self, session_id: UUID) -> bool:
        count = await self.db.scalar(
            select(func.count(Recommendation.id)).where(Recommendation.session_id == session_id)
        )
        return bool(count)

    async def _save(
        self,
        session: QuestionnaireSession,
        category: Category,
        drafts: Sequence[RecommendationDraft],
        source: str,
    ) -> List[RecommendationView]:
        """在同一事务中保存推荐、累加计数并追加历史记录"""
        session_id = session.id
        locale = self.settings.default_locale
        try:
            if await self._has_recommendations(session_id):
                raise AlreadyGeneratedError(f"session {session_id} already has recommendations")

            rows = [
                Recommendation(
                    session_id=session_id,
                    product_id=draft.product.id,
                    rank=draft.rank,
                    score=draft.score,
                    reason=draft.reason,
                )
                for draft in drafts
            ]
            self.db.add_all(rows)
            await self.db.flush()

            await self.db.execute(
                update(UserProfile)
                .where(UserProfile.id == session.user_profile_id)
                .values(recommendation_count=UserProfile.recommendation_count + len(rows))
            )
            self.db.add(UserHistory(
                user_profile_id=session.user_profile_id,
                session_id=session_id,
                type=HistoryType.RECOMMENDATION.value,
                title=t("history.recommendation_title", locale, category=category.name),
                description=t("history.recommendation_description", locale, count=len(rows)),
                status=SessionStatus.COMPLETED.value,
                completion_rate=100.0,
                details={
                    "source": source,
                    "product_ids": [str(draft.product.id) for draft in drafts],
                },
            ))
            await self.db.commit()
        except IntegrityError as e:
            # 并发生成时唯一约束冲突
            await self.db.rollback()
            raise AlreadyGeneratedError(f"session {session_id} already has recommendations") from e
        except ConciergeError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.exception(f"Failed to save recommendations for session {session_id}")
            raise InternalError("failed to save recommendations") from e

        return [RecommendationView(recommendation=row, product=draft.product) for row, draft in zip(rows, drafts)]
