import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from concierge.core.config import Settings
from concierge.core.errors import (
    AIParseError,
    AlreadyGeneratedError,
    NoAnswersError,
    NoCandidateProductsError,
    NotFoundError,
    SessionNotCompletedError,
)
from concierge.models import HistoryType, QuestionType, Recommendation, UserHistory, UserProfile
from concierge.services.generation_agent import AgentError
from concierge.services.recommendation import (
    RecommendationService,
    SuggestedItem,
    build_fallback,
    map_to_products,
    normalize_score,
    parse_agent_response,
)
from concierge.services.session import AnswerInput, SessionService
from factories import create_category, create_product, create_profile, create_question, create_smartphone_catalog


class SlowAgent:
    """永远赶不上超时的代理"""

    async def generate(self, prompt: str) -> str:
        await asyncio.sleep(5)
        return "{}"


class FixedAgent:
    def __init__(self, payload):
        self.text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
        self.prompts = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.text


def _settings(**overrides) -> Settings:
    return Settings(grok_api_key="", **overrides)


async def _completed_session(db, catalog=None, profile=None):
    catalog = catalog or await create_smartphone_catalog(db)
    profile = profile or await create_profile(db)
    service = SessionService(db)
    session, _ = await service.create(profile, catalog.category.id)
    await service.submit_answers(session, [
        AnswerInput(catalog.usage.id, question_option_id=catalog.usage.options[0].id),
        AnswerInput(catalog.brand.id, question_option_id=catalog.brand.options[1].id),
        AnswerInput(catalog.notes.id, text_value="軽いものが良い"),
    ])
    await service.complete(session)
    return catalog, profile, session


# ============================================================================
# 解析
# ============================================================================

def test_parse_fenced_json_block():
    text = """おすすめはこちらです。
```json
{"recommendations": [{"productName": "Phone B", "reason": "カメラが良い", "score": 0.92, "rank": 1}]}
```
以上です。"""

    items = parse_agent_response(text)

    assert items == [SuggestedItem(product_name="Phone B", reason="カメラが良い", score=0.92, rank=1)]


def test_parse_whole_text_and_drops_malformed_items():
    text = json.dumps({"recommendations": [
        {"productName": "Phone A"},
        {"reason": "名前がない"},
        "not an object",
        {"productName": "  Phone C  ", "rank": 2},
    ]})

    items = parse_agent_response(text)

    assert [i.product_name for i in items] == ["Phone A", "Phone C"]
    assert items[0].score is None


@pytest.mark.parametrize("text", [
    "",
    "   ",
    "I cannot help with that",
    '{"recommendations": []}',
    '{"items": [{"productName": "Phone A"}]}',
    '{"recommendations": "Phone A"}',
    '{"recommendations": [{"reason": "no name"}]}',
])
def test_parse_rejects_unusable_responses(text):
    with pytest.raises(AIParseError):
        parse_agent_response(text)


@pytest.mark.parametrize("payload", [None, {"recommendations": [{"productName": "Phone A"}]}, 42])
def test_parse_rejects_non_text(payload):
    with pytest.raises(AIParseError):
        parse_agent_response(payload)


def test_normalize_score():
    assert normalize_score(None, 0.8) == 0.8
    assert normalize_score(0.5, 0.8) == 0.5
    assert normalize_score(85, 0.8) == 0.85
    assert normalize_score(-0.2, 0.8) == 0.0
    assert normalize_score(250, 0.8) == 1.0


async def test_map_to_products_matches_exact_names(db):
    catalog = await create_smartphone_catalog(db)
    items = [
        SuggestedItem("Phone Z", reason="存在しない", rank=1),
        SuggestedItem("Phone C", reason=None, score=None, rank=3),
        SuggestedItem("phone a", rank=2),
        SuggestedItem("Phone E", reason="バッテリー", score=0.7, rank=2),
        SuggestedItem("Phone C", reason="重複", rank=1),
    ]

    drafts = map_to_products(items, catalog.products, "Smartphones", 0.8, limit=10)

    assert [d.product.name for d in drafts] == ["Phone E", "Phone C"]
    assert [d.rank for d in drafts] == [1, 2]
    assert drafts[0].score == 0.7
    assert drafts[1].score == 0.8
    assert "Phone C" in drafts[1].reason


async def test_map_to_products_respects_limit(db):
    catalog = await create_smartphone_catalog(db)
    items = [SuggestedItem(p.name) for p in catalog.products]

    drafts = map_to_products(items, catalog.products, "Smartphones", 0.8, limit=2)

    assert [d.product.name for d in drafts] == ["Phone A", "Phone B"]


async def test_fallback_orders_by_rating(db):
    catalog = await create_smartphone_catalog(db)

    drafts = build_fallback("Smartphones", catalog.products, count=5)

    assert [d.product.name for d in drafts] == ["Phone B", "Phone D", "Phone A", "Phone E", "Phone C"]
    assert [d.score for d in drafts] == [0.9, 0.8, 0.7, 0.6, 0.6]


# ============================================================================
# 生成流程
# ============================================================================

async def test_generate_falls_back_when_agent_times_out(db):
    _, profile, session = await _completed_session(db)
    service = RecommendationService(db, agent=SlowAgent(), settings=_settings(ai_request_timeout=0.05))

    result = await service.generate(session)

    assert result.source == "fallback"
    assert [v.product.name for v in result.recommendations] == ["Phone B", "Phone D", "Phone A"]
    assert [v.recommendation.score for v in result.recommendations] == [0.9, 0.8, 0.7]
    assert [v.recommendation.rank for v in result.recommendations] == [1, 2, 3]

    stored = await service.get_recommendations(session)
    assert [v.product.name for v in stored] == ["Phone B", "Phone D", "Phone A"]


async def test_generate_falls_back_on_agent_error(db):
    _, _, session = await _completed_session(db)
    agent = AsyncMock()
    agent.generate.side_effect = AgentError("GROK_API_KEY is not configured")

    result = await RecommendationService(db, agent=agent, settings=_settings()).generate(session)

    assert result.source == "fallback"
    assert "GROK_API_KEY" in result.fallback_reason
    assert len(result.recommendations) == 3


async def test_generate_falls_back_when_nothing_matches(db):
    _, _, session = await _completed_session(db)
    agent = FixedAgent({"recommendations": [{"productName": "Unknown Phone", "score": 0.9}]})

    result = await RecommendationService(db, agent=agent, settings=_settings()).generate(session)

    assert result.source == "fallback"
    assert [v.product.name for v in result.recommendations] == ["Phone B", "Phone D", "Phone A"]


async def test_generate_uses_ai_ranking(db):
    _, profile, session = await _completed_session(db)
    agent = FixedAgent({"recommendations": [
        {"productName": "Phone C", "reason": "軽量", "score": 95, "rank": 1},
        {"productName": "Phone A", "reason": "写真向け", "score": 0.8, "rank": 2},
    ]})

    result = await RecommendationService(db, agent=agent, settings=_settings()).generate(session)

    assert result.source == "ai"
    assert [(v.product.name, v.recommendation.rank) for v in result.recommendations] == [
        ("Phone C", 1), ("Phone A", 2),
    ]
    assert result.recommendations[0].recommendation.score == 0.95
    # prompt 中包含回答与候选商品
    assert "写真" in agent.prompts[0]
    assert "軽いものが良い" in agent.prompts[0]
    assert "Phone E" in agent.prompts[0]

    await db.refresh(profile)
    assert profile.recommendation_count == 2
    history = (await db.execute(
        select(UserHistory).where(UserHistory.type == HistoryType.RECOMMENDATION.value)
    )).scalars().one()
    assert history.details["source"] == "ai"
    assert history.session_id == session.id


async def test_generate_only_once(db):
    _, _, session = await _completed_session(db)
    service = RecommendationService(db, agent=SlowAgent(), settings=_settings(ai_request_timeout=0.05))
    await service.generate(session)

    with pytest.raises(AlreadyGeneratedError):
        await service.generate(session)

    assert await db.scalar(select(func.count(Recommendation.id))) == 3


async def test_concurrent_save_conflict_reports_already_generated(db, monkeypatch):
    _, profile, session = await _completed_session(db)
    service = RecommendationService(db, agent=SlowAgent(), settings=_settings(ai_request_timeout=0.05))
    await service.generate(session)

    # 模拟另一个请求在检查之后才写入
    async def _never(session_id):
        return False

    monkeypatch.setattr(service, "_has_recommendations", _never)

    with pytest.raises(AlreadyGeneratedError):
        await service.generate(session)

    await db.refresh(profile)
    assert profile.recommendation_count == 3
    assert await db.scalar(select(func.count(Recommendation.id))) == 3


async def test_generate_requires_completed_session(db):
    catalog = await create_smartphone_catalog(db)
    profile = await create_profile(db)
    session, _ = await SessionService(db).create(profile, catalog.category.id)

    with pytest.raises(SessionNotCompletedError):
        await RecommendationService(db, agent=SlowAgent(), settings=_settings()).generate(session)


async def test_generate_requires_answers(db):
    category = await create_category(db, "Headphones")
    await create_question(db, category, QuestionType.TEXT, is_required=False)
    await create_product(db, category, "Buds", 4.0)
    profile = await create_profile(db)
    service = SessionService(db)
    session, _ = await service.create(profile, category.id)
    await service.complete(session)

    with pytest.raises(NoAnswersError):
        await RecommendationService(db, agent=SlowAgent(), settings=_settings()).generate(session)


async def test_generate_requires_products(db):
    catalog = await create_smartphone_catalog(db, product_count=0)
    _, _, session = await _completed_session(db, catalog=catalog)

    with pytest.raises(NoCandidateProductsError):
        await RecommendationService(db, agent=SlowAgent(), settings=_settings()).generate(session)


async def test_get_recommendations_before_generation(db):
    _, _, session = await _completed_session(db)

    with pytest.raises(NotFoundError):
        await RecommendationService(db, agent=SlowAgent(), settings=_settings()).get_recommendations(session)


async def test_answer_summaries_use_option_labels(db):
    _, _, session = await _completed_session(db)

    summaries = await RecommendationService(db, agent=SlowAgent(), settings=_settings()).load_answer_summaries(session)

    assert [s.answer_text for s in summaries] == ["写真", "Google", "軽いものが良い"]


@pytest.mark.parametrize("side_effect", [
    ConnectionError("upstream reset"),
    TimeoutError("read timed out"),
    RuntimeError("unexpected agent failure"),
])
async def test_generate_falls_back_on_any_agent_exception(db, side_effect):
    _, _, session = await _completed_session(db)
    agent = AsyncMock()
    agent.generate.side_effect = side_effect

    result = await RecommendationService(db, agent=agent, settings=_settings()).generate(session)

    assert result.source == "fallback"
    assert [v.product.name for v in result.recommendations] == ["Phone B", "Phone D", "Phone A"]


async def test_generate_falls_back_on_non_text_response(db):
    _, _, session = await _completed_session(db)
    agent = AsyncMock()
    agent.generate.return_value = {"recommendations": [{"productName": "Phone C"}]}

    result = await RecommendationService(db, agent=agent, settings=_settings()).generate(session)

    assert result.source == "fallback"
    assert len(result.recommendations) == 3


async def test_business_errors_from_agent_are_not_swallowed(db):
    _, _, session = await _completed_session(db)
    agent = AsyncMock()
    agent.generate.side_effect = NoCandidateProductsError("catalog changed")

    with pytest.raises(NoCandidateProductsError):
        await RecommendationService(db, agent=agent, settings=_settings()).generate(session)

    assert await db.scalar(select(func.count(Recommendation.id))) == 0
