"""推荐 API"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.core.auth_deps import get_current_profile
from concierge.core.database import get_db
from concierge.middleware.rate_limit import rate_limit
from concierge.models.user import UserProfile
from concierge.services.generation_agent import GenerationAgent, GrokGenerationAgent
from concierge.services.recommendation import RecommendationService, RecommendationView
from concierge.services.session import SessionService

router = APIRouter(prefix="/api/recommendations", tags=["recommendations"])
logger = logging.getLogger(__name__)


def get_generation_agent() -> GenerationAgent:
    """生成代理依赖（测试中可覆盖）"""
    return GrokGenerationAgent()


# ============================================================================
# Schemas
# ============================================================================

class GenerateRequest(BaseModel):
    session_id: UUID


class ProductOut(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    price: Optional[float] = None
    rating: Optional[float] = None
    features: Optional[str] = None
    image_url: Optional[str] = None
    external_url: str
    shop_name: Optional[str] = None
    review_count: int = 0


class RecommendationOut(BaseModel):
    id: UUID
    rank: int
    score: float
    reason: str
    product: ProductOut


class RecommendationListResponse(BaseModel):
    session_id: UUID
    recommendations: List[RecommendationOut]
    total: int
    source: Optional[str] = None


def _to_out(view: RecommendationView) -> RecommendationOut:
    product = view.product
    return RecommendationOut(
        id=view.recommendation.id,
        rank=view.recommendation.rank,
        score=view.recommendation.score,
        reason=view.recommendation.reason,
        product=ProductOut(
            id=product.id,
            name=product.name,
            description=product.description,
            price=product.price,
            rating=product.rating,
            features=product.features,
            image_url=product.image_url,
            external_url=product.external_url,
            shop_name=product.shop_name,
            review_count=product.review_count or 0,
        ),
    )


# ============================================================================
# 推荐 API
# ============================================================================

@router.post("/generate", response_model=RecommendationListResponse)
@rate_limit(max_requests=10, window=60)
@rate_limit(max_requests=5, window=300)
async def generate_recommendations(
    payload: GenerateRequest,
    request: Request,
    profile: UserProfile = Depends(get_current_profile),
    agent: GenerationAgent = Depends(get_generation_agent),
    db: AsyncSession = Depends(get_db),
):
    """
    为已完成的会话生成推荐

    AI 失败时自动回退到评分最高的商品，响应中 source 标明来源。
    """
    session = await SessionService(db).get_owned(payload.session_id, profile)
    result = await RecommendationService(db, agent=agent).generate(session)
    return RecommendationListResponse(
        session_id=session.id,
        recommendations=[_to_out(v) for v in result.recommendations],
        total=len(result.recommendations),
        source=result.source,
    )


@router.get("/{session_id}", response_model=RecommendationListResponse)
@rate_limit(max_requests=50, window=60)
async def get_recommendations(
    session_id: UUID,
    request: Request,
    profile: UserProfile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    session = await SessionService(db).get_owned(session_id, profile)
    views = await RecommendationService(db, agent=None).get_recommendations(session)
    return RecommendationListResponse(
        session_id=session.id,
        recommendations=[_to_out(v) for v in views],
        total=len(views),
    )
