"""分类与问题 API"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.api.schemas import CategoryOut, QuestionOut
from concierge.core.database import get_db
from concierge.middleware.rate_limit import rate_limit
from concierge.services.catalog import CatalogService

router = APIRouter(prefix="/api", tags=["catalog"])
logger = logging.getLogger(__name__)


# ============================================================================
# Schemas
# ============================================================================

class CategoryListResponse(BaseModel):
    categories: List[CategoryOut]


class CategoryDetailResponse(BaseModel):
    category: CategoryOut
    parent: Optional[CategoryOut] = None
    children: List[CategoryOut] = []


class QuestionListResponse(BaseModel):
    category: CategoryOut
    questions: List[QuestionOut]
    total: int


# ============================================================================
# 分类 API
# ============================================================================

@router.get("/categories", response_model=CategoryListResponse)
@rate_limit(max_requests=100, window=60)
async def list_categories(request: Request, db: AsyncSession = Depends(get_db)):
    """获取全部分类（按创建时间排序）"""
    categories = await CatalogService(db).list_categories()
    return CategoryListResponse(
        categories=[CategoryOut.model_validate(c) for c in categories]
    )


@router.get("/categories/{category_id}", response_model=CategoryDetailResponse)
@rate_limit(max_requests=100, window=60)
async def get_category(category_id: UUID, request: Request, db: AsyncSession = Depends(get_db)):
    """获取分类详情，附带父分类和直接子分类"""
    node = await CatalogService(db).get_category_node(category_id)
    return CategoryDetailResponse(
        category=CategoryOut.model_validate(node.category),
        parent=CategoryOut.model_validate(node.parent) if node.parent else None,
        children=[CategoryOut.model_validate(c) for c in node.children],
    )


# ============================================================================
# 问题 API
# ============================================================================

@router.get("/questions/{category_id}", response_model=QuestionListResponse)
@rate_limit(max_requests=100, window=60)
async def list_questions(category_id: UUID, request: Request, db: AsyncSession = Depends(get_db)):
    """获取分类下的问题及选项"""
    catalog = CatalogService(db)
    category = await catalog.get_category(category_id)
    questions = await catalog.list_questions(category_id)
    return QuestionListResponse(
        category=CategoryOut.model_validate(category),
        questions=[QuestionOut.model_validate(q) for q in questions],
        total=len(questions),
    )
