"""问卷目录读取服务"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.core.database import utcnow
from concierge.core.errors import NotFoundError
from concierge.models.catalog import Category, Question
from concierge.models.product import Product

logger = logging.getLogger(__name__)


@dataclass
class CategoryNode:
    """分类及其上下各一层"""
    category: Category
    parent: Optional[Category] = None
    children: List[Category] = field(default_factory=list)


class CatalogService:
    """分类、问题与候选商品的只读访问"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_categories(self) -> List[Category]:
        result = await self.db.execute(
            select(Category).order_by(Category.created_at, Category.id)
        )
        return list(result.scalars().all())

    async def get_category(self, category_id: UUID) -> Category:
        category = await self.db.get(Category, category_id)
        if category is None:
            raise NotFoundError("category")
        return category

    async def get_category_node(self, category_id: UUID) -> CategoryNode:
        """获取分类，附带父分类和直接子分类（不递归）"""
        category = await self.get_category(category_id)
        parent = None
        if category.parent_id is not None:
            parent = await self.db.get(Category, category.parent_id)
        result = await self.db.execute(
            select(Category)
            .where(Category.parent_id == category.id)
            .order_by(Category.created_at, Category.id)
        )
        return CategoryNode(category=category, parent=parent, children=list(result.scalars().all()))

    async def list_questions(self, category_id: UUID) -> List[Question]:
        """按创建顺序获取分类下的所有问题（含选项）"""
        await self.get_category(category_id)
        result = await self.db.execute(
            select(Question)
            .where(Question.category_id == category_id)
            .order_by(Question.created_at, Question.id)
        )
        return list(result.scalars().all())

    async def get_question(self, question_id: UUID) -> Question:
        question = await self.db.get(Question, question_id)
        if question is None:
            raise NotFoundError("question")
        return question

    async def list_candidate_products(self, category_id: UUID, limit: int) -> List[Product]:
        """按评分从高到低取候选商品"""
        result = await self.db.execute(
            select(Product)
            .where(Product.category_id == category_id)
            .order_by(Product.rating.desc().nulls_last(), Product.name, Product.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def upsert_product(self, data: Dict[str, Any]) -> Product:
        """
        按 external_url 幂等写入商品

        已存在则更新字段，否则新建。调用方负责提交事务。
        """
        external_url = data["external_url"]
        result = await self.db.execute(
            select(Product).where(Product.external_url == external_url)
        )
        product = result.scalar_one_or_none()
        if product is None:
            product = Product(**data)
            self.db.add(product)
            logger.info(f"Product created: {external_url}")
        else:
            for key, value in data.items():
                setattr(product, key, value)
        product.last_synced_at = utcnow()
        await self.db.flush()
        return product
