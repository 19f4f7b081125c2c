"""写入演示用的分类、问题和商品

重复执行是安全的：分类按名称查找，商品按 external_url 更新。
"""

import asyncio
import logging
import os
import sys

from sqlalchemy import select

# 把 backend/ 加入 sys.path 以导入 concierge
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from concierge.core.database import async_session_maker, init_db
from concierge.models.catalog import Category, Question, QuestionOption, QuestionType
from concierge.services.catalog import CatalogService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CATEGORY_NAME = "スマートフォン"

QUESTIONS = [
    {
        "text": "主な用途は何ですか？",
        "type": QuestionType.SINGLE_CHOICE,
        "is_required": True,
        "options": ["写真・動画撮影", "ゲーム", "ビジネス", "日常使い"],
    },
    {
        "text": "重視するポイントを選んでください（複数可）",
        "type": QuestionType.MULTIPLE_CHOICE,
        "is_required": True,
        "options": ["バッテリー", "カメラ", "価格", "サイズ"],
    },
    {
        "text": "予算感（0=とにかく安く、100=最高性能）",
        "type": QuestionType.RANGE,
        "is_required": False,
        "options": [],
    },
    {
        "text": "その他のご要望があればご記入ください",
        "type": QuestionType.TEXT,
        "is_required": False,
        "options": [],
    },
]

PRODUCTS = [
    {"name": "Pixel 9", "price": 128900, "rating": 4.6, "shop_name": "Google Store",
     "features": "AI カメラ、7年間のアップデート", "external_url": "https://example.com/items/pixel-9"},
    {"name": "iPhone 16", "price": 124800, "rating": 4.5, "shop_name": "Apple Store",
     "features": "A18 チップ、カメラコントロール", "external_url": "https://example.com/items/iphone-16"},
    {"name": "Galaxy S24", "price": 124700, "rating": 4.4, "shop_name": "Samsung",
     "features": "Galaxy AI、高輝度ディスプレイ", "external_url": "https://example.com/items/galaxy-s24"},
    {"name": "Xperia 10 VI", "price": 69300, "rating": 4.1, "shop_name": "Sony",
     "features": "軽量、5000mAh バッテリー", "external_url": "https://example.com/items/xperia-10-vi"},
    {"name": "AQUOS sense9", "price": 62700, "rating": 4.0, "shop_name": "SHARP",
     "features": "省電力 IGZO、防水防塵", "external_url": "https://example.com/items/aquos-sense9"},
]


async def seed_catalog():
    async with async_session_maker() as session:
        result = await session.execute(select(Category).where(Category.name == CATEGORY_NAME))
        category = result.scalar_one_or_none()

        if not category:
            category = Category(name=CATEGORY_NAME, description="用途と好みに合うスマートフォンを探します")
            session.add(category)
            await session.flush()
            for item in QUESTIONS:
                question = Question(
                    category_id=category.id,
                    text=item["text"],
                    type=item["type"].value,
                    is_required=item["is_required"],
                    options=[QuestionOption(label=label, value=label) for label in item["options"]],
                )
                session.add(question)
                # 逐个 flush 保证 created_at 顺序
                await session.flush()
            logger.info(f"Created category {CATEGORY_NAME} with {len(QUESTIONS)} questions")
        else:
            logger.info(f"Category {CATEGORY_NAME} already exists")

        catalog = CatalogService(session)
        for data in PRODUCTS:
            await catalog.upsert_product({**data, "category_id": category.id})

        await session.commit()
        logger.info(f"Upserted {len(PRODUCTS)} products")


async def main():
    await init_db()
    await seed_catalog()


if __name__ == "__main__":
    asyncio.run(main())
