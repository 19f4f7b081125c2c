"""商品数据模型"""

from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text, Uuid

from concierge.core.database import Base, utcnow


class Product(Base):
    """商品表，由外部同步任务按 external_url 幂等写入"""
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid4)
    category_id = Column(Uuid, ForeignKey("categories.id"), nullable=False, index=True)

    # 商品基本信息
    name = Column(String(300), nullable=False, index=True)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=True)
    rating = Column(Float, nullable=True, index=True)  # 0-5
    features = Column(Text, nullable=True)  # 特征说明（自由文本）
    image_url = Column(String(1000), nullable=True)
    external_url = Column(String(1000), unique=True, nullable=False)

    # 商城元数据
    review_count = Column(Integer, default=0, nullable=False)
    shop_name = Column(String(200), nullable=True)
    shop_code = Column(String(100), nullable=True)
    last_synced_at = Column(DateTime, nullable=True)

    # 时间戳
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
