"""推荐结果模型"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from concierge.core.database import Base, utcnow


class Recommendation(Base):
    """推荐项模型

    每个会话只生成一次；(session_id, rank) 唯一约束保证并发生成时
    只有一方能写入。
    """

    __tablename__ = "recommendations"
    __table_args__ = (
        UniqueConstraint("session_id", "rank", name="uq_recommendations_session_rank"),
        UniqueConstraint("session_id", "product_id", name="uq_recommendations_session_product"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("questionnaire_sessions.id"), index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("products.id"), index=True)
    rank: Mapped[int] = mapped_column(Integer)  # 从 1 开始
    score: Mapped[float] = mapped_column(Float)  # 0-1
    reason: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
