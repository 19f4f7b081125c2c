"""用户档案模型"""

from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Uuid

from concierge.core.database import Base, utcnow


class UserProfile(Base):
    """用户档案表

    user_id 为认证服务提供的不透明用户 ID，首次创建会话时自动建档。
    """
    __tablename__ = "user_profiles"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(100), nullable=True)

    # 累计统计
    question_count = Column(Integer, default=0, nullable=False)  # 完成的问卷数
    recommendation_count = Column(Integer, default=0, nullable=False)  # 获得的推荐数

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
