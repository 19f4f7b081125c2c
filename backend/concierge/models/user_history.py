"""用户历史记录模型"""

import enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, String, Text, Uuid

from concierge.core.database import Base, utcnow


class HistoryType(str, enum.Enum):
    QUESTIONNAIRE = "QUESTIONNAIRE"
    RECOMMENDATION = "RECOMMENDATION"


class UserHistory(Base):
    """用户历史记录（只追加）"""
    __tablename__ = "user_histories"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_profile_id = Column(Uuid, ForeignKey("user_profiles.id"), nullable=False, index=True)
    # 会话删除后置空
    session_id = Column(Uuid, ForeignKey("questionnaire_sessions.id"), nullable=True, index=True)

    type = Column(String(20), nullable=False)  # HistoryType
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=True)
    completion_rate = Column(Float, nullable=True)
    details = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<UserHistory {self.type} {self.title}>"
