"""问卷目录模型：分类、问题、选项"""

import enum
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import relationship

from concierge.core.database import Base, utcnow


class QuestionType(str, enum.Enum):
    """问题类型"""
    SINGLE_CHOICE = "SINGLE_CHOICE"
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    RANGE = "RANGE"
    TEXT = "TEXT"


class Category(Base):
    """商品分类表（通过 parent_id 构成树）"""
    __tablename__ = "categories"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    # 父分类，子分类按需查询，不做级联加载
    parent_id = Column(Uuid, ForeignKey("categories.id"), nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Category {self.name}>"


class Question(Base):
    """问题表"""
    __tablename__ = "questions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    category_id = Column(Uuid, ForeignKey("categories.id"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(20), nullable=False)  # QuestionType
    is_required = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    options = relationship(
        "QuestionOption",
        lazy="selectin",
        order_by=lambda: [QuestionOption.created_at, QuestionOption.id],
        cascade="all, delete-orphan",
    )

    @property
    def question_type(self) -> QuestionType:
        return QuestionType(self.type)

    @property
    def option_ids(self) -> set:
        return {option.id for option in self.options}


class QuestionOption(Base):
    """选择题选项表"""
    __tablename__ = "question_options"

    id = Column(Uuid, primary_key=True, default=uuid4)
    question_id = Column(Uuid, ForeignKey("questions.id"), nullable=False, index=True)
    label = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    value = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
