"""API 公共响应模型"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from concierge.models.session import Answer


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: Optional[str] = None
    parent_id: Optional[UUID] = None
    created_at: datetime


class OptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    label: str
    description: Optional[str] = None
    value: Optional[str] = None


class QuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    category_id: UUID
    text: str
    description: Optional[str] = None
    type: str
    is_required: bool
    options: List[OptionOut] = []


class QuestionRef(BaseModel):
    """只含 ID 和文本的问题引用"""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    text: str


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    category_id: UUID
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None


class AnswerOut(BaseModel):
    id: UUID
    session_id: UUID
    question_id: UUID
    question_option_id: Optional[UUID] = None
    question_option_ids: List[UUID] = []
    range_value: Optional[float] = None
    text_value: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_answer(cls, answer: Answer) -> "AnswerOut":
        option_ids = [UUID(v) for v in (answer.option_ids or [])]
        if not option_ids and answer.question_option_id is not None:
            option_ids = [answer.question_option_id]
        return cls(
            id=answer.id,
            session_id=answer.session_id,
            question_id=answer.question_id,
            question_option_id=answer.question_option_id,
            question_option_ids=option_ids,
            range_value=answer.range_value,
            text_value=answer.text_value,
            created_at=answer.created_at,
            updated_at=answer.updated_at,
        )


class MessageOut(BaseModel):
    message: str
