"""数据模型模块"""

from concierge.models.catalog import Category, Question, QuestionOption, QuestionType
from concierge.models.product import Product
from concierge.models.recommendation import Recommendation
from concierge.models.session import Answer, QuestionnaireSession, SessionStatus
from concierge.models.user import UserProfile
from concierge.models.user_history import HistoryType, UserHistory

__all__ = [
    "Category",
    "Question",
    "QuestionOption",
    "QuestionType",
    "Product",
    "Recommendation",
    "Answer",
    "QuestionnaireSession",
    "SessionStatus",
    "UserProfile",
    "HistoryType",
    "UserHistory",
]
