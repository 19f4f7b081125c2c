"""业务错误类型

每种错误对应一个稳定的错误码、HTTP 状态码和 i18n 消息键，
由 main.py 中的异常处理器统一渲染为本地化响应。
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """错误码"""
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_STATE = "INVALID_STATE"
    CATEGORY_MISMATCH = "CATEGORY_MISMATCH"
    INCOMPLETE_REQUIRED_ANSWERS = "INCOMPLETE_REQUIRED_ANSWERS"
    SESSION_NOT_COMPLETED = "SESSION_NOT_COMPLETED"
    NO_ANSWERS = "NO_ANSWERS"
    NO_CANDIDATE_PRODUCTS = "NO_CANDIDATE_PRODUCTS"
    ALREADY_GENERATED = "ALREADY_GENERATED"
    AI_PARSE_ERROR = "AI_PARSE_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ConciergeError(Exception):
    """业务错误基类"""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500
    message_key: str = "errors.internal_error"

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None, **params: Any):
        super().__init__(message or self.code.value)
        self.details = details or {}
        # 用于消息模板插值
        self.params = params


class UnauthorizedError(ConciergeError):
    code = ErrorCode.UNAUTHORIZED
    status_code = 401
    message_key = "errors.unauthorized"


class NotFoundError(ConciergeError):
    """资源不存在（分类、问题、会话、档案等）"""
    code = ErrorCode.NOT_FOUND
    status_code = 404
    message_key = "errors.not_found"

    def __init__(self, resource: str, message: str = ""):
        super().__init__(message or f"{resource} not found", resource=resource)
        self.resource = resource


class InvalidAnswerError(ConciergeError):
    """输入格式错误或答案不符合题型规则"""
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400
    message_key = "errors.validation_error"

    def __init__(
        self,
        reason_key: str,
        details: Optional[Dict[str, Any]] = None,
        reason_params: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(reason_key, details=details)
        # validation.* 翻译键，响应时按请求语言渲染成 details.reason
        self.reason_key = reason_key
        self.reason_params = reason_params or {}


class InvalidStateError(ConciergeError):
    """非法的会话状态迁移"""
    code = ErrorCode.INVALID_STATE
    status_code = 409
    message_key = "errors.invalid_state"

    def __init__(self, current: str, action: str, message: str = ""):
        super().__init__(
            message or f"cannot {action} a {current} session",
            details={"current_status": current},
            action=action,
            status=current,
        )
        self.current = current
        self.action = action


class CategoryMismatchError(ConciergeError):
    code = ErrorCode.CATEGORY_MISMATCH
    status_code = 400
    message_key = "errors.category_mismatch"


class IncompleteRequiredAnswersError(ConciergeError):
    code = ErrorCode.INCOMPLETE_REQUIRED_ANSWERS
    status_code = 400
    message_key = "errors.incomplete_required_answers"

    def __init__(self, missing_questions: List[Dict[str, Any]]):
        super().__init__(
            f"{len(missing_questions)} required questions unanswered",
            details={"missing_questions": missing_questions},
            count=len(missing_questions),
        )
        self.missing_questions = missing_questions


class SessionNotCompletedError(ConciergeError):
    code = ErrorCode.SESSION_NOT_COMPLETED
    status_code = 409
    message_key = "errors.session_not_completed"


class NoAnswersError(ConciergeError):
    code = ErrorCode.NO_ANSWERS
    status_code = 422
    message_key = "errors.no_answers"


class NoCandidateProductsError(ConciergeError):
    code = ErrorCode.NO_CANDIDATE_PRODUCTS
    status_code = 422
    message_key = "errors.no_candidate_products"


class AlreadyGeneratedError(ConciergeError):
    code = ErrorCode.ALREADY_GENERATED
    status_code = 409
    message_key = "errors.already_generated"


class AIParseError(ConciergeError):
    """AI 输出无法解析，仅在推荐流程内部使用，总会被回退逻辑吸收"""
    code = ErrorCode.AI_PARSE_ERROR
    message_key = "errors.internal_error"


class RateLimitedError(ConciergeError):
    code = ErrorCode.RATE_LIMITED
    status_code = 429
    message_key = "errors.rate_limited"

    def __init__(self, window: int):
        super().__init__(f"rate limit exceeded, retry in {window}s", window=window)


class InternalError(ConciergeError):
    """未预期的持久化或传输失败"""
