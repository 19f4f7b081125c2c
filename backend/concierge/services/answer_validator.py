"""答案校验

按题型校验提交的答案值。答案值是按题型区分的不可变数据类，
每种题型在 _CHECKERS 中有且只有一个校验函数。
"""

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, Union
from uuid import UUID

from concierge.core.i18n import DEFAULT_LOCALE, t
from concierge.models.catalog import Question, QuestionType

RANGE_MIN = 0
RANGE_MAX = 100
TEXT_MAX_LENGTH = 1000


# ============================================================================
# 答案值
# ============================================================================

@dataclass(frozen=True)
class SingleChoiceAnswer:
    option_id: Optional[UUID]


@dataclass(frozen=True)
class MultipleChoiceAnswer:
    option_ids: FrozenSet[UUID]


@dataclass(frozen=True)
class RangeAnswer:
    value: Optional[float]


@dataclass(frozen=True)
class TextAnswer:
    text: Optional[str]


AnswerValue = Union[SingleChoiceAnswer, MultipleChoiceAnswer, RangeAnswer, TextAnswer]


def _to_uuid(value: Any) -> Optional[UUID]:
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def answer_from_submission(
    question_type: QuestionType,
    option_id: Any = None,
    option_ids: Optional[Iterable[Any]] = None,
    range_value: Any = None,
    text_value: Any = None,
) -> AnswerValue:
    """
    根据题型把扁平的提交字段转换成答案值

    多选题同时接受 option_ids 列表和单个 option_id。
    无法解析的选项 ID 保留为 None，由校验阶段报告。
    """
    if question_type == QuestionType.SINGLE_CHOICE:
        return SingleChoiceAnswer(option_id=_to_uuid(option_id))
    if question_type == QuestionType.MULTIPLE_CHOICE:
        raw = list(option_ids or [])
        if not raw and option_id is not None:
            raw = [option_id]
        return MultipleChoiceAnswer(option_ids=frozenset(_to_uuid(v) for v in raw))
    if question_type == QuestionType.RANGE:
        return RangeAnswer(value=range_value)
    if question_type == QuestionType.TEXT:
        return TextAnswer(text=text_value)
    raise ValueError(f"Unknown question type: {question_type}")


def answer_from_row(question_type: QuestionType, row) -> AnswerValue:
    """从已保存的 Answer 行还原答案值"""
    return answer_from_submission(
        question_type,
        option_id=row.question_option_id,
        option_ids=row.option_ids,
        range_value=row.range_value,
        text_value=row.text_value,
    )


# ============================================================================
# 违规说明
# ============================================================================

@dataclass(frozen=True)
class Violation:
    """违反的规则：validation.* 翻译键与插值参数，按请求语言渲染"""
    key: str
    params: Dict[str, Any] = field(default_factory=dict)

    def render(self, locale: str = DEFAULT_LOCALE) -> str:
        return t(f"validation.{self.key}", locale, **self.params)


# ============================================================================
# 各题型校验
# ============================================================================

def _check_single_choice(question: Question, answer: AnswerValue) -> Optional[Violation]:
    if not isinstance(answer, SingleChoiceAnswer):
        return Violation("single_choice_expected")
    if answer.option_id is None:
        return Violation("choose_one_option")
    if answer.option_id not in question.option_ids:
        return Violation("invalid_option")
    return None


def _check_multiple_choice(question: Question, answer: AnswerValue) -> Optional[Violation]:
    if not isinstance(answer, MultipleChoiceAnswer):
        return Violation("multiple_choice_expected")
    if not answer.option_ids:
        return Violation("choose_at_least_one")
    if not answer.option_ids <= question.option_ids:
        return Violation("invalid_options")
    return None


def _check_range(question: Question, answer: AnswerValue) -> Optional[Violation]:
    if not isinstance(answer, RangeAnswer):
        return Violation("range_expected")
    value = answer.value
    if value is None:
        return Violation("value_required")
    # bool 是 int 的子类，需要排除
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        return Violation("number_required")
    if value < RANGE_MIN or value > RANGE_MAX:
        return Violation("out_of_range", {"min": RANGE_MIN, "max": RANGE_MAX})
    return None


def _check_text(question: Question, answer: AnswerValue) -> Optional[Violation]:
    if not isinstance(answer, TextAnswer):
        return Violation("text_expected")
    text = answer.text
    if not isinstance(text, str) or not text.strip():
        return Violation("text_required")
    if len(text) > TEXT_MAX_LENGTH:
        return Violation("text_too_long", {"max_length": TEXT_MAX_LENGTH})
    return None


_CHECKERS: Dict[QuestionType, Callable[[Question, AnswerValue], Optional[Violation]]] = {
    QuestionType.SINGLE_CHOICE: _check_single_choice,
    QuestionType.MULTIPLE_CHOICE: _check_multiple_choice,
    QuestionType.RANGE: _check_range,
    QuestionType.TEXT: _check_text,
}


# ============================================================================
# 对外接口
# ============================================================================

def describe_violation(question: Question, answer: Optional[AnswerValue]) -> Optional[Violation]:
    """
    返回答案违反的规则，合法时返回 None

    缺少答案只对必答题构成违规；已提交的答案无论是否必答都做结构校验。
    """
    if answer is None:
        return Violation("required") if question.is_required else None
    return _CHECKERS[question.question_type](question, answer)


def is_answer_valid(question: Question, answer: Optional[AnswerValue]) -> bool:
    """判断问题是否算作已满足（非必答题总是满足）"""
    if not question.is_required:
        return True
    return answer is not None and describe_violation(question, answer) is None
