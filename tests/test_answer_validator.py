from uuid import uuid4

import pytest

from concierge.models import QuestionType
from concierge.services.answer_validator import (
    MultipleChoiceAnswer,
    RangeAnswer,
    SingleChoiceAnswer,
    TextAnswer,
    answer_from_submission,
    describe_violation,
    is_answer_valid,
)
from factories import make_question


def _option_ids(question):
    return [option.id for option in question.options]


@pytest.mark.parametrize("question_type", list(QuestionType))
def test_missing_answer_fails_only_when_required(question_type):
    required = make_question(question_type, is_required=True, labels=["a", "b"])
    optional = make_question(question_type, is_required=False, labels=["a", "b"])

    assert is_answer_valid(required, None) is False
    assert describe_violation(required, None) is not None
    assert is_answer_valid(optional, None) is True
    assert describe_violation(optional, None) is None


@pytest.mark.parametrize("question_type", list(QuestionType))
def test_empty_submission_is_invalid_for_required(question_type):
    question = make_question(question_type, is_required=True, labels=["a"])
    empty = answer_from_submission(question_type)

    assert is_answer_valid(question, empty) is False


def test_single_choice_requires_option_of_the_question():
    question = make_question(QuestionType.SINGLE_CHOICE, labels=["写真", "ゲーム"])
    first, _ = _option_ids(question)

    assert describe_violation(question, SingleChoiceAnswer(first)) is None
    assert describe_violation(question, SingleChoiceAnswer(uuid4())) is not None
    assert describe_violation(question, SingleChoiceAnswer(None)) is not None


def test_multiple_choice_keeps_every_selected_option():
    question = make_question(QuestionType.MULTIPLE_CHOICE, labels=["a", "b", "c"])
    a, b, c = _option_ids(question)

    answer = answer_from_submission(QuestionType.MULTIPLE_CHOICE, option_ids=[a, str(c)])

    assert answer == MultipleChoiceAnswer(frozenset({a, c}))
    assert is_answer_valid(question, answer)


def test_multiple_choice_rejects_foreign_or_empty_selection():
    question = make_question(QuestionType.MULTIPLE_CHOICE, labels=["a", "b"])
    a, _ = _option_ids(question)

    assert describe_violation(question, MultipleChoiceAnswer(frozenset())) is not None
    assert describe_violation(question, MultipleChoiceAnswer(frozenset({a, uuid4()}))) is not None
    # 无法解析的 ID 也会被拒绝
    bad = answer_from_submission(QuestionType.MULTIPLE_CHOICE, option_ids=["not-a-uuid"])
    assert describe_violation(question, bad) is not None


def test_multiple_choice_accepts_single_option_id_field():
    question = make_question(QuestionType.MULTIPLE_CHOICE, labels=["a", "b"])
    a, _ = _option_ids(question)

    answer = answer_from_submission(QuestionType.MULTIPLE_CHOICE, option_id=a)

    assert answer.option_ids == frozenset({a})


@pytest.mark.parametrize("value, ok", [(0, True), (100, True), (55.5, True), (-1, False), (100.01, False), (150, False)])
def test_range_bounds_are_inclusive(value, ok):
    question = make_question(QuestionType.RANGE)

    assert (describe_violation(question, RangeAnswer(value)) is None) is ok


def test_out_of_range_fails_even_for_optional_question():
    question = make_question(QuestionType.RANGE, is_required=False)

    assert describe_violation(question, RangeAnswer(150)) is not None


def test_range_rejects_non_numbers():
    question = make_question(QuestionType.RANGE)

    assert describe_violation(question, RangeAnswer(True)) is not None
    assert describe_violation(question, RangeAnswer(float("nan"))) is not None
    assert describe_violation(question, RangeAnswer("50")) is not None


def test_text_rules():
    question = make_question(QuestionType.TEXT)

    assert describe_violation(question, TextAnswer("バッテリー重視")) is None
    assert describe_violation(question, TextAnswer("   ")) is not None
    assert describe_violation(question, TextAnswer("x" * 1000)) is None
    assert describe_violation(question, TextAnswer("x" * 1001)) is not None


def test_answer_variant_must_match_question_type():
    question = make_question(QuestionType.TEXT)

    assert describe_violation(question, RangeAnswer(10)) is not None


def test_violation_is_a_translatable_key():
    question = make_question(QuestionType.RANGE, is_required=False)

    violation = describe_violation(question, RangeAnswer(150))

    assert violation.key == "out_of_range"
    assert violation.params == {"min": 0, "max": 100}
    assert violation.render("ja") == "0から100の範囲で入力してください"
    assert violation.render("en") == "Please enter a value between 0 and 100"
    assert describe_violation(make_question(QuestionType.TEXT), None).key == "required"
