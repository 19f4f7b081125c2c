from typing import Dict, Any

DEFAULT_LOCALE = "ja"
SUPPORTED_LOCALES = ["ja", "en"]

TRANSLATIONS: Dict[str, Dict[str, Any]] = {
    "ja": {
        "errors": {
            "unauthorized": "認証が必要です",
            "not_found": "{resource}が見つかりません",
            "validation_error": "入力内容に誤りがあります",
            "invalid_state": "{status}のセッションは{action}できません",
            "category_mismatch": "質問がセッションのカテゴリに属していません",
            "incomplete_required_answers": "必須質問のうち{count}件が未回答です",
            "session_not_completed": "完了していないセッションのレコメンドは生成できません",
            "no_answers": "回答データが見つかりません",
            "no_candidate_products": "このカテゴリにはおすすめできる商品がありません",
            "already_generated": "このセッションのレコメンドは既に生成されています",
            "rate_limited": "リクエスト数が上限を超えました。{window}秒後に再試行してください",
            "internal_error": "システムエラーが発生しました。しばらくしてから再試行してください"
        },
        "validation": {
            "required": "この質問は必須です",
            "single_choice_expected": "単一選択の回答が必要です",
            "choose_one_option": "選択肢を1つ選んでください",
            "invalid_option": "無効な選択肢です",
            "multiple_choice_expected": "複数選択の回答が必要です",
            "choose_at_least_one": "少なくとも1つの選択肢を選んでください",
            "invalid_options": "無効な選択肢が含まれています",
            "range_expected": "数値の回答が必要です",
            "value_required": "値を入力してください",
            "number_required": "数値を入力してください",
            "out_of_range": "{min}から{max}の範囲で入力してください",
            "text_expected": "テキストの回答が必要です",
            "text_required": "回答を入力してください",
            "text_too_long": "{max_length}文字以内で入力してください",
            "no_answers": "回答が送信されていません"
        },
        "resources": {
            "category": "カテゴリ",
            "question": "質問",
            "session": "セッション",
            "profile": "ユーザープロフィール",
            "recommendation": "レコメンド"
        },
        "statuses": {
            "IN_PROGRESS": "回答中",
            "COMPLETED": "完了済み",
            "ABANDONED": "中断中"
        },
        "actions": {
            "answer": "回答",
            "advance": "進行",
            "pause": "一時停止",
            "abandon": "中断",
            "resume": "再開",
            "complete": "完了"
        },
        "success": {
            "session_paused": "セッションを一時停止しました",
            "session_abandoned": "セッションを中断しました",
            "session_resumed": "セッションを再開しました",
            "session_completed": "質問セッションが完了しました",
            "session_already_completed": "セッションは既に完了しています",
            "session_deleted": "セッションを削除しました"
        },
        "history": {
            "questionnaire_title": "{category}の診断",
            "questionnaire_description": "{count}件の質問に回答しました",
            "recommendation_title": "{category}のおすすめ",
            "recommendation_description": "{count}件の商品をおすすめしました"
        },
        "recommendation": {
            "default_reason": "{category}カテゴリでのご回答に基づき、{product}をおすすめします",
            "fallback_reason": "{category}カテゴリで評価の高い人気商品です"
        }
    },
    "en": {
        "errors": {
            "unauthorized": "Authentication required",
            "not_found": "{resource} not found",
            "validation_error": "The submitted data is invalid",
            "invalid_state": "Cannot {action} a session that is {status}",
            "category_mismatch": "The question does not belong to the session's category",
            "incomplete_required_answers": "{count} required questions are unanswered",
            "session_not_completed": "Recommendations can only be generated for completed sessions",
            "no_answers": "No answers found for this session",
            "no_candidate_products": "No candidate products are available in this category",
            "already_generated": "Recommendations have already been generated for this session",
            "rate_limited": "Too many requests, please retry in {window} seconds",
            "internal_error": "System error, please try again later"
        },
        "validation": {
            "required": "This question is required",
            "single_choice_expected": "A single-choice answer is required",
            "choose_one_option": "Please choose one option",
            "invalid_option": "The selected option is not valid for this question",
            "multiple_choice_expected": "A multiple-choice answer is required",
            "choose_at_least_one": "Please choose at least one option",
            "invalid_options": "Some selected options are not valid for this question",
            "range_expected": "A numeric answer is required",
            "value_required": "Please enter a value",
            "number_required": "Please enter a number",
            "out_of_range": "Please enter a value between {min} and {max}",
            "text_expected": "A text answer is required",
            "text_required": "Please enter an answer",
            "text_too_long": "Please keep your answer within {max_length} characters",
            "no_answers": "No answers were submitted"
        },
        "resources": {
            "category": "Category",
            "question": "Question",
            "session": "Session",
            "profile": "User profile",
            "recommendation": "Recommendation"
        },
        "statuses": {
            "IN_PROGRESS": "in progress",
            "COMPLETED": "completed",
            "ABANDONED": "abandoned"
        },
        "actions": {
            "answer": "answer",
            "advance": "advance",
            "pause": "pause",
            "abandon": "abandon",
            "resume": "resume",
            "complete": "complete"
        },
        "success": {
            "session_paused": "Session paused",
            "session_abandoned": "Session abandoned",
            "session_resumed": "Session resumed",
            "session_completed": "Questionnaire session completed",
            "session_already_completed": "Session was already completed",
            "session_deleted": "Session deleted"
        },
        "history": {
            "questionnaire_title": "{category} assessment",
            "questionnaire_description": "Answered {count} questions",
            "recommendation_title": "{category} picks",
            "recommendation_description": "Recommended {count} products"
        },
        "recommendation": {
            "default_reason": "{product} matches your answers in the {category} category",
            "fallback_reason": "A highly rated, popular choice in the {category} category"
        }
    }
}


def t(key: str, locale: str = DEFAULT_LOCALE, **kwargs) -> str:
    """
    Get translated text for the given key and locale.

    Args:
        key: Dot-notation key (e.g., "errors.not_found")
        locale: Language code (ja or en)
        **kwargs: Format parameters for string interpolation

    Returns:
        Translated text, or the key itself if not found
    """
    keys = key.split(".")
    value = TRANSLATIONS.get(locale, TRANSLATIONS[DEFAULT_LOCALE])

    for k in keys:
        if isinstance(value, dict):
            value = value.get(k, key)
        else:
            return key

    if isinstance(value, str) and kwargs:
        try:
            return value.format(**kwargs)
        except KeyError:
            return value

    return value if isinstance(value, str) else key


def get_locale_from_header(accept_language: str | None) -> str:
    """
    Extract locale from Accept-Language header.

    Args:
        accept_language: Accept-Language header value

    Returns:
        Locale code (ja or en), defaults to ja
    """
    if not accept_language:
        return DEFAULT_LOCALE

    # e.g. "en-US,en;q=0.9,ja;q=0.8"
    for lang in accept_language.split(","):
        locale = lang.split(";")[0].strip()
        if locale in SUPPORTED_LOCALES:
            return locale
        primary = locale.split("-")[0]
        if primary in SUPPORTED_LOCALES:
            return primary

    return DEFAULT_LOCALE
