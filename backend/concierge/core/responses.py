from fastapi import Request
from fastapi.responses import JSONResponse

from concierge.core.errors import ConciergeError, InvalidAnswerError, InvalidStateError, NotFoundError
from concierge.core.i18n import t, get_locale_from_header


def request_locale(request: Request) -> str:
    """从 Accept-Language 解析请求语言"""
    return get_locale_from_header(request.headers.get("Accept-Language"))


def localized_error_response(
    request: Request,
    error_key: str,
    status_code: int = 400,
    code: str | None = None,
    extra: dict | None = None,
    **kwargs
) -> JSONResponse:
    """
    Create a localized error response.

    Args:
        request: FastAPI request object
        error_key: Translation key for error message
        status_code: HTTP status code
        code: Machine readable error code
        extra: Additional fields merged into the body
        **kwargs: Additional format parameters

    Returns:
        JSONResponse with localized error message
    """
    locale = request_locale(request)
    content = {"detail": t(error_key, locale, **kwargs)}
    if code:
        content["code"] = code
    if extra:
        content.update(extra)

    return JSONResponse(status_code=status_code, content=content)


def error_to_response(request: Request, exc: ConciergeError) -> JSONResponse:
    """把业务错误渲染成本地化响应"""
    locale = request_locale(request)
    params = dict(exc.params)
    # 资源名、状态和动作也需要本地化
    if isinstance(exc, NotFoundError):
        params["resource"] = t(f"resources.{exc.resource}", locale)
    if isinstance(exc, InvalidStateError):
        params["status"] = t(f"statuses.{exc.current}", locale)
        params["action"] = t(f"actions.{exc.action}", locale)

    extra = dict(exc.details)
    if isinstance(exc, InvalidAnswerError):
        extra["reason"] = t(f"validation.{exc.reason_key}", locale, **exc.reason_params)

    return localized_error_response(
        request,
        exc.message_key,
        status_code=exc.status_code,
        code=exc.code.value,
        extra=extra,
        **params,
    )


def localized_message(request: Request, success_key: str, **kwargs) -> str:
    """获取本地化的成功消息"""
    return t(success_key, request_locale(request), **kwargs)
