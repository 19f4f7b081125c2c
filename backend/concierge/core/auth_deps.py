"""用户认证依赖函数

认证由托管服务完成，这里只校验其签发的 JWT，
并把 sub 声明当作不透明的用户 ID 使用。
"""

import logging
from typing import Optional

import jwt
from fastapi import Depends, Header
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from concierge.core.config import get_settings
from concierge.core.database import get_db
from concierge.core.errors import NotFoundError, UnauthorizedError
from concierge.models.user import UserProfile

settings = get_settings()
logger = logging.getLogger(__name__)


async def get_current_user_id(authorization: str = Header(None)) -> str:
    """
    从 Authorization header 中解析 JWT 并返回用户 ID（必须登录）
    """
    if not authorization:
        raise UnauthorizedError("missing authorization header")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise UnauthorizedError("invalid authorization header")
    if scheme.lower() != "bearer":
        raise UnauthorizedError("invalid authentication scheme")

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("token has expired")
    except jwt.PyJWTError:
        raise UnauthorizedError("could not validate credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("invalid token payload")
    return str(user_id)


async def get_current_profile(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> UserProfile:
    """获取当前用户档案，不存在时返回 404"""
    result = await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
    profile = result.scalar_one_or_none()
    if profile is None:
        raise NotFoundError("profile")
    return profile


async def get_or_create_profile(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> UserProfile:
    """获取当前用户档案，首次使用时自动创建"""
    result = await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
    profile = result.scalar_one_or_none()
    if profile is not None:
        return profile

    profile = UserProfile(user_id=user_id)
    db.add(profile)
    try:
        await db.commit()
    except IntegrityError:
        # 并发请求已创建
        await db.rollback()
        result = await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
        return result.scalar_one()
    logger.info(f"User profile created for {user_id}")
    return profile


async def get_current_profile_optional(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> Optional[UserProfile]:
    """获取当前用户档案，尚未建档时返回 None（用于列表类接口）"""
    result = await db.execute(select(UserProfile).where(UserProfile.user_id == user_id))
    return result.scalar_one_or_none()
