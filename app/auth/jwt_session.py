"""
JWT 会话认证

前端登录后由登录系统签发 JWT，写入 jwtToken Cookie。本模块：
1. 从 Cookie（或 Authorization: Bearer 头）读取令牌
2. 使用 HMAC 密钥校验签名与过期时间
3. 取出 userName claim 作为当前用户

校验失败统一返回 401，响应头 X-Login-Page 携带登录页地址（如已配置），
由前端决定是否跳转。
"""

import logging

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt

from app.config import Settings, get_settings
from app.infra.logging import set_username

logger = logging.getLogger(__name__)


def _unauthorized(settings: Settings, detail: str) -> HTTPException:
    headers = {"X-Login-Page": settings.web_login_page} if settings.web_login_page else None
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "UNAUTHORIZED", "detail": detail},
        headers=headers,
    )


def _extract_token(request: Request, settings: Settings) -> str | None:
    token = request.cookies.get(settings.jwt_cookie_name)
    if token:
        return token
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return None


def decode_username(token: str, settings: Settings) -> str | None:
    """校验令牌并返回用户名，无效时返回 None"""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.info(f"JWT 校验失败: {e}")
        return None
    username = payload.get(settings.jwt_username_claim)
    if not isinstance(username, str) or not username:
        return None
    return username


async def get_current_username(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> str:
    """FastAPI 依赖：返回当前登录用户名"""
    token = _extract_token(request, settings)
    if not token:
        raise _unauthorized(settings, "Missing session token")

    username = decode_username(token, settings)
    if not username:
        raise _unauthorized(settings, "Invalid session token")

    set_username(username)
    return username
