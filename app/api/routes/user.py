"""用户会话校验接口"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_gateway
from app.auth.jwt_session import get_current_username
from app.db.gateway import PersistenceGateway

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/validate-user")
async def validate_user(
    username: str = Depends(get_current_username),
    gateway: PersistenceGateway = Depends(get_gateway),
):
    """
    校验当前会话对应的用户

    令牌有效但用户不存在或已停用时同样返回 401。
    """
    user = await gateway.get_user(username)
    if user is None or not user.is_active:
        logger.info(f"会话用户不可用: {username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "UNAUTHORIZED", "detail": "User not found or inactive"},
        )
    return {"username": user.username}
