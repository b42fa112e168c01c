"""
用户模型 (User)

用户由外部登录系统签发 JWT，本表只保存用户名，用于 validate-user 校验
JWT 中的用户是否仍然存在且可用。
"""

from uuid import uuid4

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import UUID_PK, TimestampMixin


class User(TimestampMixin, Base):
    """
    用户表

    字段说明：
    - username: 与 JWT 中 userName claim 对应，全局唯一
    - display_name: 展示名称
    - is_active: 账号是否启用
    """
    __tablename__ = "users"

    id: Mapped[UUID_PK] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    display_name: Mapped[str | None] = mapped_column(String(255))

    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
