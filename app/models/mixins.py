"""
模型混入类 (Mixins)

提供可复用的模型字段，通过多重继承添加到具体模型中。
"""

from datetime import datetime
from typing import Annotated

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

# UUID 格式的主键：xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx
UUID_PK = Annotated[str, mapped_column(String(36), primary_key=True)]


class CreatedAtMixin:
    """只记录创建时间（上游文件、关联关系等只追加不修改的记录）"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class TimestampMixin(CreatedAtMixin):
    """
    时间戳混入类

    - created_at: 插入时由数据库设置
    - updated_at: 每次 UPDATE 时自动刷新
    """

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
