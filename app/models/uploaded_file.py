"""
上传文件模型 (UploadedFile)

记录用户上传到本地存储的原始文件。

去重身份：(filename, size, username)。这只是启发式判断而不是内容哈希，
同一用户的两个同名同大小文件会被视为同一个文件。

provider_* 字段是最近一次上游处理结果的冗余副本，用于避免重复上传。
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import BigInteger, DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import UUID_PK

# 文件状态
FILE_STATUS_UPLOADED = "uploaded"
FILE_STATUS_PROCESSING = "processing"
FILE_STATUS_COMPLETED = "completed"
FILE_STATUS_FAILED = "failed"


class UploadedFile(Base):
    """上传文件表"""
    __tablename__ = "uploaded_files"

    __table_args__ = (
        # 去重查询：filename + size + username
        Index("ix_uploaded_files_dedup", "filename", "size", "username"),
    )

    id: Mapped[UUID_PK] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    filename: Mapped[str] = mapped_column(String(512), nullable=False)

    # 相对于存储根目录的路径，如 alice/2024-12-01/1a2b3c4d_report.pdf
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)

    # MIME 类型
    file_type: Mapped[str | None] = mapped_column(String(255))

    description: Mapped[str | None] = mapped_column(String(1000))

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(String(32), default=FILE_STATUS_UPLOADED, nullable=False)

    username: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    size: Mapped[int] = mapped_column(BigInteger, nullable=False)

    provider_file_id: Mapped[str | None] = mapped_column(String(255))
    provider_file_purpose: Mapped[str | None] = mapped_column(String(32))
    provider_file_status: Mapped[str | None] = mapped_column(String(32))
    provider_vector_store_id: Mapped[str | None] = mapped_column(String(255))
