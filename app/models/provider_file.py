"""
上游文件模型 (ProviderFile)

表示一次上游的文件处理单元（提取或向量化），主键为上游返回的文件 ID。
一个 UploadedFile 可以对应零到多条 ProviderFile（每个知识库一条，或每种用途一条）。

purpose:
- file-extract: 对话中的文件，上游提取文本
- retrieval:    知识库文件，上游向量化
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import CreatedAtMixin

PURPOSE_FILE_EXTRACT = "file-extract"
PURPOSE_RETRIEVAL = "retrieval"

# success 为上游处理完成时返回的状态
PROVIDER_STATUS_SUCCESS = "success"


class ProviderFile(CreatedAtMixin, Base):
    """上游文件表（files）"""
    __tablename__ = "files"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    # 对话提取的文件不属于任何知识库
    knowledge_base_id: Mapped[str | None] = mapped_column(String(255), index=True)

    usage_bytes: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    uploaded_file_id: Mapped[str | None] = mapped_column(String(36), index=True)

    purpose: Mapped[str] = mapped_column(String(32), nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False)
