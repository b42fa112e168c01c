"""
文件与知识库关联 (FileKnowledgeRelation)

多对多关联，与上游处理无关：文件即使尚未向量化，也记录它属于哪个知识库。
"""

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import CreatedAtMixin


class FileKnowledgeRelation(CreatedAtMixin, Base):
    __tablename__ = "file_knowledge_relations"

    __table_args__ = (
        UniqueConstraint("uploaded_file_id", "knowledge_base_id", name="uq_file_kb"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    uploaded_file_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    knowledge_base_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
