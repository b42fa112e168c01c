"""
初始数据库迁移脚本

创建所有基础表：
- knowledge_bases          : 知识库表（name 为主键，id 在上游成功后回填）
- uploaded_files           : 本地上传文件表
- files                    : 上游文件表
- file_knowledge_relations : 文件与知识库关联表
- users                    : 用户表

Revision ID: 20250301_0001
Revises: 无（初始迁移）
Create Date: 2025-03-01 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "20250301_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    """升级：创建所有表"""
    op.create_table(
        "knowledge_bases",
        _created_at(),
        _updated_at(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("id", sa.String(length=255), nullable=True),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("tags", sa.String(length=200), nullable=True),
        sa.Column("model_owner", sa.String(length=32), nullable=False),
        sa.Column("creator_id", sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint("name"),
    )
    op.create_index("ix_knowledge_bases_id", "knowledge_bases", ["id"], unique=True)

    op.create_table(
        "uploaded_files",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("filename", sa.String(length=512), nullable=False),
        sa.Column("file_path", sa.String(length=1024), nullable=False),
        sa.Column("file_type", sa.String(length=255), nullable=True),
        sa.Column("description", sa.String(length=1000), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=False),
        sa.Column("provider_file_id", sa.String(length=255), nullable=True),
        sa.Column("provider_file_purpose", sa.String(length=32), nullable=True),
        sa.Column("provider_file_status", sa.String(length=32), nullable=True),
        sa.Column("provider_vector_store_id", sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_uploaded_files_username", "uploaded_files", ["username"])
    op.create_index("ix_uploaded_files_dedup", "uploaded_files", ["filename", "size", "username"])

    op.create_table(
        "files",
        _created_at(),
        sa.Column("id", sa.String(length=255), nullable=False),
        sa.Column("knowledge_base_id", sa.String(length=255), nullable=True),
        sa.Column("usage_bytes", sa.BigInteger(), nullable=False),
        sa.Column("uploaded_file_id", sa.String(length=36), nullable=True),
        sa.Column("purpose", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_files_knowledge_base_id", "files", ["knowledge_base_id"])
    op.create_index("ix_files_uploaded_file_id", "files", ["uploaded_file_id"])

    op.create_table(
        "file_knowledge_relations",
        _created_at(),
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("uploaded_file_id", sa.String(length=36), nullable=False),
        sa.Column("knowledge_base_id", sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("uploaded_file_id", "knowledge_base_id", name="uq_file_kb"),
    )
    op.create_index(
        "ix_file_knowledge_relations_uploaded_file_id", "file_knowledge_relations", ["uploaded_file_id"]
    )
    op.create_index(
        "ix_file_knowledge_relations_knowledge_base_id", "file_knowledge_relations", ["knowledge_base_id"]
    )

    op.create_table(
        "users",
        _created_at(),
        _updated_at(),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )


def downgrade() -> None:
    """降级：按依赖反序删除所有表"""
    op.drop_table("users")
    op.drop_index("ix_file_knowledge_relations_knowledge_base_id", table_name="file_knowledge_relations")
    op.drop_index("ix_file_knowledge_relations_uploaded_file_id", table_name="file_knowledge_relations")
    op.drop_table("file_knowledge_relations")
    op.drop_index("ix_files_uploaded_file_id", table_name="files")
    op.drop_index("ix_files_knowledge_base_id", table_name="files")
    op.drop_table("files")
    op.drop_index("ix_uploaded_files_dedup", table_name="uploaded_files")
    op.drop_index("ix_uploaded_files_username", table_name="uploaded_files")
    op.drop_table("uploaded_files")
    op.drop_index("ix_knowledge_bases_id", table_name="knowledge_bases")
    op.drop_table("knowledge_bases")
