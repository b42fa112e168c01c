"""
知识库模型 (KnowledgeBase)

知识库在本系统一侧是一条元数据记录，在上游提供商一侧（可选）是一个向量库。

生命周期：
    absent → pending（id 为空，尚未拿到远端 ID） → active（id 已回填）

- name 是主键，创建后不可修改
- id 为本地生成（name + 时间戳，local 提供商）或上游返回的向量库 ID，
  仅在上游调用成功后回填一次
"""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import TimestampMixin

# 支持的 model_owner
MODEL_OWNERS = ("stepfun", "zhipu", "moonshot", "baichuan", "local")


class KnowledgeBase(TimestampMixin, Base):
    """
    知识库表

    字段说明：
    - name: 知识库标识，字母数字下划线，不能以下划线开头
    - id: 远端/本地向量库 ID，pending 状态为空
    - display_name: 展示名称
    - description: 描述信息（≤500）
    - tags: 逗号分隔的标签（≤200）
    - model_owner: 所属提供商
    - creator_id: 创建者用户名
    """
    __tablename__ = "knowledge_bases"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)

    id: Mapped[str | None] = mapped_column(String(255), unique=True, index=True)

    display_name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(String(500))

    tags: Mapped[str | None] = mapped_column(String(200))

    model_owner: Mapped[str] = mapped_column(String(32), nullable=False)

    creator_id: Mapped[str | None] = mapped_column(String(255))

    @property
    def is_pending(self) -> bool:
        return not self.id
