"""
持久化网关 (PersistenceGateway)

对知识库、上传文件、上游文件和文件关联记录提供事务化的增删改查。
其他组件只通过这里读写持久化状态，不直接拼 SQL。

事务约定：
- add_* / update_* 只写入会话（必要时 flush），不自动提交
- 调用方用 transaction() 包裹一组相关写入，异常时整体回滚

使用示例：
    gateway = PersistenceGateway(session)
    async with gateway.transaction():
        file = await gateway.add_uploaded_file(...)
        await gateway.add_relation(file.id, kb_id)
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator

from sqlalchemy import and_, case, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import FileKnowledgeRelation, KnowledgeBase, ProviderFile, UploadedFile, User

logger = logging.getLogger(__name__)


@dataclass
class KnowledgeBaseFileRow:
    """知识库文件列表中的一行（关联 + 上传文件 + 上游文件）"""
    file_id: str
    filename: str
    file_type: str | None
    size: int
    description: str | None
    status: str
    uploaded_at: datetime
    file_path: str
    provider_file_id: str | None
    provider_status: str | None


class PersistenceGateway:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== 事务 ====================

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["PersistenceGateway"]:
        """在一个事务中执行多条写入，成功提交，异常回滚后继续抛出"""
        try:
            yield self
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    # ==================== 知识库 ====================

    async def get_knowledge_base(self, name: str) -> KnowledgeBase | None:
        result = await self.session.execute(
            select(KnowledgeBase).where(KnowledgeBase.name == name)
        )
        return result.scalar_one_or_none()

    async def get_knowledge_base_by_id(self, kb_id: str) -> KnowledgeBase | None:
        result = await self.session.execute(
            select(KnowledgeBase).where(KnowledgeBase.id == kb_id)
        )
        return result.scalar_one_or_none()

    async def add_knowledge_base(self, kb: KnowledgeBase) -> KnowledgeBase:
        self.session.add(kb)
        await self.session.flush()
        return kb

    async def list_knowledge_bases(self) -> list[KnowledgeBase]:
        """列出所有知识库：local 提供商的排在最前，其余按 id 排序"""
        local_first = case((KnowledgeBase.model_owner == "local", 0), else_=1)
        result = await self.session.execute(
            select(KnowledgeBase).order_by(local_first, KnowledgeBase.id)
        )
        return list(result.scalars().all())

    # ==================== 上传文件 ====================

    async def find_uploaded_file(self, filename: str, size: int, username: str) -> UploadedFile | None:
        """按 (filename, size, username) 去重查找"""
        result = await self.session.execute(
            select(UploadedFile)
            .where(
                UploadedFile.filename == filename,
                UploadedFile.size == size,
                UploadedFile.username == username,
            )
            .order_by(UploadedFile.uploaded_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_uploaded_file(self, file_id: str) -> UploadedFile | None:
        return await self.session.get(UploadedFile, file_id)

    async def get_uploaded_files(self, file_ids: list[str]) -> list[UploadedFile]:
        """按给定顺序返回文件，不存在的 ID 被忽略"""
        if not file_ids:
            return []
        result = await self.session.execute(
            select(UploadedFile).where(UploadedFile.id.in_(file_ids))
        )
        by_id = {f.id: f for f in result.scalars().all()}
        return [by_id[i] for i in file_ids if i in by_id]

    async def add_uploaded_file(self, uploaded: UploadedFile) -> UploadedFile:
        self.session.add(uploaded)
        await self.session.flush()
        return uploaded

    async def update_uploaded_file(self, uploaded: UploadedFile, **fields) -> UploadedFile:
        """更新上传文件字段（status、provider_* 冗余字段等）"""
        for key, value in fields.items():
            setattr(uploaded, key, value)
        await self.session.flush()
        return uploaded

    # ==================== 上游文件 ====================

    async def find_provider_file(
        self,
        uploaded_file_id: str,
        knowledge_base_id: str | None,
        purpose: str,
    ) -> ProviderFile | None:
        """查找某个上传文件在指定知识库、指定用途下最近的上游文件记录"""
        stmt = select(ProviderFile).where(
            ProviderFile.uploaded_file_id == uploaded_file_id,
            ProviderFile.purpose == purpose,
        )
        if knowledge_base_id is None:
            stmt = stmt.where(ProviderFile.knowledge_base_id.is_(None))
        else:
            stmt = stmt.where(ProviderFile.knowledge_base_id == knowledge_base_id)
        result = await self.session.execute(
            stmt.order_by(ProviderFile.created_at.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def add_provider_file(self, provider_file: ProviderFile) -> ProviderFile:
        self.session.add(provider_file)
        await self.session.flush()
        return provider_file

    async def update_provider_file_status(self, provider_file: ProviderFile, status: str) -> ProviderFile:
        provider_file.status = status
        await self.session.flush()
        return provider_file

    # ==================== 文件与知识库关联 ====================

    async def add_relation(self, uploaded_file_id: str, knowledge_base_id: str) -> FileKnowledgeRelation:
        """建立关联，已存在时直接返回"""
        result = await self.session.execute(
            select(FileKnowledgeRelation).where(
                FileKnowledgeRelation.uploaded_file_id == uploaded_file_id,
                FileKnowledgeRelation.knowledge_base_id == knowledge_base_id,
            )
        )
        relation = result.scalar_one_or_none()
        if relation:
            return relation
        relation = FileKnowledgeRelation(
            uploaded_file_id=uploaded_file_id,
            knowledge_base_id=knowledge_base_id,
        )
        self.session.add(relation)
        await self.session.flush()
        return relation

    async def list_knowledge_base_files(self, knowledge_base_id: str) -> list[KnowledgeBaseFileRow]:
        """
        列出知识库下的文件

        以关联表为准（未向量化的文件也会列出），左连接 retrieval 用途的上游文件获取处理状态。
        """
        stmt = (
            select(UploadedFile, ProviderFile)
            .join(
                FileKnowledgeRelation,
                FileKnowledgeRelation.uploaded_file_id == UploadedFile.id,
            )
            .outerjoin(
                ProviderFile,
                and_(
                    ProviderFile.uploaded_file_id == UploadedFile.id,
                    ProviderFile.knowledge_base_id == knowledge_base_id,
                    ProviderFile.purpose == "retrieval",
                ),
            )
            .where(FileKnowledgeRelation.knowledge_base_id == knowledge_base_id)
            .order_by(UploadedFile.uploaded_at.desc())
        )
        result = await self.session.execute(stmt)

        rows: dict[str, KnowledgeBaseFileRow] = {}
        for uploaded, provider_file in result.all():
            # 同一文件可能有多条上游记录，保留第一条
            if uploaded.id in rows:
                continue
            rows[uploaded.id] = KnowledgeBaseFileRow(
                file_id=uploaded.id,
                filename=uploaded.filename,
                file_type=uploaded.file_type,
                size=uploaded.size,
                description=uploaded.description,
                status=uploaded.status,
                uploaded_at=uploaded.uploaded_at,
                file_path=uploaded.file_path,
                provider_file_id=provider_file.id if provider_file else None,
                provider_status=provider_file.status if provider_file else None,
            )
        return list(rows.values())

    # ==================== 用户 ====================

    async def get_user(self, username: str) -> User | None:
        result = await self.session.execute(
            select(User).where(User.username == username)
        )
        return result.scalar_one_or_none()
