"""
知识库生命周期

创建/更新知识库元数据，并按 model_owner 决定伴随的远端动作：
- stepfun: 创建向量库，返回的 ID 覆盖本地 ID
- local:   生成 name + 时间戳作为 ID
- zhipu / moonshot / baichuan: 尚未实现，记录保持 pending（id 为空）

pending 记录会在后续 create/update 时再次尝试获取 ID。
"""

import logging
import re
from dataclasses import dataclass

from app.db.gateway import PersistenceGateway
from app.exceptions import (
    KnowledgeBaseExistsError,
    KnowledgeBaseNotFoundError,
    KnowledgeBaseValidationError,
    ProviderNotImplementedError,
)
from app.infra.provider_client import ProviderClient
from app.models import KnowledgeBase
from app.models.knowledge_base import MODEL_OWNERS
from app.schemas.kb import KnowledgeBaseCreate, KnowledgeBaseUpdate
from app.services.provider_strategy import ProviderStrategy, get_provider_strategy

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_]*$")
NAME_ERROR = (
    "The name can only contain letters, numbers, and underscores, "
    "and cannot start with an underscore."
)
DESCRIPTION_MAX_LENGTH = 500
TAGS_MAX_LENGTH = 200


def normalize_owner(model_owner: str | None) -> str:
    return (model_owner or "").strip().lower()


def validate_knowledge_base_fields(
    name: str,
    display_name: str,
    description: str,
    tags: str,
    model_owner: str,
) -> None:
    """逐字段校验，第一个不合法的字段抛出 KnowledgeBaseValidationError"""
    if not name or not NAME_PATTERN.match(name):
        raise KnowledgeBaseValidationError(NAME_ERROR)
    if not (display_name or "").strip():
        raise KnowledgeBaseValidationError("Display name cannot be empty")
    if len(description or "") > DESCRIPTION_MAX_LENGTH:
        raise KnowledgeBaseValidationError(
            f"Description cannot exceed {DESCRIPTION_MAX_LENGTH} characters"
        )
    if len(tags or "") > TAGS_MAX_LENGTH:
        raise KnowledgeBaseValidationError(f"Tags cannot exceed {TAGS_MAX_LENGTH} characters")
    if normalize_owner(model_owner) not in MODEL_OWNERS:
        raise KnowledgeBaseValidationError("Invalid model owner")


@dataclass
class KnowledgeBaseResult:
    kb: KnowledgeBase
    message: str | None = None


class KnowledgeBaseService:
    def __init__(
        self,
        gateway: PersistenceGateway,
        stepfun_client: ProviderClient | None = None,
        timezone: str = "Asia/Shanghai",
    ):
        self.gateway = gateway
        self.stepfun_client = stepfun_client
        self.timezone = timezone

    def _strategy(self, model_owner: str) -> ProviderStrategy:
        return get_provider_strategy(model_owner, self.stepfun_client, self.timezone)

    async def _acquire_id(self, kb: KnowledgeBase) -> None:
        """向提供商获取远端 ID 并回填；未实现的提供商抛 ProviderNotImplementedError"""
        kb_id = await self._strategy(kb.model_owner).create_knowledge_base(kb.name)
        kb.id = kb_id
        logger.info(f"知识库 {kb.name} 已获得 ID: {kb_id}")

    async def create(self, payload: KnowledgeBaseCreate, creator: str) -> KnowledgeBaseResult:
        model_owner = normalize_owner(payload.model_owner)
        validate_knowledge_base_fields(
            payload.name,
            payload.display_name,
            payload.description,
            payload.tags,
            model_owner,
        )

        kb = await self.gateway.get_knowledge_base(payload.name)
        if kb is not None and not kb.is_pending:
            raise KnowledgeBaseExistsError("Knowledge base already exists")

        async with self.gateway.transaction():
            if kb is None:
                kb = await self.gateway.add_knowledge_base(
                    KnowledgeBase(
                        name=payload.name,
                        display_name=payload.display_name,
                        description=payload.description,
                        tags=payload.tags,
                        model_owner=model_owner,
                        creator_id=creator,
                    )
                )
                logger.info(f"知识库 {kb.name} 已登记（pending），owner={kb.model_owner}")
            else:
                kb.display_name = payload.display_name
                kb.description = payload.description
                kb.tags = payload.tags
                kb.model_owner = model_owner
                logger.info(f"知识库 {kb.name} 仍为 pending，重新尝试获取 ID")

        # 未实现的提供商不回滚，记录保持 pending
        message = None
        async with self.gateway.transaction():
            try:
                await self._acquire_id(kb)
            except ProviderNotImplementedError as e:
                logger.info(f"知识库 {kb.name} 的提供商 {kb.model_owner} 尚未实现，保持 pending")
                message = e.message

        return KnowledgeBaseResult(kb=kb, message=message)

    async def update(self, name: str, payload: KnowledgeBaseUpdate) -> KnowledgeBaseResult:
        """
        更新展示字段

        记录仍为 pending 时顺带尝试获取 ID；提供商未实现时字段照常提交，
        然后抛出 ProviderNotImplementedError（路由返回 501）。
        """
        kb = await self.gateway.get_knowledge_base(name)
        if kb is None:
            raise KnowledgeBaseNotFoundError(f"Knowledge base {name} not found")

        validate_knowledge_base_fields(
            name,
            payload.display_name,
            payload.description,
            payload.tags,
            kb.model_owner,
        )

        not_implemented: ProviderNotImplementedError | None = None
        async with self.gateway.transaction():
            kb.display_name = payload.display_name
            kb.description = payload.description
            kb.tags = payload.tags
            if kb.is_pending:
                try:
                    await self._acquire_id(kb)
                except ProviderNotImplementedError as e:
                    not_implemented = e

        if not_implemented is not None:
            raise not_implemented
        logger.info(f"知识库 {kb.name} 已更新")
        return KnowledgeBaseResult(kb=kb)

    async def list_knowledge_bases(self) -> list[KnowledgeBase]:
        return await self.gateway.list_knowledge_bases()
