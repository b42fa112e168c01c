"""
提供商策略 (ProviderStrategy)

按 model_owner 选择一个策略对象，统一提供三种远端动作：
- create_knowledge_base: 获取知识库的远端 ID
- upload_file:           上传文件到提供商
- bind_file:             将上游文件绑定到向量库

策略变体：
- StepFunStrategy:        调用 StepFun 接口
- LocalStrategy:          本地 no-op 提供商，自行生成 ID（name + 时间戳），不上传
- UnimplementedStrategy:  zhipu / moonshot / baichuan，一律抛 ProviderNotImplementedError

只在边界（路由/工作流入口）通过 get_provider_strategy() 查表选择一次，
业务代码内部不再对 model_owner 字符串做分支。
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable
from zoneinfo import ZoneInfo

from app.exceptions import ProviderNotImplementedError, UnsupportedModelOwnerError
from app.infra.provider_client import ProviderClient

logger = logging.getLogger(__name__)

LOCAL_OWNER = "local"
UNIMPLEMENTED_OWNERS = ("zhipu", "moonshot", "baichuan")


class ProviderStrategy(ABC):
    name: str = ""

    # 是否需要真正把文件交给提供商处理
    uploads_remotely: bool = True
    # 已登记但尚未对接的提供商为 False
    implemented: bool = True

    @abstractmethod
    async def create_knowledge_base(self, name: str) -> str:
        """返回知识库远端 ID"""

    @abstractmethod
    async def upload_file(
        self,
        filename: str,
        content: bytes,
        purpose: str,
        mime_type: str | None = None,
    ) -> dict[str, Any] | None:
        """上传文件，返回上游文件对象；不上传的提供商返回 None"""

    @abstractmethod
    async def bind_file(self, vector_store_id: str, file_id: str) -> None:
        """绑定上游文件到向量库"""


class StepFunStrategy(ProviderStrategy):
    name = "stepfun"

    def __init__(self, client: ProviderClient):
        self.client = client

    async def create_knowledge_base(self, name: str) -> str:
        vector_store_id = await self.client.create_vector_store(name)
        logger.info(f"StepFun 向量库已创建: {name} -> {vector_store_id}")
        return vector_store_id

    async def upload_file(self, filename, content, purpose, mime_type=None):
        return await self.client.upload_file(filename, content, purpose, mime_type)

    async def bind_file(self, vector_store_id: str, file_id: str) -> None:
        await self.client.bind_files(vector_store_id, [file_id])


class LocalStrategy(ProviderStrategy):
    name = LOCAL_OWNER
    uploads_remotely = False

    def __init__(self, timezone: str = "Asia/Shanghai", clock: Callable[[], datetime] | None = None):
        self.timezone = timezone
        self.clock = clock or (lambda: datetime.now(ZoneInfo(self.timezone)))

    async def create_knowledge_base(self, name: str) -> str:
        # name + 14 位时间戳，如 docs120241201093015
        return f"{name}{self.clock().strftime('%Y%m%d%H%M%S')}"

    async def upload_file(self, filename, content, purpose, mime_type=None):
        return None

    async def bind_file(self, vector_store_id: str, file_id: str) -> None:
        return None


class UnimplementedStrategy(ProviderStrategy):
    """已登记但尚未对接的提供商"""

    implemented = False

    def __init__(self, name: str):
        self.name = name

    async def create_knowledge_base(self, name: str) -> str:
        raise ProviderNotImplementedError()

    async def upload_file(self, filename, content, purpose, mime_type=None):
        raise ProviderNotImplementedError()

    async def bind_file(self, vector_store_id: str, file_id: str) -> None:
        raise ProviderNotImplementedError()


def get_provider_strategy(
    model_owner: str,
    stepfun_client: ProviderClient | None = None,
    timezone: str = "Asia/Shanghai",
) -> ProviderStrategy:
    """
    按 model_owner 查表获取策略

    Raises:
        UnsupportedModelOwnerError: 未知的 model_owner
    """
    owner = (model_owner or "").strip().lower()
    if owner == "stepfun":
        if stepfun_client is None:
            raise ValueError("stepfun 策略需要 ProviderClient")
        return StepFunStrategy(stepfun_client)
    if owner == LOCAL_OWNER:
        return LocalStrategy(timezone)
    if owner in UNIMPLEMENTED_OWNERS:
        return UnimplementedStrategy(owner)
    raise UnsupportedModelOwnerError(f"Invalid model owner: {model_owner}")
