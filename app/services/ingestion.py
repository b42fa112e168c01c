"""
文件摄取流程 (FileIngestionWorkflow)

单个上传文件的状态流转：
    new → stored_locally → provider_uploaded → provider_processing → bound_to_store → completed
    provider_uploaded / provider_processing 任一步上游失败 → failed（持久化，便于之后重试）

三个入口：
1. ingest_upload:            知识库文件上传（knowledge-uploads-file）
2. trigger_external_upload:  对已存储在本地的文件重新触发上游处理
3. prepare_chat_files:       对话中的 file 附件，上传提取并等待解析完成，返回上游文件 ID

本地写库失败会回滚所在事务；上游资源创建成功但随后本地写库失败时，
远端文件不会被自动清理（没有跨系统事务）。
"""

import asyncio
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path

from app.config import Settings
from app.db.gateway import PersistenceGateway
from app.exceptions import (
    FilePollTimeoutError,
    ProviderError,
    ProviderNotImplementedError,
    UnsupportedModelOwnerError,
    UploadedFileNotFoundError,
)
from app.infra.file_storage import LocalFileStorage
from app.infra.provider_client import ProviderClient
from app.models import ProviderFile, UploadedFile
from app.models.provider_file import PROVIDER_STATUS_SUCCESS, PURPOSE_FILE_EXTRACT, PURPOSE_RETRIEVAL
from app.models.uploaded_file import (
    FILE_STATUS_COMPLETED,
    FILE_STATUS_FAILED,
    FILE_STATUS_PROCESSING,
    FILE_STATUS_UPLOADED,
)
from app.services.provider_strategy import (
    LocalStrategy,
    ProviderStrategy,
    StepFunStrategy,
    get_provider_strategy,
)

logger = logging.getLogger(__name__)

# 聊天窗口上传文件时使用的 vector_store_id，表示不属于任何知识库
LOCAL_VECTOR_STORE = "local"

# 需要上游解析/向量化的文本类文件，其余（图片、视频等）直接复用
TEXT_EXTENSIONS = {
    ".txt", ".md", ".pdf", ".doc", ".docx", ".xls", ".xlsx",
    ".ppt", ".pptx", ".csv", ".html", ".htm", ".xml",
}

MSG_REUSED = "此文件该用户已经上传，直接使用历史文件。待发送消息后再获取文件内容"
MSG_ALREADY_VECTORIZED = "此文件已经在知识库下，解析完成，跳过上传"
MSG_STILL_PROCESSING = "此文件已经在知识库下，在解析中，请点击【更新状态】查询最新的解析状态"
MSG_BOUND_NOW = "此文件此前已经在知识库下，但未绑定知识库，现已进行绑定，请点击【更新状态】查询最新的解析状态"
MSG_VECTORIZING = "文件绑定到知识库，正常向量化中，可以在知识库点击获取向量化状态"
MSG_STORED = "文件已上传"


def is_text_file(filename: str) -> bool:
    return Path(filename).suffix.lower() in TEXT_EXTENSIONS


@dataclass
class IngestionOutcome:
    file_id: str
    message: str
    status: str | None = None
    provider_file_id: str | None = None
    file_web_path: str | None = None


async def poll_file_status(
    client: ProviderClient,
    file_id: str,
    timeout: float = 15.0,
    interval: float = 1.0,
) -> str:
    """
    轮询上游文件状态直到 success

    Raises:
        FilePollTimeoutError: 超时仍未完成
        ProviderError: 查询失败，或上游明确返回处理失败
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        status = await client.get_file_status(file_id)
        if status == PROVIDER_STATUS_SUCCESS:
            return status
        if status in ("failed", "error"):
            raise ProviderError(f"上游文件 {file_id} 解析失败", detail=status)
        logger.debug(f"当前文件状态: {file_id} {status}")
        if loop.time() + interval > deadline:
            raise FilePollTimeoutError(file_id, timeout)
        await asyncio.sleep(interval)


class FileIngestionWorkflow:
    def __init__(
        self,
        gateway: PersistenceGateway,
        storage: LocalFileStorage,
        stepfun_client: ProviderClient,
        settings: Settings,
    ):
        self.gateway = gateway
        self.storage = storage
        self.stepfun_client = stepfun_client
        self.settings = settings

    def _strategy(self, model_owner: str) -> ProviderStrategy:
        return get_provider_strategy(model_owner, self.stepfun_client, self.settings.timezone)

    async def _mark_failed(self, uploaded: UploadedFile, reason: Exception) -> None:
        logger.error(f"文件处理失败，标记为 failed: {uploaded.id} ({uploaded.filename}): {reason}")
        async with self.gateway.transaction():
            await self.gateway.update_uploaded_file(uploaded, status=FILE_STATUS_FAILED)

    # ==================== 知识库文件上传 ====================

    async def ingest_upload(
        self,
        *,
        username: str,
        filename: str,
        content: bytes,
        vector_store_id: str,
        model_owner: str,
        description: str | None = None,
        mime_type: str | None = None,
    ) -> IngestionOutcome:
        strategy = self._strategy(model_owner)
        if not strategy.implemented:
            raise ProviderNotImplementedError(
                f"暂不支持 model_owner 为 '{model_owner}' 的知识库文件上传，待接入后再实现"
            )

        size = len(content)
        existing = await self.gateway.find_uploaded_file(filename, size, username)
        if existing:
            return await self._handle_existing(existing, vector_store_id, strategy)
        return await self._handle_new(
            username=username,
            filename=filename,
            content=content,
            vector_store_id=vector_store_id,
            strategy=strategy,
            description=description,
            mime_type=mime_type,
        )

    async def _handle_existing(
        self,
        uploaded: UploadedFile,
        vector_store_id: str,
        strategy: ProviderStrategy,
    ) -> IngestionOutcome:
        web_path = self.storage.public_url(uploaded.file_path)
        logger.info(f"命中已上传文件: {uploaded.filename} -> {uploaded.id}")

        # 图片、视频等无需解析，直接复用
        if not is_text_file(uploaded.filename) or vector_store_id == LOCAL_VECTOR_STORE:
            return IngestionOutcome(
                file_id=uploaded.id,
                message=MSG_REUSED,
                status=uploaded.status,
                file_web_path=web_path,
            )

        async with self.gateway.transaction():
            await self.gateway.add_relation(uploaded.id, vector_store_id)

        if not strategy.uploads_remotely:
            return IngestionOutcome(
                file_id=uploaded.id,
                message=MSG_REUSED,
                status=uploaded.status,
                file_web_path=web_path,
            )

        provider_file = await self.gateway.find_provider_file(uploaded.id, vector_store_id, PURPOSE_RETRIEVAL)
        if provider_file:
            if provider_file.status == FILE_STATUS_COMPLETED:
                return IngestionOutcome(
                    file_id=uploaded.id,
                    message=MSG_ALREADY_VECTORIZED,
                    status=provider_file.status,
                    provider_file_id=provider_file.id,
                    file_web_path=web_path,
                )
            if provider_file.status == FILE_STATUS_PROCESSING:
                return IngestionOutcome(
                    file_id=uploaded.id,
                    message=MSG_STILL_PROCESSING,
                    status=provider_file.status,
                    provider_file_id=provider_file.id,
                    file_web_path=web_path,
                )
            if provider_file.status == FILE_STATUS_UPLOADED:
                await self._bind(uploaded, provider_file, vector_store_id, strategy)
                return IngestionOutcome(
                    file_id=uploaded.id,
                    message=MSG_BOUND_NOW,
                    status=FILE_STATUS_PROCESSING,
                    provider_file_id=provider_file.id,
                    file_web_path=web_path,
                )
            # failed 等状态重新上传

        content = await self.storage.read(uploaded.file_path)
        provider_file = await self._upload(uploaded, content, vector_store_id, strategy)
        await self._bind(uploaded, provider_file, vector_store_id, strategy)
        return IngestionOutcome(
            file_id=uploaded.id,
            message=MSG_VECTORIZING,
            status=FILE_STATUS_PROCESSING,
            provider_file_id=provider_file.id,
            file_web_path=web_path,
        )

    async def _handle_new(
        self,
        *,
        username: str,
        filename: str,
        content: bytes,
        vector_store_id: str,
        strategy: ProviderStrategy,
        description: str | None,
        mime_type: str | None,
    ) -> IngestionOutcome:
        stored = await self.storage.save(username, filename, content)
        try:
            async with self.gateway.transaction():
                uploaded = await self.gateway.add_uploaded_file(
                    UploadedFile(
                        filename=filename,
                        file_path=stored.relative_path,
                        file_type=mime_type or mimetypes.guess_type(filename)[0],
                        description=description,
                        status=FILE_STATUS_UPLOADED,
                        username=username,
                        size=stored.size,
                    )
                )
                if vector_store_id != LOCAL_VECTOR_STORE:
                    await self.gateway.add_relation(uploaded.id, vector_store_id)
        except Exception:
            await self.storage.remove(stored.relative_path)
            raise

        web_path = self.storage.public_url(stored.relative_path)
        if vector_store_id == LOCAL_VECTOR_STORE or not strategy.uploads_remotely:
            return IngestionOutcome(
                file_id=uploaded.id,
                message=MSG_STORED,
                status=FILE_STATUS_UPLOADED,
                file_web_path=web_path,
            )

        provider_file = await self._upload(uploaded, content, vector_store_id, strategy)
        await self._bind(uploaded, provider_file, vector_store_id, strategy)
        return IngestionOutcome(
            file_id=uploaded.id,
            message=MSG_VECTORIZING,
            status=FILE_STATUS_PROCESSING,
            provider_file_id=provider_file.id,
            file_web_path=web_path,
        )

    async def _upload(
        self,
        uploaded: UploadedFile,
        content: bytes,
        vector_store_id: str,
        strategy: ProviderStrategy,
    ) -> ProviderFile:
        """上传到提供商（retrieval）并写入 ProviderFile(uploaded)"""
        try:
            response = await strategy.upload_file(uploaded.filename, content, PURPOSE_RETRIEVAL, uploaded.file_type)
        except ProviderError as e:
            await self._mark_failed(uploaded, e)
            raise

        async with self.gateway.transaction():
            provider_file = await self.gateway.add_provider_file(
                ProviderFile(
                    id=response["id"],
                    knowledge_base_id=vector_store_id,
                    usage_bytes=response.get("bytes") or response.get("usage_bytes") or len(content),
                    uploaded_file_id=uploaded.id,
                    purpose=PURPOSE_RETRIEVAL,
                    status=FILE_STATUS_UPLOADED,
                )
            )
            await self.gateway.update_uploaded_file(
                uploaded,
                provider_file_id=provider_file.id,
                provider_file_purpose=PURPOSE_RETRIEVAL,
                provider_file_status=FILE_STATUS_UPLOADED,
                provider_vector_store_id=vector_store_id,
            )
        return provider_file

    async def _bind(
        self,
        uploaded: UploadedFile,
        provider_file: ProviderFile,
        vector_store_id: str,
        strategy: ProviderStrategy,
    ) -> None:
        """绑定到向量库，成功后上传文件与上游文件都进入 processing"""
        try:
            await strategy.bind_file(vector_store_id, provider_file.id)
        except ProviderError as e:
            await self._mark_failed(uploaded, e)
            raise

        async with self.gateway.transaction():
            await self.gateway.update_provider_file_status(provider_file, FILE_STATUS_PROCESSING)
            await self.gateway.update_uploaded_file(
                uploaded,
                status=FILE_STATUS_PROCESSING,
                provider_file_status=FILE_STATUS_PROCESSING,
                provider_vector_store_id=vector_store_id,
            )

    # ==================== 重新触发上游处理 ====================

    async def trigger_external_upload(
        self,
        *,
        model_owner: str,
        file_id: str,
        purpose: str,
        vector_store_id: str,
    ) -> tuple[UploadedFile, ProviderFile]:
        """
        对已存储在本地的文件重新触发上游处理

        - stepfun + retrieval:     上传并绑定到向量库
        - local + file-extract:    上传到 StepFun 做内容提取
        - zhipu/baichuan/moonshot: ProviderNotImplementedError
        - 其他 model_owner:         UnsupportedModelOwnerError
        """
        uploaded = await self.gateway.get_uploaded_file(file_id)
        if uploaded is None:
            raise UploadedFileNotFoundError(f"File not found: {file_id}")

        strategy = self._strategy(model_owner)
        if not strategy.implemented:
            raise ProviderNotImplementedError()

        if isinstance(strategy, StepFunStrategy) and purpose == PURPOSE_RETRIEVAL:
            content = await self.storage.read(uploaded.file_path)
            async with self.gateway.transaction():
                await self.gateway.add_relation(uploaded.id, vector_store_id)
            provider_file = await self._upload(uploaded, content, vector_store_id, strategy)
            await self._bind(uploaded, provider_file, vector_store_id, strategy)
            return uploaded, provider_file

        if isinstance(strategy, LocalStrategy) and purpose == PURPOSE_FILE_EXTRACT:
            kb_id = None if vector_store_id == LOCAL_VECTOR_STORE else vector_store_id
            provider_file = await self._extract(uploaded, kb_id, wait=False)
            return uploaded, provider_file

        raise UnsupportedModelOwnerError("Invalid model_owner or purpose")

    # ==================== 对话附件 ====================

    async def prepare_chat_files(self, file_ids: list[str]) -> list[str]:
        """
        对话 file 附件：逐个上传提取并等待解析完成，返回上游文件 ID（顺序与 file_ids 一致）

        同一文件已有解析成功的提取记录时直接复用，不重复上传。
        """
        provider_ids: list[str] = []
        for file_id in file_ids:
            uploaded = await self.gateway.get_uploaded_file(file_id)
            if uploaded is None:
                raise UploadedFileNotFoundError(f"上传的文件未找到: {file_id}")

            existing = await self.gateway.find_provider_file(uploaded.id, None, PURPOSE_FILE_EXTRACT)
            if existing and existing.status == PROVIDER_STATUS_SUCCESS:
                provider_ids.append(existing.id)
                continue

            provider_file = await self._extract(uploaded, None, wait=True)
            provider_ids.append(provider_file.id)
        return provider_ids

    async def _extract(self, uploaded: UploadedFile, knowledge_base_id: str | None, wait: bool) -> ProviderFile:
        """上传文件做内容提取；wait=True 时轮询直到解析成功"""
        content = await self.storage.read(uploaded.file_path)
        try:
            response = await self.stepfun_client.upload_file(
                uploaded.filename, content, PURPOSE_FILE_EXTRACT, uploaded.file_type
            )
            status = response.get("status") or FILE_STATUS_UPLOADED
            if wait:
                status = await poll_file_status(
                    self.stepfun_client,
                    response["id"],
                    timeout=self.settings.file_poll_timeout,
                    interval=self.settings.file_poll_interval,
                )
                logger.info(f"文件解析完成: {uploaded.filename} -> {response['id']}")
        except (ProviderError, FilePollTimeoutError) as e:
            await self._mark_failed(uploaded, e)
            raise

        async with self.gateway.transaction():
            provider_file = await self.gateway.add_provider_file(
                ProviderFile(
                    id=response["id"],
                    knowledge_base_id=knowledge_base_id,
                    usage_bytes=response.get("bytes") or response.get("usage_bytes") or len(content),
                    uploaded_file_id=uploaded.id,
                    purpose=PURPOSE_FILE_EXTRACT,
                    status=status,
                )
            )
            await self.gateway.update_uploaded_file(
                uploaded,
                status=FILE_STATUS_COMPLETED,
                provider_file_id=provider_file.id,
                provider_file_purpose=PURPOSE_FILE_EXTRACT,
                provider_file_status=status,
            )
        return provider_file
