"""
API 依赖注入函数

这个模块定义了所有 API 路由共用的依赖项，以及业务异常到 HTTP 错误的映射。
测试中通过 app.dependency_overrides 替换 get_stepfun_client 等依赖注入 mock 传输层。

使用示例：
    @router.post("/example")
    async def example_endpoint(
        username: str = Depends(get_current_username),   # 当前登录用户
        workflow=Depends(get_workflow),                   # 文件摄取流程
    ):
        pass
"""

import logging

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.db.gateway import PersistenceGateway
from app.db.session import get_db
from app.exceptions import (
    FilePollTimeoutError,
    KnowledgeBaseExistsError,
    KnowledgeBaseNotFoundError,
    KnowledgeBaseValidationError,
    LocalStorageError,
    ProviderError,
    ProviderNotImplementedError,
    TokenBudgetExceededError,
    UnsupportedModelOwnerError,
    UploadedFileNotFoundError,
)
from app.infra.file_storage import LocalFileStorage
from app.infra.provider_client import OpenAICompatibleClient, ProviderClient
from app.services.chat import ChatService
from app.services.ingestion import FileIngestionWorkflow
from app.services.knowledge_base import KnowledgeBaseService
from app.services.message_assembler import MessageAssembler

logger = logging.getLogger(__name__)

# 重新导出数据库会话获取函数，方便路由模块导入
get_db_session = get_db

# 路由层统一捕获的业务异常
SERVICE_ERRORS = (
    KnowledgeBaseValidationError,
    KnowledgeBaseExistsError,
    KnowledgeBaseNotFoundError,
    UploadedFileNotFoundError,
    ProviderNotImplementedError,
    UnsupportedModelOwnerError,
    ProviderError,
    FilePollTimeoutError,
    TokenBudgetExceededError,
    LocalStorageError,
)

_ERROR_STATUS = {
    KnowledgeBaseValidationError: (status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR"),
    KnowledgeBaseExistsError: (status.HTTP_400_BAD_REQUEST, "KB_ALREADY_EXISTS"),
    KnowledgeBaseNotFoundError: (status.HTTP_404_NOT_FOUND, "KB_NOT_FOUND"),
    UploadedFileNotFoundError: (status.HTTP_404_NOT_FOUND, "FILE_NOT_FOUND"),
    ProviderNotImplementedError: (status.HTTP_501_NOT_IMPLEMENTED, "NOT_IMPLEMENTED"),
    UnsupportedModelOwnerError: (status.HTTP_400_BAD_REQUEST, "INVALID_MODEL_OWNER"),
    FilePollTimeoutError: (status.HTTP_504_GATEWAY_TIMEOUT, "FILE_PROCESSING_TIMEOUT"),
    TokenBudgetExceededError: (status.HTTP_400_BAD_REQUEST, "TOKEN_LIMIT_EXCEEDED"),
    LocalStorageError: (status.HTTP_500_INTERNAL_SERVER_ERROR, "STORAGE_ERROR"),
}


def to_http_exception(exc: Exception) -> HTTPException:
    """
    业务异常 → HTTPException

    ProviderError 使用上游状态码，网络层失败映射为 502；
    上游返回的具体内容只记录日志，不返回给客户端。
    """
    if isinstance(exc, ProviderError):
        if exc.status_code is None:
            return HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail={"code": "PROVIDER_UNAVAILABLE", "detail": str(exc)},
            )
        return HTTPException(
            status_code=exc.status_code,
            detail={"code": "PROVIDER_ERROR", "detail": str(exc)},
        )

    for exc_type, (status_code, code) in _ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            return HTTPException(status_code=status_code, detail={"code": code, "detail": str(exc)})

    logger.error(f"未映射的异常类型: {type(exc).__name__}: {exc}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "INTERNAL_ERROR", "detail": "Internal server error"},
    )


# ==================== 基础组件 ====================


async def get_gateway(db: AsyncSession = Depends(get_db_session)) -> PersistenceGateway:
    return PersistenceGateway(db)


def get_storage(settings: Settings = Depends(get_settings)) -> LocalFileStorage:
    return LocalFileStorage.from_settings(settings)


def get_stepfun_client(settings: Settings = Depends(get_settings)) -> ProviderClient:
    return ProviderClient.from_settings(settings, "stepfun")


def get_dify_client(settings: Settings = Depends(get_settings)) -> ProviderClient:
    return ProviderClient.from_settings(settings, "dify")


def get_openai_client(settings: Settings = Depends(get_settings)) -> OpenAICompatibleClient:
    try:
        return OpenAICompatibleClient.from_settings(settings)
    except ProviderError as e:
        raise to_http_exception(e) from e


# ==================== 业务服务 ====================


def get_workflow(
    gateway: PersistenceGateway = Depends(get_gateway),
    storage: LocalFileStorage = Depends(get_storage),
    stepfun_client: ProviderClient = Depends(get_stepfun_client),
    settings: Settings = Depends(get_settings),
) -> FileIngestionWorkflow:
    return FileIngestionWorkflow(gateway, storage, stepfun_client, settings)


def get_kb_service(
    gateway: PersistenceGateway = Depends(get_gateway),
    stepfun_client: ProviderClient = Depends(get_stepfun_client),
    settings: Settings = Depends(get_settings),
) -> KnowledgeBaseService:
    return KnowledgeBaseService(gateway, stepfun_client, settings.timezone)


def get_chat_service(
    gateway: PersistenceGateway = Depends(get_gateway),
    storage: LocalFileStorage = Depends(get_storage),
    stepfun_client: ProviderClient = Depends(get_stepfun_client),
    workflow: FileIngestionWorkflow = Depends(get_workflow),
) -> ChatService:
    # 文件内容与提取统一走 StepFun
    assembler = MessageAssembler(gateway, storage, stepfun_client, workflow)
    return ChatService(assembler, stepfun_client)
