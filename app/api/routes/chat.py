"""
对话接口

POST /chat-messages/{provider}
- stepfun:                    动态选模型，支持图片/文件附件、联网搜索与知识库检索
- openai-compatible / openai: 按档位选模型
- dify:                       请求体透传，响应改写为 chat.completion.chunk

上游返回非 2xx 时在发送任何字节前返回错误，状态码与上游一致。
"""

import logging

from fastapi import APIRouter, Depends

from app.api.deps import (
    SERVICE_ERRORS,
    get_chat_service,
    get_dify_client,
    get_openai_client,
    to_http_exception,
)
from app.auth.jwt_session import get_current_username
from app.infra.provider_client import OpenAICompatibleClient, ProviderClient
from app.schemas import ChatRequest, DifyChatRequest
from app.services.chat import ChatService, chat_dify

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chat-messages/stepfun")
async def chat_stepfun(
    payload: ChatRequest,
    username: str = Depends(get_current_username),
    service: ChatService = Depends(get_chat_service),
):
    logger.info(f"收到 stepfun 对话请求: user={username} file_type={payload.file_type}")
    try:
        return await service.chat_stepfun(payload)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e


@router.post("/chat-messages/dify")
async def chat_dify_messages(
    payload: DifyChatRequest,
    username: str = Depends(get_current_username),
    client: ProviderClient = Depends(get_dify_client),
):
    try:
        return await chat_dify(payload, client, username)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e


@router.post("/chat-messages/openai-compatible")
@router.post("/chat-messages/openai")
async def chat_openai_compatible(
    payload: ChatRequest,
    username: str = Depends(get_current_username),
    service: ChatService = Depends(get_chat_service),
    client: OpenAICompatibleClient = Depends(get_openai_client),
):
    logger.info(f"收到 openai 对话请求: user={username} level={payload.performance_level}")
    try:
        return await service.chat_openai(payload, client)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e
