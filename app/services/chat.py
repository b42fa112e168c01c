"""
对话编排

把一次前端对话请求串起来：
    MessageAssembler 组装消息 → 选择模型 → 打开上游流 → relay 转发

三种提供商：
- stepfun:            按 token 数动态选模型，带 web_search / retrieval 工具
- openai-compatible:  按档位查表选模型（balanced 档为非流式），只带 web_search 工具
- dify:               请求体透传，响应逐行改写为 chat.completion.chunk
"""

import logging
from typing import Any

from fastapi.responses import StreamingResponse

from app.infra.logging import RequestTimer
from app.infra.provider_client import OpenAICompatibleClient, ProviderClient
from app.schemas.chat import ChatRequest, DifyChatRequest
from app.services.message_assembler import OPENAI_POLICY, STEPFUN_POLICY, MessageAssembler
from app.services.model_selector import ModelSelector, select_openai_model
from app.services.relay import relay, reshape_dify_line

logger = logging.getLogger(__name__)

STEPFUN_CHAT_PATH = "/chat/completions"
DIFY_CHAT_PATH = "/chat-messages"


class ChatService:
    def __init__(
        self,
        assembler: MessageAssembler,
        stepfun_client: ProviderClient,
        selector: ModelSelector | None = None,
    ):
        self.assembler = assembler
        self.stepfun_client = stepfun_client
        self.selector = selector or ModelSelector(stepfun_client)

    async def chat_stepfun(self, payload: ChatRequest) -> StreamingResponse:
        timer = RequestTimer()
        assembled = await self.assembler.assemble(payload, STEPFUN_POLICY)
        timer.mark("assemble")

        model = await self.selector.select_model(
            payload.file_type,
            payload.performance_level,
            assembled.messages,
        )
        timer.mark("select_model")

        body: dict[str, Any] = {
            "model": model,
            "stream": True,
            "messages": assembled.messages,
            "response_format": {"type": "text"},
        }
        if assembled.tools:
            body["tools"] = assembled.tools
            body["tool_choice"] = "auto"

        logger.info(
            f"stepfun 对话: model={model} messages={len(assembled.messages)} "
            f"tools={[t['type'] for t in assembled.tools]} metrics={timer.get_metrics()}"
        )
        return await relay(self.stepfun_client.open_stream(STEPFUN_CHAT_PATH, body))

    async def chat_openai(self, payload: ChatRequest, client: OpenAICompatibleClient) -> StreamingResponse:
        model, stream = select_openai_model(payload.performance_level)
        assembled = await self.assembler.assemble(payload, OPENAI_POLICY)

        body: dict[str, Any] = {
            "model": model,
            "stream": stream,
            "messages": assembled.messages,
        }
        if assembled.tools:
            body["tools"] = assembled.tools

        logger.info(f"openai 对话: model={model} stream={stream} messages={len(assembled.messages)}")
        return await relay(client.open_stream(body), stream=stream)


async def chat_dify(payload: DifyChatRequest, client: ProviderClient, username: str) -> StreamingResponse:
    """
    Dify 请求体原样透传，user 缺省时使用当前登录用户

    streaming 模式下逐行改写为 chat.completion.chunk；blocking 模式原样转发 JSON。
    """
    body = payload.model_dump(exclude_none=True)
    body.setdefault("user", username)
    streaming = payload.response_mode == "streaming"
    logger.info(f"dify 对话: user={body['user']} mode={payload.response_mode}")
    return await relay(
        client.open_stream(DIFY_CHAT_PATH, body),
        stream=streaming,
        reshape=reshape_dify_line if streaming else None,
    )
