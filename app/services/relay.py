"""
流式转发 (Streaming Relay)

生产者/消费者拆分：
- iter_upstream_lines(): 生产者，从上游连接逐行读取，跳过空行，结束或异常时释放连接
- frame_line() / reshape_dify_line(): 消费者，把一行上游内容变成发给客户端的 SSE 帧

上游非 2xx 在 open_stream 阶段就以 ProviderError 抛出，此时还没有向客户端写出任何字节，
由路由层转换成带上游状态码的错误响应。响应头一旦发出，读流中途的异常只能记录日志。
"""

import json
import logging
from typing import AsyncIterator, Awaitable, Callable

from fastapi.responses import StreamingResponse

from app.infra.provider_client import EVENT_STREAM, JSON_CONTENT, UpstreamStream
from app.schemas.chat import ChatCompletionChunk, ChunkChoice, ChunkDelta, ChunkUsage

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

DIFY_MODEL_NAME = "dify"

LineReshaper = Callable[[str], str | None]


async def iter_upstream_lines(upstream: UpstreamStream) -> AsyncIterator[str]:
    """逐行产出上游非空行；无论正常结束、出错还是客户端断开都关闭上游连接"""
    try:
        async for line in upstream.lines:
            if not line.strip():
                continue
            yield line
    except Exception as e:
        # 响应头已发出，状态码无法再修改
        logger.error(f"读取上游响应流失败: {e}")
    finally:
        await upstream.close()


def frame_line(line: str) -> str:
    return f"{line}\n\n"


def reshape_dify_line(line: str) -> str | None:
    """
    将 Dify 的 `data: {...}` 事件改写为 chat.completion.chunk 形状

    非 data 行（如 event: ping）与无法解析的行返回 None，由调用方跳过。
    """
    if not line.startswith("data:"):
        return None
    raw = line[len("data:"):].strip()
    try:
        event = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Dify 响应行解析失败: {e}, line={raw[:200]}")
        return None
    if not isinstance(event, dict):
        logger.warning(f"Dify 响应行不是对象: {raw[:200]}")
        return None

    usage = event.get("usage") or (event.get("metadata") or {}).get("usage") or {}
    chunk = ChatCompletionChunk(
        id=event.get("task_id") or "",
        created=int(event.get("created_at") or 0),
        model=DIFY_MODEL_NAME,
        choices=[
            ChunkChoice(
                index=0,
                finish_reason="stop",
                delta=ChunkDelta(role="assistant", content=event.get("answer") or ""),
            )
        ],
        usage=ChunkUsage(
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
            total_tokens=int(usage.get("total_tokens") or 0),
        ),
    )
    return f"data: {chunk.model_dump_json()}"


async def iter_frames(
    upstream: UpstreamStream,
    reshape: LineReshaper | None = None,
) -> AsyncIterator[str]:
    """把上游行流转换为客户端帧流"""
    async for line in iter_upstream_lines(upstream):
        if reshape is not None:
            reshaped = reshape(line)
            if reshaped is None:
                continue
            logger.debug(f"改写后的报文: {reshaped}")
            line = reshaped
        yield frame_line(line)


async def relay(
    opened: Awaitable[UpstreamStream],
    *,
    stream: bool = True,
    reshape: LineReshaper | None = None,
) -> StreamingResponse:
    """
    建立上游连接并返回流式响应

    Args:
        opened: 打开上游连接的 awaitable（ProviderClient.open_stream 等）
        stream: 请求是否为流式；非流式时 Content-Type 为 application/json
        reshape: 行改写函数，Dify 使用 reshape_dify_line
    """
    upstream = await opened
    return StreamingResponse(
        iter_frames(upstream, reshape),
        status_code=upstream.status_code,
        media_type=EVENT_STREAM if stream else JSON_CONTENT,
        headers=STREAM_HEADERS,
    )
