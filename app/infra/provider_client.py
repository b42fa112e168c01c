"""
上游提供商 HTTP 客户端

纯传输层，了解各提供商接口的形状，但不包含业务决策：
- StepFun: 对话、分词计数、文件上传/状态/内容、向量库创建与绑定
- Dify: chat-messages 流式对话
- OpenAI 兼容接口: 通过 openai SDK 的 with_streaming_response 拿到原始行流

所有非 2xx 响应统一抛出 ProviderError（携带上游状态码），网络错误抛出
status_code=None 的 ProviderError。

使用示例：
    client = ProviderClient.from_settings(settings, "stepfun")
    total = await client.count_tokens("step-1-flash", messages)
"""

import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx
from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from app.config import Settings
from app.exceptions import ProviderError

logger = logging.getLogger(__name__)

EVENT_STREAM = "text/event-stream"
JSON_CONTENT = "application/json"


@dataclass
class UpstreamStream:
    """
    已建立且状态码为 2xx 的上游响应

    lines 为逐行迭代器（生产者），close 释放底层连接。
    """
    status_code: int
    lines: AsyncIterator[str]
    close: Callable[[], Awaitable[None]]


class ProviderClient:
    """基于 httpx 的通用上游客户端（StepFun / Dify）"""

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
        name: str = "stepfun",
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport
        self.name = name

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        provider: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ProviderClient":
        config = settings.get_provider_config(provider)
        return cls(
            base_url=config["base_url"],
            api_key=config["api_key"],
            timeout=settings.provider_timeout,
            transport=transport,
            name=config["provider"],
        )

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise ProviderError(f"{self.name.upper()}_API_KEY 未配置", status_code=500)
        return {"Authorization": f"Bearer {self.api_key}"}

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = self._headers()
        try:
            async with self._new_client() as client:
                response = await client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{self.name} 请求失败 {method} {path}: {e}")
            raise ProviderError(f"{self.name} 请求失败", detail=str(e)) from e

        if not response.is_success:
            logger.warning(
                f"{self.name} 返回错误 {method} {path} - {response.status_code}: {response.text[:500]}"
            )
            raise ProviderError(
                f"{self.name} 返回错误状态码 {response.status_code}",
                status_code=response.status_code,
                detail=response.text,
            )
        return response

    # ==================== 分词计数 ====================

    async def count_tokens(self, model: str, messages: list[dict[str, Any]]) -> int:
        """调用上游分词接口，返回 data.total_tokens"""
        response = await self._request(
            "POST",
            "/token/count",
            json={"model": model, "messages": messages},
        )
        data = response.json().get("data") or {}
        total = data.get("total_tokens")
        if total is None:
            raise ProviderError("分词接口未返回 total_tokens", detail=response.text)
        logger.debug(f"token count model={model} total={total}")
        return int(total)

    # ==================== 文件 ====================

    async def upload_file(
        self,
        filename: str,
        content: bytes,
        purpose: str,
        mime_type: str | None = None,
    ) -> dict[str, Any]:
        """上传文件，返回上游文件对象（至少包含 id）"""
        response = await self._request(
            "POST",
            "/files",
            data={"purpose": purpose},
            files={"file": (filename, content, mime_type or "application/octet-stream")},
        )
        body = response.json()
        if not body.get("id"):
            raise ProviderError("上传文件响应缺少 id", detail=response.text)
        logger.info(f"文件已上传到 {self.name}: {filename} -> {body['id']} ({purpose})")
        return body

    async def get_file_status(self, file_id: str) -> str:
        response = await self._request("GET", f"/files/{file_id}")
        return response.json().get("status", "")

    async def get_file_content(self, file_id: str) -> str:
        """获取上游提取后的文件原始文本"""
        response = await self._request("GET", f"/files/{file_id}/content")
        return response.text

    # ==================== 向量库 ====================

    async def create_vector_store(self, name: str) -> str:
        response = await self._request("POST", "/vector_stores", json={"name": name})
        vector_store_id = response.json().get("id")
        if not vector_store_id:
            raise ProviderError("创建向量库响应缺少 id", detail=response.text)
        return vector_store_id

    async def bind_files(self, vector_store_id: str, file_ids: list[str]) -> dict[str, Any]:
        """将上游文件绑定到向量库（multipart 字段 file_ids）"""
        response = await self._request(
            "POST",
            f"/vector_stores/{vector_store_id}/files",
            files={"file_ids": (None, ",".join(file_ids))},
        )
        logger.info(f"文件已绑定到向量库 {vector_store_id}: {file_ids}")
        try:
            return response.json()
        except ValueError:
            return {}

    # ==================== 对话 ====================

    async def open_stream(self, path: str, body: dict[str, Any]) -> UpstreamStream:
        """
        发起对话请求并保持连接

        非 2xx 时读完响应体、记录日志并抛出 ProviderError，此时尚未向客户端发送任何字节。
        """
        headers = self._headers()
        client = self._new_client()
        request = client.build_request("POST", path, json=body, headers=headers)
        logger.debug(f"{self.name} 请求报文: {body}")
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            logger.error(f"{self.name} 对话请求失败: {e}")
            raise ProviderError(f"{self.name} 请求失败", detail=str(e)) from e

        if not response.is_success:
            await response.aread()
            detail = response.text
            await response.aclose()
            await client.aclose()
            logger.warning(f"{self.name} 对话返回错误 {response.status_code}: {detail[:500]}")
            raise ProviderError(
                f"{self.name} 返回错误状态码 {response.status_code}",
                status_code=response.status_code,
                detail=detail,
            )

        async def close() -> None:
            await response.aclose()
            await client.aclose()

        return UpstreamStream(
            status_code=response.status_code,
            lines=response.aiter_lines(),
            close=close,
        )


@lru_cache(maxsize=8)
def _get_openai_compatible_client(api_key: str | None, base_url: str | None, timeout: float) -> AsyncOpenAI:
    """获取 OpenAI 兼容客户端"""
    return AsyncOpenAI(
        api_key=api_key or "dummy",
        base_url=base_url,
        timeout=timeout,
        max_retries=0,
    )


class OpenAICompatibleClient:
    """
    OpenAI 兼容接口的对话客户端

    使用 with_streaming_response 获取原始响应行，保持与其它提供商一致的逐行转发。
    """

    def __init__(self, client: AsyncOpenAI):
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAICompatibleClient":
        if not settings.openai_api_key:
            raise ProviderError("OPENAI_API_KEY 未配置", status_code=500)
        if not settings.openai_api_base:
            raise ProviderError("OPENAI_API_BASE 未配置", status_code=500)
        return cls(
            _get_openai_compatible_client(
                settings.openai_api_key,
                settings.openai_api_base,
                settings.provider_timeout,
            )
        )

    async def open_stream(self, body: dict[str, Any]) -> UpstreamStream:
        stack = AsyncExitStack()
        logger.debug(f"openai 请求报文: {body}")
        try:
            response = await stack.enter_async_context(
                self.client.chat.completions.with_streaming_response.create(**body)
            )
        except APIStatusError as e:
            await stack.aclose()
            logger.warning(f"openai 对话返回错误 {e.status_code}: {e.message}")
            raise ProviderError(
                f"openai 返回错误状态码 {e.status_code}",
                status_code=e.status_code,
                detail=e.message,
            ) from e
        except APIConnectionError as e:
            await stack.aclose()
            logger.error(f"openai 对话请求失败: {e}")
            raise ProviderError("openai 请求失败", detail=str(e)) from e

        return UpstreamStream(
            status_code=response.status_code,
            lines=response.iter_lines(),
            close=stack.aclose,
        )
