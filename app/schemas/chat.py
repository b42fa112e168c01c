"""
对话相关 Schema

- ChatRequest: 前端发往 stepfun / openai-compatible 的统一请求体
- DifyChatRequest: Dify 透传请求体
- ChatCompletionChunk: OpenAI 兼容的流式分片信封，Dify 事件会被改写成这个形状
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    """历史消息；content 可以是字符串，也可以是多段内容列表"""

    role: str = Field(default="", description="角色")
    content: Any = Field(default="", description="消息内容")


class ChatRequest(BaseModel):
    """
    对话请求

    示例:
    ```json
    {
        "query": "这份合同的付款条款是什么？",
        "file_type": "file",
        "file_ids": ["3f2b..."],
        "performance_level": "balanced",
        "vector_store_id": "vs_123",
        "web_search": false
    }
    ```
    """

    query: str = Field(default="", description="用户问题")
    system_prompt: str | None = Field(default=None, description="自定义系统提示词")
    conversation_history: list[ChatMessage] = Field(default_factory=list, description="历史消息")
    file_type: str | None = Field(default=None, description="附件类型：image/img/file/video")
    file_ids: list[str] = Field(default_factory=list, description="本地上传文件 ID")
    vector_file_ids: list[str] = Field(default_factory=list, description="已在上游解析过的文件 ID")
    performance_level: str | None = Field(default=None, description="性能档位：fast/balanced/advanced")
    vector_store_id: str | None = Field(default=None, description="检索使用的向量库 ID")
    web_search: bool = Field(default=False, description="是否启用联网搜索")
    description: str | None = Field(default=None, description="检索工具描述")


class DifyFile(BaseModel):
    type: str = "image"
    transfer_method: str = "remote_url"
    url: str


class DifyChatRequest(BaseModel):
    """Dify chat-messages 请求，字段与 Dify 接口一致"""

    inputs: dict[str, Any] = Field(default_factory=dict)
    query: str = Field(..., min_length=1)
    response_mode: Literal["streaming", "blocking"] = "streaming"
    conversation_id: str | None = None
    user: str | None = None
    files: list[DifyFile] = Field(default_factory=list)


# ============================================================================
# Chat Completion Chunk（流式信封）
# ============================================================================


class ChunkDelta(BaseModel):
    role: str = "assistant"
    content: str = ""


class ChunkChoice(BaseModel):
    index: int = 0
    finish_reason: str | None = "stop"
    delta: ChunkDelta


class ChunkUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionChunk(BaseModel):
    id: str
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    created: int
    model: str
    choices: list[ChunkChoice]
    usage: ChunkUsage | None = None
