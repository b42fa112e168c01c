"""
数据模式层 (Schemas)

使用 Pydantic 定义 API 的请求和响应模型：
- 自动数据验证
- 自动生成 OpenAPI 文档
- 类型安全的序列化/反序列化
"""

from app.schemas.chat import (
    ChatCompletionChunk,
    ChatMessage,
    ChatRequest,
    ChunkChoice,
    ChunkDelta,
    ChunkUsage,
    DifyChatRequest,
    DifyFile,
)
from app.schemas.files import (
    FileUploadResponse,
    KnowledgeBaseFileResponse,
    TriggerUploadRequest,
    TriggerUploadResponse,
)
from app.schemas.kb import (
    KnowledgeBaseCreate,
    KnowledgeBaseResponse,
    KnowledgeBaseUpdate,
)

__all__ = [
    "ChatCompletionChunk",
    "ChatMessage",
    "ChatRequest",
    "ChunkChoice",
    "ChunkDelta",
    "ChunkUsage",
    "DifyChatRequest",
    "DifyFile",
    "FileUploadResponse",
    "KnowledgeBaseCreate",
    "KnowledgeBaseFileResponse",
    "KnowledgeBaseResponse",
    "KnowledgeBaseUpdate",
    "TriggerUploadRequest",
    "TriggerUploadResponse",
]
