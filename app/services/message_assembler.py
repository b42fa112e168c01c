"""
消息组装 (MessageAssembler)

构建发往上游的有序消息列表：
    [system]  按提供商/档位策略决定是否包含，内容为调用方 system_prompt 或档位默认提示词
    history   原样追加，跳过 role 或 content 为空的条目
    user      image: 每个附件一段 image_url（base64 data URL，detail=high），最后一段 text
              file:  先由 FileIngestionWorkflow 上传提取，得到的上游文件 ID 追加到 vector_file_ids
              其他:   纯文本
    文件内容   每个 vector_file_id 的原文作为一条 user 消息，依次插入到下标 1, 3, 5, …

工具列表：web_search（按请求开启）、retrieval（带向量库 ID 与固定提示模板，仅 StepFun）。
"""

import base64
import logging
import mimetypes
from dataclasses import dataclass, field
from typing import Any

from app.db.gateway import PersistenceGateway
from app.exceptions import UploadedFileNotFoundError
from app.infra.file_storage import LocalFileStorage
from app.infra.provider_client import ProviderClient
from app.schemas.chat import ChatRequest
from app.services.ingestion import FileIngestionWorkflow
from app.services.model_selector import (
    PERFORMANCE_ADVANCED,
    PERFORMANCE_BALANCED,
    PERFORMANCE_FAST,
    normalize_file_type,
)

logger = logging.getLogger(__name__)


# 各档位默认系统提示词
DEFAULT_SYSTEM_PROMPTS = {
    PERFORMANCE_FAST: "你是一个反应迅速的 AI 助手，请用简洁、准确的语言直接回答用户的问题。",
    PERFORMANCE_BALANCED: """你是一个专业的 AI 助手。请根据用户的问题和提供的资料给出准确、有条理的回答。

要求：
1. 如果提供了文档内容，优先依据文档回答，不要编造
2. 文档中没有相关信息时，请诚实说明
3. 输出内容排版清晰，适当使用换行和列表""",
    PERFORMANCE_ADVANCED: """你是一个严谨的资深分析助手。请对用户的问题进行深入、全面的分析后再作答。

要求：
1. 先理解问题背景，再分步骤推理
2. 引用文档内容时指明出处
3. 结论要明确，必要时给出可选方案与取舍""",
}

WEB_SEARCH_DESCRIPTION = "这个工具 web_search 可以用来搜索互联网的信息"

RETRIEVAL_PROMPT_TEMPLATE = (
    "从文档 {{knowledge}} 中找到问题 {{query}} 的答案。"
    "根据文档内容中的语句找到答案，如果文档中没有答案则告诉用户找不到相关信息；"
)


@dataclass(frozen=True)
class ChatPolicy:
    """
    提供商的消息组装策略

    system_tiers 为 None 表示总是包含系统消息，否则只在这些档位包含。
    """
    name: str
    system_tiers: frozenset[str] | None = None
    retrieval_tool: bool = True

    def wants_system(self, performance_level: str | None) -> bool:
        if self.system_tiers is None:
            return True
        return (performance_level or "").strip().lower() in self.system_tiers


STEPFUN_POLICY = ChatPolicy(name="stepfun")
OPENAI_POLICY = ChatPolicy(name="openai", system_tiers=frozenset({PERFORMANCE_FAST}), retrieval_tool=False)


@dataclass
class AssembledChat:
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] = field(default_factory=list)
    vector_file_ids: list[str] = field(default_factory=list)


def build_system_message(payload: ChatRequest) -> dict[str, Any]:
    tier = (payload.performance_level or PERFORMANCE_BALANCED).strip().lower()
    content = payload.system_prompt or DEFAULT_SYSTEM_PROMPTS.get(tier, DEFAULT_SYSTEM_PROMPTS[PERFORMANCE_BALANCED])
    return {"role": "system", "content": content}


def build_history(payload: ChatRequest) -> list[dict[str, Any]]:
    return [
        {"role": m.role, "content": m.content}
        for m in payload.conversation_history
        if m.role and m.content
    ]


def insert_file_contents(messages: list[dict[str, Any]], contents: list[str]) -> list[dict[str, Any]]:
    """
    在下标 1, 3, 5, … 处依次插入文件内容消息

    空内容跳过且不占位；插入点超出列表长度时追加到末尾。
    """
    insert_index = 1
    for text in contents:
        if not text:
            continue
        messages.insert(insert_index, {"role": "user", "content": text})
        insert_index += 2
    return messages


def build_tools(payload: ChatRequest, policy: ChatPolicy) -> list[dict[str, Any]]:
    tools: list[dict[str, Any]] = []
    if payload.web_search:
        tools.append({
            "type": "web_search",
            "function": {"description": WEB_SEARCH_DESCRIPTION},
        })
    vector_store_id = (payload.vector_store_id or "").strip()
    if policy.retrieval_tool and vector_store_id:
        tools.append({
            "type": "retrieval",
            "function": {
                "description": payload.description or "",
                "options": {
                    "vector_store_id": vector_store_id,
                    "prompt_template": RETRIEVAL_PROMPT_TEMPLATE,
                },
            },
        })
    return tools


class MessageAssembler:
    def __init__(
        self,
        gateway: PersistenceGateway,
        storage: LocalFileStorage,
        content_client: ProviderClient,
        ingestion: FileIngestionWorkflow,
    ):
        self.gateway = gateway
        self.storage = storage
        self.content_client = content_client
        self.ingestion = ingestion

    async def assemble(self, payload: ChatRequest, policy: ChatPolicy) -> AssembledChat:
        file_type = normalize_file_type(payload.file_type)
        vector_file_ids = list(payload.vector_file_ids)

        messages: list[dict[str, Any]] = []
        if policy.wants_system(payload.performance_level):
            messages.append(build_system_message(payload))
        messages.extend(build_history(payload))

        if file_type == "image" and payload.file_ids:
            messages.append(await self._build_image_message(payload))
        else:
            if file_type == "file" and payload.file_ids:
                vector_file_ids.extend(await self.ingestion.prepare_chat_files(payload.file_ids))
            if payload.query:
                messages.append({"role": "user", "content": payload.query})

        if vector_file_ids:
            contents = [await self.content_client.get_file_content(fid) for fid in vector_file_ids]
            insert_file_contents(messages, contents)

        return AssembledChat(
            messages=messages,
            tools=build_tools(payload, policy),
            vector_file_ids=vector_file_ids,
        )

    async def _build_image_message(self, payload: ChatRequest) -> dict[str, Any]:
        files = await self.gateway.get_uploaded_files(payload.file_ids)
        found = {f.id for f in files}
        missing = [fid for fid in payload.file_ids if fid not in found]
        if missing:
            raise UploadedFileNotFoundError(f"上传的文件未找到: {', '.join(missing)}")

        parts: list[dict[str, Any]] = []
        for uploaded in files:
            raw = await self.storage.read(uploaded.file_path)
            mime = uploaded.file_type or mimetypes.guess_type(uploaded.filename)[0] or "image/jpeg"
            data_url = f"data:{mime};base64,{base64.b64encode(raw).decode('ascii')}"
            parts.append({
                "type": "image_url",
                "image_url": {"url": data_url, "detail": "high"},
            })
        parts.append({"type": "text", "text": payload.query})
        logger.debug(f"图片消息: {len(files)} 张图片")
        return {"role": "user", "content": parts}
