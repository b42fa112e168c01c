"""
消息组装测试

使用内存数据库、临时目录存储和 FakeStepFun 上游替身。
"""

import base64

import pytest

from app.exceptions import UploadedFileNotFoundError
from app.models import ProviderFile, UploadedFile
from app.schemas.chat import ChatMessage, ChatRequest
from app.services.ingestion import FileIngestionWorkflow
from app.services.message_assembler import (
    DEFAULT_SYSTEM_PROMPTS,
    OPENAI_POLICY,
    RETRIEVAL_PROMPT_TEMPLATE,
    STEPFUN_POLICY,
    WEB_SEARCH_DESCRIPTION,
    MessageAssembler,
    insert_file_contents,
)


@pytest.fixture
def assembler(gateway, storage, stepfun_client, test_settings) -> MessageAssembler:
    workflow = FileIngestionWorkflow(gateway, storage, stepfun_client, test_settings)
    return MessageAssembler(gateway, storage, stepfun_client, workflow)


async def store_file(gateway, storage, filename: str, content: bytes, mime: str | None) -> UploadedFile:
    stored = await storage.save("alice", filename, content)
    async with gateway.transaction():
        return await gateway.add_uploaded_file(
            UploadedFile(
                filename=filename,
                file_path=stored.relative_path,
                file_type=mime,
                status="uploaded",
                username="alice",
                size=len(content),
            )
        )


class TestSystemAndHistory:

    @pytest.mark.asyncio
    async def test_stepfun_always_has_system(self, assembler):
        result = await assembler.assemble(ChatRequest(query="你好"), STEPFUN_POLICY)
        assert result.messages == [
            {"role": "system", "content": DEFAULT_SYSTEM_PROMPTS["balanced"]},
            {"role": "user", "content": "你好"},
        ]
        assert result.tools == []

    @pytest.mark.asyncio
    async def test_custom_system_prompt(self, assembler):
        payload = ChatRequest(query="q", system_prompt="你是法律顾问", performance_level="advanced")
        result = await assembler.assemble(payload, STEPFUN_POLICY)
        assert result.messages[0] == {"role": "system", "content": "你是法律顾问"}

    @pytest.mark.asyncio
    async def test_openai_system_only_for_fast(self, assembler):
        fast = await assembler.assemble(ChatRequest(query="q", performance_level="fast"), OPENAI_POLICY)
        assert fast.messages[0]["role"] == "system"
        assert fast.messages[0]["content"] == DEFAULT_SYSTEM_PROMPTS["fast"]

        balanced = await assembler.assemble(ChatRequest(query="q", performance_level="balanced"), OPENAI_POLICY)
        assert [m["role"] for m in balanced.messages] == ["user"]

    @pytest.mark.asyncio
    async def test_history_skips_empty_entries(self, assembler):
        payload = ChatRequest(
            query="第三个问题",
            conversation_history=[
                ChatMessage(role="user", content="第一个问题"),
                ChatMessage(role="assistant", content=""),
                ChatMessage(role="", content="孤立内容"),
                ChatMessage(role="assistant", content="第一个回答"),
            ],
        )
        result = await assembler.assemble(payload, STEPFUN_POLICY)
        assert [m["content"] for m in result.messages[1:]] == ["第一个问题", "第一个回答", "第三个问题"]


class TestFileContents:

    def test_insert_at_odd_positions(self):
        messages = [{"role": "system", "content": "s"}, {"role": "user", "content": "q"}]
        insert_file_contents(messages, ["c1", "c2", "c3"])
        assert [m["content"] for m in messages] == ["s", "c1", "q", "c2", "c3"]
        assert all(m["role"] == "user" for m in messages[1:])

    def test_empty_content_does_not_advance(self):
        messages = [{"role": "system", "content": "s"}, {"role": "user", "content": "q"}]
        insert_file_contents(messages, ["", "c2"])
        assert [m["content"] for m in messages] == ["s", "c2", "q"]

    @pytest.mark.asyncio
    async def test_vector_file_contents_fetched(self, assembler, stepfun):
        stepfun.file_contents = {"f1": "合同正文", "f2": "附件正文"}
        payload = ChatRequest(query="付款条款？", vector_file_ids=["f1", "f2"])
        result = await assembler.assemble(payload, STEPFUN_POLICY)
        assert [m["content"] for m in result.messages] == [
            DEFAULT_SYSTEM_PROMPTS["balanced"],
            "合同正文",
            "付款条款？",
            "附件正文",
        ]
        assert len(stepfun.calls("GET", "/files/")) == 2

    @pytest.mark.asyncio
    async def test_file_attachment_is_extracted(self, assembler, gateway, storage, stepfun):
        uploaded = await store_file(gateway, storage, "report.txt", b"quarterly numbers", "text/plain")
        stepfun.file_contents = {"file-1": "quarterly numbers"}

        payload = ChatRequest(query="总结一下", file_type="file", file_ids=[uploaded.id])
        result = await assembler.assemble(payload, STEPFUN_POLICY)

        assert result.vector_file_ids == ["file-1"]
        assert result.messages[1] == {"role": "user", "content": "quarterly numbers"}
        assert result.messages[-1] == {"role": "user", "content": "总结一下"}

        provider_file = await gateway.session.get(ProviderFile, "file-1")
        assert provider_file.purpose == "file-extract"
        assert provider_file.knowledge_base_id is None
        assert uploaded.status == "completed"


class TestImages:

    @pytest.mark.asyncio
    async def test_image_parts(self, assembler, gateway, storage):
        first = await store_file(gateway, storage, "a.png", b"\x89PNGfirst", "image/png")
        second = await store_file(gateway, storage, "b.jpg", b"jpegdata", None)

        payload = ChatRequest(query="这两张图有什么区别", file_type="img", file_ids=[first.id, second.id])
        result = await assembler.assemble(payload, STEPFUN_POLICY)

        parts = result.messages[-1]["content"]
        assert [p["type"] for p in parts] == ["image_url", "image_url", "text"]
        assert parts[0]["image_url"] == {
            "url": "data:image/png;base64," + base64.b64encode(b"\x89PNGfirst").decode(),
            "detail": "high",
        }
        assert parts[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")
        assert parts[2] == {"type": "text", "text": "这两张图有什么区别"}

    @pytest.mark.asyncio
    async def test_missing_image_raises(self, assembler):
        payload = ChatRequest(query="q", file_type="image", file_ids=["does-not-exist"])
        with pytest.raises(UploadedFileNotFoundError):
            await assembler.assemble(payload, STEPFUN_POLICY)


class TestTools:

    @pytest.mark.asyncio
    async def test_stepfun_tools(self, assembler):
        payload = ChatRequest(query="q", web_search=True, vector_store_id="vs_1", description="产品手册")
        result = await assembler.assemble(payload, STEPFUN_POLICY)
        assert result.tools == [
            {"type": "web_search", "function": {"description": WEB_SEARCH_DESCRIPTION}},
            {
                "type": "retrieval",
                "function": {
                    "description": "产品手册",
                    "options": {"vector_store_id": "vs_1", "prompt_template": RETRIEVAL_PROMPT_TEMPLATE},
                },
            },
        ]
        assert "{{knowledge}}" in RETRIEVAL_PROMPT_TEMPLATE
        assert "{{query}}" in RETRIEVAL_PROMPT_TEMPLATE

    @pytest.mark.asyncio
    async def test_openai_has_no_retrieval(self, assembler):
        payload = ChatRequest(query="q", web_search=True, vector_store_id="vs_1", performance_level="fast")
        result = await assembler.assemble(payload, OPENAI_POLICY)
        assert [t["type"] for t in result.tools] == ["web_search"]

    @pytest.mark.asyncio
    async def test_blank_vector_store_ignored(self, assembler):
        result = await assembler.assemble(ChatRequest(query="q", vector_store_id="  "), STEPFUN_POLICY)
        assert result.tools == []
