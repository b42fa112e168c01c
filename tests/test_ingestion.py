"""
文件摄取流程测试

覆盖：
- 新文件：本地存储 → 上传 retrieval → 绑定 → processing
- 去重：同名同大小同用户直接复用，不重复写盘/上传
- 已有上游记录时的 completed / processing / uploaded 分支
- 上游失败标记 failed
- 轮询超时与失败
- trigger_external_upload 的各分支
"""

import pytest
from sqlalchemy import func, select

from app.exceptions import (
    FilePollTimeoutError,
    ProviderError,
    ProviderNotImplementedError,
    UnsupportedModelOwnerError,
    UploadedFileNotFoundError,
)
from app.models import FileKnowledgeRelation, ProviderFile, UploadedFile
from app.services.ingestion import (
    MSG_ALREADY_VECTORIZED,
    MSG_BOUND_NOW,
    MSG_REUSED,
    MSG_STILL_PROCESSING,
    MSG_STORED,
    MSG_VECTORIZING,
    FileIngestionWorkflow,
    is_text_file,
    poll_file_status,
)


@pytest.fixture
def workflow(gateway, storage, stepfun_client, test_settings) -> FileIngestionWorkflow:
    return FileIngestionWorkflow(gateway, storage, stepfun_client, test_settings)


async def upload(workflow, filename="manual.pdf", content=b"%PDF-1.4 manual", vector_store_id="vs_1", owner="stepfun"):
    return await workflow.ingest_upload(
        username="alice",
        filename=filename,
        content=content,
        vector_store_id=vector_store_id,
        model_owner=owner,
        description="说明书",
        mime_type="application/pdf",
    )


async def count_rows(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


def stored_files(storage) -> list:
    return [p for p in storage.root.rglob("*") if p.is_file()]


class TestNewUpload:

    @pytest.mark.asyncio
    async def test_stepfun_upload_and_bind(self, workflow, gateway, storage, stepfun):
        outcome = await upload(workflow)

        assert outcome.message == MSG_VECTORIZING
        assert outcome.status == "processing"
        assert outcome.provider_file_id == "file-1"
        assert outcome.file_web_path.startswith("https://files.test/alice/")

        uploaded = await gateway.get_uploaded_file(outcome.file_id)
        assert uploaded.status == "processing"
        assert uploaded.provider_file_id == "file-1"
        assert uploaded.provider_vector_store_id == "vs_1"

        provider_file = await gateway.session.get(ProviderFile, "file-1")
        assert provider_file.purpose == "retrieval"
        assert provider_file.knowledge_base_id == "vs_1"
        assert provider_file.status == "processing"

        bind_calls = stepfun.calls("POST", "/vector_stores/vs_1/files")
        assert len(bind_calls) == 1
        assert b"file-1" in bind_calls[0].content
        assert len(stored_files(storage)) == 1

    @pytest.mark.asyncio
    async def test_local_sentinel_only_stores(self, workflow, gateway, stepfun):
        outcome = await upload(workflow, filename="photo.png", content=b"png", vector_store_id="local")
        assert outcome.message == MSG_STORED
        assert stepfun.requests == []
        assert await count_rows(gateway.session, FileKnowledgeRelation) == 0

    @pytest.mark.asyncio
    async def test_local_owner_records_relation_without_upload(self, workflow, gateway, stepfun):
        outcome = await upload(workflow, vector_store_id="docs120241201093015", owner="local")
        assert outcome.message == MSG_STORED
        assert stepfun.requests == []
        assert await count_rows(gateway.session, FileKnowledgeRelation) == 1

    @pytest.mark.asyncio
    async def test_upload_failure_marks_failed(self, workflow, gateway, stepfun):
        stepfun.fail[("POST", "/files")] = 500
        with pytest.raises(ProviderError) as exc_info:
            await upload(workflow)
        assert exc_info.value.status_code == 500

        uploaded = (await gateway.session.execute(select(UploadedFile))).scalar_one()
        assert uploaded.status == "failed"

    @pytest.mark.asyncio
    async def test_bind_failure_marks_failed(self, workflow, gateway, stepfun):
        stepfun.fail[("POST", "/vector_stores/")] = 400
        with pytest.raises(ProviderError):
            await upload(workflow)

        uploaded = (await gateway.session.execute(select(UploadedFile))).scalar_one()
        assert uploaded.status == "failed"
        provider_file = await gateway.session.get(ProviderFile, "file-1")
        assert provider_file.status == "uploaded"

    @pytest.mark.asyncio
    async def test_unimplemented_owner(self, workflow):
        with pytest.raises(ProviderNotImplementedError):
            await upload(workflow, owner="moonshot")

    @pytest.mark.asyncio
    async def test_unknown_owner(self, workflow):
        with pytest.raises(UnsupportedModelOwnerError):
            await upload(workflow, owner="acme")


class TestDeduplication:

    @pytest.mark.asyncio
    async def test_same_file_same_kb_not_uploaded_twice(self, workflow, gateway, storage, stepfun):
        first = await upload(workflow)
        second = await upload(workflow)

        assert second.file_id == first.file_id
        assert second.message == MSG_STILL_PROCESSING
        assert len(stepfun.calls("POST", "/files")) == 1
        assert len(stored_files(storage)) == 1

    @pytest.mark.asyncio
    async def test_completed_file_skipped(self, workflow, gateway, stepfun):
        first = await upload(workflow)
        provider_file = await gateway.session.get(ProviderFile, first.provider_file_id)
        async with gateway.transaction():
            await gateway.update_provider_file_status(provider_file, "completed")

        second = await upload(workflow)
        assert second.message == MSG_ALREADY_VECTORIZED
        assert len(stepfun.calls("POST", "/files")) == 1

    @pytest.mark.asyncio
    async def test_uploaded_but_unbound_is_bound_now(self, workflow, gateway, stepfun):
        stepfun.fail[("POST", "/vector_stores/")] = 503
        with pytest.raises(ProviderError):
            await upload(workflow)
        stepfun.fail.clear()

        outcome = await upload(workflow)
        assert outcome.message == MSG_BOUND_NOW
        assert outcome.provider_file_id == "file-1"
        assert len(stepfun.calls("POST", "/files")) == 1
        provider_file = await gateway.session.get(ProviderFile, "file-1")
        assert provider_file.status == "processing"

    @pytest.mark.asyncio
    async def test_failed_upload_is_retried(self, workflow, gateway, stepfun):
        stepfun.fail[("POST", "/files")] = 500
        with pytest.raises(ProviderError):
            await upload(workflow)
        stepfun.fail.clear()

        outcome = await upload(workflow)
        assert outcome.message == MSG_VECTORIZING
        assert outcome.provider_file_id == "file-1"

    @pytest.mark.asyncio
    async def test_same_file_new_kb_is_uploaded_for_that_kb(self, workflow, gateway, stepfun):
        first = await upload(workflow, vector_store_id="vs_1")
        second = await upload(workflow, vector_store_id="vs_2")

        assert second.file_id == first.file_id
        assert second.message == MSG_VECTORIZING
        assert len(stepfun.calls("POST", "/files")) == 2
        assert await count_rows(gateway.session, FileKnowledgeRelation) == 2

    @pytest.mark.asyncio
    async def test_non_text_file_reused(self, workflow, stepfun):
        first = await upload(workflow, filename="cat.png", content=b"png", vector_store_id="local")
        second = await upload(workflow, filename="cat.png", content=b"png", vector_store_id="vs_1")
        assert second.file_id == first.file_id
        assert second.message == MSG_REUSED
        assert stepfun.requests == []

    @pytest.mark.asyncio
    async def test_different_user_not_deduplicated(self, workflow, gateway):
        first = await upload(workflow, vector_store_id="local")
        other = await workflow.ingest_upload(
            username="bob",
            filename="manual.pdf",
            content=b"%PDF-1.4 manual",
            vector_store_id="local",
            model_owner="stepfun",
        )
        assert other.file_id != first.file_id


class TestPollFileStatus:

    @pytest.mark.asyncio
    async def test_returns_on_success(self, stepfun_client, stepfun):
        stepfun.file_statuses["file-9"] = ["processing", "processing", "success"]
        status = await poll_file_status(stepfun_client, "file-9", timeout=1, interval=0.01)
        assert status == "success"
        assert len(stepfun.calls("GET", "/files/file-9")) == 3

    @pytest.mark.asyncio
    async def test_timeout(self, stepfun_client, stepfun):
        stepfun.file_statuses["file-9"] = ["processing"]
        with pytest.raises(FilePollTimeoutError):
            await poll_file_status(stepfun_client, "file-9", timeout=0.05, interval=0.01)

    @pytest.mark.asyncio
    async def test_failed_status_raises(self, stepfun_client, stepfun):
        stepfun.file_statuses["file-9"] = ["failed"]
        with pytest.raises(ProviderError):
            await poll_file_status(stepfun_client, "file-9", timeout=1, interval=0.01)


class TestPrepareChatFiles:

    @pytest.mark.asyncio
    async def test_poll_timeout_marks_failed(self, workflow, gateway, stepfun):
        outcome = await upload(workflow, filename="notes.txt", content=b"notes", vector_store_id="local")
        stepfun.file_statuses["file-1"] = ["processing"]

        with pytest.raises(FilePollTimeoutError):
            await workflow.prepare_chat_files([outcome.file_id])

        uploaded = await gateway.get_uploaded_file(outcome.file_id)
        assert uploaded.status == "failed"

    @pytest.mark.asyncio
    async def test_reuses_successful_extract(self, workflow, stepfun):
        outcome = await upload(workflow, filename="notes.txt", content=b"notes", vector_store_id="local")
        assert await workflow.prepare_chat_files([outcome.file_id]) == ["file-1"]
        assert await workflow.prepare_chat_files([outcome.file_id]) == ["file-1"]
        assert len(stepfun.calls("POST", "/files")) == 1

    @pytest.mark.asyncio
    async def test_unknown_file(self, workflow):
        with pytest.raises(UploadedFileNotFoundError):
            await workflow.prepare_chat_files(["missing"])


class TestTriggerExternalUpload:

    @pytest.mark.asyncio
    async def test_stepfun_retrieval(self, workflow, gateway, stepfun):
        outcome = await upload(workflow, vector_store_id="local")
        uploaded, provider_file = await workflow.trigger_external_upload(
            model_owner="stepfun", file_id=outcome.file_id, purpose="retrieval", vector_store_id="vs_1",
        )
        assert provider_file.knowledge_base_id == "vs_1"
        assert provider_file.status == "processing"
        assert uploaded.status == "processing"
        assert len(stepfun.calls("POST", "/vector_stores/vs_1/files")) == 1

    @pytest.mark.asyncio
    async def test_local_file_extract(self, workflow, stepfun):
        outcome = await upload(workflow, vector_store_id="local")
        uploaded, provider_file = await workflow.trigger_external_upload(
            model_owner="local", file_id=outcome.file_id, purpose="file-extract", vector_store_id="local",
        )
        assert provider_file.purpose == "file-extract"
        assert provider_file.knowledge_base_id is None
        assert uploaded.status == "completed"
        assert stepfun.calls("GET", "/files/") == []

    @pytest.mark.asyncio
    async def test_unimplemented_owner(self, workflow):
        outcome = await upload(workflow, vector_store_id="local")
        with pytest.raises(ProviderNotImplementedError):
            await workflow.trigger_external_upload(
                model_owner="zhipu", file_id=outcome.file_id, purpose="retrieval", vector_store_id="vs_1",
            )

    @pytest.mark.asyncio
    async def test_invalid_combination(self, workflow):
        outcome = await upload(workflow, vector_store_id="local")
        with pytest.raises(UnsupportedModelOwnerError):
            await workflow.trigger_external_upload(
                model_owner="stepfun", file_id=outcome.file_id, purpose="file-extract", vector_store_id="vs_1",
            )

    @pytest.mark.asyncio
    async def test_unknown_file(self, workflow):
        with pytest.raises(UploadedFileNotFoundError):
            await workflow.trigger_external_upload(
                model_owner="stepfun", file_id="missing", purpose="retrieval", vector_store_id="vs_1",
            )


@pytest.mark.parametrize(
    "filename,expected",
    [("a.PDF", True), ("notes.md", True), ("photo.png", False), ("clip.mp4", False), ("noext", False)],
)
def test_is_text_file(filename, expected):
    assert is_text_file(filename) is expected
