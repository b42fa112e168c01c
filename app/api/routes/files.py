"""
文件接口

- POST /knowledge-uploads-file:      上传文件到本地并（按需）交给提供商向量化
- POST /trigger-external-upload:     对已上传的文件重新触发上游处理
- GET  /knowledge-bases/{id}/files:  列出知识库下的文件及上游处理状态
"""

import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile

from app.api.deps import (
    SERVICE_ERRORS,
    get_gateway,
    get_storage,
    get_workflow,
    to_http_exception,
)
from app.auth.jwt_session import get_current_username
from app.db.gateway import PersistenceGateway
from app.infra.file_storage import LocalFileStorage
from app.schemas import (
    FileUploadResponse,
    KnowledgeBaseFileResponse,
    TriggerUploadRequest,
    TriggerUploadResponse,
)
from app.services.ingestion import FileIngestionWorkflow

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/knowledge-uploads-file", response_model=FileUploadResponse)
async def knowledge_uploads_file(
    file: UploadFile = File(..., description="要上传的文件"),
    vector_store_id: str = Form(..., description="目标知识库 ID，对话附件使用 local"),
    file_description: str | None = Form(default=None, description="文件描述"),
    model_owner: str = Form(..., description="知识库所属提供商"),
    username: str = Depends(get_current_username),
    workflow: FileIngestionWorkflow = Depends(get_workflow),
):
    """
    上传文件

    同一用户重复上传同名同大小的文件时直接复用历史记录，不会再次写盘或上传。
    """
    content = await file.read()
    filename = file.filename or "unnamed"
    logger.info(
        f"收到文件上传: user={username} file={filename} size={len(content)} "
        f"vector_store={vector_store_id} owner={model_owner}"
    )
    try:
        outcome = await workflow.ingest_upload(
            username=username,
            filename=filename,
            content=content,
            vector_store_id=vector_store_id,
            model_owner=model_owner,
            description=file_description,
            mime_type=file.content_type,
        )
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return FileUploadResponse(
        file_id=outcome.file_id,
        message=outcome.message,
        status=outcome.status,
        provider_file_id=outcome.provider_file_id,
        file_web_path=outcome.file_web_path,
    )


@router.post("/trigger-external-upload", response_model=TriggerUploadResponse)
async def trigger_external_upload(
    payload: TriggerUploadRequest,
    _: str = Depends(get_current_username),
    workflow: FileIngestionWorkflow = Depends(get_workflow),
):
    try:
        uploaded, provider_file = await workflow.trigger_external_upload(
            model_owner=payload.model_owner,
            file_id=payload.file_id,
            purpose=payload.purpose,
            vector_store_id=payload.vector_store_id,
        )
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return TriggerUploadResponse(
        file_id=uploaded.id,
        provider_file_id=provider_file.id,
        status=uploaded.status,
        message="External upload triggered successfully",
    )


@router.get("/knowledge-bases/{kb_id}/files", response_model=list[KnowledgeBaseFileResponse])
async def list_knowledge_base_files(
    kb_id: str,
    _: str = Depends(get_current_username),
    gateway: PersistenceGateway = Depends(get_gateway),
    storage: LocalFileStorage = Depends(get_storage),
):
    rows = await gateway.list_knowledge_base_files(kb_id)
    return [
        KnowledgeBaseFileResponse(
            file_id=row.file_id,
            filename=row.filename,
            file_type=row.file_type,
            size=row.size,
            description=row.description,
            status=row.status,
            uploaded_at=row.uploaded_at,
            provider_file_id=row.provider_file_id,
            provider_status=row.provider_status,
            file_web_path=storage.public_url(row.file_path),
        )
        for row in rows
    ]
