"""
知识库管理接口

创建、更新与列出知识库。远端动作（创建向量库 / 本地生成 ID）由 KnowledgeBaseService
按 model_owner 选择策略完成。
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.api.deps import SERVICE_ERRORS, get_kb_service, to_http_exception
from app.auth.jwt_session import get_current_username
from app.schemas import KnowledgeBaseCreate, KnowledgeBaseResponse, KnowledgeBaseUpdate
from app.services.knowledge_base import KnowledgeBaseService

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_response(result) -> KnowledgeBaseResponse:
    response = KnowledgeBaseResponse.model_validate(result.kb)
    response.message = result.message
    return response


@router.post("/create-vector-store", response_model=KnowledgeBaseResponse)
async def create_vector_store(
    payload: KnowledgeBaseCreate,
    username: str = Depends(get_current_username),
    service: KnowledgeBaseService = Depends(get_kb_service),
):
    """
    创建知识库

    - 名称已存在且已有 ID：400
    - 名称已存在但仍为 pending：更新字段并重新获取 ID
    - 提供商尚未实现：返回 200，id 为 null，message 说明原因
    """
    try:
        result = await service.create(payload, creator=username)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e
    return _to_response(result)


@router.put("/update-vector-store/{name}", response_model=KnowledgeBaseResponse)
async def update_vector_store(
    name: str,
    payload: KnowledgeBaseUpdate,
    _: str = Depends(get_current_username),
    service: KnowledgeBaseService = Depends(get_kb_service),
):
    try:
        result = await service.update(name, payload)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e
    return _to_response(result)


@router.get("/get-data")
async def get_data(
    data_type: str = Query(..., alias="type", description="knowledge_bases / other_data"),
    _: str = Depends(get_current_username),
    service: KnowledgeBaseService = Depends(get_kb_service),
):
    """按 type 返回数据；knowledge_bases 为知识库列表，local 提供商排在最前"""
    if data_type == "knowledge_bases":
        kbs = await service.list_knowledge_bases()
        return [KnowledgeBaseResponse.model_validate(kb) for kb in kbs]
    if data_type == "other_data":
        return {"message": "其他数据获取接口"}
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"code": "VALIDATION_ERROR", "detail": "Invalid data type"},
    )
