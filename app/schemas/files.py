"""文件上传与上游处理相关的请求/响应模型"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class FileUploadResponse(BaseModel):
    """knowledge-uploads-file 响应"""
    file_id: str
    message: str
    status: str | None = None
    provider_file_id: str | None = None
    file_web_path: str | None = None


class TriggerUploadRequest(BaseModel):
    """trigger-external-upload 请求，vectorStoreID 沿用前端字段名"""
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_owner: str = Field(..., min_length=1)
    file_id: str = Field(..., min_length=1)
    purpose: str = Field(..., min_length=1)
    vector_store_id: str = Field(..., alias="vectorStoreID", min_length=1)


class TriggerUploadResponse(BaseModel):
    file_id: str
    provider_file_id: str
    status: str
    message: str


class KnowledgeBaseFileResponse(BaseModel):
    """知识库文件列表项"""
    file_id: str
    filename: str
    file_type: str | None = None
    size: int
    description: str | None = None
    status: str
    uploaded_at: datetime
    provider_file_id: str | None = None
    provider_status: str | None = None
    file_web_path: str
