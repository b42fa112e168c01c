"""知识库相关的请求/响应模型

字段格式与长度在 KnowledgeBaseService 中校验，以便返回逐字段的 400 错误信息，
这里只声明字段本身。
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class KnowledgeBaseCreate(BaseModel):
    """创建知识库请求

    示例:
    ```json
    {
        "name": "docs1",
        "display_name": "产品文档",
        "description": "存放产品手册",
        "tags": "manual,product",
        "model_owner": "stepfun"
    }
    ```
    """
    model_config = ConfigDict(protected_namespaces=())

    name: str = Field(default="", description="知识库标识，字母数字下划线，不能以下划线开头")
    display_name: str = Field(default="", description="展示名称")
    description: str = Field(default="", description="描述信息（≤500）")
    tags: str = Field(default="", description="逗号分隔的标签（≤200）")
    model_owner: str = Field(default="", description="stepfun/zhipu/moonshot/baichuan/local")


class KnowledgeBaseUpdate(BaseModel):
    """更新知识库请求（name 与 model_owner 不可修改）"""
    display_name: str = Field(default="", description="展示名称")
    description: str = Field(default="", description="描述信息（≤500）")
    tags: str = Field(default="", description="逗号分隔的标签（≤200）")


class KnowledgeBaseResponse(BaseModel):
    """知识库响应"""
    id: str | None
    name: str
    display_name: str
    description: str | None = None
    tags: str | None = None
    model_owner: str
    creator_id: str | None = None
    created_at: datetime | None = None
    message: str | None = None

    # 允许从 ORM 对象构造
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())
