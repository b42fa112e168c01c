"""
数据模型层 (ORM Models)

数据模型关系图：
    KnowledgeBase (知识库)
       │
       ├── FileKnowledgeRelation (文件关联) ── UploadedFile (本地上传文件)
       │                                           │
       └── ProviderFile (上游文件) ────────────────┘

    User (用户，用于 validate-user)

核心概念：
- KnowledgeBase: 知识库，对应上游的向量库
- UploadedFile: 用户上传到本地存储的原始文件
- ProviderFile: 上游提供商侧的一次提取/向量化处理
- FileKnowledgeRelation: 文件与知识库的多对多关联
"""

from app.models.file_relation import FileKnowledgeRelation
from app.models.knowledge_base import KnowledgeBase
from app.models.provider_file import ProviderFile
from app.models.uploaded_file import UploadedFile
from app.models.user import User

__all__ = [
    "FileKnowledgeRelation",
    "KnowledgeBase",
    "ProviderFile",
    "UploadedFile",
    "User",
]
