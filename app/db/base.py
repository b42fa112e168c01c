"""
SQLAlchemy ORM 基类定义

所有数据库模型（知识库、上传文件、上游文件、关联关系、用户）都继承自 Base。
Base.metadata 被 init_models() 与 Alembic 迁移共同使用。
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """声明式基类，SQLAlchemy 2.0 风格"""

    # 插入/更新后立即取回数据库生成的默认值（created_at 等），
    # 异步会话中不能在访问属性时再懒加载
    __mapper_args__ = {"eager_defaults": True}
