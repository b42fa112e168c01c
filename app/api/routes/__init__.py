"""
API 路由汇总

将业务子路由注册到主路由器，由 app.main 挂载到 settings.api_prefix 下。

路由模块说明：
- health.py : 健康检查接口（不带前缀、无需登录）
- kb.py     : 知识库管理（创建、更新、列表）
- chat.py   : 对话转发（stepfun / openai-compatible / dify）
- files.py  : 文件上传、重新触发上游处理、知识库文件列表
- user.py   : 会话用户校验
"""

from fastapi import APIRouter

from app.api.routes import chat, files, health, kb, user

# 主路由器，包含所有业务端点
api_router = APIRouter()

# 注册各子路由，tags 用于 API 文档分组
api_router.include_router(kb.router, tags=["knowledge-bases"])
api_router.include_router(chat.router, tags=["chat"])
api_router.include_router(files.router, tags=["files"])
api_router.include_router(user.router, tags=["user"])

__all__ = ["api_router", "health"]
