"""
知识库对话网关 - 应用主包

包含以下子模块：
- api/        : API 路由和依赖注入
- auth/       : JWT 会话认证
- db/         : 数据库连接、会话管理与持久化网关
- models/     : SQLAlchemy ORM 数据模型
- schemas/    : Pydantic 请求/响应模式
- services/   : 业务逻辑（模型选择、消息组装、文件摄取、流式转发、知识库生命周期）
- infra/      : 基础设施（上游提供商客户端、本地文件存储、日志）
- middleware/ : 请求追踪

项目架构遵循分层设计：
    API层 → 服务层 → 持久化网关 / 基础设施层
"""
