"""
FastAPI 应用实例

这是 FastAPI 应用的核心配置文件，负责：
1. 创建 FastAPI 应用实例
2. 配置应用生命周期（启动时的建表逻辑）
3. 注册 API 路由（业务路由挂载在 settings.api_prefix 下）
4. 配置结构化日志、请求追踪和统一错误格式
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.api.routes import api_router, health
from app.config import get_settings
from app.db.session import init_models
from app.infra.logging import get_logger, setup_logging
from app.middleware import RequestTraceMiddleware

# 配置结构化日志
setup_logging()
logger = get_logger(__name__)

# 获取全局配置（单例模式，整个应用共享同一个配置实例）
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理器

    - 开发/测试环境：使用 init_models() 自动创建表
    - 生产环境：应该使用 Alembic 进行数据库迁移
    """
    logger.info(f"应用启动中... 环境: {settings.environment}")

    if settings.environment in ("dev", "development", "test"):
        await init_models()
        logger.info("数据库表初始化完成（开发模式）")
    else:
        logger.info("跳过自动建表，请使用 Alembic 迁移")

    yield


app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
)

# 注册中间件（注意顺序：后添加的先执行）
app.add_middleware(RequestTraceMiddleware)

# CORS 配置：前端携带 jwtToken Cookie 跨域访问
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allow_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["health"])
app.include_router(api_router, prefix=settings.api_prefix)


@app.exception_handler(HTTPException)
async def http_exception_handler(_: Request, exc: HTTPException):
    """
    统一错误响应格式：
    {
        "detail": "<错误信息>",
        "code": "<ERROR_CODE>"
    }
    """
    code = "UNKNOWN_ERROR"
    detail = exc.detail
    if isinstance(exc.detail, dict):
        code = exc.detail.get("code") or code
        detail = exc.detail.get("detail") or exc.detail.get("message") or detail
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": detail, "code": code},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_: Request, exc: RequestValidationError):
    # 请求体/表单校验失败（含缺少必填字段）统一返回 400 VALIDATION_ERROR
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": exc.errors(), "code": "VALIDATION_ERROR"},
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    # 事务已在 PersistenceGateway.transaction() 中回滚，这里只记录并返回 500
    logger.error(f"数据库错误 {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Database error", "code": "DATABASE_ERROR"},
    )
