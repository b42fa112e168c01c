"""
测试公共夹具

- 内存 SQLite（aiosqlite + StaticPool），每个测试一个全新的库
- FakeStepFun：基于 httpx.MockTransport 的上游替身，记录请求并按配置返回
- api_client：httpx.AsyncClient + ASGITransport，覆盖数据库/存储/上游客户端依赖
"""

import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

import httpx
import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.config import Settings, get_settings
from app.db.base import Base
from app.db.gateway import PersistenceGateway
from app.infra.file_storage import LocalFileStorage
from app.infra.provider_client import ProviderClient

STEPFUN_BASE = "https://stepfun.test/v1"
DIFY_BASE = "https://dify.test/v1"


class FakeStepFun:
    """
    StepFun 上游替身

    token_counts: 模型名 → 返回的 token 数（未配置时使用 default_tokens）
    file_statuses: 上游文件 ID → 依次返回的状态列表（最后一个重复）
    file_contents: 上游文件 ID → 文件原文
    fail: (method, 路径前缀) → 返回的错误状态码
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.token_counts: dict[str, int] = {}
        self.default_tokens = 100
        self.file_statuses: dict[str, list[str]] = {}
        self.file_contents: dict[str, str] = {}
        self.chat_lines = [
            'data: {"id":"c1","choices":[{"delta":{"content":"你好"}}]}',
            "",
            "data: [DONE]",
        ]
        self.fail: dict[tuple[str, str], int] = {}
        self.vector_store_id = "vs_remote_1"
        self._file_seq = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str, path_prefix: str) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and self._path(r).startswith(path_prefix)
        ]

    @staticmethod
    def _path(request: httpx.Request) -> str:
        return request.url.path.removeprefix("/v1")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = self._path(request)

        for (method, prefix), status_code in self.fail.items():
            if request.method == method and path.startswith(prefix):
                return httpx.Response(status_code, json={"error": {"message": "upstream failure"}})

        if path == "/token/count":
            model = json.loads(request.content)["model"]
            total = self.token_counts.get(model, self.default_tokens)
            return httpx.Response(200, json={"data": {"total_tokens": total}})

        if path == "/files" and request.method == "POST":
            self._file_seq += 1
            file_id = f"file-{self._file_seq}"
            purpose = "retrieval" if b'name="purpose"\r\n\r\nretrieval' in request.content else "file-extract"
            return httpx.Response(
                200,
                json={"id": file_id, "bytes": len(request.content), "purpose": purpose, "status": "processed"},
            )

        if path.startswith("/files/") and path.endswith("/content"):
            file_id = path.split("/")[2]
            return httpx.Response(200, text=self.file_contents.get(file_id, ""))

        if path.startswith("/files/"):
            file_id = path.split("/")[2]
            statuses = self.file_statuses.get(file_id) or ["success"]
            status = statuses.pop(0) if len(statuses) > 1 else statuses[0]
            return httpx.Response(200, json={"id": file_id, "status": status})

        if path == "/vector_stores":
            return httpx.Response(200, json={"id": self.vector_store_id})

        if path.startswith("/vector_stores/") and path.endswith("/files"):
            return httpx.Response(200, json={"success": True})

        if path == "/chat/completions":
            body = "\n".join(self.chat_lines) + "\n"
            return httpx.Response(200, content=body.encode(), headers={"Content-Type": "text/event-stream"})

        return httpx.Response(404, json={"error": "not found"})


def make_token(username: str = "alice", settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    return jwt.encode(
        {settings.jwt_username_claim: username},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        file_poll_timeout=0.5,
        file_poll_interval=0.01,
        stepfun_api_key="test-key",
        stepfun_api_base=STEPFUN_BASE,
    )


@pytest.fixture
def stepfun() -> FakeStepFun:
    return FakeStepFun()


@pytest.fixture
def stepfun_client(stepfun: FakeStepFun) -> ProviderClient:
    return ProviderClient(base_url=STEPFUN_BASE, api_key="test-key", transport=stepfun.transport)


@pytest.fixture
def storage(tmp_path) -> LocalFileStorage:
    return LocalFileStorage(tmp_path / "uploads", web_host="https://files.test/")


@pytest_asyncio.fixture
async def session():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    maker = async_sessionmaker(engine, expire_on_commit=False)
    async with maker() as s:
        yield s
    await engine.dispose()


@pytest.fixture
def gateway(session) -> PersistenceGateway:
    return PersistenceGateway(session)


@pytest_asyncio.fixture
async def api_client(session, stepfun_client, storage, test_settings):
    from app.api.deps import get_db_session, get_stepfun_client, get_storage
    from app.main import app

    async def _session_override():
        yield session

    app.dependency_overrides[get_db_session] = _session_override
    app.dependency_overrides[get_stepfun_client] = lambda: stepfun_client
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_settings] = lambda: test_settings

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://testserver",
        cookies={test_settings.jwt_cookie_name: make_token("alice", test_settings)},
    ) as client:
        yield client
    app.dependency_overrides.clear()
