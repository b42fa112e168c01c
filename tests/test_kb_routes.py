"""
知识库接口测试（httpx.AsyncClient + ASGITransport）
"""

import re

import pytest

from app.models import KnowledgeBase
from app.schemas import KnowledgeBaseResponse

KB_BODY = {
    "name": "docs1",
    "display_name": "产品文档",
    "description": "存放产品手册",
    "tags": "manual,product",
    "model_owner": "local",
}


@pytest.mark.asyncio
async def test_create_local_kb(api_client):
    resp = await api_client.post("/api/create-vector-store", json=KB_BODY)
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "docs1"
    assert re.fullmatch(r"docs1\d{14}", data["id"])
    assert data["creator_id"] == "alice"


@pytest.mark.asyncio
async def test_second_creation_rejected(api_client):
    await api_client.post("/api/create-vector-store", json=KB_BODY)
    resp = await api_client.post("/api/create-vector-store", json=KB_BODY)
    assert resp.status_code == 400
    assert resp.json()["code"] == "KB_ALREADY_EXISTS"


@pytest.mark.asyncio
async def test_invalid_name(api_client):
    resp = await api_client.post("/api/create-vector-store", json=KB_BODY | {"name": "_bad"})
    assert resp.status_code == 400
    assert resp.json() == {
        "code": "VALIDATION_ERROR",
        "detail": "The name can only contain letters, numbers, and underscores, and cannot start with an underscore.",
    }


@pytest.mark.asyncio
async def test_unimplemented_owner_returns_pending(api_client):
    resp = await api_client.post("/api/create-vector-store", json=KB_BODY | {"model_owner": "zhipu"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["id"] is None
    assert "not yet implemented" in data["message"]


@pytest.mark.asyncio
async def test_stepfun_create_upstream_error(api_client, stepfun):
    stepfun.fail[("POST", "/vector_stores")] = 429
    resp = await api_client.post("/api/create-vector-store", json=KB_BODY | {"model_owner": "stepfun"})
    assert resp.status_code == 429
    assert resp.json()["code"] == "PROVIDER_ERROR"


@pytest.mark.asyncio
async def test_update_round_trip(api_client):
    await api_client.post("/api/create-vector-store", json=KB_BODY)
    resp = await api_client.put(
        "/api/update-vector-store/docs1",
        json={"display_name": "手册", "description": "新描述", "tags": "a,b"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert (data["display_name"], data["description"], data["tags"]) == ("手册", "新描述", "a,b")

    listing = await api_client.get("/api/get-data", params={"type": "knowledge_bases"})
    assert listing.json()[0]["display_name"] == "手册"


@pytest.mark.asyncio
async def test_update_missing(api_client):
    resp = await api_client.put("/api/update-vector-store/nope", json={"display_name": "x"})
    assert resp.status_code == 404
    assert resp.json()["code"] == "KB_NOT_FOUND"


@pytest.mark.asyncio
async def test_update_pending_unimplemented_returns_501(api_client):
    await api_client.post("/api/create-vector-store", json=KB_BODY | {"model_owner": "baichuan"})
    resp = await api_client.put("/api/update-vector-store/docs1", json={"display_name": "改名"})
    assert resp.status_code == 501
    assert resp.json()["code"] == "NOT_IMPLEMENTED"


@pytest.mark.asyncio
async def test_get_data_types(api_client):
    other = await api_client.get("/api/get-data", params={"type": "other_data"})
    assert other.json() == {"message": "其他数据获取接口"}

    bad = await api_client.get("/api/get-data", params={"type": "users"})
    assert bad.status_code == 400
    assert bad.json()["detail"] == "Invalid data type"


@pytest.mark.asyncio
async def test_requires_login(api_client):
    api_client.cookies.clear()
    resp = await api_client.get("/api/get-data", params={"type": "knowledge_bases"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_healthz_without_login(api_client):
    api_client.cookies.clear()
    resp = await api_client.get("/healthz")
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_blank_display_name_rejected(api_client):
    resp = await api_client.post("/api/create-vector-store", json=KB_BODY | {"display_name": "   "})
    assert resp.status_code == 400
    assert resp.json() == {"code": "VALIDATION_ERROR", "detail": "Display name cannot be empty"}


def test_response_built_from_orm_object():
    assert KnowledgeBaseResponse.model_config["from_attributes"] is True
    kb = KnowledgeBase(id=None, name="docs1", display_name="产品文档", model_owner="zhipu")
    response = KnowledgeBaseResponse.model_validate(kb)
    assert (response.id, response.name, response.model_owner) == (None, "docs1", "zhipu")
