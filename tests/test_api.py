"""HTTP surface tests through an in-process ASGI transport."""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from chatkb.main import app
from chatkb.routers.knowledge_base import get_ingestion_service

BASE = "/v1/chatbots/bot-a/kb"
POLICY = b"Refunds are available for thirty days after purchase through the billing page."


@pytest.fixture
async def client(ingestion):
    app.dependency_overrides[get_ingestion_service] = lambda: ingestion
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def upload(client, content: bytes = POLICY, filename: str = "policy.txt", content_type: str = "text/plain"):
    return await client.post(f"{BASE}/upload", files={"file": (filename, content, content_type)})


@pytest.mark.asyncio
async def test_health(client) -> None:
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_upload_is_processed_in_background(client) -> None:
    r = await upload(client)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "pending"
    assert body["version"] == 1
    assert not body["duplicate"]

    doc = (await client.get(f"{BASE}/documents/{body['id']}")).json()
    assert doc["status"] == "ready"
    assert doc["processing_progress"] == 100
    assert doc["total_chunks"] >= 1


@pytest.mark.asyncio
async def test_reupload_reports_duplicate(client) -> None:
    first = (await upload(client)).json()
    second = (await upload(client, filename="copy.txt")).json()

    assert second["duplicate"]
    assert second["id"] == first["id"]
    assert len((await client.get(f"{BASE}/documents")).json()) == 1


@pytest.mark.asyncio
async def test_upload_errors_map_to_status_codes(client) -> None:
    assert (await upload(client, b"\x89PNG", "logo.png", "image/png")).status_code == 415
    assert (await upload(client, b"", "empty.txt")).status_code == 400

    r = await upload(client, b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 64, "old.doc", "application/msword")
    assert r.status_code == 415
    assert ".docx" in r.json()["detail"]


@pytest.mark.asyncio
async def test_search_is_grounded_after_upload(client) -> None:
    await upload(client)

    r = await client.post(f"{BASE}/search", json={"query": "refunds thirty days", "threshold": 0.1})

    body = r.json()
    assert r.status_code == 200
    assert body["grounded"]
    assert body["results"][0]["filename"] == "policy.txt"


@pytest.mark.asyncio
async def test_search_without_documents_is_ungrounded(client) -> None:
    body = (await client.post(f"{BASE}/search", json={"query": "anything"})).json()
    assert body == {"results": [], "grounded": False}


@pytest.mark.asyncio
async def test_search_rejects_invalid_threshold(client) -> None:
    r = await client.post(f"{BASE}/search", json={"query": "x", "threshold": 1.5})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_unknown_and_deleted_documents_are_404(client) -> None:
    assert (await client.get(f"{BASE}/documents/{uuid.uuid4()}")).status_code == 404

    doc_id = (await upload(client)).json()["id"]
    assert (await client.get(f"/v1/chatbots/bot-b/kb/documents/{doc_id}")).status_code == 404

    assert (await client.delete(f"{BASE}/documents/{doc_id}")).status_code == 200
    assert (await client.get(f"{BASE}/documents/{doc_id}")).status_code == 404
    assert (await client.delete(f"{BASE}/documents/{doc_id}")).status_code == 404
