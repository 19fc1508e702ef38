import json

import pytest
from fastapi.testclient import TestClient

from campus_rag.conversations import InMemoryConversationStore
from campus_rag.deps import (
    get_answer_service,
    get_conversation_store,
    get_ingestor,
    get_page_service,
    get_quota,
)
from campus_rag.indexer import PageChunk
from campus_rag.ingestion.ingest import Ingestor
from campus_rag.ingestion.scraper import PageMetadata, ScrapedPage
from campus_rag.main import app
from campus_rag.memory import ConversationMemory
from campus_rag.qa import AnswerService
from campus_rag.quota import DailyQuota

from .conftest import FakeRedis

HEADERS = {"X-User-Token": "alice"}


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def service(store, chat_model, retriever, embedder) -> AnswerService:
    memory = ConversationMemory(store, chat_model, summarize_threshold=50, max_context_messages=20)
    return AnswerService(memory, retriever, chat_model, embedder)


@pytest.fixture
def quota() -> DailyQuota:
    return DailyQuota(client=FakeRedis(), limit=3)


def scrape(url: str) -> ScrapedPage:
    chunks = [PageChunk(url=url, content=f"Content of {url}")]
    return ScrapedPage(url=url, metadata=PageMetadata(), lines=[], chunks=chunks)


@pytest.fixture
def client(service, store, quota, page_service, page_store, indexer):
    ingestor = Ingestor(page_store, indexer, scrape=scrape, delay_range=(0, 0))
    app.dependency_overrides[get_answer_service] = lambda: service
    app.dependency_overrides[get_conversation_store] = lambda: store
    app.dependency_overrides[get_quota] = lambda: quota
    app.dependency_overrides[get_page_service] = lambda: page_service
    app.dependency_overrides[get_ingestor] = lambda: ingestor
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def sse_payloads(text: str):
    frames = [f[len("data: "):] for f in text.split("\n\n") if f.startswith("data: ")]
    return frames


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_missing_user_token_is_rejected(client) -> None:
    response = client.post("/chat", json={"question": "hi"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Missing user token"


def test_chat_json_creates_conversation(client, store, indexer) -> None:
    indexer.index_chunks([PageChunk(url="https://x.edu/a", content="When is move-in day?", title="Move-in")])

    response = client.post("/chat", json={"question": "When is move-in day?"}, headers=HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["answer"] == "Hello world"
    assert body["hit_count"] == 1
    assert body["sources"][0]["url"] == "https://x.edu/a"

    messages = store.list_messages("alice", body["conversation_id"])
    assert [m.content for m in messages] == ["When is move-in day?", "Hello world"]


def test_chat_blank_question(client) -> None:
    response = client.post("/chat", json={"question": "   "}, headers=HEADERS)
    assert response.status_code == 400


def test_chat_unknown_conversation(client) -> None:
    response = client.post("/chat", json={"question": "hi", "conversation_id": "nope"}, headers=HEADERS)
    assert response.status_code == 404


def test_chat_stream_frames(client, store) -> None:
    convo = store.create("alice")
    response = client.post(
        "/chat",
        json={"question": "hi there", "conversation_id": convo.id, "stream": True},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["x-conversation-id"] == convo.id

    frames = sse_payloads(response.text)
    assert frames[-1] == "[DONE]"
    events = [json.loads(f) for f in frames[:-1]]
    assert [e["text"] for e in events if e["type"] == "token"] == ["Hello", " world"]
    assert events[-1]["type"] == "done"
    assert events[-1]["hit_count"] == 0


def test_chat_quota(client) -> None:
    for _ in range(3):
        assert client.post("/chat", json={"question": "hi"}, headers=HEADERS).status_code == 200
    response = client.post("/chat", json={"question": "hi"}, headers=HEADERS)
    assert response.status_code == 429
    # other users are unaffected
    assert client.post("/chat", json={"question": "hi"}, headers={"X-User-Token": "bob"}).status_code == 200


def test_unknown_conversation_does_not_use_quota(client, quota, store) -> None:
    for _ in range(4):
        response = client.post("/chat", json={"question": "hi", "conversation_id": "nope"}, headers=HEADERS)
        assert response.status_code == 404
    assert quota.status("alice").used == 0

    # another user's conversation is treated the same way
    theirs = store.create("bob")
    response = client.post("/chat", json={"question": "hi", "conversation_id": theirs.id}, headers=HEADERS)
    assert response.status_code == 404
    assert client.post("/chat", json={"question": "hi"}, headers=HEADERS).status_code == 200


def test_conversation_crud(client, chat_model) -> None:
    chat_model.replies = ["Dining Hall Hours"]
    created = client.post("/conversations", json={"question": "When does the dining hall open?"}, headers=HEADERS)
    assert created.status_code == 201
    convo = created.json()
    assert convo["title"] == "Dining Hall Hours"
    assert convo["preview"] == "When does the dining hall open?"

    listed = client.get("/conversations", headers=HEADERS).json()
    assert [c["id"] for c in listed] == [convo["id"]]
    assert client.get("/conversations", headers={"X-User-Token": "bob"}).json() == []

    added = client.post(
        f"/conversations/{convo['id']}/messages",
        json={"role": "assistant", "content": "It opens at 7."},
        headers=HEADERS,
    )
    assert added.status_code == 201

    detail = client.get(f"/conversations/{convo['id']}", headers=HEADERS).json()
    assert [m["role"] for m in detail["messages"]] == ["user", "assistant"]

    messages = client.get(f"/conversations/{convo['id']}/messages", headers=HEADERS).json()
    assert messages[1]["content"] == "It opens at 7."

    assert client.get(f"/conversations/{convo['id']}", headers={"X-User-Token": "bob"}).status_code == 404
    assert client.delete(f"/conversations/{convo['id']}", headers=HEADERS).status_code == 204
    assert client.get(f"/conversations/{convo['id']}", headers=HEADERS).status_code == 404


def test_create_message_rejects_bad_role(client, store) -> None:
    convo = store.create("alice")
    response = client.post(
        f"/conversations/{convo.id}/messages", json={"role": "system", "content": "x"}, headers=HEADERS
    )
    assert response.status_code == 422


def test_page_admin_and_ingest(client, page_store) -> None:
    added = client.post("/pages/bulk", json={"urls": ["https://x.edu/a/", "https://x.edu/a", "bad"]})
    assert added.status_code == 201
    assert added.json() == {"received": 3, "valid": 2, "unique": 1, "inserted": 1}

    assert client.post("/pages", json={"url": "https://x.edu/b"}).status_code == 201
    assert client.post("/pages", json={"url": "nope"}).status_code == 400

    ingested = client.post("/ingest", json={})
    assert ingested.status_code == 200
    body = ingested.json()
    assert body["success"] == "true"
    assert {r["action"] for r in body["report"]} == {"indexed"}

    again = client.post("/ingest", json={"urls": ["https://x.edu/a"]}).json()
    assert again["report"][0]["action"] == "unchanged"

    deleted = client.request("DELETE", "/pages", json={"url": "https://x.edu/a"})
    assert deleted.status_code == 200
    assert deleted.json()["deleted_from_db"] == 1

    bulk = client.request("DELETE", "/pages/bulk", json={"urls": ["https://x.edu/b"]})
    assert bulk.json()["deleted_from_db"] == 1
    assert page_store.list_urls() == []

    assert client.post("/ingest", json={}).status_code == 400
    assert client.request("DELETE", "/pages/bulk", json={"urls": []}).status_code == 400


def test_delete_all_and_retry(client, page_store) -> None:
    client.post("/pages/bulk", json={"urls": ["https://x.edu/a", "https://x.edu/b"]})
    assert client.post("/pages/retry-deletes").json()["deleted_from_db"] == 0
    response = client.delete("/pages/all")
    assert response.status_code == 200
    assert response.json()["deleted_from_db"] == 2
    assert page_store.list_urls() == []
