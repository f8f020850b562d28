"""HTTP layer tests."""

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from starlette.requests import Request

from helpdesk.config import NotificationType, SourceType, TicketStatus, settings
from helpdesk.core import LLMException
from helpdesk.main import create_app
from helpdesk.pipeline.domain import TicketMessage
from helpdesk.pipeline.interfaces.controllers import get_store, get_store_factory
from helpdesk.shared.api.middleware import global_exception_handler
from tests.conftest import ORG_ID

ROUTE = {
    "priority": "high",
    "suggested_categories": ["Login"],
    "suggested_tags": ["password"],
    "estimated_complexity": "medium",
    "needs_human_review": False,
}


@pytest_asyncio.fixture
async def client(pipeline, store):
    app = create_app()
    app.state.pipeline = pipeline
    app.state.knowledge_store = None

    async def override_get_store():
        return store

    app.dependency_overrides[get_store] = override_get_store
    app.dependency_overrides[get_store_factory] = store.factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_process_ticket(client, llm, ticket):
    llm.script["route"] = ROUTE

    response = await client.post("/tickets/t-1/process")

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"] == "routed"
    assert body["priority"] == "high"
    assert body["category_ids"] == ["cat-login"]
    assert body["tag_ids"] == ["tag-password"]
    assert "X-Correlation-ID" in response.headers


@pytest.mark.asyncio
async def test_process_unknown_ticket_is_404(client):
    response = await client.post("/tickets/nope/process")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_provider_failure_is_502_without_internals(client, llm, ticket):
    llm.script["route"] = LLMException("secret upstream detail")

    response = await client.post("/tickets/t-1/process")

    assert response.status_code == 502
    body = response.json()
    assert body["retryable"] is True
    assert "secret upstream detail" not in response.text


@pytest.mark.asyncio
async def test_resolve_ticket(client, ticket):
    response = await client.post("/tickets/t-1/resolve", json={"resolution": "Reset link resent"})

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"] == "resolved_without_update"
    assert body["time_to_resolve_minutes"] == 95
    assert ticket.status == TicketStatus.RESOLVED


@pytest.mark.asyncio
async def test_resolve_requires_resolution(client, ticket):
    response = await client.post("/tickets/t-1/resolve", json={"resolution": ""})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_preview_writes_nothing(client, store, ticket):
    response = await client.post("/tickets/t-1/preview", json={"message": "Still locked out"})

    assert response.status_code == 200
    assert response.json()["next_action"] == "wait_for_customer"
    assert store.updates == []
    assert store.notification_rows == []


@pytest.mark.asyncio
async def test_message_processed_in_background(client, llm, store, ticket):
    store.add_message(TicketMessage(id="m-1", ticket_id="t-1", organization_id=ORG_ID, content="Any update?"))
    llm.script["support_agent"] = {
        "response": "We resent the link.",
        "needs_human_review": True,
        "human_review_reason": "Customer is frustrated",
        "confidence_score": 0.6,
        "next_action": "escalate",
    }

    response = await client.post("/tickets/t-1/messages/m-1/process")

    assert response.status_code == 202
    replies = [m for m in store.messages_by_id.values() if m.is_ai_generated]
    assert [m.content for m in replies] == ["We resent the link."]
    assert ticket.priority.value == "high"
    review = [n for n in store.notification_rows if n.title == "Human Review Required"]
    assert review[0].content == "Customer is frustrated"


@pytest.mark.asyncio
async def test_background_failure_records_notification(client, llm, store, ticket):
    store.add_message(TicketMessage(id="m-1", ticket_id="t-1", organization_id=ORG_ID, content="Hello"))
    llm.script["support_agent"] = LLMException("provider down")

    response = await client.post("/tickets/t-1/messages/m-1/process")

    assert response.status_code == 202
    errors = [n for n in store.notification_rows if n.title == "AI Processing Error"]
    assert len(errors) == 1
    assert errors[0].type == NotificationType.HIGH_PRIORITY
    assert errors[0].content.startswith("Error processing ticket:")


@pytest.mark.asyncio
async def test_replace_knowledge_source(client, kb_store):
    response = await client.put(
        "/knowledge/article/A1",
        json={"organization_id": ORG_ID, "content": "How to reset a password", "reason": "new guide"},
    )

    assert response.status_code == 200
    assert response.json() == {"source_type": "article", "source_id": "A1", "total_chunks": 1}
    chunks = await kb_store.list_source(SourceType.ARTICLE, "A1")
    assert chunks[0].metadata["update_reason"] == "new guide"


@pytest.mark.asyncio
async def test_knowledge_source_of_other_organization_is_404(client, kb_store):
    await client.put("/knowledge/article/A1", json={"organization_id": ORG_ID, "content": "Ours"})

    response = await client.put(
        "/knowledge/article/A1",
        json={"organization_id": "org-2", "content": "Theirs"},
    )

    assert response.status_code == 404
    chunks = await kb_store.list_source(SourceType.ARTICLE, "A1")
    assert [(c.organization_id, c.content) for c in chunks] == [(ORG_ID, "Ours")]


@pytest.mark.asyncio
async def test_unknown_source_type_rejected(client):
    response = await client.put(
        "/knowledge/video/V1",
        json={"organization_id": ORG_ID, "content": "text"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["checks"]["pipeline"] == "available"


def _request(path="/boom"):
    return Request({
        "type": "http",
        "method": "GET",
        "path": path,
        "headers": [],
        "query_string": b"",
        "scheme": "http",
        "server": ("test", 80),
    })


@pytest.mark.asyncio
@pytest.mark.parametrize("environment, debug_info", [
    ("development", "unexpected state"),
    ("production", None),
])
async def test_unhandled_error_debug_info_follows_environment(monkeypatch, environment, debug_info):
    monkeypatch.setattr(settings, "environment", environment)

    response = await global_exception_handler(_request(), RuntimeError("unexpected state"))

    assert response.status_code == 500
    body = json.loads(response.body)
    assert body["detail"] == "Internal server error"
    assert body["debug_info"] == debug_info
