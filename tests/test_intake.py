"""New ticket processing tests."""

import pytest

from helpdesk.config import NotificationType, TicketPriority, TicketStatus
from helpdesk.core import EmbeddingException, LLMOutputValidationException
from helpdesk.pipeline.domain import CatalogEntry, OrganizationCatalog, Ticket
from tests.conftest import ORG_ID

ROUTE = {
    "priority": "normal",
    "suggested_categories": ["Account & Billing"],
    "suggested_tags": [],
    "estimated_complexity": "low",
    "needs_human_review": False,
}


@pytest.fixture
def account_ticket(store):
    store.catalogs[ORG_ID] = OrganizationCatalog(
        organization_id=ORG_ID,
        categories=[
            CatalogEntry("cat-account", "Account & Billing"),
            CatalogEntry("cat-network", "Network"),
        ],
        tags=[CatalogEntry("tag-password", "password")],
        teams=[CatalogEntry("team-accounts", "Accounts")],
    )
    return store.add_ticket(Ticket(
        id="t-a",
        title="Reset my password",
        description="I can't log in",
        organization_id=ORG_ID,
    ))


@pytest.mark.asyncio
async def test_clean_ticket_is_routed_and_categorized(pipeline, llm, store, account_ticket):
    llm.script["route"] = ROUTE

    result = await pipeline.process_new_ticket(account_ticket, store)

    assert result.kind == "routed"
    assert account_ticket.priority == TicketPriority.NORMAL
    assert account_ticket.status == TicketStatus.OPEN
    assignments = store.category_assignments["t-a"]
    assert len(assignments) == 1
    assert assignments[0].category_id == "cat-account"
    assert assignments[0].is_primary
    assert store.tag_assignments["t-a"] == []
    assert result.primary_category_id == "cat-account"


@pytest.mark.asyncio
async def test_flagged_ticket_is_closed_without_further_work(pipeline, llm, store, extractor, account_ticket):
    llm.script["moderate"] = {"flagged": True, "reason": "harassment"}
    store.attachments["t-a"] = ["file-1"]

    result = await pipeline.process_new_ticket(account_ticket, store)

    assert result.kind == "flagged"
    assert account_ticket.status == TicketStatus.CLOSED
    assert account_ticket.priority == TicketPriority.URGENT
    assert len(store.notification_rows) == 1
    notification = store.notification_rows[0]
    assert notification.type == NotificationType.HIGH_PRIORITY
    assert notification.title == "Flagged Content Detected"
    assert notification.entity_id == "t-a"
    assert "harassment" in notification.content
    assert store.embedding_rows == {}
    assert store.category_assignments == {}
    assert extractor.requested == []
    assert llm.embedded == []
    assert llm.count("route") == 0


@pytest.mark.asyncio
async def test_moderation_sees_title_and_description(pipeline, llm, store, account_ticket):
    await pipeline.process_new_ticket(account_ticket, store)

    user_prompt = llm.prompts["moderate"][0][1]["content"]
    assert "Reset my password\n\nI can't log in" in user_prompt


@pytest.mark.asyncio
async def test_embeddings_are_replaced_on_rerun(pipeline, llm, store, ticket):
    ticket.description = "Details. " * 60
    await pipeline.process_new_ticket(ticket, store)
    first = store.embedding_rows["t-1"]
    assert len(first) > 1
    assert [e.chunk_index for e in first] == list(range(len(first)))

    ticket.description = "Short now."
    await pipeline.process_new_ticket(ticket, store)

    rows = store.embedding_rows["t-1"]
    assert len(rows) == 1
    assert rows[0].chunk_index == 0
    assert rows[0].chunk_text == "Cannot log in\n\nShort now."


@pytest.mark.asyncio
async def test_suggestions_resolve_in_order_and_drop_unknown(pipeline, llm, store, ticket):
    llm.script["route"] = {
        **ROUTE,
        "priority": "high",
        "suggested_categories": [" Billing ", "Unknown", "Login", "Billing"],
        "suggested_tags": ["refund", "nope", "password"],
        "suggested_team": "Accounts",
    }

    result = await pipeline.process_new_ticket(ticket, store)

    assignments = store.category_assignments["t-1"]
    assert [a.category_id for a in assignments] == ["cat-billing", "cat-login"]
    assert [a.is_primary for a in assignments] == [True, False]
    assert store.tag_assignments["t-1"] == ["tag-refund", "tag-password"]
    assert result.assigned_team_id == "team-accounts"
    assert ticket.assigned_team_id == "team-accounts"
    assert ticket.priority == TicketPriority.HIGH
    team_notes = [n for n in store.notification_rows if n.type == NotificationType.TEAM_ASSIGNMENT]
    assert len(team_notes) == 1


@pytest.mark.asyncio
async def test_attachment_text_is_chunked_separately(pipeline, store, extractor, ticket):
    store.attachments["t-1"] = ["file-1", "file-2"]
    extractor.texts = {"file-1": "Log output from the failing login", "file-2": None}

    result = await pipeline.process_new_ticket(ticket, store)

    assert extractor.requested == ["file-1", "file-2"]
    assert result.attachment_chunks == [["Log output from the failing login"], []]
    assert len(store.embedding_rows["t-1"]) == len(result.content_chunks)


@pytest.mark.asyncio
async def test_invalid_routing_propagates(pipeline, llm, store, ticket):
    llm.script["route"] = {**ROUTE, "estimated_complexity": "extreme"}

    with pytest.raises(LLMOutputValidationException):
        await pipeline.process_new_ticket(ticket, store)
    assert "t-1" not in store.category_assignments


@pytest.mark.asyncio
async def test_embedding_failure_propagates(pipeline, llm, store, ticket):
    llm.embedding_error = EmbeddingException("provider down")

    with pytest.raises(EmbeddingException):
        await pipeline.process_new_ticket(ticket, store)
    assert store.embedding_rows == {}
