"""Ticket resolution tests."""

import pytest

from helpdesk.config import NotificationType, SourceType, TicketStatus
from helpdesk.core import LLMException, ResourceNotFoundException
from helpdesk.pipeline.domain import KnowledgeChunk
from tests.conftest import ORG_ID, OTHER_ORG_ID
from tests.fakes import unit_vector

RESOLUTION = "Sent a new reset link after clearing the spam filter."
ANSWER = "a" * 250


def _knowledge(updates):
    return {
        "relevant_articles": [],
        "new_knowledge_extracted": bool(updates),
        "knowledge_updates": updates,
    }


def _chunk(org, source_type, source_id, index, vector, content="old"):
    return KnowledgeChunk(
        organization_id=org,
        source_type=source_type,
        source_id=source_id,
        chunk_index=index,
        content=content,
        embedding=vector,
    )


@pytest.mark.asyncio
async def test_faq_update_replaces_every_prior_chunk(pipeline, llm, store, kb_store, ticket):
    await kb_store.replace_source(ORG_ID, SourceType.FAQ, "F1", [
        _chunk(ORG_ID, SourceType.FAQ, "F1", i, unit_vector(i + 1)) for i in range(3)
    ])
    llm.script["knowledge_agent"] = _knowledge([{
        "source_type": "faq",
        "source_id": "F1",
        "content": f"How do I reset?\n{ANSWER}",
        "reason": "reset emails land in spam",
    }])

    result = await pipeline.process_ticket_resolution("t-1", RESOLUTION, store, resolved_by="agent-7")

    chunks = await kb_store.list_source(SourceType.FAQ, "F1")
    assert [c.chunk_index for c in chunks] == [0, 1]
    assert chunks[0].content.startswith("--- Question ---\nHow do I reset?\n--- Answer ---\n")
    assert all(c.metadata["total_chunks"] == 2 for c in chunks)
    assert chunks[0].metadata["updated_by"] == "agent-7"
    assert chunks[0].metadata["update_reason"] == "reset emails land in spam"
    assert result.kind == "resolved_with_knowledge_update"
    assert ticket.status == TicketStatus.RESOLVED


@pytest.mark.asyncio
async def test_new_knowledge_gets_allocated_source_id(pipeline, llm, store, kb_store, ticket):
    llm.script["knowledge_agent"] = _knowledge([{
        "source_type": "article",
        "content": "Reset links can be filtered as spam.",
        "reason": "new troubleshooting step",
    }])

    result = await pipeline.process_ticket_resolution("t-1", RESOLUTION, store)

    applied = result.knowledge_report.applied
    assert len(applied) == 1
    assert applied[0].source_id == "ks-1"
    assert applied[0].created
    assert store.knowledge_source_rows[0][1] == ORG_ID
    chunks = await kb_store.list_source(SourceType.ARTICLE, "ks-1")
    assert len(chunks) == 1


@pytest.mark.asyncio
async def test_new_knowledge_without_allocator_is_skipped(pipeline, llm, store, kb_store, ticket):
    store.knowledge_sources = None
    llm.script["knowledge_agent"] = _knowledge([{
        "source_type": "article",
        "content": "Unplaced knowledge",
        "reason": "r",
    }])

    result = await pipeline.process_ticket_resolution("t-1", RESOLUTION, store)

    assert result.kind == "resolved_without_update"
    assert len(result.knowledge_report.skipped) == 1
    assert await kb_store.get_document_count() == 0


@pytest.mark.asyncio
async def test_status_unchanged_when_analytics_fails(pipeline, llm, store, ticket):
    llm.script["analytics"] = LLMException("provider unavailable")

    with pytest.raises(LLMException):
        await pipeline.process_ticket_resolution("t-1", RESOLUTION, store)

    assert ticket.status == TicketStatus.OPEN
    assert store.updates == []
    assert store.notification_rows == []


@pytest.mark.asyncio
async def test_feedback_notification_after_status_update(pipeline, llm, store, ticket):
    llm.script["analytics"] = {
        "resolution_quality": 0.4,
        "response_time": 95,
        "complexity_score": 0.7,
        "needs_feedback": True,
        "feedback_type": "agent",
        "learning_opportunities": ["Document spam filter issue"],
    }

    result = await pipeline.process_ticket_resolution("t-1", RESOLUTION, store)

    assert ticket.status == TicketStatus.RESOLVED
    assert len(store.notification_rows) == 1
    notification = store.notification_rows[0]
    assert notification.type == NotificationType.HIGH_PRIORITY
    assert notification.title == "Feedback Required"
    assert notification.content == "Ticket t-1 requires agent feedback"
    assert result.time_to_resolve_minutes == 95
    user_prompt = llm.prompts["analytics"][0][1]["content"]
    assert "95" in user_prompt


@pytest.mark.asyncio
async def test_retrieval_is_scoped_to_ticket_organization(pipeline, llm, store, kb_store, ticket):
    query = f"{ticket.title}\n{ticket.description}\n{RESOLUTION}"
    llm.embeddings[query] = unit_vector(0)
    await kb_store.replace_source(ORG_ID, SourceType.ARTICLE, "mine", [
        _chunk(ORG_ID, SourceType.ARTICLE, "mine", 0, unit_vector(0), "Our reset guide"),
    ])
    await kb_store.replace_source(OTHER_ORG_ID, SourceType.ARTICLE, "theirs", [
        _chunk(OTHER_ORG_ID, SourceType.ARTICLE, "theirs", 0, unit_vector(0), "Other tenant guide"),
    ])

    result = await pipeline.process_ticket_resolution("t-1", RESOLUTION, store)

    assert llm.embedded[0] == query
    assert [m.source_id for m in result.matches] == ["mine"]
    user_prompt = llm.prompts["summarize"][0][1]["content"]
    assert "Other tenant guide" not in user_prompt


@pytest.mark.asyncio
async def test_update_cannot_take_over_other_organization_source(pipeline, llm, store, kb_store, ticket):
    await kb_store.replace_source(OTHER_ORG_ID, SourceType.FAQ, "F-other", [
        _chunk(OTHER_ORG_ID, SourceType.FAQ, "F-other", i, unit_vector(i + 1), f"theirs {i}") for i in range(3)
    ])
    llm.script["knowledge_agent"] = _knowledge([{
        "source_type": "faq",
        "source_id": "F-other",
        "content": "Q\nA",
        "reason": "overwrite attempt",
    }])

    result = await pipeline.process_ticket_resolution("t-1", RESOLUTION, store)

    chunks = await kb_store.list_source(SourceType.FAQ, "F-other")
    assert [(c.organization_id, c.content) for c in chunks] == [
        (OTHER_ORG_ID, "theirs 0"),
        (OTHER_ORG_ID, "theirs 1"),
        (OTHER_ORG_ID, "theirs 2"),
    ]
    assert [u.source_id for u in result.knowledge_report.skipped] == ["F-other"]
    assert result.kind == "resolved_without_update"
    assert ticket.status == TicketStatus.RESOLVED


@pytest.mark.asyncio
async def test_no_matches_skip_summarizer_model(pipeline, llm, store, ticket):
    result = await pipeline.process_ticket_resolution("t-1", RESOLUTION, store)

    assert result.matches == []
    assert llm.count("summarize") == 0
    assert result.kind == "resolved_without_update"


@pytest.mark.asyncio
async def test_unknown_ticket(pipeline, store):
    with pytest.raises(ResourceNotFoundException):
        await pipeline.process_ticket_resolution("missing", RESOLUTION, store)
