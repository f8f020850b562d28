from datetime import datetime, timedelta, timezone

import pytest

from helpdesk.config import Settings
from helpdesk.infrastructure.vectorstore import InMemoryKnowledgeBaseStore
from helpdesk.pipeline.domain import CatalogEntry, OrganizationCatalog, Ticket
from helpdesk.pipeline.infrastructure import build_pipeline
from tests.fakes import (
    DIMENSION,
    FakeAttachmentExtractor,
    InMemoryHelpdeskStore,
    ScriptedLLMClient,
)

ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="test",
        llm_provider="mock",
        moderation_provider="llm",
        embedding_dimension=DIMENSION,
        chunk_size=200,
        chunk_overlap=50,
        vector_store="memory",
        match_threshold=0.7,
        resolution_match_count=5,
        message_match_count=3,
        external_call_timeout_seconds=5,
    )


@pytest.fixture
def llm() -> ScriptedLLMClient:
    return ScriptedLLMClient()


@pytest.fixture
def kb_store() -> InMemoryKnowledgeBaseStore:
    return InMemoryKnowledgeBaseStore()


@pytest.fixture
def extractor() -> FakeAttachmentExtractor:
    return FakeAttachmentExtractor()


@pytest.fixture
def store() -> InMemoryHelpdeskStore:
    store = InMemoryHelpdeskStore()
    store.catalogs[ORG_ID] = OrganizationCatalog(
        organization_id=ORG_ID,
        categories=[
            CatalogEntry("cat-login", "Login"),
            CatalogEntry("cat-billing", "Billing"),
        ],
        tags=[
            CatalogEntry("tag-password", "password"),
            CatalogEntry("tag-refund", "refund"),
        ],
        teams=[CatalogEntry("team-accounts", "Accounts")],
    )
    return store


@pytest.fixture
def ticket(store: InMemoryHelpdeskStore) -> Ticket:
    return store.add_ticket(Ticket(
        id="t-1",
        title="Cannot log in",
        description="I forgot my password and the reset email never arrives.",
        organization_id=ORG_ID,
        created_at=NOW - timedelta(minutes=95, seconds=30),
    ))


@pytest.fixture
def pipeline(llm, kb_store, extractor, test_settings):
    return build_pipeline(llm, kb_store, test_settings, extractor=extractor, clock=lambda: NOW)
