"""In-memory collaborators for pipeline tests."""

import hashlib
import json
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Tuple
from uuid import uuid4

import numpy as np

from helpdesk.config import SourceType, TicketPriority, TicketStatus
from helpdesk.core import LLMException
from helpdesk.infrastructure.llm import (
    ChatCompletionResult,
    EmbeddingResult,
    ILLMClient,
    MockLLMClient,
)
from helpdesk.pipeline.application.interfaces import (
    IAttachmentExtractor,
    ICatalogRepository,
    IHelpdeskStore,
    IKnowledgeSourceRepository,
    IMessageRepository,
    INotificationRepository,
    ITicketEmbeddingRepository,
    ITicketRepository,
)
from helpdesk.pipeline.domain import (
    CategoryAssignment,
    Notification,
    OrganizationCatalog,
    Ticket,
    TicketEmbedding,
    TicketMessage,
)

DIMENSION = 8


def unit_vector(index: int, dimension: int = DIMENSION) -> List[float]:
    vector = [0.0] * dimension
    vector[index] = 1.0
    return vector


class ScriptedLLMClient(ILLMClient):
    """
    LLM client answering from a script keyed by operation.

    A script value may be a dict (sent as JSON), a raw string, an
    exception to raise, or a list of those consumed in order. Operations
    without a script fall back to the mock client's canned answers.
    Embeddings come from ``embeddings`` when the text is listed there,
    otherwise from a hash-seeded random unit vector.
    """

    def __init__(
        self,
        script: Optional[dict] = None,
        embeddings: Optional[Dict[str, List[float]]] = None,
        dimension: int = DIMENSION
    ):
        self.script = dict(script or {})
        self.embeddings = dict(embeddings or {})
        self.dimension = dimension
        self.operations: List[str] = []
        self.prompts: Dict[str, List[List[dict]]] = {}
        self.embedded: List[str] = []
        self.embedding_error: Optional[Exception] = None

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        self.embedded.append(text)
        if self.embedding_error is not None:
            raise self.embedding_error
        if text in self.embeddings:
            return EmbeddingResult(embedding=list(self.embeddings[text]), model="scripted")
        seed = int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:16], 16)
        vector = np.random.default_rng(seed).uniform(-1.0, 1.0, self.dimension)
        vector /= np.linalg.norm(vector)
        return EmbeddingResult(embedding=vector.tolist(), model="scripted")

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        json_mode: bool = False
    ) -> ChatCompletionResult:
        self.operations.append(operation)
        self.prompts.setdefault(operation, []).append(messages)

        payload = self.script.get(operation, MockLLMClient.RESPONSES.get(operation))
        if isinstance(payload, list):
            payload = payload.pop(0)
        if isinstance(payload, Exception):
            raise payload
        if payload is None:
            raise LLMException(f"no scripted answer for {operation}")

        content = payload if isinstance(payload, str) else json.dumps(payload)
        return ChatCompletionResult(
            content=content,
            model="scripted",
            prompt_tokens=10,
            completion_tokens=5,
            latency_ms=1
        )

    def count(self, operation: str) -> int:
        return self.operations.count(operation)


class FakeTicketRepository(ITicketRepository):

    def __init__(self, store: "InMemoryHelpdeskStore"):
        self._store = store

    async def get(self, ticket_id: str) -> Optional[Ticket]:
        return self._store.tickets_by_id.get(ticket_id)

    async def update(
        self,
        ticket_id: str,
        status: Optional[TicketStatus] = None,
        priority: Optional[TicketPriority] = None,
        assigned_team_id: Optional[str] = None
    ) -> None:
        ticket = self._store.tickets_by_id[ticket_id]
        if status is not None:
            ticket.status = TicketStatus(status)
        if priority is not None:
            ticket.priority = TicketPriority(priority)
        if assigned_team_id is not None:
            ticket.assigned_team_id = assigned_team_id
        self._store.updates.append((ticket_id, status, priority, assigned_team_id))

    async def replace_category_assignments(self, ticket_id: str, assignments: List[CategoryAssignment]) -> None:
        self._store.category_assignments[ticket_id] = list(assignments)

    async def replace_tag_assignments(self, ticket_id: str, tag_ids: List[str]) -> None:
        self._store.tag_assignments[ticket_id] = list(tag_ids)

    async def list_category_names(self, ticket_id: str) -> List[str]:
        ticket = self._store.tickets_by_id[ticket_id]
        catalog = self._store.catalogs.get(ticket.organization_id)
        assignments = sorted(
            self._store.category_assignments.get(ticket_id, []),
            key=lambda a: not a.is_primary
        )
        names = {c.id: c.name for c in catalog.categories} if catalog else {}
        return [names[a.category_id] for a in assignments if a.category_id in names]

    async def list_tag_names(self, ticket_id: str) -> List[str]:
        ticket = self._store.tickets_by_id[ticket_id]
        catalog = self._store.catalogs.get(ticket.organization_id)
        names = {t.id: t.name for t in catalog.tags} if catalog else {}
        return [names[t] for t in self._store.tag_assignments.get(ticket_id, []) if t in names]

    async def list_attachment_file_ids(self, ticket_id: str) -> List[str]:
        return list(self._store.attachments.get(ticket_id, []))


class FakeCatalogRepository(ICatalogRepository):

    def __init__(self, store: "InMemoryHelpdeskStore"):
        self._store = store

    async def get_catalog(self, organization_id: str) -> OrganizationCatalog:
        return self._store.catalogs.get(organization_id, OrganizationCatalog(organization_id))


class FakeEmbeddingRepository(ITicketEmbeddingRepository):

    def __init__(self, store: "InMemoryHelpdeskStore"):
        self._store = store

    async def replace_for_ticket(self, ticket_id: str, embeddings: List[TicketEmbedding]) -> None:
        self._store.embedding_rows[ticket_id] = list(embeddings)

    async def list_for_ticket(self, ticket_id: str) -> List[TicketEmbedding]:
        return sorted(self._store.embedding_rows.get(ticket_id, []), key=lambda e: e.chunk_index)


class FakeNotificationRepository(INotificationRepository):

    def __init__(self, store: "InMemoryHelpdeskStore"):
        self._store = store

    async def create(self, notification: Notification) -> Notification:
        notification.id = str(uuid4())
        self._store.notification_rows.append(notification)
        return notification


class FakeMessageRepository(IMessageRepository):

    def __init__(self, store: "InMemoryHelpdeskStore"):
        self._store = store

    async def get(self, message_id: str) -> Optional[TicketMessage]:
        return self._store.messages_by_id.get(message_id)

    async def create(self, message: TicketMessage) -> TicketMessage:
        message.id = str(uuid4())
        self._store.messages_by_id[message.id] = message
        return message


class FakeKnowledgeSourceRepository(IKnowledgeSourceRepository):

    def __init__(self, store: "InMemoryHelpdeskStore"):
        self._store = store

    async def create(self, organization_id: str, source_type: SourceType, content: str, created_by: str) -> str:
        source_id = f"ks-{len(self._store.knowledge_source_rows) + 1}"
        self._store.knowledge_source_rows.append((source_id, organization_id, SourceType(source_type), content))
        return source_id


class InMemoryHelpdeskStore(IHelpdeskStore):
    """Dict-backed store recording every write."""

    def __init__(self):
        self.tickets_by_id: Dict[str, Ticket] = {}
        self.catalogs: Dict[str, OrganizationCatalog] = {}
        self.messages_by_id: Dict[str, TicketMessage] = {}
        self.attachments: Dict[str, List[str]] = {}
        self.category_assignments: Dict[str, List[CategoryAssignment]] = {}
        self.tag_assignments: Dict[str, List[str]] = {}
        self.embedding_rows: Dict[str, List[TicketEmbedding]] = {}
        self.notification_rows: List[Notification] = []
        self.knowledge_source_rows: List[Tuple[str, str, SourceType, str]] = []
        self.updates: list = []

        self.tickets = FakeTicketRepository(self)
        self.catalog = FakeCatalogRepository(self)
        self.embeddings = FakeEmbeddingRepository(self)
        self.notifications = FakeNotificationRepository(self)
        self.messages = FakeMessageRepository(self)
        self.knowledge_sources = FakeKnowledgeSourceRepository(self)

    def add_ticket(self, ticket: Ticket) -> Ticket:
        self.tickets_by_id[ticket.id] = ticket
        return ticket

    def add_message(self, message: TicketMessage) -> TicketMessage:
        self.messages_by_id[message.id] = message
        return message

    def factory(self):
        """Store factory handing out this store, for background work."""
        @asynccontextmanager
        async def open_store():
            yield self
        return open_store


class FakeAttachmentExtractor(IAttachmentExtractor):

    def __init__(self, texts: Optional[Dict[str, Optional[str]]] = None):
        self.texts = dict(texts or {})
        self.requested: List[str] = []

    async def extract(self, file_id: str) -> Optional[str]:
        self.requested.append(file_id)
        return self.texts.get(file_id)
