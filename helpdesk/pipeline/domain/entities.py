"""
Pipeline Domain Entities
========================

Domain entities for the ticket AI pipeline.

Pure Python business objects: tickets, the organization catalog used for
routing, embeddings, notifications and the ephemeral results returned by
the orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from helpdesk.config import (
    EntityType,
    NotificationType,
    SourceType,
    TicketPriority,
    TicketStatus,
)
from helpdesk.pipeline.domain.schemas import (
    AnalyticsOutput,
    KnowledgeAgentOutput,
    KnowledgeUpdate,
    ModerationOutput,
    QualityCheckOutput,
    RouterOutput,
    SummarizationOutput,
    SupportAgentOutput,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Ticket:
    """
    Support ticket as seen by the pipeline.

    ``organization_id`` is immutable and scopes every related lookup
    (categories, tags, teams, knowledge base).
    """
    id: str
    title: str
    description: str
    organization_id: str
    status: TicketStatus = TicketStatus.OPEN
    priority: TicketPriority = TicketPriority.NORMAL
    assigned_team_id: Optional[str] = None
    assigned_user_id: Optional[str] = None
    created_by_user_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate ticket invariants."""
        if not self.id:
            raise ValueError("Ticket id is required")
        if not self.organization_id:
            raise ValueError("Ticket organization_id is required")
        self.status = TicketStatus(self.status)
        self.priority = TicketPriority(self.priority)

    @property
    def full_text(self) -> str:
        """Title and description as moderated and chunked at intake."""
        return f"{self.title}\n\n{self.description}"

    def minutes_open(self, now: datetime) -> int:
        """Whole minutes elapsed between creation and ``now``."""
        created_at = self.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return max(0, int((now - created_at).total_seconds() // 60))


@dataclass
class TicketMessage:
    """A message posted on a ticket thread."""
    ticket_id: str
    organization_id: str
    content: str
    id: Optional[str] = None
    sender_user_id: Optional[str] = None
    is_ai_generated: bool = False
    is_internal_note: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class CatalogEntry:
    """Organization-scoped named entity (category, tag or team)."""
    id: str
    name: str


@dataclass
class OrganizationCatalog:
    """
    Categories, tags and teams of one organization.

    Resolves model-suggested names to ids. Matching is exact after
    trimming whitespace; unknown names are dropped, duplicates removed and
    suggestion order preserved.
    """
    organization_id: str
    categories: List[CatalogEntry] = field(default_factory=list)
    tags: List[CatalogEntry] = field(default_factory=list)
    teams: List[CatalogEntry] = field(default_factory=list)

    @staticmethod
    def _resolve(entries: List[CatalogEntry], names: List[str]) -> List[str]:
        by_name: Dict[str, str] = {}
        for entry in entries:
            by_name.setdefault(entry.name.strip(), entry.id)

        resolved: List[str] = []
        for name in names:
            entry_id = by_name.get(name.strip())
            if entry_id is not None and entry_id not in resolved:
                resolved.append(entry_id)
        return resolved

    def resolve_categories(self, names: List[str]) -> List[str]:
        return self._resolve(self.categories, names)

    def resolve_tags(self, names: List[str]) -> List[str]:
        return self._resolve(self.tags, names)

    def resolve_team(self, name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        resolved = self._resolve(self.teams, [name])
        return resolved[0] if resolved else None

    def team_name(self, team_id: Optional[str]) -> Optional[str]:
        for team in self.teams:
            if team.id == team_id:
                return team.name
        return None

    @property
    def category_names(self) -> List[str]:
        return [c.name for c in self.categories]

    @property
    def tag_names(self) -> List[str]:
        return [t.name for t in self.tags]

    @property
    def team_names(self) -> List[str]:
        return [t.name for t in self.teams]


@dataclass(frozen=True)
class CategoryAssignment:
    """Ticket-to-category link; at most one per ticket is primary."""
    category_id: str
    is_primary: bool = False


@dataclass
class TicketEmbedding:
    """Embedding of one body chunk, keyed by (ticket_id, chunk_index)."""
    ticket_id: str
    chunk_index: int
    chunk_text: str
    embedding: List[float]


@dataclass
class KnowledgeChunk:
    """
    One chunk of a knowledge source.

    Uniquely keyed by (source_type, source_id, chunk_index). A source's
    chunk set is only ever replaced as a whole.
    """
    organization_id: str
    source_type: SourceType
    source_id: str
    chunk_index: int
    content: str
    embedding: List[float]
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        self.source_type = SourceType(self.source_type)
        if self.chunk_index < 0:
            raise ValueError("chunk_index must be non-negative")

    @property
    def key(self) -> str:
        return chunk_key(self.source_type, self.source_id, self.chunk_index)


def chunk_key(source_type: Union[SourceType, str], source_id: str, chunk_index: int) -> str:
    """Natural key of a knowledge chunk, used as the vector store primary key."""
    return f"{SourceType(source_type).value}:{source_id}:{chunk_index}"


@dataclass
class KnowledgeMatch:
    """Knowledge chunk returned by similarity search."""
    organization_id: str
    source_type: SourceType
    source_id: str
    chunk_index: int
    content: str
    similarity: float
    metadata: dict = field(default_factory=dict)


def normalize_knowledge_content(source_type: Union[SourceType, str], content: str) -> str:
    """
    FAQ content is stored as a question/answer pair.

    The first line of the update is the question, the rest the answer.
    Other source types are stored unchanged.
    """
    if SourceType(source_type) != SourceType.FAQ:
        return content
    lines = content.split("\n")
    question = lines[0]
    answer = "\n".join(lines[1:])
    return f"--- Question ---\n{question}\n--- Answer ---\n{answer}"


@dataclass
class Notification:
    """Append-only notification emitted as a pipeline side effect."""
    type: NotificationType
    title: str
    content: str
    entity_id: str
    organization_id: str
    entity_type: str = EntityType.TICKET
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.type = NotificationType(self.type)


@dataclass
class TicketContext:
    """Ticket facts given to the support agent."""
    ticket_id: str
    status: str
    priority: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None
    assigned_to: Optional[str] = None
    assigned_team: Optional[str] = None


# ========== Pipeline Results ==========

@dataclass
class IntakeRejected:
    """Moderation flagged the ticket; nothing past the gate ran."""
    ticket_id: str
    moderation: ModerationOutput
    kind: str = "flagged"


@dataclass
class IntakeRouted:
    """Ticket passed moderation and was embedded and routed."""
    ticket_id: str
    moderation: ModerationOutput
    content_chunks: List[str]
    attachment_chunks: List[List[str]]
    routing: RouterOutput
    priority: TicketPriority
    assigned_team_id: Optional[str]
    category_ids: List[str]
    tag_ids: List[str]
    kind: str = "routed"

    @property
    def primary_category_id(self) -> Optional[str]:
        return self.category_ids[0] if self.category_ids else None


IntakeResult = Union[IntakeRejected, IntakeRouted]


@dataclass
class AppliedKnowledgeUpdate:
    """A knowledge source whose chunk set was replaced."""
    source_type: SourceType
    source_id: str
    chunk_count: int
    created: bool = False


@dataclass
class KnowledgeUpdateReport:
    """Outcome of applying the knowledge agent's updates."""
    applied: List[AppliedKnowledgeUpdate] = field(default_factory=list)
    skipped: List[KnowledgeUpdate] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.applied)


@dataclass
class ResolutionResult:
    """Outcome of ticket resolution."""
    ticket_id: str
    matches: List[KnowledgeMatch]
    summary: SummarizationOutput
    knowledge: KnowledgeAgentOutput
    knowledge_report: KnowledgeUpdateReport
    analytics: AnalyticsOutput
    time_to_resolve_minutes: int

    @property
    def kind(self) -> str:
        if self.knowledge_report.has_changes:
            return "resolved_with_knowledge_update"
        return "resolved_without_update"


@dataclass
class MessageProcessingResult:
    """Outcome of answering one customer message."""
    ticket_id: str
    message_id: str
    moderation: ModerationOutput
    agent: Optional[SupportAgentOutput] = None
    quality: Optional[QualityCheckOutput] = None
    reply_message_id: Optional[str] = None
    needs_human_review: bool = False

    @property
    def flagged(self) -> bool:
        return self.moderation.flagged
