"""
Pipeline Domain Layer
=====================

Entities, structured output schemas, prompts and chunking rules.
"""

from helpdesk.pipeline.domain.chunking import TextChunker, chunk_text
from helpdesk.pipeline.domain.entities import (
    AppliedKnowledgeUpdate,
    CatalogEntry,
    CategoryAssignment,
    IntakeRejected,
    IntakeResult,
    IntakeRouted,
    KnowledgeChunk,
    KnowledgeMatch,
    KnowledgeUpdateReport,
    MessageProcessingResult,
    Notification,
    OrganizationCatalog,
    ResolutionResult,
    Ticket,
    TicketContext,
    TicketEmbedding,
    TicketMessage,
    chunk_key,
    normalize_knowledge_content,
)
from helpdesk.pipeline.domain.schemas import (
    AnalyticsOutput,
    KnowledgeAgentOutput,
    KnowledgeUpdate,
    ModerationOutput,
    QualityCheckOutput,
    RelevantArticle,
    RouterOutput,
    SourceReference,
    SummarizationOutput,
    SupportAgentOutput,
)

__all__ = [
    "TextChunker",
    "chunk_text",
    "AppliedKnowledgeUpdate",
    "CatalogEntry",
    "CategoryAssignment",
    "IntakeRejected",
    "IntakeResult",
    "IntakeRouted",
    "KnowledgeChunk",
    "KnowledgeMatch",
    "KnowledgeUpdateReport",
    "MessageProcessingResult",
    "Notification",
    "OrganizationCatalog",
    "ResolutionResult",
    "Ticket",
    "TicketContext",
    "TicketEmbedding",
    "TicketMessage",
    "chunk_key",
    "normalize_knowledge_content",
    "AnalyticsOutput",
    "KnowledgeAgentOutput",
    "KnowledgeUpdate",
    "ModerationOutput",
    "QualityCheckOutput",
    "RelevantArticle",
    "RouterOutput",
    "SourceReference",
    "SummarizationOutput",
    "SupportAgentOutput",
]
