"""
Pipeline Application Layer
==========================

Application layer for the ticket AI pipeline.

Contains:
- Orchestrator: new ticket, resolution and customer message workflows
- Services: embeddings, retrieval, knowledge-base maintenance
- Agents: LLM-backed pipeline components
- DTOs: Data transfer objects for API serialization
"""

from helpdesk.pipeline.application.agents import (
    AnalyticsService,
    KnowledgeAgentService,
    LLMContentModerator,
    QualityCheckService,
    RouterService,
    SummarizerService,
    SupportAgentService,
)
from helpdesk.pipeline.application.dto import (
    IntakeResponse,
    KnowledgeSourceRequest,
    KnowledgeSourceResponse,
    MessageAcceptedResponse,
    MessageProcessingResponse,
    PreviewRequest,
    ResolutionResponse,
    ResolveTicketRequest,
)
from helpdesk.pipeline.application.interfaces import (
    IAttachmentExtractor,
    ICatalogRepository,
    IContentModerator,
    IFileStorage,
    IHelpdeskStore,
    IKnowledgeSourceRepository,
    IMessageRepository,
    INotificationRepository,
    ITicketEmbeddingRepository,
    ITicketRepository,
)
from helpdesk.pipeline.application.orchestrator import TicketPipeline
from helpdesk.pipeline.application.services import (
    Embedder,
    KnowledgeBaseService,
    KnowledgeRetriever,
)
from helpdesk.pipeline.application.structured import StructuredLLMStep, build_step

__all__ = [
    # Orchestrator
    "TicketPipeline",
    # Services
    "Embedder",
    "KnowledgeBaseService",
    "KnowledgeRetriever",
    "StructuredLLMStep",
    "build_step",
    # Agents
    "AnalyticsService",
    "KnowledgeAgentService",
    "LLMContentModerator",
    "QualityCheckService",
    "RouterService",
    "SummarizerService",
    "SupportAgentService",
    # DTOs
    "IntakeResponse",
    "KnowledgeSourceRequest",
    "KnowledgeSourceResponse",
    "MessageAcceptedResponse",
    "MessageProcessingResponse",
    "PreviewRequest",
    "ResolutionResponse",
    "ResolveTicketRequest",
    # Interfaces
    "IAttachmentExtractor",
    "ICatalogRepository",
    "IContentModerator",
    "IFileStorage",
    "IHelpdeskStore",
    "IKnowledgeSourceRepository",
    "IMessageRepository",
    "INotificationRepository",
    "ITicketEmbeddingRepository",
    "ITicketRepository",
]
