"""
Pipeline Infrastructure Layer
=============================

Infrastructure implementations for the ticket AI pipeline.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: Data access implementations
- External: Moderation, file storage and document parsing adapters
"""

from helpdesk.pipeline.infrastructure.external import (
    LocalFileStorage,
    OpenAIContentModerator,
    UnstructuredAttachmentExtractor,
    build_pipeline,
)
from helpdesk.pipeline.infrastructure.repositories import (
    SQLAlchemyCatalogRepository,
    SQLAlchemyHelpdeskStore,
    SQLAlchemyKnowledgeSourceRepository,
    SQLAlchemyMessageRepository,
    SQLAlchemyNotificationRepository,
    SQLAlchemyTicketEmbeddingRepository,
    SQLAlchemyTicketRepository,
)

__all__ = [
    "LocalFileStorage",
    "OpenAIContentModerator",
    "UnstructuredAttachmentExtractor",
    "build_pipeline",
    "SQLAlchemyCatalogRepository",
    "SQLAlchemyHelpdeskStore",
    "SQLAlchemyKnowledgeSourceRepository",
    "SQLAlchemyMessageRepository",
    "SQLAlchemyNotificationRepository",
    "SQLAlchemyTicketEmbeddingRepository",
    "SQLAlchemyTicketRepository",
]
