"""
Pipeline Application Interfaces
===============================

Ports the orchestrator depends on. Relational data sits behind the
repository interfaces bundled by ``IHelpdeskStore``; moderation, document
parsing and file storage are external collaborators.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from helpdesk.config import SourceType, TicketPriority, TicketStatus
from helpdesk.pipeline.domain import (
    CategoryAssignment,
    ModerationOutput,
    Notification,
    OrganizationCatalog,
    Ticket,
    TicketEmbedding,
    TicketMessage,
)


# ========== Repository Interfaces ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get(self, ticket_id: str) -> Optional[Ticket]:
        """Get ticket by id."""

    @abstractmethod
    async def update(
        self,
        ticket_id: str,
        status: Optional[TicketStatus] = None,
        priority: Optional[TicketPriority] = None,
        assigned_team_id: Optional[str] = None
    ) -> None:
        """Update the given fields; ``None`` leaves a field unchanged."""

    @abstractmethod
    async def replace_category_assignments(
        self,
        ticket_id: str,
        assignments: List[CategoryAssignment]
    ) -> None:
        """Replace every category assignment of the ticket."""

    @abstractmethod
    async def replace_tag_assignments(self, ticket_id: str, tag_ids: List[str]) -> None:
        """Replace every tag assignment of the ticket."""

    @abstractmethod
    async def list_category_names(self, ticket_id: str) -> List[str]:
        """Assigned category names, primary first."""

    @abstractmethod
    async def list_tag_names(self, ticket_id: str) -> List[str]:
        """Assigned tag names."""

    @abstractmethod
    async def list_attachment_file_ids(self, ticket_id: str) -> List[str]:
        """File ids attached to the ticket."""


class ICatalogRepository(ABC):
    """Interface for organization categories, tags and teams."""

    @abstractmethod
    async def get_catalog(self, organization_id: str) -> OrganizationCatalog:
        """Load the organization's catalog."""


class ITicketEmbeddingRepository(ABC):
    """Interface for ticket body embeddings."""

    @abstractmethod
    async def replace_for_ticket(self, ticket_id: str, embeddings: List[TicketEmbedding]) -> None:
        """Delete every embedding of the ticket, then insert ``embeddings``."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str) -> List[TicketEmbedding]:
        """Embeddings ordered by chunk_index."""


class INotificationRepository(ABC):
    """Append-only notification storage."""

    @abstractmethod
    async def create(self, notification: Notification) -> Notification:
        """Store notification and return it with its id."""


class IMessageRepository(ABC):
    """Interface for ticket messages."""

    @abstractmethod
    async def get(self, message_id: str) -> Optional[TicketMessage]:
        """Get message by id."""

    @abstractmethod
    async def create(self, message: TicketMessage) -> TicketMessage:
        """Store message and return it with its id."""


class IKnowledgeSourceRepository(ABC):
    """Allocates ids for knowledge created from resolutions."""

    @abstractmethod
    async def create(
        self,
        organization_id: str,
        source_type: SourceType,
        content: str,
        created_by: str
    ) -> str:
        """Create a knowledge source row and return its id."""


class IHelpdeskStore(ABC):
    """Repositories sharing one unit of work."""

    tickets: ITicketRepository
    catalog: ICatalogRepository
    embeddings: ITicketEmbeddingRepository
    notifications: INotificationRepository
    messages: IMessageRepository
    knowledge_sources: Optional[IKnowledgeSourceRepository]


# ========== External Collaborators ==========

class IContentModerator(ABC):
    """Policy gate over raw user text."""

    @abstractmethod
    async def moderate(self, text: str) -> ModerationOutput:
        """Classify ``text``; raises ModerationException on provider failure."""


class IFileStorage(ABC):
    """Uploaded file access."""

    @abstractmethod
    async def read(self, file_id: str) -> Tuple[str, bytes]:
        """Return (filename, content) for ``file_id``."""


class IAttachmentExtractor(ABC):
    """Best-effort text extraction from uploaded files."""

    @abstractmethod
    async def extract(self, file_id: str) -> Optional[str]:
        """Extracted text, or None when nothing could be extracted."""
