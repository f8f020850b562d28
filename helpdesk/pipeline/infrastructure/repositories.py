"""
Pipeline Infrastructure Repositories
====================================

SQLAlchemy implementations of the pipeline repositories.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.config import SourceType, TicketPriority, TicketStatus
from helpdesk.core import RepositoryException, ValidationException
from helpdesk.pipeline.application.interfaces import (
    ICatalogRepository,
    IHelpdeskStore,
    IKnowledgeSourceRepository,
    IMessageRepository,
    INotificationRepository,
    ITicketEmbeddingRepository,
    ITicketRepository,
)
from helpdesk.pipeline.domain import (
    CatalogEntry,
    CategoryAssignment,
    Notification,
    OrganizationCatalog,
    Ticket,
    TicketEmbedding,
    TicketMessage,
)
from helpdesk.pipeline.infrastructure.models import (
    KnowledgeSourceModel,
    NotificationModel,
    SupportTeamModel,
    SupportTicketModel,
    TicketCategoryAssignmentModel,
    TicketCategoryModel,
    TicketEmbeddingModel,
    TicketFileAttachmentModel,
    TicketMessageModel,
    TicketTagAssignmentModel,
    TicketTagModel,
)


def _to_ticket(model: SupportTicketModel) -> Ticket:
    return Ticket(
        id=model.id,
        title=model.title,
        description=model.description,
        organization_id=model.organization_id,
        status=model.status,
        priority=model.priority,
        assigned_team_id=model.assigned_team_id,
        assigned_user_id=model.assigned_user_id,
        created_by_user_id=model.created_by_user_id,
        created_at=model.created_at,
        updated_at=model.updated_at
    )


class SQLAlchemyTicketRepository(ITicketRepository):
    """SQLAlchemy implementation for tickets and their assignments."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, ticket_id: str) -> Optional[Ticket]:
        model = await self._session.get(SupportTicketModel, ticket_id)
        return _to_ticket(model) if model else None

    async def update(
        self,
        ticket_id: str,
        status: Optional[TicketStatus] = None,
        priority: Optional[TicketPriority] = None,
        assigned_team_id: Optional[str] = None
    ) -> None:
        values = {}
        if status is not None:
            values["status"] = TicketStatus(status).value
        if priority is not None:
            values["priority"] = TicketPriority(priority).value
        if assigned_team_id is not None:
            values["assigned_team_id"] = assigned_team_id
        if not values:
            return

        values["updated_at"] = datetime.now(timezone.utc)
        stmt = update(SupportTicketModel).where(SupportTicketModel.id == ticket_id).values(**values)
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to update ticket {ticket_id}: {e}") from e
        if result.rowcount == 0:
            raise RepositoryException(f"Ticket not found: {ticket_id}")

    async def replace_category_assignments(
        self,
        ticket_id: str,
        assignments: List[CategoryAssignment]
    ) -> None:
        if sum(1 for a in assignments if a.is_primary) > 1:
            raise ValidationException(
                "At most one primary category per ticket",
                {"ticket_id": ticket_id}
            )

        await self._session.execute(
            delete(TicketCategoryAssignmentModel).where(
                TicketCategoryAssignmentModel.ticket_id == ticket_id
            )
        )
        self._session.add_all([
            TicketCategoryAssignmentModel(
                ticket_id=ticket_id,
                category_id=a.category_id,
                is_primary_category=a.is_primary,
                position=position
            )
            for position, a in enumerate(assignments)
        ])
        await self._session.flush()

    async def replace_tag_assignments(self, ticket_id: str, tag_ids: List[str]) -> None:
        await self._session.execute(
            delete(TicketTagAssignmentModel).where(TicketTagAssignmentModel.ticket_id == ticket_id)
        )
        self._session.add_all([
            TicketTagAssignmentModel(ticket_id=ticket_id, tag_id=tag_id, position=position)
            for position, tag_id in enumerate(tag_ids)
        ])
        await self._session.flush()

    async def list_category_names(self, ticket_id: str) -> List[str]:
        stmt = (
            select(TicketCategoryModel.name)
            .join(
                TicketCategoryAssignmentModel,
                TicketCategoryAssignmentModel.category_id == TicketCategoryModel.id
            )
            .where(TicketCategoryAssignmentModel.ticket_id == ticket_id)
            .order_by(
                TicketCategoryAssignmentModel.is_primary_category.desc(),
                TicketCategoryAssignmentModel.position
            )
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_tag_names(self, ticket_id: str) -> List[str]:
        stmt = (
            select(TicketTagModel.name)
            .join(TicketTagAssignmentModel, TicketTagAssignmentModel.tag_id == TicketTagModel.id)
            .where(TicketTagAssignmentModel.ticket_id == ticket_id)
            .order_by(TicketTagAssignmentModel.position)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_attachment_file_ids(self, ticket_id: str) -> List[str]:
        stmt = (
            select(TicketFileAttachmentModel.file_id)
            .where(TicketFileAttachmentModel.ticket_id == ticket_id)
            .where(TicketFileAttachmentModel.message_id.is_(None))
            .order_by(TicketFileAttachmentModel.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class SQLAlchemyCatalogRepository(ICatalogRepository):
    """Loads an organization's categories, tags and teams."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _entries(self, model, organization_id: str) -> List[CatalogEntry]:
        stmt = (
            select(model.id, model.name)
            .where(model.organization_id == organization_id)
            .order_by(model.name)
        )
        result = await self._session.execute(stmt)
        return [CatalogEntry(id=row.id, name=row.name) for row in result]

    async def get_catalog(self, organization_id: str) -> OrganizationCatalog:
        # One AsyncSession cannot run statements concurrently
        return OrganizationCatalog(
            organization_id=organization_id,
            categories=await self._entries(TicketCategoryModel, organization_id),
            tags=await self._entries(TicketTagModel, organization_id),
            teams=await self._entries(SupportTeamModel, organization_id),
        )


class SQLAlchemyTicketEmbeddingRepository(ITicketEmbeddingRepository):
    """SQLAlchemy implementation for ticket body embeddings."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def replace_for_ticket(self, ticket_id: str, embeddings: List[TicketEmbedding]) -> None:
        try:
            await self._session.execute(
                delete(TicketEmbeddingModel).where(TicketEmbeddingModel.ticket_id == ticket_id)
            )
            self._session.add_all([
                TicketEmbeddingModel(
                    ticket_id=ticket_id,
                    chunk_index=e.chunk_index,
                    chunk_text=e.chunk_text,
                    embedding=list(e.embedding)
                )
                for e in embeddings
            ])
            await self._session.flush()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Failed to store embeddings for ticket {ticket_id}: {e}") from e

    async def list_for_ticket(self, ticket_id: str) -> List[TicketEmbedding]:
        stmt = (
            select(TicketEmbeddingModel)
            .where(TicketEmbeddingModel.ticket_id == ticket_id)
            .order_by(TicketEmbeddingModel.chunk_index)
        )
        result = await self._session.execute(stmt)
        return [
            TicketEmbedding(
                ticket_id=m.ticket_id,
                chunk_index=m.chunk_index,
                chunk_text=m.chunk_text,
                embedding=list(m.embedding)
            )
            for m in result.scalars().all()
        ]


class SQLAlchemyNotificationRepository(INotificationRepository):
    """Append-only notification storage."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, notification: Notification) -> Notification:
        model = NotificationModel(
            organization_id=notification.organization_id,
            type=notification.type.value,
            title=notification.title,
            content=notification.content,
            entity_type=str(notification.entity_type),
            entity_id=notification.entity_id,
            created_at=notification.created_at
        )
        self._session.add(model)
        await self._session.flush()
        notification.id = model.id
        return notification


class SQLAlchemyMessageRepository(IMessageRepository):
    """SQLAlchemy implementation for ticket messages."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, message_id: str) -> Optional[TicketMessage]:
        model = await self._session.get(TicketMessageModel, message_id)
        if model is None:
            return None
        return TicketMessage(
            id=model.id,
            ticket_id=model.ticket_id,
            organization_id=model.organization_id,
            content=model.content,
            sender_user_id=model.sender_user_id,
            is_ai_generated=model.is_ai_generated,
            is_internal_note=model.is_internal_note,
            created_at=model.created_at
        )

    async def create(self, message: TicketMessage) -> TicketMessage:
        model = TicketMessageModel(
            ticket_id=message.ticket_id,
            organization_id=message.organization_id,
            content=message.content,
            sender_user_id=message.sender_user_id,
            is_ai_generated=message.is_ai_generated,
            is_internal_note=message.is_internal_note,
            created_at=message.created_at
        )
        self._session.add(model)
        await self._session.flush()
        message.id = model.id
        return message


class SQLAlchemyKnowledgeSourceRepository(IKnowledgeSourceRepository):
    """Allocates knowledge source ids."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(
        self,
        organization_id: str,
        source_type: SourceType,
        content: str,
        created_by: str
    ) -> str:
        model = KnowledgeSourceModel(
            organization_id=organization_id,
            source_type=SourceType(source_type).value,
            content=content,
            created_by=created_by
        )
        self._session.add(model)
        await self._session.flush()
        return model.id


class SQLAlchemyHelpdeskStore(IHelpdeskStore):
    """Every pipeline repository bound to one session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.tickets = SQLAlchemyTicketRepository(session)
        self.catalog = SQLAlchemyCatalogRepository(session)
        self.embeddings = SQLAlchemyTicketEmbeddingRepository(session)
        self.notifications = SQLAlchemyNotificationRepository(session)
        self.messages = SQLAlchemyMessageRepository(session)
        self.knowledge_sources = SQLAlchemyKnowledgeSourceRepository(session)
