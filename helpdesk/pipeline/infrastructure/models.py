"""
Pipeline Infrastructure Models
==============================

SQLAlchemy ORM models for tickets, the organization catalog, ticket
embeddings, messages, attachments, notifications and knowledge sources.

Identifiers are UUID strings so the same schema runs on PostgreSQL and
SQLite.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.config import TicketPriority, TicketStatus
from helpdesk.infrastructure.database import Base


def _new_id() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SupportTicketModel(Base):
    """
    Database model for Ticket entity.

    ``organization_id`` scopes every catalog and knowledge lookup.
    """
    __tablename__ = "support_tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=TicketStatus.OPEN.value)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default=TicketPriority.NORMAL.value)

    assigned_team_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("support_teams.id", ondelete="SET NULL"),
        nullable=True
    )
    assigned_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


# ========== Organization Catalog ==========

class TicketCategoryModel(Base):
    __tablename__ = "ticket_categories"
    __table_args__ = (UniqueConstraint("organization_id", "name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class TicketTagModel(Base):
    __tablename__ = "ticket_tags"
    __table_args__ = (UniqueConstraint("organization_id", "name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class SupportTeamModel(Base):
    __tablename__ = "support_teams"
    __table_args__ = (UniqueConstraint("organization_id", "name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class TicketCategoryAssignmentModel(Base):
    """Ticket-to-category link; at most one row per ticket is primary."""
    __tablename__ = "ticket_category_assignments"
    __table_args__ = (UniqueConstraint("ticket_id", "category_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    ticket_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("support_tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    category_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ticket_categories.id", ondelete="CASCADE"),
        nullable=False
    )
    is_primary_category: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class TicketTagAssignmentModel(Base):
    __tablename__ = "ticket_tag_assignments"
    __table_args__ = (UniqueConstraint("ticket_id", "tag_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    ticket_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("support_tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    tag_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ticket_tags.id", ondelete="CASCADE"),
        nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


# ========== Embeddings ==========

class TicketEmbeddingModel(Base):
    """
    Embedding of one ticket body chunk.

    The vector is stored as a JSON array; similarity search over knowledge
    runs in the vector store, not here.
    """
    __tablename__ = "ticket_embeddings"
    __table_args__ = (UniqueConstraint("ticket_id", "chunk_index"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    ticket_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("support_tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    chunk_text: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[List[float]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


# ========== Messages & Attachments ==========

class TicketMessageModel(Base):
    __tablename__ = "ticket_messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    ticket_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("support_tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    sender_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    is_ai_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_internal_note: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class TicketFileAttachmentModel(Base):
    """Uploaded file attached to a ticket or to one of its messages."""
    __tablename__ = "ticket_file_attachments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    ticket_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("support_tickets.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    message_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("ticket_messages.id", ondelete="CASCADE"),
        nullable=True
    )
    file_id: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


# ========== Notifications & Knowledge Sources ==========

class NotificationModel(Base):
    """Append-only notification."""
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


class KnowledgeSourceModel(Base):
    """Knowledge created from resolved tickets; its id keys the chunk set."""
    __tablename__ = "knowledge_sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    source_type: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
