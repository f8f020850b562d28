"""
Pipeline Application DTOs
=========================

Data Transfer Objects for the pipeline API layer.

Pydantic models for request/response validation.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from helpdesk.pipeline.domain import (
    AnalyticsOutput,
    IntakeResult,
    KnowledgeAgentOutput,
    MessageProcessingResult,
    ModerationOutput,
    QualityCheckOutput,
    ResolutionResult,
    RouterOutput,
    SummarizationOutput,
    SupportAgentOutput,
)


# ========== Request DTOs ==========

class ResolveTicketRequest(BaseModel):
    """Request model for ticket resolution."""
    resolution: str = Field(..., min_length=1, description="How the ticket was resolved")
    resolved_by: str = Field(default="system", description="User or process resolving the ticket")


class PreviewRequest(BaseModel):
    """Request model for an AI reply preview."""
    message: str = Field(..., min_length=1, description="Customer message to answer")

    @field_validator("message")
    @classmethod
    def validate_message_length(cls, v: str) -> str:
        """Ensure message is not too long."""
        if len(v) > 20000:
            raise ValueError("Message too long (max 20000 characters)")
        return v


class KnowledgeSourceRequest(BaseModel):
    """Request model for replacing a knowledge source."""
    organization_id: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1, description="Full source content")
    reason: str = Field(default="manual update", description="Why the source changed")
    updated_by: str = Field(default="admin")


# ========== Response DTOs ==========

class IntakeResponse(BaseModel):
    """Response model for new ticket processing."""
    ticket_id: str
    outcome: Literal["flagged", "routed"]
    moderation: ModerationOutput
    routing: Optional[RouterOutput] = None
    priority: Optional[str] = None
    assigned_team_id: Optional[str] = None
    category_ids: List[str] = Field(default_factory=list)
    tag_ids: List[str] = Field(default_factory=list)
    content_chunks: int = 0
    attachment_chunks: int = 0

    @classmethod
    def from_result(cls, result: IntakeResult) -> "IntakeResponse":
        if result.kind == "flagged":
            return cls(ticket_id=result.ticket_id, outcome="flagged", moderation=result.moderation)
        return cls(
            ticket_id=result.ticket_id,
            outcome="routed",
            moderation=result.moderation,
            routing=result.routing,
            priority=result.priority.value,
            assigned_team_id=result.assigned_team_id,
            category_ids=result.category_ids,
            tag_ids=result.tag_ids,
            content_chunks=len(result.content_chunks),
            attachment_chunks=sum(len(chunks) for chunks in result.attachment_chunks),
        )


class KnowledgeUpdateInfo(BaseModel):
    """One knowledge source replaced during resolution."""
    source_type: str
    source_id: str
    chunk_count: int
    created: bool


class ResolutionResponse(BaseModel):
    """Response model for ticket resolution."""
    ticket_id: str
    outcome: Literal["resolved_with_knowledge_update", "resolved_without_update"]
    matches: int
    summary: SummarizationOutput
    knowledge: KnowledgeAgentOutput
    knowledge_updates: List[KnowledgeUpdateInfo]
    skipped_updates: int
    analytics: AnalyticsOutput
    time_to_resolve_minutes: int

    @classmethod
    def from_result(cls, result: ResolutionResult) -> "ResolutionResponse":
        return cls(
            ticket_id=result.ticket_id,
            outcome=result.kind,
            matches=len(result.matches),
            summary=result.summary,
            knowledge=result.knowledge,
            knowledge_updates=[
                KnowledgeUpdateInfo(
                    source_type=applied.source_type.value,
                    source_id=applied.source_id,
                    chunk_count=applied.chunk_count,
                    created=applied.created,
                )
                for applied in result.knowledge_report.applied
            ],
            skipped_updates=len(result.knowledge_report.skipped),
            analytics=result.analytics,
            time_to_resolve_minutes=result.time_to_resolve_minutes,
        )


class MessageAcceptedResponse(BaseModel):
    """Response model for queued message processing."""
    ticket_id: str
    message_id: str
    status: str = "accepted"


class MessageProcessingResponse(BaseModel):
    """Outcome of customer message processing."""
    ticket_id: str
    message_id: str
    flagged: bool
    agent: Optional[SupportAgentOutput] = None
    quality: Optional[QualityCheckOutput] = None
    reply_message_id: Optional[str] = None
    needs_human_review: bool = False

    @classmethod
    def from_result(cls, result: MessageProcessingResult) -> "MessageProcessingResponse":
        return cls(
            ticket_id=result.ticket_id,
            message_id=result.message_id,
            flagged=result.flagged,
            agent=result.agent,
            quality=result.quality,
            reply_message_id=result.reply_message_id,
            needs_human_review=result.needs_human_review,
        )


class KnowledgeSourceResponse(BaseModel):
    """Response model for knowledge source replacement."""
    source_type: str
    source_id: str
    total_chunks: int
