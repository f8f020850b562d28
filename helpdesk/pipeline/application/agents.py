"""
Pipeline LLM Components
=======================

Router, Summarizer, Support Agent, Knowledge Agent, Analytics Evaluator,
Quality Checker and the prompt-based moderator. Each one formats its
inputs and delegates to a ``StructuredLLMStep``.
"""

from typing import List, Optional

from helpdesk.pipeline.application.interfaces import IContentModerator
from helpdesk.pipeline.application.structured import StructuredLLMStep
from helpdesk.pipeline.domain import (
    AnalyticsOutput,
    KnowledgeAgentOutput,
    KnowledgeMatch,
    ModerationOutput,
    OrganizationCatalog,
    QualityCheckOutput,
    RouterOutput,
    SummarizationOutput,
    SupportAgentOutput,
    Ticket,
    TicketContext,
)

NO_RELEVANT_CONTENT = "No relevant knowledge base content found."
NO_KEY_POINTS = "No key points available."
NOT_SET = "None"


def _join_names(names: List[str]) -> str:
    return ", ".join(names) if names else NOT_SET


class RouterService:
    """Decides priority, categories, tags, complexity and team for a new ticket."""

    def __init__(self, step: StructuredLLMStep[RouterOutput]):
        self._step = step

    async def route(
        self,
        title: str,
        description: str,
        organization_id: str,
        catalog: OrganizationCatalog
    ) -> RouterOutput:
        return await self._step.run(
            title=title,
            description=description,
            organization_id=organization_id,
            categories=_join_names(catalog.category_names),
            tags=_join_names(catalog.tag_names),
            teams=_join_names(catalog.team_names),
        )


class SummarizerService:
    """
    Condenses knowledge matches.

    An empty match list never reaches the model: it yields the
    ``NO_RELEVANT_CONTENT`` sentinel.
    """

    def __init__(self, step: StructuredLLMStep[SummarizationOutput]):
        self._step = step

    @staticmethod
    def empty() -> SummarizationOutput:
        return SummarizationOutput(summary=NO_RELEVANT_CONTENT, key_points=[], source_references=[])

    async def summarize(self, matches: List[KnowledgeMatch]) -> SummarizationOutput:
        if not matches:
            return self.empty()

        context = "\n\n".join(m.content for m in matches)
        sources = "\n".join(
            f"{m.source_type.value.upper()} ({m.source_id}): Similarity {m.similarity:.3f}"
            for m in matches
        )
        return await self._step.run(context=context, sources=sources)


def format_knowledge_base(matches: List[KnowledgeMatch]) -> str:
    """Knowledge matches as ``SOURCE_TYPE (id): content`` blocks."""
    if not matches:
        return NO_RELEVANT_CONTENT
    return "\n\n".join(
        f"{m.source_type.value.upper()} ({m.source_id}): {m.content}" for m in matches
    )


class SupportAgentService:
    """Drafts the customer-facing reply."""

    def __init__(self, step: StructuredLLMStep[SupportAgentOutput]):
        self._step = step

    async def respond(
        self,
        message: str,
        ticket_context: TicketContext,
        knowledge_base: List[KnowledgeMatch]
    ) -> SupportAgentOutput:
        return await self._step.run(
            message=message,
            status=ticket_context.status,
            priority=ticket_context.priority,
            created_at=ticket_context.created_at.isoformat() if ticket_context.created_at else NOT_SET,
            created_by=ticket_context.created_by or NOT_SET,
            assigned_to=ticket_context.assigned_to or NOT_SET,
            assigned_team=ticket_context.assigned_team or NOT_SET,
            knowledge_base=format_knowledge_base(knowledge_base),
        )


class KnowledgeAgentService:
    """Decides whether a resolution becomes knowledge-base content."""

    def __init__(self, step: StructuredLLMStep[KnowledgeAgentOutput]):
        self._step = step

    async def evaluate(
        self,
        ticket: Ticket,
        resolution: str,
        categories: List[str],
        tags: List[str],
        summary: SummarizationOutput
    ) -> KnowledgeAgentOutput:
        return await self._step.run(
            title=ticket.title,
            description=ticket.description,
            resolution=resolution,
            categories=", ".join(categories),
            tags=", ".join(tags),
            summary=summary.summary,
            key_points="\n".join(summary.key_points) if summary.key_points else NO_KEY_POINTS,
        )


class AnalyticsService:
    """Scores a resolution."""

    def __init__(self, step: StructuredLLMStep[AnalyticsOutput]):
        self._step = step

    async def evaluate(
        self,
        ticket: Ticket,
        resolution: str,
        time_to_resolve_minutes: int
    ) -> AnalyticsOutput:
        return await self._step.run(
            ticket_info=f"{ticket.title}\n{ticket.description}",
            resolution=resolution,
            time_to_resolve=time_to_resolve_minutes,
        )


class QualityCheckService:
    """Reviews a drafted reply before it is posted."""

    def __init__(self, step: StructuredLLMStep[QualityCheckOutput]):
        self._step = step

    async def check(self, response: str, context: str) -> QualityCheckOutput:
        return await self._step.run(response=response, context=context)


class LLMContentModerator(IContentModerator):
    """Moderation through a chat prompt, for providers without a moderation endpoint."""

    def __init__(self, step: StructuredLLMStep[ModerationOutput]):
        self._step = step

    async def moderate(self, text: str) -> ModerationOutput:
        result = await self._step.run(text=text)
        if result.flagged and not result.reason:
            return ModerationOutput(flagged=True, reason="unspecified policy violation")
        return result


def describe_context(context: TicketContext, knowledge_base: Optional[List[KnowledgeMatch]] = None) -> str:
    """Plain-text ticket context for the quality checker."""
    lines = [
        f"Ticket {context.ticket_id}",
        f"Status: {context.status}",
        f"Priority: {context.priority}",
        f"Team: {context.assigned_team or NOT_SET}",
    ]
    if knowledge_base:
        lines.append("Knowledge used:")
        lines.append(format_knowledge_base(knowledge_base))
    return "\n".join(lines)
