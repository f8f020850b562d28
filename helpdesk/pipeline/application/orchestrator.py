"""
Ticket Pipeline Orchestrator
============================

Sequences the pipeline components for the ticket lifecycle:

- ``process_new_ticket``: moderate, chunk, extract attachments, embed,
  route and categorize a new ticket
- ``process_ticket_resolution``: retrieve and summarize knowledge, fold the
  resolution into the knowledge base, score it and mark the ticket resolved
- ``process_customer_message``: answer a customer message grounded in the
  knowledge base
- ``preview_response``: draft a reply without writing anything

Every collaborator is injected. Relational writes go through the
``IHelpdeskStore`` passed per call so the caller owns the unit of work.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, List, Optional

from helpdesk.config import (
    EntityType,
    NextAction,
    NotificationType,
    Settings,
    SourceType,
    TicketPriority,
    TicketStatus,
)
from helpdesk.core import ResourceNotFoundException
from helpdesk.pipeline.application.agents import (
    AnalyticsService,
    KnowledgeAgentService,
    QualityCheckService,
    RouterService,
    SummarizerService,
    SupportAgentService,
    describe_context,
)
from helpdesk.pipeline.application.interfaces import (
    IAttachmentExtractor,
    IContentModerator,
    IHelpdeskStore,
)
from helpdesk.pipeline.application.services import (
    Embedder,
    KnowledgeBaseService,
    KnowledgeRetriever,
)
from helpdesk.pipeline.domain import (
    CategoryAssignment,
    IntakeRejected,
    IntakeResult,
    IntakeRouted,
    KnowledgeUpdate,
    KnowledgeUpdateReport,
    MessageProcessingResult,
    Notification,
    OrganizationCatalog,
    ResolutionResult,
    SupportAgentOutput,
    TextChunker,
    Ticket,
    TicketContext,
    TicketEmbedding,
    TicketMessage,
)
from helpdesk.pipeline.domain.entities import utcnow
from helpdesk.shared.infrastructure.grafana import GrafanaOTLPExporter
from helpdesk.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

INTAKE = "intake"
RESOLUTION = "resolution"
MESSAGE = "message"
PREVIEW = "preview"


class TicketPipeline:
    """
    AI processing of support tickets.

    Example:
        >>> pipeline = TicketPipeline(moderator=..., embedder=..., ...)
        >>> result = await pipeline.process_new_ticket(ticket, store)
        >>> if result.kind == "flagged":
        ...     print(result.moderation.reason)
    """

    def __init__(
        self,
        moderator: IContentModerator,
        embedder: Embedder,
        extractor: IAttachmentExtractor,
        retriever: KnowledgeRetriever,
        knowledge_base: KnowledgeBaseService,
        router: RouterService,
        summarizer: SummarizerService,
        support_agent: SupportAgentService,
        knowledge_agent: KnowledgeAgentService,
        analytics: AnalyticsService,
        chunker: TextChunker,
        settings: Settings,
        quality_checker: Optional[QualityCheckService] = None,
        metrics: Optional[GrafanaOTLPExporter] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self._moderator = moderator
        self._embedder = embedder
        self._extractor = extractor
        self._retriever = retriever
        self._knowledge_base = knowledge_base
        self._router = router
        self._summarizer = summarizer
        self._support_agent = support_agent
        self._knowledge_agent = knowledge_agent
        self._analytics = analytics
        self._chunker = chunker
        self._settings = settings
        self._quality_checker = quality_checker
        self._metrics = metrics
        self._clock = clock

    @property
    def knowledge_base(self) -> KnowledgeBaseService:
        return self._knowledge_base

    @asynccontextmanager
    async def _step(self, workflow: str, step: str, **context):
        """Log and export the latency of one pipeline step."""
        succeeded = False
        timing = {}
        try:
            with log_latency(logger, f"{workflow}.{step}", **context) as timing:
                yield
            succeeded = True
        finally:
            if self._metrics is not None and "latency_ms" in timing:
                await self._metrics.export_step_latency(
                    workflow, step, timing["latency_ms"], succeeded
                )

    # ========== New Ticket ==========

    async def process_new_ticket(self, ticket: Ticket, store: IHelpdeskStore) -> IntakeResult:
        """
        Moderate, embed and route a newly created ticket.

        A flagged ticket is closed as urgent and reported; nothing else runs.
        Re-running on the same ticket replaces its embeddings and assignments.
        """
        ctx = {"ticket_id": ticket.id, "organization_id": ticket.organization_id}

        async with self._step(INTAKE, "moderate", **ctx):
            moderation = await self._moderator.moderate(ticket.full_text)

        if moderation.flagged:
            await store.tickets.update(
                ticket.id,
                status=TicketStatus.CLOSED,
                priority=TicketPriority.URGENT
            )
            await store.notifications.create(Notification(
                type=NotificationType.HIGH_PRIORITY,
                title="Flagged Content Detected",
                content=f"Ticket {ticket.id} was flagged for: {moderation.reason}",
                entity_type=EntityType.TICKET,
                entity_id=ticket.id,
                organization_id=ticket.organization_id,
            ))
            logger.warning("Ticket flagged by moderation", extra={**ctx, "reason": moderation.reason})
            return IntakeRejected(ticket_id=ticket.id, moderation=moderation)

        content_chunks = self._chunker.split(ticket.full_text)

        async with self._step(INTAKE, "extract_attachments", **ctx):
            attachment_chunks = await self._extract_attachments(ticket.id, store)

        async with self._step(INTAKE, "embed", chunk_count=len(content_chunks), **ctx):
            vectors = await self._embedder.embed_many(content_chunks)

        await store.embeddings.replace_for_ticket(ticket.id, [
            TicketEmbedding(
                ticket_id=ticket.id,
                chunk_index=index,
                chunk_text=chunk,
                embedding=vector,
            )
            for index, (chunk, vector) in enumerate(zip(content_chunks, vectors))
        ])

        catalog = await store.catalog.get_catalog(ticket.organization_id)

        async with self._step(INTAKE, "route", **ctx):
            routing = await self._router.route(
                ticket.title,
                ticket.description,
                ticket.organization_id,
                catalog
            )

        priority = TicketPriority(routing.priority)
        team_id = catalog.resolve_team(routing.suggested_team)
        previous_team_id = ticket.assigned_team_id
        await store.tickets.update(ticket.id, priority=priority, assigned_team_id=team_id)

        if team_id and team_id != previous_team_id:
            await store.notifications.create(Notification(
                type=NotificationType.TEAM_ASSIGNMENT,
                title="Ticket Assigned to Team",
                content=f"Ticket {ticket.id} was routed to {catalog.team_name(team_id)}",
                entity_type=EntityType.TICKET,
                entity_id=ticket.id,
                organization_id=ticket.organization_id,
            ))

        category_ids = catalog.resolve_categories(routing.suggested_categories)
        tag_ids = catalog.resolve_tags(routing.suggested_tags)
        self._log_unresolved(catalog, routing.suggested_categories, routing.suggested_tags, ctx)

        await store.tickets.replace_category_assignments(ticket.id, [
            CategoryAssignment(category_id=category_id, is_primary=(index == 0))
            for index, category_id in enumerate(category_ids)
        ])
        await store.tickets.replace_tag_assignments(ticket.id, tag_ids)

        logger.info(
            "Ticket routed",
            extra={
                **ctx,
                "priority": priority.value,
                "categories": len(category_ids),
                "tags": len(tag_ids),
                "needs_human_review": routing.needs_human_review
            }
        )

        return IntakeRouted(
            ticket_id=ticket.id,
            moderation=moderation,
            content_chunks=content_chunks,
            attachment_chunks=attachment_chunks,
            routing=routing,
            priority=priority,
            assigned_team_id=team_id,
            category_ids=category_ids,
            tag_ids=tag_ids,
        )

    async def _extract_attachments(self, ticket_id: str, store: IHelpdeskStore) -> List[List[str]]:
        file_ids = await store.tickets.list_attachment_file_ids(ticket_id)
        if not file_ids:
            return []
        texts = await asyncio.gather(*(self._extractor.extract(file_id) for file_id in file_ids))
        # one entry per file, empty when extraction yielded nothing
        return [self._chunker.split(text) if text else [] for text in texts]

    @staticmethod
    def _log_unresolved(catalog: OrganizationCatalog, categories: List[str], tags: List[str], ctx: dict) -> None:
        known_categories = {name.strip() for name in catalog.category_names}
        known_tags = {name.strip() for name in catalog.tag_names}
        unknown = [c for c in categories if c.strip() not in known_categories]
        unknown += [t for t in tags if t.strip() not in known_tags]
        if unknown:
            logger.info("Dropped unknown category or tag suggestions", extra={**ctx, "dropped": unknown})

    # ========== Resolution ==========

    async def process_ticket_resolution(
        self,
        ticket_id: str,
        resolution: str,
        store: IHelpdeskStore,
        resolved_by: str = "system"
    ) -> ResolutionResult:
        """
        Fold a resolution into the knowledge base and mark the ticket resolved.

        The status changes only after every model call succeeded.

        Raises:
            ResourceNotFoundException: If the ticket does not exist
        """
        ticket = await store.tickets.get(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        ctx = {"ticket_id": ticket.id, "organization_id": ticket.organization_id}
        time_to_resolve = ticket.minutes_open(self._clock())

        async with self._step(RESOLUTION, "embed_query", **ctx):
            query_embedding = await self._embedder.embed(
                f"{ticket.title}\n{ticket.description}\n{resolution}"
            )

        async with self._step(RESOLUTION, "retrieve", **ctx):
            matches = await self._retriever.search(
                query_embedding,
                ticket.organization_id,
                threshold=self._settings.match_threshold,
                limit=self._settings.resolution_match_count
            )

        async with self._step(RESOLUTION, "summarize", match_count=len(matches), **ctx):
            summary = await self._summarizer.summarize(matches)

        categories = await store.tickets.list_category_names(ticket.id)
        tags = await store.tickets.list_tag_names(ticket.id)

        async with self._step(RESOLUTION, "knowledge_agent", **ctx):
            knowledge = await self._knowledge_agent.evaluate(
                ticket, resolution, categories, tags, summary
            )

        report = KnowledgeUpdateReport()
        if knowledge.new_knowledge_extracted and knowledge.knowledge_updates:
            async with self._step(RESOLUTION, "update_knowledge_base", **ctx):
                report = await self._knowledge_base.apply_updates(
                    knowledge.knowledge_updates,
                    ticket.organization_id,
                    resolved_by,
                    allocate_source_id=self._source_allocator(store, ticket.organization_id, resolved_by)
                )

        async with self._step(RESOLUTION, "analytics", **ctx):
            analytics = await self._analytics.evaluate(ticket, resolution, time_to_resolve)

        await store.tickets.update(ticket.id, status=TicketStatus.RESOLVED)

        if analytics.needs_feedback:
            await store.notifications.create(Notification(
                type=NotificationType.HIGH_PRIORITY,
                title="Feedback Required",
                content=f"Ticket {ticket.id} requires {analytics.feedback_type} feedback",
                entity_type=EntityType.TICKET,
                entity_id=ticket.id,
                organization_id=ticket.organization_id,
            ))

        result = ResolutionResult(
            ticket_id=ticket.id,
            matches=matches,
            summary=summary,
            knowledge=knowledge,
            knowledge_report=report,
            analytics=analytics,
            time_to_resolve_minutes=time_to_resolve,
        )
        logger.info(
            "Ticket resolved",
            extra={
                **ctx,
                "outcome": result.kind,
                "knowledge_updates": len(report.applied),
                "time_to_resolve_minutes": time_to_resolve
            }
        )
        return result

    @staticmethod
    def _source_allocator(store: IHelpdeskStore, organization_id: str, created_by: str):
        if store.knowledge_sources is None:
            return None
        repository = store.knowledge_sources

        async def allocate(update: KnowledgeUpdate) -> str:
            return await repository.create(
                organization_id=organization_id,
                source_type=SourceType(update.source_type),
                content=update.content,
                created_by=created_by
            )

        return allocate

    # ========== Customer Messages ==========

    async def process_customer_message(
        self,
        ticket_id: str,
        message_id: str,
        store: IHelpdeskStore
    ) -> MessageProcessingResult:
        """
        Answer a customer message and apply the agent's next action.

        Raises:
            ResourceNotFoundException: If the ticket or message does not exist
        """
        ticket = await store.tickets.get(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        message = await store.messages.get(message_id)
        if message is None or message.ticket_id != ticket.id:
            raise ResourceNotFoundException("TicketMessage", message_id)

        ctx = {"ticket_id": ticket.id, "message_id": message_id, "organization_id": ticket.organization_id}

        async with self._step(MESSAGE, "moderate", **ctx):
            moderation = await self._moderator.moderate(message.content)

        if moderation.flagged:
            await store.notifications.create(Notification(
                type=NotificationType.HIGH_PRIORITY,
                title="Content Flagged",
                content=f"Message content was flagged: {moderation.reason}",
                entity_type=EntityType.MESSAGE,
                entity_id=message_id,
                organization_id=ticket.organization_id,
            ))
            logger.warning("Message flagged by moderation", extra={**ctx, "reason": moderation.reason})
            return MessageProcessingResult(ticket_id=ticket.id, message_id=message_id, moderation=moderation)

        async with self._step(MESSAGE, "retrieve", **ctx):
            query_embedding = await self._embedder.embed(message.content)
            matches = await self._retriever.search(
                query_embedding,
                ticket.organization_id,
                threshold=self._settings.match_threshold,
                limit=self._settings.message_match_count
            )

        catalog = await store.catalog.get_catalog(ticket.organization_id)
        context = self._ticket_context(ticket, catalog)

        async with self._step(MESSAGE, "support_agent", **ctx):
            agent = await self._support_agent.respond(message.content, context, matches)

        quality = None
        needs_review = agent.needs_human_review
        review_reason = agent.human_review_reason
        if self._quality_checker is not None and self._settings.quality_check_enabled:
            async with self._step(MESSAGE, "quality_check", **ctx):
                quality = await self._quality_checker.check(
                    agent.response, describe_context(context, matches)
                )
            if quality.needs_human_review or not quality.passes_check:
                needs_review = True
                review_reason = review_reason or quality.review_reason

        reply = await store.messages.create(TicketMessage(
            ticket_id=ticket.id,
            organization_id=ticket.organization_id,
            content=agent.response,
            is_ai_generated=True,
            is_internal_note=False,
        ))

        if needs_review:
            await store.notifications.create(Notification(
                type=NotificationType.HIGH_PRIORITY,
                title="Human Review Required",
                content=review_reason or "AI requested human review",
                entity_type=EntityType.TICKET,
                entity_id=ticket.id,
                organization_id=ticket.organization_id,
            ))

        await self._apply_next_action(ticket, agent, store)

        return MessageProcessingResult(
            ticket_id=ticket.id,
            message_id=message_id,
            moderation=moderation,
            agent=agent,
            quality=quality,
            reply_message_id=reply.id,
            needs_human_review=needs_review,
        )

    @staticmethod
    async def _apply_next_action(ticket: Ticket, agent: SupportAgentOutput, store: IHelpdeskStore) -> None:
        action = NextAction(agent.next_action)
        if action == NextAction.CLOSE:
            await store.tickets.update(ticket.id, status=TicketStatus.RESOLVED)
        elif action == NextAction.WAIT_FOR_CUSTOMER:
            await store.tickets.update(ticket.id, status=TicketStatus.WAITING_ON_CUSTOMER)
        elif action == NextAction.ESCALATE:
            await store.tickets.update(ticket.id, priority=TicketPriority.HIGH)
        elif action == NextAction.FOLLOW_UP:
            await store.tickets.update(ticket.id, status=TicketStatus.IN_PROGRESS)

    @staticmethod
    def _ticket_context(ticket: Ticket, catalog: OrganizationCatalog) -> TicketContext:
        return TicketContext(
            ticket_id=ticket.id,
            status=ticket.status.value,
            priority=ticket.priority.value,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            created_by=ticket.created_by_user_id,
            assigned_to=ticket.assigned_user_id,
            assigned_team=catalog.team_name(ticket.assigned_team_id),
        )

    async def preview_response(
        self,
        ticket_id: str,
        message: str,
        store: IHelpdeskStore
    ) -> SupportAgentOutput:
        """Draft a support reply for ``message`` without writing anything."""
        ticket = await store.tickets.get(ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)

        ctx = {"ticket_id": ticket.id, "organization_id": ticket.organization_id}

        async with self._step(PREVIEW, "retrieve", **ctx):
            query_embedding = await self._embedder.embed(message)
            matches = await self._retriever.search(
                query_embedding,
                ticket.organization_id,
                threshold=self._settings.match_threshold,
                limit=self._settings.resolution_match_count
            )

        catalog = await store.catalog.get_catalog(ticket.organization_id)

        async with self._step(PREVIEW, "support_agent", **ctx):
            return await self._support_agent.respond(
                message, self._ticket_context(ticket, catalog), matches
            )
