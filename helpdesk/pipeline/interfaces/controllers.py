"""
Pipeline Controllers (API Routes)
=================================

FastAPI routes for the ticket AI pipeline.

Controllers delegate to ``TicketPipeline``; they hold no business logic.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.config import EntityType, NotificationType, SourceType
from helpdesk.core import ResourceNotFoundException
from helpdesk.infrastructure.database import get_session, get_session_context
from helpdesk.pipeline.application import (
    IHelpdeskStore,
    IntakeResponse,
    KnowledgeSourceRequest,
    KnowledgeSourceResponse,
    MessageAcceptedResponse,
    PreviewRequest,
    ResolutionResponse,
    ResolveTicketRequest,
    TicketPipeline,
)
from helpdesk.pipeline.domain import Notification, SupportAgentOutput
from helpdesk.pipeline.infrastructure import SQLAlchemyHelpdeskStore
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["Ticket Pipeline"])

StoreFactory = Callable[[], AsyncContextManager[IHelpdeskStore]]


# ========== Dependencies ==========

def get_pipeline(request: Request) -> TicketPipeline:
    """Get the pipeline from app state."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ticket pipeline not initialized"
        )
    return pipeline


async def get_store(session: AsyncSession = Depends(get_session)) -> IHelpdeskStore:
    """Repositories bound to the request session."""
    return SQLAlchemyHelpdeskStore(session)


@asynccontextmanager
async def _session_store() -> AsyncIterator[IHelpdeskStore]:
    async with get_session_context() as session:
        yield SQLAlchemyHelpdeskStore(session)


def get_store_factory() -> StoreFactory:
    """Opens stores with their own session, for work outliving the request."""
    return _session_store


# ========== Background Work ==========

async def run_message_processing(
    pipeline: TicketPipeline,
    store_factory: StoreFactory,
    ticket_id: str,
    message_id: str
) -> None:
    """
    Process a customer message after the response was sent.

    A failure is logged and recorded as an "AI Processing Error"
    notification in a fresh session.
    """
    try:
        async with store_factory() as store:
            result = await pipeline.process_customer_message(ticket_id, message_id, store)
        logger.info(
            "Customer message processed",
            extra={
                "ticket_id": ticket_id,
                "message_id": message_id,
                "flagged": result.flagged,
                "needs_human_review": result.needs_human_review
            }
        )
    except Exception as e:
        logger.error(
            "Customer message processing failed",
            extra={"ticket_id": ticket_id, "message_id": message_id, "error": str(e)},
            exc_info=True
        )
        await _record_processing_error(store_factory, ticket_id, str(e))


async def _record_processing_error(store_factory: StoreFactory, ticket_id: str, error: str) -> None:
    async with store_factory() as store:
        ticket = await store.tickets.get(ticket_id)
        if ticket is None:
            logger.warning("Cannot record processing error for unknown ticket", extra={"ticket_id": ticket_id})
            return
        await store.notifications.create(Notification(
            type=NotificationType.HIGH_PRIORITY,
            title="AI Processing Error",
            content=f"Error processing ticket: {error}",
            entity_type=EntityType.TICKET,
            entity_id=ticket_id,
            organization_id=ticket.organization_id,
        ))


# ========== Route Handlers ==========

@router.post(
    "/tickets/{ticket_id}/process",
    response_model=IntakeResponse,
    summary="Moderate, embed and route a new ticket",
    description="""
    Runs the intake workflow for a stored ticket:
    1. Moderates title and description; flagged tickets are closed as urgent
    2. Chunks and embeds the body, extracts attachment text
    3. Routes the ticket: priority, team, categories and tags

    Re-running replaces the ticket's embeddings and assignments.
    """,
    responses={404: {"description": "Ticket not found"}, 502: {"description": "AI provider failure"}}
)
async def process_ticket(
    request: Request,
    ticket_id: str,
    store: IHelpdeskStore = Depends(get_store),
    pipeline: TicketPipeline = Depends(get_pipeline)
):
    start_time = time.perf_counter()
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    ticket = await store.tickets.get(ticket_id)
    if ticket is None:
        raise ResourceNotFoundException("Ticket", ticket_id)

    result = await pipeline.process_new_ticket(ticket, store)

    logger.info(
        "Ticket processed",
        extra={
            "correlation_id": correlation_id,
            "ticket_id": ticket_id,
            "outcome": result.kind,
            "processing_time_ms": int((time.perf_counter() - start_time) * 1000)
        }
    )
    return IntakeResponse.from_result(result)


@router.post(
    "/tickets/{ticket_id}/resolve",
    response_model=ResolutionResponse,
    summary="Resolve a ticket and update the knowledge base",
    responses={404: {"description": "Ticket not found"}, 502: {"description": "AI provider failure"}}
)
async def resolve_ticket(
    ticket_id: str,
    payload: ResolveTicketRequest,
    store: IHelpdeskStore = Depends(get_store),
    pipeline: TicketPipeline = Depends(get_pipeline)
):
    result = await pipeline.process_ticket_resolution(
        ticket_id,
        payload.resolution,
        store,
        resolved_by=payload.resolved_by
    )
    return ResolutionResponse.from_result(result)


@router.post(
    "/tickets/{ticket_id}/messages/{message_id}/process",
    response_model=MessageAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Answer a customer message in the background"
)
async def process_message(
    ticket_id: str,
    message_id: str,
    background_tasks: BackgroundTasks,
    pipeline: TicketPipeline = Depends(get_pipeline),
    store_factory: StoreFactory = Depends(get_store_factory)
):
    background_tasks.add_task(run_message_processing, pipeline, store_factory, ticket_id, message_id)
    return MessageAcceptedResponse(ticket_id=ticket_id, message_id=message_id)


@router.post(
    "/tickets/{ticket_id}/preview",
    response_model=SupportAgentOutput,
    summary="Draft an AI reply without posting it"
)
async def preview_response(
    ticket_id: str,
    payload: PreviewRequest,
    store: IHelpdeskStore = Depends(get_store),
    pipeline: TicketPipeline = Depends(get_pipeline)
):
    return await pipeline.preview_response(ticket_id, payload.message, store)


@router.put(
    "/knowledge/{source_type}/{source_id}",
    response_model=KnowledgeSourceResponse,
    summary="Replace a knowledge source",
    description="Re-chunks and re-embeds the content, replacing every stored chunk of the source."
)
async def replace_knowledge_source(
    source_type: SourceType,
    source_id: str,
    payload: KnowledgeSourceRequest,
    pipeline: TicketPipeline = Depends(get_pipeline)
):
    total_chunks = await pipeline.knowledge_base.replace_source(
        organization_id=payload.organization_id,
        source_type=source_type,
        source_id=source_id,
        content=payload.content,
        reason=payload.reason,
        updated_by=payload.updated_by
    )
    return KnowledgeSourceResponse(
        source_type=source_type.value,
        source_id=source_id,
        total_chunks=total_chunks
    )
