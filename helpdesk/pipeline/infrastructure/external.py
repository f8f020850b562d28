"""
Pipeline External Service Adapters
==================================

Adapters for external services used by the pipeline:

- ``OpenAIContentModerator``: OpenAI moderation endpoint
- ``LocalFileStorage``: uploaded files on the local filesystem
- ``UnstructuredAttachmentExtractor``: text extraction through an
  Unstructured-style partition API
- ``build_pipeline``: wires a ``TicketPipeline`` from settings
"""

import asyncio
import re
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Tuple

import httpx
from openai import APIError, AsyncOpenAI

from helpdesk.config import Settings, settings
from helpdesk.core import ModerationException, ResourceNotFoundException
from helpdesk.infrastructure.llm import ILLMClient, OpenAILLMClient
from helpdesk.infrastructure.vectorstore import IKnowledgeBaseStore
from helpdesk.pipeline.application.agents import (
    AnalyticsService,
    KnowledgeAgentService,
    LLMContentModerator,
    QualityCheckService,
    RouterService,
    SummarizerService,
    SupportAgentService,
)
from helpdesk.pipeline.application.interfaces import (
    IAttachmentExtractor,
    IContentModerator,
    IFileStorage,
)
from helpdesk.pipeline.application.orchestrator import TicketPipeline
from helpdesk.pipeline.application.services import (
    Embedder,
    KnowledgeBaseService,
    KnowledgeRetriever,
)
from helpdesk.pipeline.application.structured import build_step
from helpdesk.pipeline.domain import (
    AnalyticsOutput,
    KnowledgeAgentOutput,
    ModerationOutput,
    QualityCheckOutput,
    RouterOutput,
    SummarizationOutput,
    SupportAgentOutput,
    TextChunker,
)
from helpdesk.pipeline.domain.entities import utcnow
from helpdesk.pipeline.domain.prompts import (
    ANALYTICS_PROMPT,
    KNOWLEDGE_AGENT_PROMPT,
    MODERATION_PROMPT,
    QUALITY_CHECK_PROMPT,
    ROUTER_PROMPT,
    SUMMARIZATION_PROMPT,
    SUPPORT_AGENT_PROMPT,
)
from helpdesk.shared.infrastructure.grafana import GrafanaOTLPExporter
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.shared.infrastructure.timeouts import call_with_timeout

logger = get_logger(__name__)

_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


class OpenAIContentModerator(IContentModerator):
    """
    Moderation through the OpenAI moderation endpoint.

    The reason of a flagged verdict lists the flagged categories.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: Optional[str] = None,
        timeout_seconds: float = 60.0
    ):
        self._client = client
        self._model = model or settings.moderation_model
        self._timeout_seconds = timeout_seconds

    async def moderate(self, text: str) -> ModerationOutput:
        try:
            response = await call_with_timeout(
                self._client.moderations.create(model=self._model, input=text),
                self._timeout_seconds,
                "Moderation Service"
            )
        except APIError as e:
            raise ModerationException(f"Moderation request failed: {e}") from e

        if not response.results:
            raise ModerationException("Moderation response contained no results", retryable=False)

        result = response.results[0]
        if not result.flagged:
            return ModerationOutput(flagged=False)

        categories = result.categories.model_dump(by_alias=True)
        flagged = [name for name, hit in categories.items() if hit]
        return ModerationOutput(
            flagged=True,
            reason=", ".join(flagged) or "unspecified policy violation"
        )


class LocalFileStorage(IFileStorage):
    """Files stored under one directory, addressed by relative file id."""

    def __init__(self, root: Path):
        self._root = Path(root).resolve()

    def _path(self, file_id: str) -> Path:
        path = (self._root / file_id).resolve()
        if self._root not in path.parents:
            raise ResourceNotFoundException("File", file_id)
        return path

    async def read(self, file_id: str) -> Tuple[str, bytes]:
        path = self._path(file_id)
        if not path.is_file():
            raise ResourceNotFoundException("File", file_id)
        content = await asyncio.to_thread(path.read_bytes)
        return path.name, content


class UnstructuredAttachmentExtractor(IAttachmentExtractor):
    """
    Best-effort text extraction through a document-parsing service.

    The file is posted as multipart form data; the ``text`` of every
    returned element is joined with newlines. Any failure is logged and
    yields None.
    """

    def __init__(
        self,
        storage: IFileStorage,
        endpoint: Optional[str] = None,
        strategy: str = "fast",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._storage = storage
        self._endpoint = endpoint
        self._strategy = strategy
        self._timeout = timeout
        self._transport = transport

    async def extract(self, file_id: str) -> Optional[str]:
        if not self._endpoint:
            logger.warning("Attachment extraction skipped, no parsing endpoint", extra={"file_id": file_id})
            return None

        try:
            filename, content = await self._storage.read(file_id)
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self._endpoint,
                    files={"files": (filename, content)},
                    data={"strategy": self._strategy},
                    headers={"accept": "application/json"}
                )
                response.raise_for_status()
            elements = response.json()
            if not isinstance(elements, list):
                raise ValueError(f"expected a list of elements, got {type(elements).__name__}")
        except (httpx.HTTPError, ValueError, OSError, ResourceNotFoundException) as e:
            logger.warning(
                "Attachment extraction failed",
                extra={"file_id": file_id, "error": str(e)}
            )
            return None

        texts = [
            element["text"].strip()
            for element in elements
            if isinstance(element, dict) and isinstance(element.get("text"), str) and element["text"].strip()
        ]
        if not texts:
            return None
        return _EXCESS_NEWLINES_RE.sub("\n\n", "\n".join(texts))


def build_pipeline(
    llm_client: ILLMClient,
    knowledge_store: IKnowledgeBaseStore,
    config: Optional[Settings] = None,
    metrics: Optional[GrafanaOTLPExporter] = None,
    extractor: Optional[IAttachmentExtractor] = None,
    moderator: Optional[IContentModerator] = None,
    clock: Optional[Callable[[], datetime]] = None
) -> TicketPipeline:
    """Assemble a ``TicketPipeline`` from settings and injected clients."""
    config = config or settings
    timeout = config.external_call_timeout_seconds

    if moderator is None:
        if config.moderation_provider == "openai" and isinstance(llm_client, OpenAILLMClient):
            moderator = OpenAIContentModerator(
                llm_client.client, config.moderation_model, timeout_seconds=timeout
            )
        else:
            moderator = LLMContentModerator(
                build_step(llm_client, MODERATION_PROMPT, ModerationOutput, config)
            )

    if extractor is None:
        extractor = UnstructuredAttachmentExtractor(
            storage=LocalFileStorage(config.attachments_dir),
            endpoint=config.unstructured_endpoint,
            strategy=config.unstructured_strategy,
            timeout=config.unstructured_timeout_seconds
        )

    chunker = TextChunker(config.chunk_size, config.chunk_overlap)
    embedder = Embedder(
        llm_client,
        dimension=config.embedding_dimension,
        concurrency=config.embedding_concurrency,
        timeout_seconds=timeout
    )

    return TicketPipeline(
        moderator=moderator,
        embedder=embedder,
        extractor=extractor,
        retriever=KnowledgeRetriever(
            knowledge_store,
            threshold=config.match_threshold,
            limit=config.resolution_match_count,
            timeout_seconds=timeout
        ),
        knowledge_base=KnowledgeBaseService(knowledge_store, embedder, chunker, timeout_seconds=timeout),
        router=RouterService(build_step(llm_client, ROUTER_PROMPT, RouterOutput, config)),
        summarizer=SummarizerService(
            build_step(llm_client, SUMMARIZATION_PROMPT, SummarizationOutput, config)
        ),
        support_agent=SupportAgentService(
            build_step(llm_client, SUPPORT_AGENT_PROMPT, SupportAgentOutput, config)
        ),
        knowledge_agent=KnowledgeAgentService(
            build_step(llm_client, KNOWLEDGE_AGENT_PROMPT, KnowledgeAgentOutput, config)
        ),
        analytics=AnalyticsService(build_step(llm_client, ANALYTICS_PROMPT, AnalyticsOutput, config)),
        quality_checker=QualityCheckService(
            build_step(llm_client, QUALITY_CHECK_PROMPT, QualityCheckOutput, config)
        ),
        chunker=chunker,
        settings=config,
        metrics=metrics,
        clock=clock or utcnow
    )
