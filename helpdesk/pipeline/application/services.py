"""
Pipeline Application Services
=============================

Embedding generation, knowledge retrieval and knowledge-base maintenance.
"""

import asyncio
import weakref
from typing import Awaitable, Callable, List, Optional, Tuple

from helpdesk.config import SourceType
from helpdesk.core import EmbeddingException, ExternalServiceException, ResourceNotFoundException
from helpdesk.infrastructure.llm import ILLMClient
from helpdesk.infrastructure.vectorstore import IKnowledgeBaseStore
from helpdesk.pipeline.domain import (
    AppliedKnowledgeUpdate,
    KnowledgeChunk,
    KnowledgeMatch,
    KnowledgeUpdate,
    KnowledgeUpdateReport,
    TextChunker,
    normalize_knowledge_content,
)
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.shared.infrastructure.timeouts import call_with_timeout

logger = get_logger(__name__)

SourceIdAllocator = Callable[[KnowledgeUpdate], Awaitable[str]]


class Embedder:
    """
    Text to fixed-dimension vector.

    Fan-out is bounded by a semaphore; results keep input order. A failed
    or timed-out call raises ``EmbeddingException``, never a zero vector.
    """

    def __init__(
        self,
        llm_client: ILLMClient,
        dimension: int,
        concurrency: int = 8,
        timeout_seconds: float = 60.0
    ):
        self._llm = llm_client
        self._dimension = dimension
        self._semaphore = asyncio.Semaphore(concurrency)
        self._timeout_seconds = timeout_seconds

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> List[float]:
        """
        Embed one text.

        Raises:
            EmbeddingException: On provider failure, timeout or wrong dimension
        """
        async with self._semaphore:
            try:
                result = await asyncio.wait_for(
                    self._llm.generate_embedding(text),
                    timeout=self._timeout_seconds
                )
            except asyncio.TimeoutError as e:
                raise EmbeddingException(
                    f"timed out after {self._timeout_seconds:g}s",
                    {"timeout_seconds": self._timeout_seconds}
                ) from e
            except EmbeddingException:
                raise
            except ExternalServiceException as e:
                raise EmbeddingException(str(e), e.details, e.retryable) from e

        if len(result.embedding) != self._dimension:
            raise EmbeddingException(
                f"expected {self._dimension} dimensions, got {len(result.embedding)}",
                {"model": result.model},
                retryable=False
            )
        return result.embedding

    async def embed_many(self, texts: List[str]) -> List[List[float]]:
        """Embed ``texts`` concurrently; output[i] belongs to texts[i]."""
        if not texts:
            return []
        return list(await asyncio.gather(*(self.embed(text) for text in texts)))


class KnowledgeRetriever:
    """
    Organization-scoped similarity search.

    The store filters by organization; results are re-checked here so a
    misbehaving backend can never leak another tenant's content.
    """

    def __init__(
        self,
        store: IKnowledgeBaseStore,
        threshold: float = 0.7,
        limit: int = 5,
        timeout_seconds: float = 60.0
    ):
        self._store = store
        self._threshold = threshold
        self._limit = limit
        self._timeout_seconds = timeout_seconds

    async def search(
        self,
        query_embedding: List[float],
        organization_id: str,
        threshold: Optional[float] = None,
        limit: Optional[int] = None
    ) -> List[KnowledgeMatch]:
        threshold = self._threshold if threshold is None else threshold
        limit = self._limit if limit is None else limit

        matches = await call_with_timeout(
            self._store.search(query_embedding, organization_id, threshold, limit),
            self._timeout_seconds,
            "Vector Store"
        )

        scoped = [
            m for m in matches
            if m.organization_id == organization_id and m.similarity >= threshold
        ]
        if len(scoped) != len(matches):
            logger.warning(
                "Discarded out-of-scope knowledge matches",
                extra={"organization_id": organization_id, "discarded": len(matches) - len(scoped)}
            )
        scoped.sort(key=lambda m: m.similarity, reverse=True)
        return scoped[:limit]


class KnowledgeBaseService:
    """
    Replaces knowledge sources' chunk sets.

    Chunks are embedded before anything is deleted. The delete and insert
    of one (source_type, source_id) run under that source's lock, so
    concurrent replacements of the same source never interleave.
    """

    def __init__(
        self,
        store: IKnowledgeBaseStore,
        embedder: Embedder,
        chunker: TextChunker,
        timeout_seconds: float = 60.0
    ):
        self._store = store
        self._embedder = embedder
        self._chunker = chunker
        self._timeout_seconds = timeout_seconds
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, source_type: SourceType, source_id: str) -> asyncio.Lock:
        key = (source_type.value, source_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def replace_source(
        self,
        organization_id: str,
        source_type: SourceType,
        source_id: str,
        content: str,
        reason: str,
        updated_by: str
    ) -> int:
        """
        Replace the full chunk set of one source.

        Returns:
            Number of chunks now stored for the source

        Raises:
            ResourceNotFoundException: If the source belongs to another organization
        """
        source_type = SourceType(source_type)
        chunks = self._chunker.split(normalize_knowledge_content(source_type, content))
        vectors = await self._embedder.embed_many(chunks)

        records = [
            KnowledgeChunk(
                organization_id=organization_id,
                source_type=source_type,
                source_id=source_id,
                chunk_index=index,
                content=chunk,
                embedding=vector,
                metadata={
                    "update_reason": reason,
                    "updated_by": updated_by,
                    "total_chunks": len(chunks),
                },
            )
            for index, (chunk, vector) in enumerate(zip(chunks, vectors))
        ]

        async with self._lock_for(source_type, source_id):
            existing = await call_with_timeout(
                self._store.list_source(source_type, source_id),
                self._timeout_seconds,
                "Vector Store"
            )
            if any(chunk.organization_id != organization_id for chunk in existing):
                logger.warning(
                    "Refusing to replace a knowledge source owned by another organization",
                    extra={
                        "organization_id": organization_id,
                        "source_type": source_type.value,
                        "source_id": source_id
                    }
                )
                raise ResourceNotFoundException("KnowledgeSource", f"{source_type.value}:{source_id}")

            await call_with_timeout(
                self._store.replace_source(organization_id, source_type, source_id, records),
                self._timeout_seconds,
                "Vector Store"
            )

        logger.info(
            "Knowledge source replaced",
            extra={
                "organization_id": organization_id,
                "source_type": source_type.value,
                "source_id": source_id,
                "total_chunks": len(records)
            }
        )
        return len(records)

    async def apply_updates(
        self,
        updates: List[KnowledgeUpdate],
        organization_id: str,
        updated_by: str,
        allocate_source_id: Optional[SourceIdAllocator] = None
    ) -> KnowledgeUpdateReport:
        """
        Apply knowledge agent updates in order.

        Updates without a ``source_id`` get one from ``allocate_source_id``;
        without an allocator they are skipped and reported. Updates naming
        another organization's source are skipped the same way.
        """
        report = KnowledgeUpdateReport()

        for update in updates:
            source_id = update.source_id
            created = False
            if not source_id:
                if allocate_source_id is None:
                    logger.warning(
                        "Skipping new knowledge without a source id allocator",
                        extra={"organization_id": organization_id, "source_type": update.source_type}
                    )
                    report.skipped.append(update)
                    continue
                source_id = await allocate_source_id(update)
                created = True

            source_type = SourceType(update.source_type)
            try:
                chunk_count = await self.replace_source(
                    organization_id=organization_id,
                    source_type=source_type,
                    source_id=source_id,
                    content=update.content,
                    reason=update.reason,
                    updated_by=updated_by,
                )
            except ResourceNotFoundException:
                report.skipped.append(update)
                continue
            report.applied.append(AppliedKnowledgeUpdate(
                source_type=source_type,
                source_id=source_id,
                chunk_count=chunk_count,
                created=created,
            ))

        return report
