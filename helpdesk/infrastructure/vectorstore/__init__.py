"""
Vector Store Infrastructure
============================

Knowledge-base embedding storage and organization-scoped similarity search.

Two implementations of ``IKnowledgeBaseStore``:
- ``MilvusKnowledgeBaseStore``: Zilliz Cloud / Milvus, cosine metric,
  string primary key derived from (source_type, source_id, chunk_index)
- ``InMemoryKnowledgeBaseStore``: numpy cosine search for development
  and tests

Both replace a source's chunk set with delete-then-insert; callers
serialize replacements of the same source.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Union

import numpy as np
from pymilvus import MilvusClient

from helpdesk.config import Settings, SourceType, settings
from helpdesk.core import VectorStoreException
from helpdesk.pipeline.domain.entities import KnowledgeChunk, KnowledgeMatch
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

_OUTPUT_FIELDS = ["organization_id", "source_type", "source_id", "chunk_index", "content", "metadata"]


class IKnowledgeBaseStore(ABC):
    """
    Interface for knowledge-base embedding storage.

    Following Interface Segregation and Dependency Inversion principles.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backing collection."""

    @abstractmethod
    async def replace_source(
        self,
        organization_id: str,
        source_type: Union[SourceType, str],
        source_id: str,
        chunks: List[KnowledgeChunk]
    ) -> None:
        """Delete the organization's chunks of the source, then insert ``chunks``."""

    @abstractmethod
    async def search(
        self,
        query_embedding: List[float],
        organization_id: str,
        threshold: float,
        limit: int
    ) -> List[KnowledgeMatch]:
        """Chunks of ``organization_id`` with similarity >= threshold, best first."""

    @abstractmethod
    async def list_source(
        self,
        source_type: Union[SourceType, str],
        source_id: str
    ) -> List[KnowledgeChunk]:
        """Stored chunks of one source ordered by chunk_index."""

    @abstractmethod
    async def get_document_count(self) -> int:
        """Number of stored chunks."""


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class MilvusKnowledgeBaseStore(IKnowledgeBaseStore):
    """
    Zilliz Cloud (Managed Milvus) implementation of the knowledge base.

    ``MilvusClient`` is synchronous; every call runs in a worker thread.
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        api_key: Optional[str] = None,
        collection_name: Optional[str] = None,
        dimension: Optional[int] = None,
        client: Optional[MilvusClient] = None
    ):
        self._uri = uri or settings.zilliz_uri
        self._api_key = api_key or settings.zilliz_api_key
        self._collection_name = collection_name or settings.milvus_collection_name
        self._dimension = dimension or settings.embedding_dimension
        self._client = client
        self._initialized = False

    async def initialize(self) -> None:
        """Connect and create the collection if it does not exist."""
        if self._initialized:
            return

        if self._client is None and not self._uri:
            raise VectorStoreException("ZILLIZ_URI not configured", retryable=False)

        try:
            if self._client is None:
                self._client = MilvusClient(uri=self._uri, token=self._api_key)

            exists = await asyncio.to_thread(self._client.has_collection, self._collection_name)
            if not exists:
                await asyncio.to_thread(
                    self._client.create_collection,
                    collection_name=self._collection_name,
                    dimension=self._dimension,
                    primary_field_name="id",
                    id_type="string",
                    max_length=512,
                    vector_field_name="vector",
                    metric_type="COSINE",
                    auto_id=False
                )
                logger.info(
                    "Created knowledge base collection",
                    extra={"collection": self._collection_name, "dimension": self._dimension}
                )
        except VectorStoreException:
            raise
        except Exception as e:
            raise VectorStoreException(f"Failed to initialize Milvus: {e}") from e

        self._initialized = True

    async def replace_source(
        self,
        organization_id: str,
        source_type: Union[SourceType, str],
        source_id: str,
        chunks: List[KnowledgeChunk]
    ) -> None:
        await self.initialize()
        source_type = SourceType(source_type)
        expr = (
            f"organization_id == {_quote(organization_id)} and "
            f"source_type == {_quote(source_type.value)} and source_id == {_quote(source_id)}"
        )

        data = [
            {
                "id": chunk.key,
                "vector": chunk.embedding,
                "organization_id": chunk.organization_id,
                "source_type": chunk.source_type.value,
                "source_id": chunk.source_id,
                "chunk_index": chunk.chunk_index,
                "content": chunk.content,
                "metadata": chunk.metadata,
            }
            for chunk in chunks
        ]

        try:
            await asyncio.to_thread(
                self._client.delete,
                collection_name=self._collection_name,
                filter=expr
            )
            if data:
                await asyncio.to_thread(
                    self._client.insert,
                    collection_name=self._collection_name,
                    data=data
                )
        except Exception as e:
            raise VectorStoreException(
                f"Failed to replace {source_type.value}:{source_id}: {e}"
            ) from e

    async def search(
        self,
        query_embedding: List[float],
        organization_id: str,
        threshold: float,
        limit: int
    ) -> List[KnowledgeMatch]:
        await self.initialize()

        try:
            results = await asyncio.to_thread(
                self._client.search,
                collection_name=self._collection_name,
                data=[query_embedding],
                limit=limit,
                filter=f"organization_id == {_quote(organization_id)}",
                output_fields=_OUTPUT_FIELDS,
                search_params={"metric_type": "COSINE"}
            )
        except Exception as e:
            raise VectorStoreException(f"Search failed: {e}") from e

        matches = []
        for hit in (results[0] if results else []):
            entity = hit["entity"]
            similarity = float(hit["distance"])
            if similarity < threshold:
                continue
            matches.append(KnowledgeMatch(
                organization_id=entity["organization_id"],
                source_type=SourceType(entity["source_type"]),
                source_id=entity["source_id"],
                chunk_index=int(entity["chunk_index"]),
                content=entity["content"],
                similarity=similarity,
                metadata=entity.get("metadata") or {}
            ))
        return matches

    async def list_source(
        self,
        source_type: Union[SourceType, str],
        source_id: str
    ) -> List[KnowledgeChunk]:
        await self.initialize()
        source_type = SourceType(source_type)

        try:
            rows = await asyncio.to_thread(
                self._client.query,
                collection_name=self._collection_name,
                filter=f"source_type == {_quote(source_type.value)} and source_id == {_quote(source_id)}",
                output_fields=_OUTPUT_FIELDS + ["vector"]
            )
        except Exception as e:
            raise VectorStoreException(f"Query failed: {e}") from e

        chunks = [
            KnowledgeChunk(
                organization_id=row["organization_id"],
                source_type=row["source_type"],
                source_id=row["source_id"],
                chunk_index=int(row["chunk_index"]),
                content=row["content"],
                embedding=list(row["vector"]),
                metadata=row.get("metadata") or {}
            )
            for row in rows
        ]
        return sorted(chunks, key=lambda c: c.chunk_index)

    async def get_document_count(self) -> int:
        await self.initialize()
        try:
            stats = await asyncio.to_thread(
                self._client.get_collection_stats,
                collection_name=self._collection_name
            )
        except Exception as e:
            raise VectorStoreException(f"Failed to read collection stats: {e}") from e
        return int(stats.get("row_count", 0))


class InMemoryKnowledgeBaseStore(IKnowledgeBaseStore):
    """
    Process-local knowledge base.

    Chunks are kept in a dict keyed by their natural key; search is a
    numpy cosine similarity over the organization's chunks.
    """

    def __init__(self):
        self._chunks: Dict[str, KnowledgeChunk] = {}

    async def initialize(self) -> None:
        return None

    async def replace_source(
        self,
        organization_id: str,
        source_type: Union[SourceType, str],
        source_id: str,
        chunks: List[KnowledgeChunk]
    ) -> None:
        source_type = SourceType(source_type)
        stale = [
            key for key, chunk in self._chunks.items()
            if chunk.organization_id == organization_id
            and chunk.source_type == source_type
            and chunk.source_id == source_id
        ]
        for key in stale:
            del self._chunks[key]
        for chunk in chunks:
            self._chunks[chunk.key] = chunk

    async def search(
        self,
        query_embedding: List[float],
        organization_id: str,
        threshold: float,
        limit: int
    ) -> List[KnowledgeMatch]:
        candidates = [c for c in self._chunks.values() if c.organization_id == organization_id]
        if not candidates:
            return []

        query = np.asarray(query_embedding, dtype=float)
        matrix = np.asarray([c.embedding for c in candidates], dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, matrix @ query / norms, 0.0)

        matches = [
            KnowledgeMatch(
                organization_id=chunk.organization_id,
                source_type=chunk.source_type,
                source_id=chunk.source_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                similarity=float(score),
                metadata=dict(chunk.metadata)
            )
            for chunk, score in zip(candidates, scores)
            if score >= threshold
        ]
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:limit]

    async def list_source(
        self,
        source_type: Union[SourceType, str],
        source_id: str
    ) -> List[KnowledgeChunk]:
        source_type = SourceType(source_type)
        chunks = [
            c for c in self._chunks.values()
            if c.source_type == source_type and c.source_id == source_id
        ]
        return sorted(chunks, key=lambda c: c.chunk_index)

    async def get_document_count(self) -> int:
        return len(self._chunks)


def create_knowledge_base_store(config: Optional[Settings] = None) -> IKnowledgeBaseStore:
    """Build the configured knowledge-base store."""
    config = config or settings
    if config.vector_store == "milvus":
        return MilvusKnowledgeBaseStore(
            uri=config.zilliz_uri,
            api_key=config.zilliz_api_key,
            collection_name=config.milvus_collection_name,
            dimension=config.embedding_dimension
        )
    return InMemoryKnowledgeBaseStore()
