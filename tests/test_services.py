"""Embedding, retrieval and knowledge-base service tests."""

import asyncio

import pytest

from helpdesk.config import SourceType
from helpdesk.core import EmbeddingException
from helpdesk.infrastructure.llm import EmbeddingResult
from helpdesk.infrastructure.vectorstore import InMemoryKnowledgeBaseStore
from helpdesk.pipeline.application.services import Embedder, KnowledgeBaseService, KnowledgeRetriever
from helpdesk.pipeline.domain import KnowledgeMatch, KnowledgeUpdate, TextChunker
from tests.fakes import DIMENSION, ScriptedLLMClient, unit_vector


class SlowEmbeddingClient(ScriptedLLMClient):
    """Finishes later inputs first and tracks concurrency."""

    def __init__(self):
        super().__init__()
        self.active = 0
        self.peak = 0

    async def generate_embedding(self, text):
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0.01 * (5 - int(text)))
        self.active -= 1
        return EmbeddingResult(embedding=unit_vector(int(text)), model="slow")


@pytest.mark.asyncio
async def test_embed_many_keeps_order_and_bounds_concurrency():
    llm = SlowEmbeddingClient()
    embedder = Embedder(llm, dimension=DIMENSION, concurrency=2)

    vectors = await embedder.embed_many(["0", "1", "2", "3", "4"])

    assert vectors == [unit_vector(i) for i in range(5)]
    assert llm.peak <= 2


@pytest.mark.asyncio
async def test_wrong_dimension_is_not_retryable():
    embedder = Embedder(ScriptedLLMClient(dimension=4), dimension=DIMENSION)

    with pytest.raises(EmbeddingException) as exc_info:
        await embedder.embed("hello")
    assert not exc_info.value.retryable


@pytest.mark.asyncio
async def test_embedding_timeout_is_retryable():
    class HangingClient(ScriptedLLMClient):
        async def generate_embedding(self, text):
            await asyncio.sleep(1)

    embedder = Embedder(HangingClient(), dimension=DIMENSION, timeout_seconds=0.01)

    with pytest.raises(EmbeddingException) as exc_info:
        await embedder.embed("hello")
    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_embed_many_of_nothing():
    llm = ScriptedLLMClient()
    assert await Embedder(llm, dimension=DIMENSION).embed_many([]) == []
    assert llm.embedded == []


class LeakyStore(InMemoryKnowledgeBaseStore):
    """Ignores the organization filter and threshold."""

    def __init__(self, matches):
        super().__init__()
        self.matches = matches

    async def search(self, query_embedding, organization_id, threshold, limit):
        return list(self.matches)


def _match(org, source_id, similarity):
    return KnowledgeMatch(
        organization_id=org,
        source_type=SourceType.ARTICLE,
        source_id=source_id,
        chunk_index=0,
        content=source_id,
        similarity=similarity,
    )


@pytest.mark.asyncio
async def test_retriever_rechecks_scope_threshold_and_order():
    store = LeakyStore([
        _match("org-1", "low", 0.71),
        _match("org-2", "foreign", 0.99),
        _match("org-1", "below", 0.5),
        _match("org-1", "high", 0.95),
        _match("org-1", "mid", 0.8),
    ])
    retriever = KnowledgeRetriever(store, threshold=0.7, limit=2)

    matches = await retriever.search(unit_vector(0), "org-1")

    assert [m.source_id for m in matches] == ["high", "mid"]


@pytest.mark.asyncio
async def test_in_memory_store_search():
    store = InMemoryKnowledgeBaseStore()
    retriever = KnowledgeRetriever(store)
    kb = KnowledgeBaseService(store, Embedder(ScriptedLLMClient(
        embeddings={"close": unit_vector(0), "far": unit_vector(1)}
    ), dimension=DIMENSION), TextChunker(200, 50))
    await kb.replace_source("org-1", SourceType.ARTICLE, "a", "close", "r", "admin")
    await kb.replace_source("org-1", SourceType.ARTICLE, "b", "far", "r", "admin")
    await kb.replace_source("org-2", SourceType.ARTICLE, "c", "close", "r", "admin")

    matches = await retriever.search(unit_vector(0), "org-1")

    assert [(m.source_id, round(m.similarity, 6)) for m in matches] == [("a", 1.0)]


class RecordingStore(InMemoryKnowledgeBaseStore):
    """Yields between delete and insert so interleaving would be visible."""

    def __init__(self):
        super().__init__()
        self.events = []

    async def replace_source(self, organization_id, source_type, source_id, chunks):
        self.events.append(("start", chunks[0].content if chunks else None))
        await asyncio.sleep(0.01)
        await super().replace_source(organization_id, source_type, source_id, chunks)
        self.events.append(("end", chunks[0].content if chunks else None))


@pytest.mark.asyncio
async def test_replacements_of_one_source_do_not_interleave():
    store = RecordingStore()
    kb = KnowledgeBaseService(store, Embedder(ScriptedLLMClient(), dimension=DIMENSION), TextChunker(200, 50))

    await asyncio.gather(
        kb.replace_source("org-1", SourceType.ARTICLE, "A1", "first version", "r", "u"),
        kb.replace_source("org-1", SourceType.ARTICLE, "A1", "second version", "r", "u"),
    )

    kinds = [kind for kind, _ in store.events]
    assert kinds == ["start", "end", "start", "end"]
    assert store.events[0][1] == store.events[1][1]
    assert len(await store.list_source(SourceType.ARTICLE, "A1")) == 1


@pytest.mark.asyncio
async def test_apply_updates_reports_each_update():
    store = InMemoryKnowledgeBaseStore()
    kb = KnowledgeBaseService(store, Embedder(ScriptedLLMClient(), dimension=DIMENSION), TextChunker(200, 50))
    allocated = []

    async def allocate(update):
        allocated.append(update.content)
        return "new-1"

    report = await kb.apply_updates(
        [
            KnowledgeUpdate(source_type="faq", source_id="F1", content="Q?\nA.", reason="r"),
            KnowledgeUpdate(source_type="file", content="Fresh file text", reason="r"),
        ],
        organization_id="org-1",
        updated_by="system",
        allocate_source_id=allocate,
    )

    assert [(a.source_type, a.source_id, a.created) for a in report.applied] == [
        (SourceType.FAQ, "F1", False),
        (SourceType.FILE, "new-1", True),
    ]
    assert allocated == ["Fresh file text"]
    faq = await store.list_source(SourceType.FAQ, "F1")
    assert faq[0].content == "--- Question ---\nQ?\n--- Answer ---\nA."
