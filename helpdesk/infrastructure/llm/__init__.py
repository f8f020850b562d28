"""
LLM Client Infrastructure
==========================

Wrapper for LLM providers (OpenAI, Z.AI) providing clean interface for LLM operations.

This module abstracts the LLM client implementation following the
Dependency Inversion Principle - the pipeline depends on ``ILLMClient``,
not on a vendor SDK. Clients are constructed once at startup and injected;
nothing here is a module-level singleton.
"""

import asyncio
import hashlib
import json
import time
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np
from openai import (
    APIConnectionError,
    APIError,
    AsyncOpenAI,
    InternalServerError,
    RateLimitError,
)
from zai import ZaiClient

from helpdesk.config import Settings, settings
from helpdesk.core import ConfigurationException, EmbeddingException, LLMException
from helpdesk.shared.infrastructure.grafana import GrafanaOTLPExporter
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class EmbeddingResult:
    """Result of an embedding generation."""

    def __init__(self, embedding: List[float], model: str):
        self.embedding = embedding
        self.model = model
        self.dimension = len(embedding)


class ChatCompletionResult:
    """Result of a chat completion."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms


class ILLMClient(ABC):
    """
    Interface for LLM client operations.

    Following Interface Segregation Principle - only methods
    actually needed by the application are defined.
    """

    @abstractmethod
    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Generate embedding for text."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        json_mode: bool = False
    ) -> ChatCompletionResult:
        """Generate chat completion."""


class _MetricsMixin:
    """Forwards usage of every completion to the injected exporter."""

    _metrics: Optional[GrafanaOTLPExporter] = None

    async def _record(self, result: ChatCompletionResult, operation: str) -> None:
        if self._metrics and self._metrics.is_enabled():
            await self._metrics.export_llm_metrics(
                model=result.model,
                prompt_tokens=result.prompt_tokens,
                completion_tokens=result.completion_tokens,
                latency_ms=result.latency_ms,
                operation=operation
            )


def _is_retryable(error: Exception) -> bool:
    return isinstance(error, (APIConnectionError, RateLimitError, InternalServerError))


class OpenAILLMClient(_MetricsMixin, ILLMClient):
    """
    OpenAI client implementation for GPT models.

    Provides async wrapper around OpenAI SDK operations. Chat completions
    issued with ``json_mode`` request a JSON object response format.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        embedding_model: Optional[str] = None,
        embedding_dimension: Optional[int] = None,
        base_url: Optional[str] = None,
        metrics: Optional[GrafanaOTLPExporter] = None,
        client: Optional[AsyncOpenAI] = None
    ):
        self._api_key = api_key or settings.openai_api_key
        if client is None and not self._api_key:
            raise ConfigurationException("OpenAI API key not configured")

        self._client = client or AsyncOpenAI(
            api_key=self._api_key,
            base_url=base_url or settings.openai_base_url
        )
        self._model = model or settings.llm_model
        self._embedding_model = embedding_model or settings.embedding_model
        self._embedding_dimension = embedding_dimension or settings.embedding_dimension
        self._metrics = metrics

    @property
    def client(self) -> AsyncOpenAI:
        """Underlying SDK client, shared with the moderation adapter."""
        return self._client

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for text using OpenAI embedding model.

        Args:
            text: Text to embed

        Returns:
            EmbeddingResult with embedding vector

        Raises:
            EmbeddingException: If embedding generation fails
        """
        try:
            response = await self._client.embeddings.create(
                model=self._embedding_model,
                input=text,
                dimensions=self._embedding_dimension
            )
        except APIError as e:
            raise EmbeddingException(
                f"Embedding generation failed: {e}",
                retryable=_is_retryable(e)
            ) from e

        return EmbeddingResult(
            embedding=list(response.data[0].embedding),
            model=self._embedding_model
        )

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        json_mode: bool = False
    ) -> ChatCompletionResult:
        """
        Generate chat completion using OpenAI GPT.

        Args:
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens to generate
            operation: Pipeline step name for metrics
            json_mode: Ask the model for a JSON object

        Returns:
            ChatCompletionResult with generated text

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()
        extra_args = {"response_format": {"type": "json_object"}} if json_mode else {}

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **extra_args
            )
        except APIError as e:
            raise LLMException(
                f"Chat completion failed: {e}",
                details={"operation": operation},
                retryable=_is_retryable(e)
            ) from e

        usage = response.usage
        result = ChatCompletionResult(
            content=response.choices[0].message.content or "",
            model=self._model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            latency_ms=int((time.perf_counter() - start_time) * 1000)
        )
        await self._record(result, operation)
        return result


class ZAILLMClient(_MetricsMixin, ILLMClient):
    """
    Z.AI SDK client implementation for GLM models.

    The SDK is synchronous; calls run in a worker thread so the event
    loop keeps serving other pipeline runs.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        embedding_model: Optional[str] = None,
        metrics: Optional[GrafanaOTLPExporter] = None
    ):
        self._api_key = api_key or settings.zai_api_key
        if not self._api_key:
            raise ConfigurationException("Z.AI API key not configured")

        self._client = ZaiClient(api_key=self._api_key)
        self._model = model or settings.llm_model
        self._embedding_model = embedding_model or settings.embedding_model
        self._metrics = metrics

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for text using Z.AI embedding model.

        Raises:
            EmbeddingException: If embedding generation fails
        """
        try:
            response = await asyncio.to_thread(
                self._client.embeddings.create,
                model=self._embedding_model,
                input=text
            )
        except Exception as e:
            raise EmbeddingException(f"Embedding generation failed: {e}") from e

        return EmbeddingResult(
            embedding=list(response.data[0].embedding),
            model=self._embedding_model
        )

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        json_mode: bool = False
    ) -> ChatCompletionResult:
        """
        Generate chat completion using GLM.

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()
        extra_args = {"response_format": {"type": "json_object"}} if json_mode else {}

        try:
            response = await asyncio.to_thread(
                self._client.chat.completions.create,
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **extra_args
            )
        except Exception as e:
            raise LLMException(
                f"Chat completion failed: {e}",
                details={"operation": operation}
            ) from e

        content = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        if usage is not None:
            prompt_tokens = usage.prompt_tokens
            completion_tokens = usage.completion_tokens
        else:
            # Estimate when the SDK omits usage
            prompt_tokens = len(str(messages)) // 4
            completion_tokens = len(content) // 4

        result = ChatCompletionResult(
            content=content,
            model=self._model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=int((time.perf_counter() - start_time) * 1000)
        )
        await self._record(result, operation)
        return result


class MockLLMClient(ILLMClient):
    """
    Mock LLM client for local development.

    Returns deterministic embeddings (seeded from the text hash) and a
    schema-valid JSON answer for every pipeline step, without calling
    external APIs.
    """

    RESPONSES = {
        "moderate": {"flagged": False, "reason": None},
        "route": {
            "priority": "normal",
            "suggested_categories": [],
            "suggested_tags": [],
            "estimated_complexity": "medium",
            "needs_human_review": False,
            "human_review_reason": None,
            "suggested_team": None
        },
        "summarize": {
            "summary": "Mock summary of the matched knowledge base content.",
            "key_points": ["Mock key point"],
            "source_references": []
        },
        "support_agent": {
            "response": "Thanks for reaching out. We are looking into this for you.",
            "needs_human_review": False,
            "human_review_reason": None,
            "suggested_knowledge_articles": [],
            "confidence_score": 0.8,
            "next_action": "wait_for_customer"
        },
        "knowledge_agent": {
            "relevant_articles": [],
            "new_knowledge_extracted": False,
            "knowledge_updates": []
        },
        "analytics": {
            "resolution_quality": 0.8,
            "response_time": 30,
            "complexity_score": 0.4,
            "needs_feedback": False,
            "feedback_type": "none",
            "learning_opportunities": []
        },
        "quality_check": {
            "passes_check": True,
            "confidence_score": 0.9,
            "needs_human_review": False,
            "review_reason": None,
            "suggested_improvements": []
        }
    }

    def __init__(self, embedding_dimension: Optional[int] = None):
        self._dimension = embedding_dimension or settings.embedding_dimension

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Return a unit-length pseudo-embedding derived from the text."""
        seed = int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:16], 16)
        vector = np.random.default_rng(seed).uniform(-1.0, 1.0, self._dimension)
        vector /= np.linalg.norm(vector)
        return EmbeddingResult(embedding=vector.tolist(), model="mock-embedding")

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        json_mode: bool = False
    ) -> ChatCompletionResult:
        """Return the canned response for ``operation``."""
        payload = self.RESPONSES.get(operation)
        if payload is None:
            content = "This is a mock LLM response for testing purposes."
        else:
            content = json.dumps(payload)

        return ChatCompletionResult(
            content=content,
            model="mock-model",
            prompt_tokens=sum(len(str(m.get("content", ""))) for m in messages) // 4,
            completion_tokens=len(content) // 4,
            latency_ms=0
        )


def create_llm_client(
    config: Optional[Settings] = None,
    metrics: Optional[GrafanaOTLPExporter] = None
) -> ILLMClient:
    """
    Build the configured LLM client.

    Raises:
        ConfigurationException: If the chosen provider lacks credentials
    """
    config = config or settings

    if config.mock_llm or config.llm_provider == "mock":
        logger.info("Using mock LLM client")
        return MockLLMClient(embedding_dimension=config.embedding_dimension)

    if config.llm_provider == "zai":
        return ZAILLMClient(
            api_key=config.zai_api_key,
            model=config.llm_model,
            embedding_model=config.embedding_model,
            metrics=metrics
        )

    return OpenAILLMClient(
        api_key=config.openai_api_key,
        model=config.llm_model,
        embedding_model=config.embedding_model,
        embedding_dimension=config.embedding_dimension,
        base_url=config.openai_base_url,
        metrics=metrics
    )
