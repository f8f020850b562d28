"""
Structured LLM Step
===================

One implementation of "render prompt, call model, parse JSON, validate"
shared by every LLM-backed component of the pipeline.
"""

import json
import re
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from helpdesk.core import LLMOutputValidationException
from helpdesk.infrastructure.llm import ILLMClient
from helpdesk.pipeline.domain.prompts import PromptTemplate
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.shared.infrastructure.timeouts import call_with_timeout

logger = get_logger(__name__)

OutputT = TypeVar("OutputT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def _strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip()).strip()


def parse_json_object(raw: str, operation: str) -> Dict[str, Any]:
    """
    Extract the JSON object from a model reply.

    Accepts bare JSON, fenced JSON, and JSON surrounded by prose.

    Raises:
        LLMOutputValidationException: If no JSON object can be read
    """
    if not raw or not raw.strip():
        raise LLMOutputValidationException(operation, "empty model output", raw)

    cleaned = _strip_code_fences(raw)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = _OBJECT_RE.search(cleaned)
        if not match:
            raise LLMOutputValidationException(operation, "model output is not JSON", raw)
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise LLMOutputValidationException(operation, f"invalid JSON: {e.msg}", raw) from e

    if not isinstance(data, dict):
        raise LLMOutputValidationException(
            operation, f"expected a JSON object, got {type(data).__name__}", raw
        )
    return data


class StructuredLLMStep(Generic[OutputT]):
    """
    Runs one prompt against the model and returns a validated output.

    Shape or enumeration violations raise
    ``LLMOutputValidationException``; provider failures and timeouts
    propagate as ``ExternalServiceException``.
    """

    def __init__(
        self,
        llm_client: ILLMClient,
        prompt: PromptTemplate,
        output_model: Type[OutputT],
        temperature: float = 0.3,
        max_tokens: int = 2000,
        timeout_seconds: float = 60.0
    ):
        self._llm = llm_client
        self._prompt = prompt
        self._output_model = output_model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout_seconds = timeout_seconds

    @property
    def name(self) -> str:
        return self._prompt.name

    async def run(self, **inputs: Any) -> OutputT:
        """Render the prompt with ``inputs`` and return the validated output."""
        messages = self._prompt.render(**inputs)

        response = await call_with_timeout(
            self._llm.chat_completion(
                messages=messages,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                operation=self._prompt.name,
                json_mode=True
            ),
            self._timeout_seconds,
            "LLM Service"
        )

        data = parse_json_object(response.content, self._prompt.name)
        try:
            output = self._output_model.model_validate(data)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            logger.warning(
                "Model output failed validation",
                extra={"operation": self._prompt.name, "errors": errors}
            )
            raise LLMOutputValidationException(
                self._prompt.name,
                "; ".join(errors),
                response.content,
                {"operation": self._prompt.name, "errors": errors}
            ) from e

        logger.debug(
            "Structured step completed",
            extra={
                "operation": self._prompt.name,
                "tokens_used": response.total_tokens,
                "llm_latency_ms": response.latency_ms
            }
        )
        return output


def build_step(
    llm_client: ILLMClient,
    prompt: PromptTemplate,
    output_model: Type[OutputT],
    settings: Optional[Any] = None
) -> StructuredLLMStep[OutputT]:
    """Create a step using the temperature, token and timeout settings."""
    if settings is None:
        return StructuredLLMStep(llm_client, prompt, output_model)
    return StructuredLLMStep(
        llm_client,
        prompt,
        output_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout_seconds=settings.external_call_timeout_seconds
    )
