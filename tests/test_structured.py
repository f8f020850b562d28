"""Structured LLM step tests."""

import asyncio

import pytest

from helpdesk.core import ExternalServiceException, LLMOutputValidationException, ValidationException
from helpdesk.pipeline.application.structured import StructuredLLMStep, parse_json_object
from helpdesk.pipeline.domain import RouterOutput, SupportAgentOutput
from helpdesk.pipeline.domain.prompts import ROUTER_PROMPT, SUPPORT_AGENT_PROMPT
from tests.fakes import ScriptedLLMClient

ROUTE_INPUTS = dict(
    title="Refund",
    description="Charged twice",
    organization_id="org-1",
    categories="Billing",
    tags="refund",
    teams="Accounts",
)

VALID_ROUTE = {
    "priority": "high",
    "suggested_categories": ["Billing"],
    "suggested_tags": ["refund"],
    "estimated_complexity": "low",
    "needs_human_review": False,
}


def test_parse_plain_json():
    assert parse_json_object('{"a": 1}', "op") == {"a": 1}


def test_parse_fenced_json():
    assert parse_json_object('```json\n{"a": 1}\n```', "op") == {"a": 1}


def test_parse_json_surrounded_by_prose():
    assert parse_json_object('Here you go: {"a": {"b": 2}} thanks', "op") == {"a": {"b": 2}}


@pytest.mark.parametrize("raw", ["", "   ", "no json here", "[1, 2]", "{broken"])
def test_parse_rejects_non_objects(raw):
    with pytest.raises(LLMOutputValidationException) as exc_info:
        parse_json_object(raw, "route")
    assert exc_info.value.operation == "route"


@pytest.mark.asyncio
async def test_step_returns_validated_output():
    llm = ScriptedLLMClient({"route": VALID_ROUTE})
    step = StructuredLLMStep(llm, ROUTER_PROMPT, RouterOutput)

    result = await step.run(**ROUTE_INPUTS)

    assert result.priority == "high"
    assert result.suggested_team is None
    assert llm.operations == ["route"]


@pytest.mark.asyncio
async def test_step_rejects_unknown_enumeration_value():
    llm = ScriptedLLMClient({"route": {**VALID_ROUTE, "priority": "critical"}})
    step = StructuredLLMStep(llm, ROUTER_PROMPT, RouterOutput)

    with pytest.raises(LLMOutputValidationException):
        await step.run(**ROUTE_INPUTS)


@pytest.mark.asyncio
async def test_step_never_clamps_confidence():
    answer = {
        "response": "Try again",
        "needs_human_review": False,
        "confidence_score": 1.5,
        "next_action": "close",
    }
    llm = ScriptedLLMClient({"support_agent": answer})
    step = StructuredLLMStep(llm, SUPPORT_AGENT_PROMPT, SupportAgentOutput)

    with pytest.raises(LLMOutputValidationException):
        await step.run(
            status="open", priority="normal", created_at="None", created_by="None",
            assigned_to="None", assigned_team="None", message="hi", knowledge_base="None",
        )


@pytest.mark.asyncio
async def test_step_requires_every_prompt_input():
    step = StructuredLLMStep(ScriptedLLMClient(), ROUTER_PROMPT, RouterOutput)

    with pytest.raises(ValidationException):
        await step.run(title="only a title")


@pytest.mark.asyncio
async def test_step_times_out_as_external_failure():
    class SlowClient(ScriptedLLMClient):
        async def chat_completion(self, *args, **kwargs):
            await asyncio.sleep(1)

    step = StructuredLLMStep(SlowClient(), ROUTER_PROMPT, RouterOutput, timeout_seconds=0.01)

    with pytest.raises(ExternalServiceException) as exc_info:
        await step.run(**ROUTE_INPUTS)
    assert exc_info.value.retryable


@pytest.mark.asyncio
@pytest.mark.parametrize("missing", ["suggested_categories", "suggested_tags"])
async def test_step_rejects_missing_list_field(missing):
    answer = {key: value for key, value in VALID_ROUTE.items() if key != missing}
    step = StructuredLLMStep(ScriptedLLMClient({"route": answer}), ROUTER_PROMPT, RouterOutput)

    with pytest.raises(LLMOutputValidationException):
        await step.run(**ROUTE_INPUTS)


@pytest.mark.asyncio
async def test_step_rejects_string_boolean():
    answer = {**VALID_ROUTE, "needs_human_review": "yes"}
    step = StructuredLLMStep(ScriptedLLMClient({"route": answer}), ROUTER_PROMPT, RouterOutput)

    with pytest.raises(LLMOutputValidationException):
        await step.run(**ROUTE_INPUTS)


@pytest.mark.asyncio
@pytest.mark.parametrize("field, value", [
    ("needs_human_review", "false"),
    ("confidence_score", "0.9"),
])
async def test_support_agent_rejects_stringly_typed_values(field, value):
    answer = {
        "response": "Try again",
        "needs_human_review": False,
        "confidence_score": 0.9,
        "next_action": "close",
        field: value,
    }
    step = StructuredLLMStep(ScriptedLLMClient({"support_agent": answer}), SUPPORT_AGENT_PROMPT, SupportAgentOutput)

    with pytest.raises(LLMOutputValidationException):
        await step.run(
            status="open", priority="normal", created_at="None", created_by="None",
            assigned_to="None", assigned_team="None", message="hi", knowledge_base="None",
        )


def test_integer_scores_are_accepted():
    output = SupportAgentOutput.model_validate({
        "response": "Done",
        "needs_human_review": False,
        "confidence_score": 1,
        "next_action": "close",
    })

    assert output.confidence_score == 1.0
