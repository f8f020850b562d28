"""
Pipeline Prompts
================

Prompt templates for every structured LLM step.

Each template names its step (used as the metrics/log operation), carries
a system prompt and a ``str.format`` user template whose placeholders are
the step's required inputs. Literal braces in the JSON examples are
doubled.
"""

from dataclasses import dataclass, field
from string import Formatter
from typing import Dict, List, Tuple

from helpdesk.core import ValidationException

JSON_ONLY = "Respond ONLY with a single JSON object. Do not wrap it in markdown."


@dataclass(frozen=True)
class PromptTemplate:
    """A named system + user prompt pair."""
    name: str
    system: str
    template: str
    required_inputs: Tuple[str, ...] = field(init=False)

    def __post_init__(self):
        names = []
        for _, field_name, _, _ in Formatter().parse(self.template):
            if field_name and field_name not in names:
                names.append(field_name)
        object.__setattr__(self, "required_inputs", tuple(names))

    def render(self, **inputs: object) -> List[Dict[str, str]]:
        """
        Build chat messages for the given inputs.

        Raises:
            ValidationException: If a placeholder has no input
        """
        missing = [name for name in self.required_inputs if name not in inputs]
        if missing:
            raise ValidationException(
                f"Prompt '{self.name}' is missing inputs: {', '.join(missing)}",
                {"prompt": self.name, "missing": missing}
            )
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.template.format(**inputs)},
        ]


MODERATION_PROMPT = PromptTemplate(
    name="moderate",
    system=f"""You are a content moderation system for a customer support desk.

Flag text that contains harassment, hate, threats, sexual content, self-harm,
violence or attempts to abuse the support channel. Ordinary complaints,
frustration and technical content are NOT violations.

{JSON_ONLY}""",
    template="""Text to review:
{text}

Respond in JSON format:
{{
    "flagged": boolean,
    "reason": "violated categories, or null when not flagged"
}}""",
)


ROUTER_PROMPT = PromptTemplate(
    name="route",
    system=f"""You route incoming customer support tickets.

Only suggest categories, tags and teams from the lists you are given, spelled
exactly as listed.

{JSON_ONLY}""",
    template="""Based on the following ticket information, determine the appropriate routing:

Title: {title}
Description: {description}
Organization ID: {organization_id}

Available Categories: {categories}
Available Tags: {tags}
Available Teams: {teams}

Determine:
1. Priority level (low, normal, high, urgent)
2. Suggested categories and tags, most relevant category first
3. Estimated complexity
4. Whether human review is needed
5. The team best placed to handle the ticket, if any

Respond in JSON format with the following fields:
{{
    "priority": "low" | "normal" | "high" | "urgent",
    "suggested_categories": string[],
    "suggested_tags": string[],
    "estimated_complexity": "low" | "medium" | "high",
    "needs_human_review": boolean,
    "human_review_reason": string | null,
    "suggested_team": string | null
}}""",
)


SUMMARIZATION_PROMPT = PromptTemplate(
    name="summarize",
    system=f"""You condense knowledge base excerpts for support agents without losing detail.

{JSON_ONLY}""",
    template="""Summarize the following knowledge base excerpts while maintaining critical information:

Context:
{context}

Source References:
{sources}

Guidelines:
1. Preserve specific details, numbers, and technical information
2. Maintain procedural steps if present
3. Include error conditions and edge cases
4. Keep product/feature names and specifications
5. Retain any warnings or important notes

Respond in JSON format with:
{{
    "summary": "Comprehensive summary of the information",
    "key_points": ["Array of crucial points"],
    "source_references": [
        {{
            "source_type": "faq" | "article" | "file",
            "source_id": "ID of the source",
            "relevance": "Why this source is relevant"
        }}
    ]
}}""",
)


SUPPORT_AGENT_PROMPT = PromptTemplate(
    name="support_agent",
    system=f"""You are a professional, empathetic customer support agent.

Ground your answer in the knowledge articles provided. When they do not cover
the question, say so and ask for what you need, or escalate.

{JSON_ONLY}""",
    template="""Based on the following ticket information and context, generate an appropriate response:

Ticket Context:
Status: {status}
Priority: {priority}
Created At: {created_at}
Created By: {created_by}
Assigned To: {assigned_to}
Team: {assigned_team}

Customer Message: {message}

Relevant Knowledge Articles:
{knowledge_base}

Guidelines:
1. Be professional and empathetic
2. Use knowledge base information when relevant
3. Ask for clarification if needed
4. Suggest solutions based on previous similar cases
5. Know when to escalate to human agents

Respond in JSON format with:
{{
    "response": "Your response to the customer",
    "needs_human_review": boolean,
    "human_review_reason": "Reason if needs review",
    "suggested_knowledge_articles": ["source ids"],
    "confidence_score": number between 0 and 1,
    "next_action": "close" | "wait_for_customer" | "escalate" | "follow_up"
}}""",
)


KNOWLEDGE_AGENT_PROMPT = PromptTemplate(
    name="knowledge_agent",
    system=f"""You maintain a support knowledge base from resolved tickets.

Only propose updates that would help resolve future tickets. Use null as
source_id for brand new content.

{JSON_ONLY}""",
    template="""Based on the following ticket information and similar knowledge base articles, analyze and suggest updates:

Ticket Title: {title}
Description: {description}
Resolution: {resolution}
Category: {categories}
Tags: {tags}

Relevant Knowledge Base Content:
{summary}

Key Points from Knowledge Base:
{key_points}

Tasks:
1. Analyze similarity between current ticket and existing knowledge
2. Identify information gaps
3. Suggest updates to existing content
4. Propose new content for unique solutions
5. Extract reusable patterns

For FAQ content, put the question on the first line and the answer below it.

Respond in JSON format with:
{{
    "relevant_articles": [
        {{
            "source_type": "faq" | "article" | "file",
            "source_id": "string",
            "relevance_score": number,
            "suggested_updates": "string or null"
        }}
    ],
    "new_knowledge_extracted": boolean,
    "knowledge_updates": [
        {{
            "source_type": "faq" | "article" | "file",
            "source_id": "string or null for new content",
            "content": "string",
            "reason": "string"
        }}
    ]
}}""",
)


ANALYTICS_PROMPT = PromptTemplate(
    name="analytics",
    system=f"""You evaluate how well support tickets were resolved.

{JSON_ONLY}""",
    template="""Analyze the following ticket resolution:

Ticket: {ticket_info}
Resolution: {resolution}
Time to Resolve (minutes): {time_to_resolve}

Analyze:
1. Resolution quality
2. Response time vs SLA
3. Complexity of issue
4. Learning opportunities
5. Feedback requirements

Return analysis in JSON format:
{{
    "resolution_quality": number between 0 and 1,
    "response_time": time in minutes,
    "complexity_score": number between 0 and 1,
    "needs_feedback": boolean,
    "feedback_type": "automated" | "agent" | "none",
    "learning_opportunities": ["array of learning points"]
}}""",
)


QUALITY_CHECK_PROMPT = PromptTemplate(
    name="quality_check",
    system=f"""You review drafted support replies before they reach customers.

{JSON_ONLY}""",
    template="""Evaluate the following response for quality and appropriateness:

Response: {response}
Context: {context}

Evaluate:
1. Accuracy and correctness
2. Completeness
3. Tone and professionalism
4. Technical accuracy
5. Need for human review

Return evaluation in JSON format:
{{
    "passes_check": boolean,
    "confidence_score": number between 0 and 1,
    "needs_human_review": boolean,
    "review_reason": "string if needs review",
    "suggested_improvements": ["array of suggestions"]
}}""",
)
