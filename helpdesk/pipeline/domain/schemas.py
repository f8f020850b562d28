"""
Structured LLM Output Schemas
=============================

Pydantic models for the JSON objects each pipeline step expects from the
model. Validation is strict: a missing field, a value outside an
enumeration or range, or a value of the wrong JSON type (such as "yes"
for a boolean) fails instead of being coerced or defaulted.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat

PriorityStr = Literal["low", "normal", "high", "urgent"]
ComplexityStr = Literal["low", "medium", "high"]
NextActionStr = Literal["close", "wait_for_customer", "escalate", "follow_up"]
FeedbackTypeStr = Literal["automated", "agent", "none"]
SourceTypeStr = Literal["faq", "article", "file"]


class LLMOutput(BaseModel):
    """Base for model outputs; unknown keys are ignored."""
    model_config = ConfigDict(extra="ignore")


class ModerationOutput(LLMOutput):
    """Policy gate verdict."""
    flagged: StrictBool
    reason: Optional[str] = None


class RouterOutput(LLMOutput):
    """Routing decision for a new ticket."""
    priority: PriorityStr
    suggested_categories: List[str]
    suggested_tags: List[str]
    estimated_complexity: ComplexityStr
    needs_human_review: StrictBool
    human_review_reason: Optional[str] = None
    suggested_team: Optional[str] = None


class SourceReference(LLMOutput):
    source_type: str
    source_id: str
    relevance: str


class SummarizationOutput(LLMOutput):
    """Condensed view of retrieved knowledge."""
    summary: str
    key_points: List[str]
    source_references: List[SourceReference]


class SupportAgentOutput(LLMOutput):
    """Customer-facing reply and follow-up signal."""
    response: str = Field(..., min_length=1)
    needs_human_review: StrictBool
    human_review_reason: Optional[str] = None
    suggested_knowledge_articles: Optional[List[str]] = None
    confidence_score: StrictFloat = Field(..., ge=0.0, le=1.0)
    next_action: NextActionStr


class RelevantArticle(LLMOutput):
    source_type: str
    source_id: str
    relevance_score: StrictFloat
    suggested_updates: Optional[str] = None


class KnowledgeUpdate(LLMOutput):
    """
    Content to fold into the knowledge base.

    A missing ``source_id`` means new content; an id has to be allocated
    before anything is written.
    """
    source_type: SourceTypeStr
    source_id: Optional[str] = None
    content: str = Field(..., min_length=1)
    reason: str


class KnowledgeAgentOutput(LLMOutput):
    """Post-resolution knowledge decision."""
    relevant_articles: List[RelevantArticle]
    new_knowledge_extracted: StrictBool
    knowledge_updates: Optional[List[KnowledgeUpdate]] = None


class AnalyticsOutput(LLMOutput):
    """Resolution scoring."""
    resolution_quality: StrictFloat = Field(..., ge=0.0, le=1.0)
    response_time: StrictFloat = Field(..., ge=0.0)
    complexity_score: StrictFloat = Field(..., ge=0.0, le=1.0)
    needs_feedback: StrictBool
    feedback_type: FeedbackTypeStr
    learning_opportunities: List[str]


class QualityCheckOutput(LLMOutput):
    """Review of a drafted support reply."""
    passes_check: StrictBool
    confidence_score: StrictFloat = Field(..., ge=0.0, le=1.0)
    needs_human_review: StrictBool
    review_reason: Optional[str] = None
    suggested_improvements: List[str]
