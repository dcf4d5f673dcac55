"""Pydantic models and dataclasses for request/response types."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator


# ---- generation-side types (internal, snake_case) ----

@dataclass(slots=True)
class GenerationRequest:
    """One call to the generation service."""
    system_prompt: str
    user_message: str
    model_id: str
    max_output_tokens: int


@dataclass(slots=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(slots=True)
class Completion:
    """Result of a blocking (non-streaming) generation call."""
    text: str
    input_tokens: int
    output_tokens: int


@dataclass(slots=True)
class TextDelta:
    text: str


@dataclass(slots=True)
class RawEvent:
    """Any upstream stream event other than a text delta."""
    type: str
    data: dict[str, Any] = field(default_factory=dict)


StreamEvent = Union[TextDelta, RawEvent]


# ---- request bodies (wire, camelCase) ----

NonEmptyStr = Annotated[str, Field(min_length=1)]


class EvaluateRequest(BaseModel):
    scenario: NonEmptyStr
    customPrompt: str | None = None
    model: Literal["sonnet", "haiku"]


class ScoreRequest(BaseModel):
    taskPrompt: NonEmptyStr
    response: NonEmptyStr


class IntakeForm(BaseModel):
    """The full intake form, as submitted to the architecture assessment."""

    agencyType: NonEmptyStr
    missionDescription: str = Field(min_length=20)
    painPoints: list[str]
    dataClassification: NonEmptyStr
    complianceRequirements: list[str]
    estimatedVolume: NonEmptyStr


class RoadmapIntake(BaseModel):
    agencyType: NonEmptyStr
    missionDescription: str
    painPoints: list[str]
    dataClassification: str
    complianceRequirements: list[str]
    estimatedVolume: str


class ArchitectureSummary(BaseModel):
    recommendedModel: str
    deploymentPathway: str
    monthlyCost: str


class EvaluationSummary(BaseModel):
    scenarioTested: str
    overallScore: float
    modelUsed: str


class RoadmapRequest(BaseModel):
    intake: RoadmapIntake
    architecture: ArchitectureSummary | None = None
    evaluation: EvaluationSummary | None = None


# ---- response payloads ----

# Separates generated text from the JSON metrics in an evaluation stream.
METADATA_DELIMITER = "\n---METADATA---\n"


class PerformanceMetrics(BaseModel):
    """Telemetry carried in the metadata trailer of an evaluation stream."""

    inputTokens: int
    outputTokens: int
    latencyMs: int
    timeToFirstTokenMs: int
    costUsd: float


class ScoreDimension(BaseModel):
    score: int = Field(ge=0, le=100)
    explanation: str

    @field_validator("score", mode="before")
    @classmethod
    def _round_score(cls, value: Any) -> Any:
        if isinstance(value, float):
            return round(value)
        return value


class ScoreDimensions(BaseModel):
    accuracy: ScoreDimension
    completeness: ScoreDimension
    safety: ScoreDimension
    tone: ScoreDimension


class ScoreResult(BaseModel):
    scores: ScoreDimensions
    overallScore: int = Field(ge=0, le=100)
    summary: str
    strengths: list[str]
    improvements: list[str]

    @field_validator("overallScore", mode="before")
    @classmethod
    def _round_overall(cls, value: Any) -> Any:
        if isinstance(value, float):
            return round(value)
        return value


class ScenarioInfo(BaseModel):
    id: str
    label: str
    description: str
