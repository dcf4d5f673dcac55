"""Prompt builders for the four generation task shapes.

Every builder is pure: the same input always yields the same
GenerationRequest and nothing here touches the network.
"""
from __future__ import annotations
import json
from typing import Any

from agency_assessment.common import config
from agency_assessment.common.pricing import MODEL_TIERS, ModelTier
from agency_assessment.common.scenarios import find_scenario
from agency_assessment.common.schema import (
    EvaluateRequest,
    GenerationRequest,
    IntakeForm,
    RoadmapRequest,
    ScoreRequest,
)
from agency_assessment.common.templates import load_template, render_prompt

EVALUATE_SYSTEM_TEMPLATE = "evaluate_system.txt"
SCORE_SYSTEM_TEMPLATE = "score_system.txt"
SCORE_USER_TEMPLATE = "score_user.txt"
ROADMAP_SYSTEM_TEMPLATE = "roadmap_system.txt"
ASSESS_SYSTEM_TEMPLATE = "assess_system.txt"

SCORING_TIER = "haiku"
ROADMAP_TIER = "sonnet"
ASSESS_TIER = "sonnet"


def _compact_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def resolve_task_prompt(scenario: str, custom_prompt: str | None = None) -> str:
    """Return the task text for an evaluation.

    A non-empty custom prompt wins. Otherwise the scenario id is looked up in
    the catalog; an unknown id is used verbatim as the prompt.
    """
    if custom_prompt:
        return custom_prompt
    found = find_scenario(scenario)
    return found.prompt if found is not None else scenario


def build_evaluation_request(body: EvaluateRequest) -> tuple[GenerationRequest, ModelTier]:
    tier = MODEL_TIERS[body.model]
    request = GenerationRequest(
        system_prompt=load_template(EVALUATE_SYSTEM_TEMPLATE),
        user_message=resolve_task_prompt(body.scenario, body.customPrompt),
        model_id=tier.model_id,
        max_output_tokens=config.EVALUATE_MAX_TOKENS,
    )
    return request, tier


def build_scoring_request(body: ScoreRequest) -> GenerationRequest:
    user_message = render_prompt(
        load_template(SCORE_USER_TEMPLATE),
        task=body.taskPrompt,
        response=body.response,
    )
    return GenerationRequest(
        system_prompt=load_template(SCORE_SYSTEM_TEMPLATE),
        user_message=user_message,
        model_id=MODEL_TIERS[SCORING_TIER].model_id,
        max_output_tokens=config.SCORE_MAX_TOKENS,
    )


def build_roadmap_request(body: RoadmapRequest) -> GenerationRequest:
    intake = body.intake
    context = {
        "intake": {
            "agencyType": intake.agencyType,
            "missionDescription": intake.missionDescription,
            "painPoints": intake.painPoints,
            "dataClassification": intake.dataClassification,
            "complianceRequirements": intake.complianceRequirements,
            "estimatedMonthlyVolume": intake.estimatedVolume,
        },
        "architecture": body.architecture.model_dump() if body.architecture else None,
        "evaluation": body.evaluation.model_dump() if body.evaluation else None,
    }
    return GenerationRequest(
        system_prompt=load_template(ROADMAP_SYSTEM_TEMPLATE),
        user_message=_compact_json(context),
        model_id=MODEL_TIERS[ROADMAP_TIER].model_id,
        max_output_tokens=config.ROADMAP_MAX_TOKENS,
    )


def build_assessment_request(body: IntakeForm) -> GenerationRequest:
    return GenerationRequest(
        system_prompt=load_template(ASSESS_SYSTEM_TEMPLATE),
        user_message=_compact_json(body.model_dump()),
        model_id=MODEL_TIERS[ASSESS_TIER].model_id,
        max_output_tokens=config.ASSESS_MAX_TOKENS,
    )
