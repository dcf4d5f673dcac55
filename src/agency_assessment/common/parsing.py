"""Parsing of JSON payloads returned by the generation model.

Models sometimes wrap JSON in a markdown code fence despite being told not
to. `strip_code_fences` removes one optional leading fence (with an optional
"json" tag) and one optional trailing fence; `parse_fenced_json` then parses
the remainder.
"""
from __future__ import annotations
import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from agency_assessment.common.errors import ResponseParseError
from agency_assessment.common.schema import ScoreResult

LOGGER = logging.getLogger("agency_assessment.parsing")

_LEADING_FENCE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```\s*$")

SCORE_WEIGHTS = {"accuracy": 0.40, "completeness": 0.25, "safety": 0.25, "tone": 0.10}
SCORE_DRIFT_TOLERANCE = 5


def strip_code_fences(text: str) -> str:
    out = _LEADING_FENCE.sub("", text.strip(), count=1)
    out = _TRAILING_FENCE.sub("", out, count=1)
    return out.strip()


def parse_fenced_json(text: str) -> Any:
    """Parse model output that may be wrapped in a code fence.

    Raises:
        ResponseParseError: if the unwrapped text is not valid JSON.
    """
    sanitized = strip_code_fences(text)
    try:
        return json.loads(sanitized)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Response is not valid JSON: {e}", raw_text=text) from e


def weighted_overall(result: ScoreResult) -> float:
    return sum(getattr(result.scores, dim).score * w for dim, w in SCORE_WEIGHTS.items())


def parse_score_result(text: str) -> ScoreResult:
    """Parse and validate the scoring model's output."""
    payload = parse_fenced_json(text)
    try:
        result = ScoreResult.model_validate(payload)
    except ValidationError as e:
        raise ResponseParseError(f"Score payload does not match schema: {e}", raw_text=text) from e

    expected = weighted_overall(result)
    if abs(expected - result.overallScore) > SCORE_DRIFT_TOLERANCE:
        # advisory only; the model's figure is returned untouched
        LOGGER.warning(
            "overallScore %s differs from weighted average %.1f",
            result.overallScore,
            expected,
        )
    return result
