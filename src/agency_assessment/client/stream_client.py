"""Async client for the assessment API.

Mirrors what the browser does with the streamed responses: evaluation
streams are split on the metadata trailer and the decoded text is handed to
the scoring endpoint; roadmap and assessment streams are accumulated and
parsed as (possibly fenced) JSON once the stream ends.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Callable

import httpx
from pydantic import ValidationError

from agency_assessment.common import config
from agency_assessment.common.errors import AssessmentAPIError, StreamProtocolError
from agency_assessment.common.parsing import parse_fenced_json
from agency_assessment.common.prompts import resolve_task_prompt
from agency_assessment.common.schema import (
    METADATA_DELIMITER,
    PerformanceMetrics,
    ScenarioInfo,
    ScoreResult,
)

LOGGER = logging.getLogger("agency_assessment.client")

TextCallback = Callable[[str], None]


class TrailerDecoder:
    """Incrementally separate display text from the metadata trailer.

    `feed()` returns the newly displayable text. A tail that could be the
    start of the delimiter is held back until the next chunk settles it, so
    delimiter bytes are never emitted. The first delimiter occurrence wins.
    """

    def __init__(self, delimiter: str = METADATA_DELIMITER) -> None:
        self._delimiter = delimiter
        self._buffer = ""
        self._emitted = 0
        self._split_at: int | None = None

    def _held_back(self) -> int:
        for size in range(min(len(self._delimiter) - 1, len(self._buffer)), 0, -1):
            if self._buffer.endswith(self._delimiter[:size]):
                return size
        return 0

    def feed(self, chunk: str) -> str:
        self._buffer += chunk
        if self._split_at is None:
            idx = self._buffer.find(self._delimiter, self._emitted)
            if idx >= 0:
                self._split_at = idx
                end = idx
            else:
                end = len(self._buffer) - self._held_back()
        else:
            end = self._split_at
        out = self._buffer[self._emitted:end]
        self._emitted = max(self._emitted, end)
        return out

    def finish(self) -> tuple[str, str | None]:
        """Return (text, trailer); trailer is None when no delimiter was seen."""
        if self._split_at is None:
            return self._buffer, None
        return (
            self._buffer[: self._split_at],
            self._buffer[self._split_at + len(self._delimiter):],
        )


def _metrics_from_trailer(trailer: str | None) -> PerformanceMetrics:
    if trailer is None:
        raise StreamProtocolError("Evaluation stream ended without a metadata trailer")
    try:
        return PerformanceMetrics.model_validate_json(trailer)
    except ValidationError as e:
        raise StreamProtocolError(f"Unreadable metadata trailer: {e}") from e


def split_metadata_trailer(full_text: str) -> tuple[str, PerformanceMetrics]:
    """Split a complete evaluation body into text and metrics.

    Raises:
        StreamProtocolError: if the trailer is missing or not valid metrics JSON.
    """
    decoder = TrailerDecoder()
    decoder.feed(full_text)
    text, trailer = decoder.finish()
    return text, _metrics_from_trailer(trailer)


@dataclass(slots=True)
class EvaluationRun:
    scenario: str
    task_prompt: str
    model: str
    response: str
    metrics: PerformanceMetrics
    scores: ScoreResult


class AssessmentClient:
    def __init__(
        self,
        base_url: str = f"http://localhost:{config.PORT}",
        *,
        demo_mode: bool = False,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.demo_mode = demo_mode
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout or config.HTTP_TIMEOUT_S,
            transport=transport,
        )

    async def __aenter__(self) -> "AssessmentClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.demo_mode:
            headers["x-demo-mode"] = "true"
        return headers

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            message = str(response.json().get("error", "Something went wrong."))
        except (ValueError, AttributeError):
            message = "Something went wrong."
        if response.status_code == 429:
            message = "Rate limit exceeded. Please wait before trying again."
        raise AssessmentAPIError(response.status_code, message)

    async def _stream(
        self,
        path: str,
        payload: dict[str, Any],
        on_chunk: Callable[[str], None],
    ) -> None:
        try:
            async with self._client.stream(
                "POST", path, json=payload, headers=self._headers()
            ) as response:
                if not response.is_success:
                    await response.aread()
                    self._raise_for_error(response)
                async for chunk in response.aiter_text():
                    on_chunk(chunk)
        except httpx.TransportError as e:
            # covers a server-side abort mid-body (incomplete chunked read)
            raise StreamProtocolError(f"Stream from {path} was aborted: {e}") from e

    async def scenarios(self) -> list[ScenarioInfo]:
        r = await self._client.get("/api/scenarios")
        self._raise_for_error(r)
        return [ScenarioInfo.model_validate(row) for row in r.json()]

    async def stream_evaluation(
        self,
        scenario: str,
        model: str = "sonnet",
        custom_prompt: str | None = None,
        on_text: TextCallback | None = None,
    ) -> tuple[str, PerformanceMetrics]:
        """Run one evaluation stream and return (response text, metrics)."""
        payload: dict[str, Any] = {"scenario": scenario, "model": model}
        if custom_prompt is not None:
            payload["customPrompt"] = custom_prompt
        decoder = TrailerDecoder()

        def _on_chunk(chunk: str) -> None:
            shown = decoder.feed(chunk)
            if shown and on_text is not None:
                on_text(shown)

        await self._stream("/api/evaluate", payload, _on_chunk)
        text, trailer = decoder.finish()
        return text, _metrics_from_trailer(trailer)

    async def score(self, task_prompt: str, response: str) -> ScoreResult:
        r = await self._client.post(
            "/api/evaluate/score",
            json={"taskPrompt": task_prompt, "response": response},
            headers=self._headers(),
        )
        self._raise_for_error(r)
        return ScoreResult.model_validate(r.json())

    async def evaluate(
        self,
        scenario: str,
        model: str = "sonnet",
        custom_prompt: str | None = None,
        on_text: TextCallback | None = None,
    ) -> EvaluationRun:
        """Stream an evaluation, then score the decoded response.

        The scorer sees the same task text the server resolved for the
        evaluation (custom prompt, catalog prompt, or the raw scenario id).
        """
        text, metrics = await self.stream_evaluation(scenario, model, custom_prompt, on_text)
        scored_prompt = resolve_task_prompt(scenario, custom_prompt)
        scores = await self.score(scored_prompt, text)
        LOGGER.info(
            "Evaluation complete scenario=%s model=%s overall=%d cost=$%.6f",
            scenario,
            model,
            scores.overallScore,
            metrics.costUsd,
        )
        return EvaluationRun(
            scenario=scenario,
            task_prompt=scored_prompt,
            model=model,
            response=text,
            metrics=metrics,
            scores=scores,
        )

    async def _stream_json(
        self, path: str, payload: dict[str, Any], on_text: TextCallback | None
    ) -> Any:
        parts: list[str] = []

        def _on_chunk(chunk: str) -> None:
            parts.append(chunk)
            if on_text is not None:
                on_text(chunk)

        await self._stream(path, payload, _on_chunk)
        full_text = "".join(parts)
        LOGGER.debug("%s stream complete chars=%d", path, len(full_text))
        return parse_fenced_json(full_text)

    async def roadmap(
        self,
        intake: dict[str, Any],
        architecture: dict[str, Any] | None = None,
        evaluation: dict[str, Any] | None = None,
        on_text: TextCallback | None = None,
    ) -> Any:
        payload = {"intake": intake, "architecture": architecture, "evaluation": evaluation}
        return await self._stream_json("/api/roadmap", payload, on_text)

    async def assess(self, intake: dict[str, Any], on_text: TextCallback | None = None) -> Any:
        return await self._stream_json("/api/assess", intake, on_text)
