"""Relay of generation events into an HTTP response body.

Text deltas are encoded and yielded as soon as they arrive. The evaluation
stream ends with a metadata trailer:

    <generated text> + METADATA_DELIMITER + {"inputTokens": ..., ...}

Nothing follows the trailer JSON. On any failure the generator re-raises,
which aborts the HTTP response instead of closing it cleanly; no trailer is
written in that case.
"""
from __future__ import annotations
import logging
import time
from contextlib import AbstractAsyncContextManager
from typing import AsyncIterator, Awaitable, Callable, Protocol

from agency_assessment.common import config
from agency_assessment.common.errors import GenerationError
from agency_assessment.common.pricing import ModelTier
from agency_assessment.common.schema import (
    METADATA_DELIMITER,
    GenerationRequest,
    PerformanceMetrics,
    TextDelta,
    Usage,
)
from agency_assessment.serve.generation import GenerationStream

LOGGER = logging.getLogger("agency_assessment.relay")

DisconnectCheck = Callable[[], Awaitable[bool]]


class StreamingGenerator(Protocol):
    def stream_complete(
        self, request: GenerationRequest
    ) -> AbstractAsyncContextManager[GenerationStream]: ...


def elapsed_ms(started_at: float) -> int:
    return int((time.perf_counter() - started_at) * 1000)


class _RelayState:
    def __init__(self) -> None:
        self.time_to_first_token_ms: int | None = None
        self.usage: Usage | None = None
        self.disconnected = False


async def _relay_deltas(
    stream: GenerationStream,
    state: _RelayState,
    *,
    started_at: float,
    is_disconnected: DisconnectCheck | None,
) -> AsyncIterator[bytes]:
    deadline = started_at + config.STREAM_MAX_SECONDS
    async for event in stream:
        if not isinstance(event, TextDelta) or not event.text:
            continue
        if is_disconnected is not None and await is_disconnected():
            state.disconnected = True
            return
        if time.perf_counter() > deadline:
            raise GenerationError(
                f"Generation exceeded {config.STREAM_MAX_SECONDS:.0f}s streaming limit"
            )
        if state.time_to_first_token_ms is None:
            state.time_to_first_token_ms = elapsed_ms(started_at)
        yield event.text.encode("utf-8")
    state.usage = await stream.final_usage()


async def _relay(
    client: StreamingGenerator,
    request: GenerationRequest,
    state: _RelayState,
    *,
    label: str,
    started_at: float,
    is_disconnected: DisconnectCheck | None,
) -> AsyncIterator[bytes]:
    try:
        async with client.stream_complete(request) as stream:
            LOGGER.debug("%s stream opened after %dms", label, elapsed_ms(started_at))
            async for chunk in _relay_deltas(
                stream, state, started_at=started_at, is_disconnected=is_disconnected
            ):
                yield chunk
    except GenerationError as e:
        LOGGER.error(
            "%s stream error status=%s message=%s after %dms",
            label,
            e.status_code,
            e.message,
            elapsed_ms(started_at),
        )
        raise
    except Exception:
        LOGGER.exception("%s stream failed after %dms", label, elapsed_ms(started_at))
        raise
    if state.disconnected:
        LOGGER.info("%s client disconnected; upstream generation cancelled", label)


async def relay_with_metrics(
    client: StreamingGenerator,
    request: GenerationRequest,
    tier: ModelTier,
    *,
    started_at: float,
    is_disconnected: DisconnectCheck | None = None,
    label: str = "/api/evaluate",
) -> AsyncIterator[bytes]:
    """Stream generated text, then the metadata trailer.

    Args:
        client: Generation client providing `stream_complete`.
        request: Prompt and model parameters.
        tier: Pricing row for the model actually invoked.
        started_at: `time.perf_counter()` at request arrival.
        is_disconnected: Optional coroutine reporting client disconnect.
    """
    state = _RelayState()
    async for chunk in _relay(
        client, request, state, label=label, started_at=started_at, is_disconnected=is_disconnected
    ):
        yield chunk
    if state.disconnected or state.usage is None:
        return

    metrics = PerformanceMetrics(
        inputTokens=state.usage.input_tokens,
        outputTokens=state.usage.output_tokens,
        latencyMs=elapsed_ms(started_at),
        timeToFirstTokenMs=state.time_to_first_token_ms or 0,
        costUsd=tier.estimate_cost(state.usage.input_tokens, state.usage.output_tokens),
    )
    LOGGER.info(
        "%s complete model=%s latency=%dms ttft=%dms in=%d out=%d cost=$%.6f",
        label,
        request.model_id,
        metrics.latencyMs,
        metrics.timeToFirstTokenMs,
        metrics.inputTokens,
        metrics.outputTokens,
        metrics.costUsd,
    )
    yield (METADATA_DELIMITER + metrics.model_dump_json()).encode("utf-8")


async def relay_text(
    client: StreamingGenerator,
    request: GenerationRequest,
    *,
    started_at: float,
    is_disconnected: DisconnectCheck | None = None,
    label: str = "/api/roadmap",
) -> AsyncIterator[bytes]:
    """Stream generated text only; the client parses the accumulated body."""
    state = _RelayState()
    async for chunk in _relay(
        client, request, state, label=label, started_at=started_at, is_disconnected=is_disconnected
    ):
        yield chunk
    if state.usage is not None:
        LOGGER.info(
            "%s complete model=%s latency=%dms in=%d out=%d",
            label,
            request.model_id,
            elapsed_ms(started_at),
            state.usage.input_tokens,
            state.usage.output_tokens,
        )
