from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterator

import pytest
from fastapi.testclient import TestClient

import agency_assessment.serve.fastapi_app as app_mod
from agency_assessment.common.errors import GenerationError
from agency_assessment.common.schema import (
    Completion,
    GenerationRequest,
    RawEvent,
    StreamEvent,
    TextDelta,
    Usage,
)
from agency_assessment.serve.rate_limit import RateLimiter


class FakeStream:
    def __init__(self, owner: "FakeGenerationClient") -> None:
        self._owner = owner

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._events()

    async def _events(self) -> AsyncIterator[StreamEvent]:
        yield RawEvent(type="message_start")
        for i, text in enumerate(self._owner.deltas):
            if self._owner.fail_at == i:
                raise GenerationError("upstream dropped the connection", 529)
            if self._owner.delay and i > 0:
                await asyncio.sleep(self._owner.delay)
            yield TextDelta(text=text)
        yield RawEvent(type="message_stop")

    async def final_usage(self) -> Usage:
        return self._owner.usage


class FakeGenerationClient:
    """Stands in for GenerationClient; records every call it receives."""

    def __init__(
        self,
        deltas: tuple[str, ...] = ("Hello", ", ", "world."),
        usage: Usage | None = None,
        completion_text: str = "",
        fail_at: int | None = None,
        complete_error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.deltas = deltas
        self.usage = usage or Usage(input_tokens=120, output_tokens=45)
        self.completion_text = completion_text
        self.fail_at = fail_at
        self.complete_error = complete_error
        self.delay = delay
        self.stream_calls: list[GenerationRequest] = []
        self.complete_calls: list[GenerationRequest] = []
        self.upstream_closed = False

    @asynccontextmanager
    async def stream_complete(self, request: GenerationRequest) -> AsyncIterator[FakeStream]:
        self.stream_calls.append(request)
        try:
            yield FakeStream(self)
        finally:
            self.upstream_closed = True

    async def complete(self, request: GenerationRequest) -> Completion:
        self.complete_calls.append(request)
        if self.complete_error is not None:
            raise self.complete_error
        return Completion(text=self.completion_text, input_tokens=300, output_tokens=150)


SCORE_PAYLOAD: dict[str, Any] = {
    "scores": {
        "accuracy": {"score": 88, "explanation": "Correct exemptions cited."},
        "completeness": {"score": 80, "explanation": "Missed one identifier."},
        "safety": {"score": 92, "explanation": "PII flagged consistently."},
        "tone": {"score": 85, "explanation": "Appropriately formal."},
    },
    "overallScore": 86,
    "summary": "Strong redaction analysis with a minor omission.",
    "strengths": ["Cites exemptions", "Flags PII"],
    "improvements": ["Redact the EIN"],
}


def sse(*events: dict[str, Any]) -> bytes:
    """Encode events the way the Messages API streams them."""
    lines = []
    for event in events:
        lines.append(f"event: {event['type']}")
        lines.append(f"data: {json.dumps(event)}")
        lines.append("")
    return ("\n".join(lines) + "\n").encode("utf-8")


def text_stream_events(*texts: str, input_tokens: int = 25, output_tokens: int = 7) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = [
        {"type": "message_start", "message": {"usage": {"input_tokens": input_tokens, "output_tokens": 1}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "ping"},
    ]
    events += [
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": t}}
        for t in texts
    ]
    events += [
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": output_tokens}},
        {"type": "message_stop"},
    ]
    return events


@pytest.fixture
def fake_generator() -> FakeGenerationClient:
    return FakeGenerationClient(completion_text=json.dumps(SCORE_PAYLOAD))


@pytest.fixture
def limiter() -> RateLimiter:
    return RateLimiter(normal_limit=10, demo_limit=50, window_seconds=3600)


@pytest.fixture
def client(fake_generator: FakeGenerationClient, limiter: RateLimiter) -> Iterator[TestClient]:
    app_mod.app.dependency_overrides[app_mod.get_generation_client] = lambda: fake_generator
    app_mod.app.dependency_overrides[app_mod.get_rate_limiter] = lambda: limiter
    yield TestClient(app_mod.app)
    app_mod.app.dependency_overrides.clear()
