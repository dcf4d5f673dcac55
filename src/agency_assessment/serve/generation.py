"""Client for the hosted generation API (Anthropic Messages API over httpx).

Two operations:
- `stream_complete` opens a server-sent-event stream and yields StreamEvents
  in arrival order; token usage is available afterwards via
  `GenerationStream.final_usage()`.
- `complete` issues a single blocking call.

Every failure (transport error, non-200 status, an upstream `error` event,
a stream cut off before `message_stop`) is raised as GenerationError.
"""
from __future__ import annotations
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from agency_assessment.common import config
from agency_assessment.common.errors import GenerationError
from agency_assessment.common.schema import (
    Completion,
    GenerationRequest,
    RawEvent,
    StreamEvent,
    TextDelta,
    Usage,
)

LOGGER = logging.getLogger("agency_assessment.generation")


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
        return str(data["error"]["message"])
    except Exception:
        return response.text[:300] or response.reason_phrase


class GenerationStream:
    """Async iterator over the events of one streaming generation."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._usage = Usage()
        self._stopped = False
        self._events: AsyncIterator[StreamEvent] | None = None

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._events is None:
            self._events = self._iter_events()
        return self._events

    async def final_usage(self) -> Usage:
        """Consume whatever is left of the stream and return token usage."""
        async for _ in self:
            pass
        return self._usage

    async def _iter_events(self) -> AsyncIterator[StreamEvent]:
        try:
            async for line in self._response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                raw = line[len("data:"):].strip()
                if not raw:
                    continue
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    LOGGER.warning("Skipping malformed stream line: %.200s", raw)
                    continue
                yield self._to_event(data)
                if self._stopped:
                    return
        except httpx.HTTPError as e:
            raise GenerationError(f"Generation stream interrupted: {e}") from e
        if not self._stopped:
            raise GenerationError("Generation stream ended before message_stop")

    def _to_event(self, data: dict[str, Any]) -> StreamEvent:
        kind = data.get("type", "")
        if kind == "content_block_delta":
            delta = data.get("delta", {})
            if delta.get("type") == "text_delta":
                return TextDelta(text=delta.get("text", ""))
        elif kind == "message_start":
            usage = data.get("message", {}).get("usage", {})
            self._usage.input_tokens = int(usage.get("input_tokens") or 0)
            self._usage.output_tokens = int(usage.get("output_tokens") or 0)
        elif kind == "message_delta":
            usage = data.get("usage") or {}
            if usage.get("output_tokens") is not None:
                self._usage.output_tokens = int(usage["output_tokens"])
        elif kind == "message_stop":
            self._stopped = True
        elif kind == "error":
            error = data.get("error", {})
            raise GenerationError(str(error.get("message", "upstream stream error")))
        return RawEvent(type=kind, data=data)


class GenerationClient:
    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        api_version: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = config.ANTHROPIC_API_KEY if api_key is None else api_key
        self.base_url = (base_url or config.ANTHROPIC_BASE_URL).rstrip("/")
        self.api_version = api_version or config.ANTHROPIC_VERSION
        self._client = httpx.AsyncClient(
            timeout=timeout or config.HTTP_TIMEOUT_S,
            transport=transport,
        )

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/v1/messages"

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise GenerationError("ANTHROPIC_API_KEY is not configured")
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }

    @staticmethod
    def _payload(request: GenerationRequest, *, stream: bool) -> dict[str, Any]:
        return {
            "model": request.model_id,
            "max_tokens": request.max_output_tokens,
            "system": request.system_prompt,
            "messages": [{"role": "user", "content": request.user_message}],
            "stream": stream,
        }

    @asynccontextmanager
    async def stream_complete(self, request: GenerationRequest) -> AsyncIterator[GenerationStream]:
        """Open a token stream; the upstream response is closed on exit."""
        headers = self._headers()
        payload = self._payload(request, stream=True)
        try:
            async with self._client.stream(
                "POST", self.messages_url, headers=headers, json=payload
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise GenerationError(_error_message(response), response.status_code)
                yield GenerationStream(response)
        except httpx.HTTPError as e:
            raise GenerationError(f"Generation request failed: {e}") from e

    async def complete(self, request: GenerationRequest) -> Completion:
        headers = self._headers()
        payload = self._payload(request, stream=False)
        try:
            r = await self._client.post(self.messages_url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise GenerationError(f"Generation request failed: {e}") from e
        if r.status_code != 200:
            raise GenerationError(_error_message(r), r.status_code)
        try:
            data = r.json()
            text = "".join(
                block.get("text", "")
                for block in data.get("content", [])
                if block.get("type") == "text"
            )
            usage = data.get("usage") or {}
            return Completion(
                text=text,
                input_tokens=int(usage.get("input_tokens") or 0),
                output_tokens=int(usage.get("output_tokens") or 0),
            )
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            raise GenerationError(f"Malformed generation response: {e}", r.status_code) from e

    async def aclose(self) -> None:
        await self._client.aclose()
