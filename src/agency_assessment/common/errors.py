"""Exception types shared across the service and the client."""
from __future__ import annotations
from typing import Any


class ClientInputError(Exception):
    """Request body could not be parsed or failed schema validation."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class RateLimitExceeded(Exception):
    def __init__(self, identity: str, retry_after: int) -> None:
        super().__init__(f"Rate limit exceeded for {identity}")
        self.identity = identity
        self.retry_after = retry_after


class GenerationError(Exception):
    """Failure talking to the generation service.

    `status_code` is the upstream HTTP status when one was received.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"[{self.status_code}] {self.message}"


class ResponseParseError(ValueError):
    """Model output was not the JSON payload we asked for."""

    def __init__(self, message: str, raw_text: str) -> None:
        super().__init__(message)
        self.raw_text = raw_text


class AssessmentAPIError(Exception):
    """Non-success response from the assessment API."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class StreamProtocolError(Exception):
    """A streamed response was aborted or its metadata trailer is unusable."""
