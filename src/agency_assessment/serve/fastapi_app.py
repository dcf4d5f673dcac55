"""FastAPI service for the federal AI assessment workflow.

Endpoints:
- GET  /health
- GET  /api/scenarios
- POST /api/evaluate        { scenario, customPrompt?, model }  -> text stream + metadata trailer
- POST /api/evaluate/score  { taskPrompt, response }            -> ScoreResult JSON
- POST /api/roadmap         { intake, architecture?, evaluation? } -> raw JSON text stream
- POST /api/assess          { ...intake form }                  -> raw JSON text stream

Every POST runs the same pipeline: rate check, body parse, schema
validation, prompt build, then generation.
"""
from __future__ import annotations
import asyncio
import contextlib
import logging
import time
from typing import Any, TypeVar

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError

from agency_assessment.common import config
from agency_assessment.common.errors import (
    ClientInputError,
    GenerationError,
    RateLimitExceeded,
    ResponseParseError,
)
from agency_assessment.common.logging_setup import setup_logging
from agency_assessment.common.parsing import parse_score_result
from agency_assessment.common.pricing import MODEL_TIERS
from agency_assessment.common.prompts import (
    build_assessment_request,
    build_evaluation_request,
    build_roadmap_request,
    build_scoring_request,
)
from agency_assessment.common.scenarios import load_scenarios
from agency_assessment.common.schema import (
    EvaluateRequest,
    IntakeForm,
    RoadmapRequest,
    ScenarioInfo,
    ScoreRequest,
)
from agency_assessment.serve.generation import GenerationClient
from agency_assessment.serve.rate_limit import RateLimiter, client_identity
from agency_assessment.serve.relay import elapsed_ms, relay_text, relay_with_metrics

LOGGER = logging.getLogger("agency_assessment.api")
setup_logging(config.LOG_LEVEL)

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Try again later."
SCORING_FAILED_MESSAGE = "Scoring failed. Please try again."
DEMO_HEADER = "x-demo-mode"
STREAM_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}

ModelT = TypeVar("ModelT", bound=BaseModel)

rate_limiter = RateLimiter()
_generation_client: GenerationClient | None = None
_sweeper: asyncio.Task | None = None

app = FastAPI(title="Federal AI Assessment API")


def get_generation_client() -> GenerationClient:
    global _generation_client
    if _generation_client is None:
        _generation_client = GenerationClient()
    return _generation_client


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


async def _sweep_rate_limits() -> None:
    while True:
        await asyncio.sleep(config.RATE_LIMIT_SWEEP_S)
        rate_limiter.sweep()


@app.on_event("startup")
async def _start_sweeper() -> None:
    global _sweeper
    _sweeper = asyncio.create_task(_sweep_rate_limits())


@app.on_event("shutdown")
async def _shutdown() -> None:
    global _generation_client, _sweeper
    if _sweeper is not None:
        _sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _sweeper
        _sweeper = None
    if _generation_client is not None:
        await _generation_client.aclose()
        _generation_client = None


@app.exception_handler(RateLimitExceeded)
async def _rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        {"error": RATE_LIMIT_MESSAGE},
        status_code=429,
        headers={"Retry-After": str(exc.retry_after)},
    )


@app.exception_handler(ClientInputError)
async def _bad_input(request: Request, exc: ClientInputError) -> JSONResponse:
    content: dict[str, Any] = {"error": exc.message}
    if exc.details is not None:
        content["details"] = exc.details
    return JSONResponse(content, status_code=400)


def _enforce_rate_limit(request: Request, limiter: RateLimiter) -> None:
    identity = client_identity(request.headers.get("x-forwarded-for"))
    mode = "demo" if request.headers.get(DEMO_HEADER) == "true" else "normal"
    decision = limiter.check(identity, mode)
    if not decision.allowed:
        LOGGER.warning("%s rate limit exceeded ip=%s mode=%s", request.url.path, identity, mode)
        raise RateLimitExceeded(identity, limiter.retry_after(decision))


def flatten_errors(exc: ValidationError) -> dict[str, Any]:
    """Group validation errors by field name.

    The key is the innermost named field of each error location, so a
    missing `intake.agencyType` is reported under `agencyType`. Errors
    without a field location land in `formErrors`.
    """
    field_errors: dict[str, list[str]] = {}
    form_errors: list[str] = []
    for err in exc.errors():
        names = [part for part in err["loc"] if isinstance(part, str)]
        if names:
            field_errors.setdefault(names[-1], []).append(err["msg"])
        else:
            form_errors.append(err["msg"])
    return {"fieldErrors": field_errors, "formErrors": form_errors}


async def _parse_body(request: Request, model: type[ModelT]) -> ModelT:
    try:
        body = await request.json()
    except ValueError:
        raise ClientInputError("Invalid request body.") from None
    try:
        return model.model_validate(body)
    except ValidationError as e:
        details = flatten_errors(e)
        LOGGER.warning("%s validation failed errors=%s", request.url.path, details["fieldErrors"])
        raise ClientInputError("Invalid request.", details) from None


def _text_stream(body: Any) -> StreamingResponse:
    return StreamingResponse(body, media_type="text/plain; charset=utf-8", headers=STREAM_HEADERS)


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "models": {name: tier.model_id for name, tier in MODEL_TIERS.items()},
    }


@app.get("/api/scenarios", response_model=list[ScenarioInfo])
def scenarios() -> list[ScenarioInfo]:
    return [
        ScenarioInfo(id=s.id, label=s.label, description=s.description)
        for s in load_scenarios()
    ]


@app.post("/api/evaluate")
async def evaluate(
    request: Request,
    client: GenerationClient = Depends(get_generation_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> StreamingResponse:
    start = time.perf_counter()
    _enforce_rate_limit(request, limiter)
    body = await _parse_body(request, EvaluateRequest)

    gen_request, tier = build_evaluation_request(body)
    LOGGER.info(
        "/api/evaluate request scenario=%s model=%s prompt_chars=%d",
        body.scenario,
        gen_request.model_id,
        len(gen_request.user_message),
    )
    return _text_stream(
        relay_with_metrics(
            client,
            gen_request,
            tier,
            started_at=start,
            is_disconnected=request.is_disconnected,
        )
    )


@app.post("/api/evaluate/score")
async def score(
    request: Request,
    client: GenerationClient = Depends(get_generation_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> JSONResponse:
    start = time.perf_counter()
    _enforce_rate_limit(request, limiter)
    body = await _parse_body(request, ScoreRequest)

    gen_request = build_scoring_request(body)
    LOGGER.info(
        "/api/evaluate/score request model=%s prompt_chars=%d response_chars=%d",
        gen_request.model_id,
        len(body.taskPrompt),
        len(body.response),
    )
    try:
        completion = await client.complete(gen_request)
        result = parse_score_result(completion.text)
    except GenerationError as e:
        LOGGER.error(
            "/api/evaluate/score upstream error status=%s message=%s after %dms",
            e.status_code,
            e.message,
            elapsed_ms(start),
        )
        return JSONResponse({"error": SCORING_FAILED_MESSAGE}, status_code=500)
    except ResponseParseError as e:
        LOGGER.error(
            "/api/evaluate/score unparseable output after %dms: %s raw=%.500r",
            elapsed_ms(start),
            e,
            e.raw_text,
        )
        return JSONResponse({"error": SCORING_FAILED_MESSAGE}, status_code=500)

    LOGGER.info(
        "/api/evaluate/score complete latency=%dms in=%d out=%d overall=%d",
        elapsed_ms(start),
        completion.input_tokens,
        completion.output_tokens,
        result.overallScore,
    )
    return JSONResponse(result.model_dump())


@app.post("/api/roadmap")
async def roadmap(
    request: Request,
    client: GenerationClient = Depends(get_generation_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> StreamingResponse:
    start = time.perf_counter()
    _enforce_rate_limit(request, limiter)
    body = await _parse_body(request, RoadmapRequest)

    gen_request = build_roadmap_request(body)
    LOGGER.info(
        "/api/roadmap request agency=%s architecture=%s evaluation=%s",
        body.intake.agencyType,
        body.architecture is not None,
        body.evaluation is not None,
    )
    return _text_stream(
        relay_text(
            client,
            gen_request,
            started_at=start,
            is_disconnected=request.is_disconnected,
            label="/api/roadmap",
        )
    )


@app.post("/api/assess")
async def assess(
    request: Request,
    client: GenerationClient = Depends(get_generation_client),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> StreamingResponse:
    start = time.perf_counter()
    _enforce_rate_limit(request, limiter)
    body = await _parse_body(request, IntakeForm)

    gen_request = build_assessment_request(body)
    LOGGER.info(
        "/api/assess request agency=%s classification=%s",
        body.agencyType,
        body.dataClassification,
    )
    return _text_stream(
        relay_text(
            client,
            gen_request,
            started_at=start,
            is_disconnected=request.is_disconnected,
            label="/api/assess",
        )
    )


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
