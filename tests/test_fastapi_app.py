from __future__ import annotations

import json

import httpx
from fastapi.testclient import TestClient

import agency_assessment.serve.fastapi_app as app_mod
from agency_assessment.common.errors import GenerationError
from agency_assessment.common.pricing import MODEL_TIERS
from agency_assessment.common.scenarios import find_scenario
from agency_assessment.common.schema import METADATA_DELIMITER, PerformanceMetrics
from agency_assessment.common.templates import load_template
from agency_assessment.serve.generation import GenerationClient

from conftest import SCORE_PAYLOAD, FakeGenerationClient, sse, text_stream_events

INTAKE = {
    "agencyType": "va",
    "missionDescription": "Help veterans navigate disability claims faster.",
    "painPoints": ["slow-response"],
    "dataClassification": "unclassified-cui",
    "complianceRequirements": ["hipaa"],
    "estimatedVolume": "1k-10k",
}


def test_health_ok(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data.get("status") == "ok"
    assert data["models"]["haiku"] == MODEL_TIERS["haiku"].model_id


def test_scenarios_listed_without_prompts(client: TestClient) -> None:
    r = client.get("/api/scenarios")
    assert r.status_code == 200
    rows = r.json()
    assert rows[0] == {
        "id": "foia-redaction",
        "label": "FOIA Request Processing",
        "description": find_scenario("foia-redaction").description,
    }
    assert all("prompt" not in row for row in rows)


def test_evaluate_streams_text_then_metrics(client: TestClient, fake_generator: FakeGenerationClient) -> None:
    r = client.post("/api/evaluate", json={"scenario": "foia-redaction", "model": "haiku"})
    assert r.status_code == 200
    assert r.headers["content-type"] == "text/plain; charset=utf-8"
    assert r.headers["x-content-type-options"] == "nosniff"

    parts = r.text.split(METADATA_DELIMITER)
    assert len(parts) == 2
    assert parts[0] == "Hello, world."
    metrics = PerformanceMetrics.model_validate_json(parts[1])
    assert metrics.outputTokens > 0
    assert metrics.costUsd >= 0

    sent = fake_generator.stream_calls[0]
    assert sent.model_id == MODEL_TIERS["haiku"].model_id
    assert sent.user_message == find_scenario("foia-redaction").prompt
    assert sent.system_prompt == load_template("evaluate_system.txt")


def test_evaluate_against_upstream_sse(client: TestClient) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["model"] == MODEL_TIERS["haiku"].model_id
        return httpx.Response(
            200,
            content=sse(*text_stream_events("Redact ", "the EIN.", input_tokens=900, output_tokens=40)),
        )

    upstream = GenerationClient(api_key="k", transport=httpx.MockTransport(handler))
    app_mod.app.dependency_overrides[app_mod.get_generation_client] = lambda: upstream

    r = client.post("/api/evaluate", json={"scenario": "foia-redaction", "model": "haiku"})
    assert r.status_code == 200
    text, trailer = r.text.split(METADATA_DELIMITER)
    assert text == "Redact the EIN."
    metrics = json.loads(trailer)
    assert metrics["inputTokens"] == 900
    assert metrics["outputTokens"] == 40
    assert metrics["costUsd"] == MODEL_TIERS["haiku"].estimate_cost(900, 40)


def test_evaluate_custom_prompt_overrides_scenario(client: TestClient, fake_generator: FakeGenerationClient) -> None:
    r = client.post(
        "/api/evaluate",
        json={"scenario": "custom", "customPrompt": "Draft a travel memo.", "model": "sonnet"},
    )
    assert r.status_code == 200
    assert fake_generator.stream_calls[0].user_message == "Draft a travel memo."
    assert fake_generator.stream_calls[0].model_id == MODEL_TIERS["sonnet"].model_id


def test_evaluate_rejects_unknown_model(client: TestClient, fake_generator: FakeGenerationClient) -> None:
    r = client.post("/api/evaluate", json={"scenario": "foia-redaction", "model": "opus"})
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "Invalid request."
    assert "model" in body["details"]["fieldErrors"]
    assert fake_generator.stream_calls == []


def test_unparseable_body_is_400(client: TestClient) -> None:
    r = client.post(
        "/api/evaluate",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid request body."}


def test_non_object_body_reports_form_error(client: TestClient) -> None:
    r = client.post("/api/evaluate/score", json=["taskPrompt", "response"])
    assert r.status_code == 400
    assert r.json()["details"]["formErrors"]


def test_score_returns_parsed_result(client: TestClient, fake_generator: FakeGenerationClient) -> None:
    r = client.post("/api/evaluate/score", json={"taskPrompt": "Summarize X", "response": "Y"})
    assert r.status_code == 200
    data = r.json()
    assert isinstance(data["overallScore"], int)
    assert 0 <= data["overallScore"] <= 100
    for dim in ("accuracy", "completeness", "safety", "tone"):
        assert isinstance(data["scores"][dim]["score"], int)
        assert 0 <= data["scores"][dim]["score"] <= 100
    assert fake_generator.complete_calls[0].user_message == (
        "TASK:\nSummarize X\n\nCLAUDE'S RESPONSE:\nY"
    )


def test_score_accepts_fenced_output(client: TestClient, fake_generator: FakeGenerationClient) -> None:
    fake_generator.completion_text = "```json\n" + json.dumps(SCORE_PAYLOAD) + "\n```"
    r = client.post("/api/evaluate/score", json={"taskPrompt": "Summarize X", "response": "Y"})
    assert r.status_code == 200
    assert r.json()["overallScore"] == 86


def test_score_parse_failure_is_generic_500(client: TestClient, fake_generator: FakeGenerationClient) -> None:
    fake_generator.completion_text = "I'd rate this response an 8/10."
    r = client.post("/api/evaluate/score", json={"taskPrompt": "Summarize X", "response": "Y"})
    assert r.status_code == 500
    assert r.json() == {"error": "Scoring failed. Please try again."}


def test_score_upstream_failure_is_generic_500(client: TestClient, fake_generator: FakeGenerationClient) -> None:
    fake_generator.complete_error = GenerationError("invalid x-api-key", 401)
    r = client.post("/api/evaluate/score", json={"taskPrompt": "Summarize X", "response": "Y"})
    assert r.status_code == 500
    assert "x-api-key" not in r.text


def test_score_malformed_upstream_body_is_generic_500(client: TestClient) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"content": None, "usage": {"input_tokens": None}})

    upstream = GenerationClient(api_key="k", transport=httpx.MockTransport(handler))
    app_mod.app.dependency_overrides[app_mod.get_generation_client] = lambda: upstream

    r = client.post("/api/evaluate/score", json={"taskPrompt": "Summarize X", "response": "Y"})
    assert r.status_code == 500
    assert r.json() == {"error": "Scoring failed. Please try again."}


def test_score_requires_non_empty_fields(client: TestClient) -> None:
    r = client.post("/api/evaluate/score", json={"taskPrompt": "", "response": "Y"})
    assert r.status_code == 400
    assert "taskPrompt" in r.json()["details"]["fieldErrors"]


def test_eleventh_request_is_rate_limited(client: TestClient) -> None:
    headers = {"x-forwarded-for": "198.51.100.4"}
    body = {"scenario": "policy-analysis", "model": "haiku"}
    for _ in range(10):
        assert client.post("/api/evaluate", json=body, headers=headers).status_code == 200
    r = client.post("/api/evaluate", json=body, headers=headers)
    assert r.status_code == 429
    assert r.json() == {"error": "Rate limit exceeded. Try again later."}
    assert int(r.headers["retry-after"]) > 0


def test_demo_header_uses_separate_bucket(client: TestClient) -> None:
    headers = {"x-forwarded-for": "198.51.100.5"}
    for _ in range(10):
        client.post("/api/evaluate/score", json={}, headers=headers)
    assert client.post("/api/evaluate/score", json={}, headers=headers).status_code == 429
    demo = {**headers, "x-demo-mode": "true"}
    assert client.post("/api/evaluate/score", json={}, headers=demo).status_code == 400


def test_rate_limit_checked_before_body_parse(client: TestClient) -> None:
    for _ in range(10):
        client.post("/api/roadmap", content=b"garbage")
    r = client.post("/api/roadmap", content=b"garbage")
    assert r.status_code == 429


def test_roadmap_missing_agency_type_is_400_without_upstream_call(
    client: TestClient, fake_generator: FakeGenerationClient
) -> None:
    intake = {k: v for k, v in INTAKE.items() if k != "agencyType"}
    r = client.post("/api/roadmap", json={"intake": intake})
    assert r.status_code == 400
    assert r.json()["details"]["fieldErrors"]["agencyType"]
    assert fake_generator.stream_calls == []
    assert fake_generator.complete_calls == []


def test_roadmap_streams_raw_text_without_trailer(client: TestClient, fake_generator: FakeGenerationClient) -> None:
    fake_generator.deltas = ('```json\n{"phases": [], ', '"executiveSummary": "ok"}\n```')
    r = client.post(
        "/api/roadmap",
        json={
            "intake": INTAKE,
            "evaluation": {"scenarioTested": "FOIA", "overallScore": 86, "modelUsed": "haiku"},
        },
    )
    assert r.status_code == 200
    assert METADATA_DELIMITER not in r.text
    assert r.text.endswith("```")
    context = json.loads(fake_generator.stream_calls[0].user_message)
    assert context["evaluation"]["overallScore"] == 86
    assert context["architecture"] is None


def test_assess_validates_full_intake(client: TestClient, fake_generator: FakeGenerationClient) -> None:
    r = client.post("/api/assess", json={**INTAKE, "missionDescription": "too short"})
    assert r.status_code == 400
    assert "missionDescription" in r.json()["details"]["fieldErrors"]

    r = client.post("/api/assess", json=INTAKE)
    assert r.status_code == 200
    assert r.text == "Hello, world."
    assert json.loads(fake_generator.stream_calls[0].user_message)["agencyType"] == "va"
