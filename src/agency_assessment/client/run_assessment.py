"""Command-line driver for the assessment API.

Streams model output to stdout as it arrives and logs the metrics, scores
or parsed JSON once each step completes.
"""
from __future__ import annotations
import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import yaml

from agency_assessment.common import config
from agency_assessment.common.errors import (
    AssessmentAPIError,
    ResponseParseError,
    StreamProtocolError,
)
from agency_assessment.common.logging_setup import setup_logging
from agency_assessment.client.stream_client import AssessmentClient

LOGGER = logging.getLogger("agency_assessment.client.cli")


def load_intake(path: str) -> dict[str, Any]:
    """Read an intake form from a YAML or JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Intake file {path} must contain a mapping")
    return data


def _echo(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


async def _run(args: argparse.Namespace) -> int:
    async with AssessmentClient(args.base_url, demo_mode=args.demo) as client:
        if args.command == "scenarios":
            for s in await client.scenarios():
                print(f"{s.id:24} {s.label}")
            return 0

        if args.command == "evaluate":
            run = await client.evaluate(
                args.scenario,
                model=args.model,
                custom_prompt=args.custom_prompt,
                on_text=_echo,
            )
            print()
            m = run.metrics
            LOGGER.info(
                "Latency: %sms | TTFT: %sms | in=%s out=%s | cost=$%.6f",
                m.latencyMs,
                m.timeToFirstTokenMs,
                m.inputTokens,
                m.outputTokens,
                m.costUsd,
            )
            print(json.dumps(run.scores.model_dump(), indent=2))
            return 0

        intake = load_intake(args.intake)
        if args.command == "roadmap":
            result = await client.roadmap(intake, on_text=_echo if args.verbose else None)
        else:
            result = await client.assess(intake, on_text=_echo if args.verbose else None)
        print(json.dumps(result, indent=2))
        return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Run federal AI assessment steps against the API")
    ap.add_argument("--base-url", default=f"http://localhost:{config.PORT}", help="API base URL")
    ap.add_argument("--demo", action="store_true", help="Use the demo-mode rate limit bucket")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("scenarios", help="List evaluation scenarios")

    ev = sub.add_parser("evaluate", help="Stream an evaluation and score it")
    ev.add_argument("--scenario", required=True, help="Scenario id (or free text)")
    ev.add_argument("--model", choices=["sonnet", "haiku"], default="sonnet")
    ev.add_argument("--custom-prompt", default=None, help="Task text overriding the scenario")

    for name, help_text in (("roadmap", "Generate an implementation roadmap"),
                            ("assess", "Generate an architecture assessment")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--intake", required=True, help="Intake form (YAML or JSON file)")
        p.add_argument("--verbose", action="store_true", help="Echo raw streamed text")
    return ap


def main() -> None:
    setup_logging(config.LOG_LEVEL, stream=sys.stderr)
    args = build_parser().parse_args()
    try:
        code = asyncio.run(_run(args))
    except AssessmentAPIError as e:
        LOGGER.error("%s", e.message)
        code = 1
    except StreamProtocolError as e:
        LOGGER.error("Stream failed: %s", e)
        code = 1
    except ResponseParseError as e:
        LOGGER.error("Failed to parse the response. Please try again. (%s)", e)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
