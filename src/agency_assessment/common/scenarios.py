"""Catalog of canned federal task scenarios used by the evaluation step."""
from __future__ import annotations
from dataclasses import dataclass
from functools import lru_cache

import yaml

from agency_assessment.common.templates import TEMPLATE_DIR


@dataclass(frozen=True, slots=True)
class Scenario:
    id: str
    label: str
    description: str
    prompt: str


@lru_cache(maxsize=1)
def load_scenarios() -> tuple[Scenario, ...]:
    """Load the catalog in display order."""
    with open(TEMPLATE_DIR / "scenarios.yaml", "r", encoding="utf-8") as f:
        rows = yaml.safe_load(f) or []
    return tuple(
        Scenario(
            id=row["id"],
            label=row["label"],
            description=row["description"],
            prompt=row["prompt"],
        )
        for row in rows
    )


def find_scenario(scenario_id: str) -> Scenario | None:
    for scenario in load_scenarios():
        if scenario.id == scenario_id:
            return scenario
    return None
