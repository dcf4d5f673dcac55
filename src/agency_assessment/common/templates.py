"""Prompt templating helpers."""
from __future__ import annotations
import re
from functools import lru_cache
from pathlib import Path

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@lru_cache(maxsize=None)
def load_template(name: str) -> str:
    """
    Load a prompt template shipped with the package.

    Args:
        name: File name under the package's templates/ directory.
    """
    return (TEMPLATE_DIR / name).read_text(encoding="utf-8").strip()


def render_prompt(template: str, **values: str) -> str:
    """
    Substitute {{name}} placeholders in a template.

    All markers are filled in a single pass, so substituted text is inserted
    verbatim even when it contains {{name}} markers of its own. Markers with
    no matching value are left as they are.

    Args:
        template: Template content containing {{name}} markers.
        values: Replacement text keyed by placeholder name.

    Returns:
        Rendered prompt.
    """
    def _fill(match: re.Match[str]) -> str:
        return values.get(match.group(1), match.group(0))

    return _PLACEHOLDER.sub(_fill, template)
