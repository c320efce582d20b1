"""Test fixtures: JSON case tables shared by the conversion tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

_FIXTURES_DIR = Path(__file__).parent


def load_cases(name: str) -> list[dict[str, Any]]:
    """Load a case table such as ``rest_to_sql.json``.

    Args:
        name: File stem under ``tests/fixtures``.

    Returns:
        The list of case objects, each with an ``id`` key.
    """
    return json.loads((_FIXTURES_DIR / f"{name}.json").read_text())


def case_ids(cases: list[dict[str, Any]]) -> list[str]:
    return [case["id"] for case in cases]
