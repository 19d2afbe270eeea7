from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
TESTS_DIR = Path(__file__).resolve().parent

for p in (PROJECT_ROOT, TESTS_DIR):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from chartfind.core.chart_spec import builtin_topologies  # noqa: E402
from synthetic import render_chart, synthetic_topology  # noqa: E402


@pytest.fixture(scope="session")
def classic24():
    return builtin_topologies()[0]


@pytest.fixture(scope="session")
def topology():
    """ColorChecker colours with the pitch/patch ratio of the rendered charts."""
    return synthetic_topology()


@pytest.fixture(scope="session")
def chart_scene():
    return render_chart()
