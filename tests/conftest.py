from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

_REPO_ROOT = Path(__file__).resolve().parents[1]
_SRC = _REPO_ROOT / "src"
if _SRC.exists():
    sys.path.insert(0, str(_SRC))


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    # Settings come from CHART_RENDER_*; keep the developer's shell out of the tests.
    for name in list(os.environ):
        if name.startswith("CHART_RENDER_"):
            monkeypatch.delenv(name, raising=False)
