# tests/conftest.py

from __future__ import annotations
import sys
from pathlib import Path

import pytest

# Ensure the repository root (parent of /tests) is on sys.path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def no_developer_settings(monkeypatch):
    # Keep a developer's sign-in settings out of the tests
    for k in ["AADSETUP_CONFIG", "AADSETUP_PASSWORD", "AADSETUP_CLIENT_ID", "GRAPH_BASE", "AUTHORITY_BASE", "GRAPH_TIMEOUT"]:
        monkeypatch.delenv(k, raising=False)
    yield
