# Ensure project root (parent of tests) is on sys.path so the top-level modules import.
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from helpers import NOW, FakeRef  # noqa: E402


@pytest.fixture
def fake_ref():
    """In-memory stand-in for the Firebase root reference."""
    return FakeRef()


@pytest.fixture
def client(fake_ref, monkeypatch):
    """TestClient with Firebase and the clock swapped out."""
    from fastapi.testclient import TestClient
    import main

    monkeypatch.setattr(main, "ADMIN_KEY", "test-admin-key")
    main.app.dependency_overrides[main.get_db_ref] = lambda: fake_ref
    main.app.dependency_overrides[main.get_now] = lambda: NOW
    try:
        yield TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()
