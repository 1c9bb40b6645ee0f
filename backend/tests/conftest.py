from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _reset_score_store() -> None:
    from certscore.store import reset_score_store

    reset_score_store()
    yield
    reset_score_store()


@pytest.fixture
def t0() -> datetime:
    return datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def later(t0: datetime):
    def _later(minutes: int = 1) -> datetime:
        return t0 + timedelta(minutes=minutes)

    return _later
