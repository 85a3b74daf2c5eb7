from __future__ import annotations

import sys
from pathlib import Path

import pytest_asyncio

# Allow `import mina_ai...` in tests without requiring PYTHONPATH hacks.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mina_ai.storage import Store  # noqa: E402


@pytest_asyncio.fixture
async def store(tmp_path):
    # One sqlite file per test so runs never see each other's rows.
    s = Store(str(tmp_path / "mina_ai_test.db"))
    await s.init()
    return s
