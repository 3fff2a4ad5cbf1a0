from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
TESTS = Path(__file__).resolve().parent
if str(TESTS) not in sys.path:
    sys.path.insert(0, str(TESTS))

# Engine logs go to a scratch directory; config reads this at import time.
os.environ.setdefault("SHEET_ACTIONS_LOG_DIR", tempfile.mkdtemp(prefix="sheet-actions-logs-"))

from pdf_builder import build_sheet  # noqa: E402
from sheet_manager import reset_sheet_manager  # noqa: E402


@pytest.fixture
def sheet_bytes() -> bytes:
    return build_sheet()


@pytest.fixture(autouse=True)
def _fresh_sheet_manager():
    reset_sheet_manager()
    yield
    reset_sheet_manager()
