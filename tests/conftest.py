# tests/conftest.py
import os
import sys

import pytest

# Ensure repository root is on PYTHONPATH for tests
repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

# Ensure placeholder values do not trigger pre-flight checks during tests
os.environ.setdefault("GEMINI_API_KEY", "test-key")
os.environ.setdefault("KEYWORDS", "desert, exile, prophecy")
os.environ.setdefault("CHAPTER_COUNT", "3")

from config import NarrativeSettings  # noqa: E402


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides):
        values = {
            "GEMINI_API_KEY": "test-key",
            "KEYWORDS": "desert, exile, prophecy",
            "CHAPTER_COUNT": 3,
            "PARAGRAPH_PAUSE_SECONDS": 0,
            "LLM_RETRY_ATTEMPTS": 3,
            "BASE_OUTPUT_DIR": str(tmp_path),
            "LOG_FILE": None,
            "ENABLE_RICH_PROGRESS": False,
        }
        values.update(overrides)
        return NarrativeSettings(**values)

    return _make
