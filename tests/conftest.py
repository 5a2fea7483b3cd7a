"""
Pytest configuration.

The project uses a ``src/`` layout (package code lives in ``src/scan_classifier``).
Normally, developers run tests after installing the package (e.g. ``pip install -e .``).
When the package cannot be imported that way, ``src/`` is added to ``sys.path``.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def _ensure_src_on_path() -> None:
    try:
        import scan_classifier  # noqa: F401
        return
    except ModuleNotFoundError:
        pass

    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    sys.path.insert(0, str(src_dir))


_ensure_src_on_path()

from scan_classifier.config import Settings  # noqa: E402


@pytest.fixture
def settings(mocker, tmp_path):
    """Settings built from a minimal, isolated environment."""
    mocker.patch.dict(
        os.environ,
        {
            "OPENAI_API_KEY": "test_api_key",
            "TOKEN_DB": str(tmp_path / "tokens.db"),
        },
        clear=True,
    )
    return Settings()
