"""Tests for pyproject.toml metadata."""

import re
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


def test_readme_points_at_existing_file():
    pyproject = (ROOT / "pyproject.toml").read_text(encoding="utf-8")
    match = re.search(r'^readme\s*=\s*"([^"]+)"', pyproject, re.MULTILINE)
    if match:
        assert (ROOT / match.group(1)).is_file()
        assert match.group(1) != "SPEC_FULL.md"
