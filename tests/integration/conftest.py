"""Shared fixtures for integration tests.

These tests run the real config loader against YAML files and process
environment variables.
"""

from __future__ import annotations

import os

import pytest


@pytest.fixture(autouse=True)
def _clean_hlsrelay_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop HLSRELAY_* variables inherited from the developer's shell."""
    for name in list(os.environ):
        if name.upper().startswith("HLSRELAY_"):
            monkeypatch.delenv(name, raising=False)
