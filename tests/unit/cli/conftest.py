"""Fixtures for CLI tests."""

from __future__ import annotations

import pytest
from click.testing import CliRunner


@pytest.fixture
def cli_runner(monkeypatch: pytest.MonkeyPatch) -> CliRunner:
    """CliRunner with registry credentials cleared from the environment."""
    for name in (
        "OCIPUSH_REGISTRY_TOKEN",
        "OCIPUSH_REGISTRY_USERNAME",
        "OCIPUSH_REGISTRY_PASSWORD",
    ):
        monkeypatch.delenv(name, raising=False)
    return CliRunner()
