"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import typing as typ

import pytest

from helmsail.config import HelmsailSettings
from tests.helpers.fake_launcher import FakeLauncher, RecordingSink

if typ.TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def sink() -> RecordingSink:
    """Provide an output sink that records every line."""
    return RecordingSink()


@pytest.fixture
def launcher(sink: RecordingSink) -> FakeLauncher:
    """Provide a scripted launcher echoing into ``sink``."""
    return FakeLauncher(sink)


@pytest.fixture
def settings(tmp_path: Path) -> HelmsailSettings:
    """Provide settings writing overrides under ``tmp_path``."""
    return HelmsailSettings(overrides_dir=tmp_path)


@pytest.fixture(autouse=True)
def _clean_helmsail_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's HELMSAIL_* variables out of the tests."""
    for name in (
        "HELMSAIL_HELM",
        "HELMSAIL_KUBECTL",
        "HELMSAIL_LOG_LEVEL",
        "HELMSAIL_OVERRIDES_DIR",
        "HELMSAIL_NAMESPACE",
        "HELMSAIL_KUBE_CONTEXT",
    ):
        monkeypatch.delenv(name, raising=False)
