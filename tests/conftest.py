"""Shared test fixtures: embedded catalog, output builders, temp store."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from ensemble_fusion.checkpoints import CheckpointStore
from ensemble_fusion.schema.catalog import ModeCatalog, load_mode_catalog
from ensemble_fusion.schema.outputs import Finding, ModeOutput

OutputFactory = Callable[..., ModeOutput]


def build_output(
    mode_id: str,
    findings: list[str] | None = None,
    *,
    thesis: str = "",
    confidence: float = 0.8,
    impact: str = "high",
    finding_confidence: float = 0.8,
    evidence: str = "",
    **extra: Any,
) -> ModeOutput:
    """ModeOutput with one finding per text, all sharing the same attributes."""
    return ModeOutput(
        mode_id=mode_id,
        thesis=thesis or f"{mode_id} thesis",
        top_findings=[
            Finding(
                finding=text,
                impact=impact,
                confidence=finding_confidence,
                evidence_pointer=evidence,
            )
            for text in (findings if findings is not None else [f"{mode_id} finding"])
        ],
        confidence=confidence,
        **extra,
    )


@pytest.fixture(scope="session")
def catalog() -> ModeCatalog:
    """The embedded mode catalog, loaded once per test session."""
    return load_mode_catalog()


@pytest.fixture
def make_output() -> OutputFactory:
    return build_output


@pytest.fixture
def store(tmp_path: Path) -> CheckpointStore:
    return CheckpointStore(tmp_path)
