"""Tests for the disagreement auditor."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from ensemble_fusion.constants import ConflictSeverity
from ensemble_fusion.fusion.audit import DisagreementAuditor, classify_conflict_severity
from ensemble_fusion.schema.outputs import ModeOutput, Risk

MakeOutput = Callable[..., ModeOutput]

ADD = "We should add rate limiting to prevent abuse"
OPPOSE = "We should not add rate limiting as it blocks users"


@pytest.mark.parametrize(
    ("score", "expected"),
    [
        (1.0, ConflictSeverity.HIGH),
        (0.7, ConflictSeverity.HIGH),
        (0.69, ConflictSeverity.MEDIUM),
        (0.4, ConflictSeverity.MEDIUM),
        (0.39, ConflictSeverity.LOW),
        (0.0, ConflictSeverity.LOW),
    ],
)
def test_classify_conflict_severity(score: float, expected: ConflictSeverity) -> None:
    assert classify_conflict_severity(score) is expected


def test_single_output_has_no_conflicts(make_output: MakeOutput) -> None:
    report = DisagreementAuditor([make_output("mode-a", thesis=ADD)]).audit()
    assert report.conflicts == []
    assert report.resolution_suggestions == []


def test_thesis_conflict_detail(make_output: MakeOutput) -> None:
    a = make_output("mode-a", thesis=ADD, confidence=0.9)
    b = make_output("mode-b", thesis=OPPOSE, confidence=0.6)
    conflicts = DisagreementAuditor([a, b]).identify_conflicts()

    assert len(conflicts) == 1
    detail = conflicts[0]
    assert detail.severity is ConflictSeverity.MEDIUM
    assert [p.mode_id for p in detail.positions] == ["mode-a", "mode-b"]
    assert [p.confidence for p in detail.positions] == [0.9, 0.6]
    assert detail.positions[0].position == ADD
    assert "consensus" in detail.resolution_path


def test_suggestions_are_unique_per_conflict_type(make_output: MakeOutput) -> None:
    leak = "token leak in logs"
    a = make_output("mode-a", risks=[Risk(risk=leak, impact="critical")])
    b = make_output("mode-b", risks=[Risk(risk=leak, impact="low")])
    c = make_output("mode-c", risks=[Risk(risk=leak, impact="low")])
    report = DisagreementAuditor([a, b, c]).audit()

    assert len(report.conflicts) == 2
    assert all(d.severity is ConflictSeverity.HIGH for d in report.conflicts)
    assert len(report.resolution_suggestions) == 1
    assert "severity rubric" in report.resolution_suggestions[0]
