"""Tests for display grouping and conflict detection."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from ensemble_fusion.constants import ConflictType, ImpactLevel
from ensemble_fusion.fusion.mechanical import (
    MechanicalMerger,
    infer_action_type,
    severity_rank,
)
from ensemble_fusion.schema.outputs import Finding, ModeOutput, Recommendation, Risk

MakeOutput = Callable[..., ModeOutput]


class TestConflicts:
    def test_opposing_theses_conflict(self, make_output: MakeOutput) -> None:
        a = make_output("mode-a", thesis="We should add rate limiting to prevent abuse")
        b = make_output("mode-b", thesis="We should not add rate limiting as it blocks users")
        conflicts = MechanicalMerger([a, b]).detect_conflicts()

        assert len(conflicts) == 1
        conflict = conflicts[0]
        assert conflict.conflict_type == ConflictType.THESIS
        assert conflict.severity >= 0.5
        assert (conflict.mode_a, conflict.mode_b) == ("mode-a", "mode-b")

    def test_unrelated_theses_do_not_conflict(self, make_output: MakeOutput) -> None:
        a = make_output("mode-a", thesis="We should add rate limiting")
        b = make_output("mode-b", thesis="Avoid global mutable caches entirely")
        assert MechanicalMerger([a, b]).detect_thesis_conflicts() == []

    def test_severity_gap_conflict(self, make_output: MakeOutput) -> None:
        a = make_output("mode-a", risks=[Risk(risk="token leak in logs", impact="critical")])
        b = make_output("mode-b", risks=[Risk(risk="token leak in logs", impact="low")])
        conflicts = MechanicalMerger([a, b]).detect_severity_conflicts()

        assert len(conflicts) == 1
        assert conflicts[0].conflict_type == ConflictType.SEVERITY
        assert conflicts[0].severity == pytest.approx(1.0)
        assert (conflicts[0].position_a, conflicts[0].position_b) == ("critical", "low")

    def test_adjacent_severities_do_not_conflict(self, make_output: MakeOutput) -> None:
        a = make_output("mode-a", risks=[Risk(risk="token leak in logs", impact="high")])
        b = make_output("mode-b", risks=[Risk(risk="token leak in logs", impact="medium")])
        assert MechanicalMerger([a, b]).detect_severity_conflicts() == []

    def test_opposing_recommendations_conflict(self, make_output: MakeOutput) -> None:
        a = make_output(
            "mode-a", recommendations=[Recommendation(recommendation="enable the query cache")]
        )
        b = make_output(
            "mode-b", recommendations=[Recommendation(recommendation="disable the query cache")]
        )
        conflicts = MechanicalMerger([a, b]).detect_recommendation_conflicts()
        assert len(conflicts) == 1
        assert conflicts[0].conflict_type == ConflictType.RECOMMENDATION

    def test_same_mode_never_conflicts_with_itself(self, make_output: MakeOutput) -> None:
        out = make_output(
            "mode-a",
            risks=[
                Risk(risk="token leak in logs", impact="critical"),
                Risk(risk="token leak in logs", impact="low"),
            ],
        )
        assert MechanicalMerger([out]).detect_conflicts() == []

    def test_conflicts_sorted_by_severity(self, make_output: MakeOutput) -> None:
        a = make_output(
            "mode-a",
            thesis="We should add rate limiting to prevent abuse",
            risks=[Risk(risk="token leak in logs", impact="critical")],
        )
        b = make_output(
            "mode-b",
            thesis="We should not add rate limiting as it blocks users",
            risks=[Risk(risk="token leak in logs", impact="low")],
        )
        severities = [c.severity for c in MechanicalMerger([a, b]).detect_conflicts()]
        assert severities == sorted(severities, reverse=True)
        assert len(severities) == 2


class TestGrouping:
    def test_group_findings_by_evidence(self) -> None:
        a = ModeOutput(
            mode_id="mode-a",
            top_findings=[
                Finding(finding="null deref", evidence_pointer="app.py:3"),
                Finding(finding="no evidence here"),
            ],
        )
        b = ModeOutput(
            mode_id="mode-b",
            top_findings=[Finding(finding="null deref", evidence_pointer="app.py:3")],
        )
        groups = MechanicalMerger([a, b]).group_findings_by_evidence()
        assert [g.evidence_pointer for g in groups] == ["app.py:3", ""]
        assert len(groups[0].findings) == 1
        assert groups[0].modes == ["mode-a", "mode-b"]

    def test_group_risks_by_severity_order(self) -> None:
        out = ModeOutput(
            mode_id="mode-a",
            risks=[
                Risk(risk="minor", impact="low"),
                Risk(risk="fatal", impact="critical"),
                Risk(risk="unknown", impact="bogus"),
            ],
        )
        groups = MechanicalMerger([out]).group_risks_by_severity()
        assert [g.severity for g in groups] == [
            ImpactLevel.CRITICAL,
            ImpactLevel.MEDIUM,
            ImpactLevel.LOW,
        ]

    def test_group_recommendations_by_action(self) -> None:
        out = ModeOutput(
            mode_id="mode-a",
            recommendations=[
                Recommendation(recommendation="Refactor the pool"),
                Recommendation(recommendation="Add unit test for retries"),
            ],
        )
        groups = MechanicalMerger([out]).group_recommendations_by_action()
        assert [g.action_type for g in groups] == ["add-test", "refactor"]

    def test_merge_statistics(self) -> None:
        a = ModeOutput(mode_id="a", top_findings=[Finding(finding="x", evidence_pointer="f:1")])
        b = ModeOutput(mode_id="b", top_findings=[Finding(finding="x", evidence_pointer="f:1")])
        stats = MechanicalMerger([a, b]).merge().statistics
        assert stats.total_findings == 2
        assert stats.unique_findings == 1
        assert stats.duplicate_rate == pytest.approx(0.5)
        assert stats.evidence_groups == 1

    def test_empty_merge(self) -> None:
        assert MechanicalMerger([]).merge().grouped_findings == []


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Write tests for the parser", "add-test"),
        ("Clean up the legacy module", "refactor"),
        ("Fix the race in shutdown", "fix"),
        ("Add a retry budget", "add-feature"),
        ("Upgrade the driver", "update"),
        ("Think harder", "other"),
    ],
)
def test_infer_action_type(text: str, expected: str) -> None:
    assert infer_action_type(text) == expected


def test_severity_rank_defaults_to_medium() -> None:
    assert severity_rank("critical") == 4
    assert severity_rank("whatever") == severity_rank("medium")
