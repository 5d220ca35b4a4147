"""Tests for run-to-run comparison."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime

import pytest

from ensemble_fusion.observability.comparison import (
    RunSnapshot,
    compare,
    compare_modes,
    format_comparison,
    truncate_for_diff,
)
from ensemble_fusion.schema.outputs import ModeOutput
from ensemble_fusion.synthesis.contributions import ContributionReport, ModeContributionScore

MakeOutput = Callable[..., ModeOutput]


def _report(*scores: tuple[str, float, int]) -> ContributionReport:
    return ContributionReport(
        scores=[
            ModeContributionScore(mode_id=mode_id, score=score, rank=rank)
            for mode_id, score, rank in scores
        ],
        generated_at=datetime.now(UTC),
    )


@pytest.fixture
def runs(make_output: MakeOutput) -> tuple[RunSnapshot, RunSnapshot]:
    run_a = RunSnapshot(
        run_id="run-a",
        mode_ids=["deductive", "bayesian"],
        outputs=[
            make_output("deductive", ["cache stampede", "stale reads"], thesis="cache is wrong"),
            make_output("bayesian", ["p99 dominated by gc"]),
        ],
        synthesis_text="first synthesis",
        contributions=_report(("deductive", 60.0, 1), ("bayesian", 40.0, 2)),
    )
    run_b = RunSnapshot(
        run_id="run-b",
        mode_ids=["deductive", "root-cause"],
        outputs=[
            make_output(
                "deductive",
                ["cache stampede", "stale reads"],
                thesis="cache is fine",
                impact="critical",
            ),
            make_output("root-cause", ["missing index"]),
        ],
        synthesis_text="second synthesis",
        contributions=_report(("deductive", 30.0, 2), ("root-cause", 70.0, 1)),
    )
    return run_a, run_b


def test_compare_modes() -> None:
    diff = compare_modes(["b", "a"], ["c", "a"])
    assert (diff.added, diff.removed, diff.unchanged) == (["c"], ["b"], ["a"])


def test_compare_runs(runs: tuple[RunSnapshot, RunSnapshot]) -> None:
    result = compare(*runs)

    assert result.mode_diff.added == ["root-cause"]
    assert result.mode_diff.removed == ["bayesian"]
    fd = result.findings_diff
    assert [f.text for f in fd.new] == ["missing index"]
    assert [f.text for f in fd.missing] == ["p99 dominated by gc"]
    assert fd.changed_count == 2
    assert fd.changed[0].changes == ["impact: high -> critical"]
    assert [t.mode_id for t in result.conclusion_diff.thesis_changes] == ["deductive"]
    assert result.conclusion_diff.synthesis_changed is True
    (delta,) = result.contribution_diff.score_deltas
    assert delta.delta == pytest.approx(-30.0)
    assert result.contribution_diff.rank_changes[0].delta == 1
    assert result.summary == (
        "+1 modes, -1 modes, +1 findings, -1 findings, ~2 findings modified, "
        "1 thesis changes, synthesis changed, 1 rank changes"
    )
    assert not result.is_empty()


def test_identical_runs_are_empty(runs: tuple[RunSnapshot, RunSnapshot]) -> None:
    run_a, _ = runs
    result = compare(run_a, run_a.model_copy(update={"run_id": "again"}))
    assert result.is_empty()
    assert result.summary == "No differences found"
    assert result.findings_diff.unchanged_count == 3


def test_json_is_deterministic(runs: tuple[RunSnapshot, RunSnapshot]) -> None:
    first = json.loads(compare(*runs).to_json())
    second = json.loads(compare(*runs).to_json())
    del first["generated_at"]
    del second["generated_at"]
    assert first == second


def test_json_omits_empty_lists_and_unset_texts(make_output: MakeOutput) -> None:
    run = RunSnapshot(run_id="r", mode_ids=["deductive"], outputs=[make_output("deductive")])
    payload = compare(run, run).to_dict()
    assert "added" not in payload["mode_diff"]
    assert "synthesis_a" not in payload["conclusion_diff"]
    assert payload["mode_diff"]["unchanged"] == ["deductive"]


def test_truncate_for_diff() -> None:
    assert truncate_for_diff("short", 10) == "short"
    assert truncate_for_diff("x" * 20, 10) == "xxxxxxx..."


def test_format_comparison(runs: tuple[RunSnapshot, RunSnapshot]) -> None:
    text = format_comparison(compare(*runs))
    assert text.startswith("Ensemble Comparison: run-a vs run-b\n")
    assert "  Added (1): root-cause" in text
    assert "    + [root-cause] missing index" in text
    assert "  deductive: #1 → #2 (↓1)" in text
    assert "Synthesis Output: Changed" in text


def test_format_missing_result() -> None:
    assert format_comparison(None) == "No comparison result"
