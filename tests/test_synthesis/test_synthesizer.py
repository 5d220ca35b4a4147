"""Tests for mechanical synthesis, agent prompts and agent reply parsing."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from ensemble_fusion.constants import StrategyName
from ensemble_fusion.errors import InvalidArgumentError, ParseError
from ensemble_fusion.fusion.audit import AuditReport
from ensemble_fusion.fusion.provenance import ProvenanceTracker
from ensemble_fusion.schema.configs import MergeConfig, SynthesisConfig
from ensemble_fusion.schema.outputs import ModeOutput, Question, Risk
from ensemble_fusion.synthesis.collector import OutputCollectorConfig
from ensemble_fusion.synthesis.models import SynthesisInput
from ensemble_fusion.synthesis.synthesizer import (
    SynthesisEngine,
    Synthesizer,
    format_audit_summary,
    parse_and_validate_synthesis_output,
    parse_synthesis_output,
)

MakeOutput = Callable[..., ModeOutput]


@pytest.fixture
def outputs(make_output: MakeOutput) -> list[ModeOutput]:
    return [
        make_output(
            "deductive",
            ["connection pool exhausted under load", "missing timeout on db calls"],
            thesis="The pool is undersized",
            confidence=0.9,
            risks=[Risk(risk="cascading outage", impact="critical", likelihood=0.5)],
            questions_for_user=[Question(question="What is peak QPS?")],
        ),
        make_output(
            "systems-thinking",
            ["connection pool exhausted under load"],
            thesis="Feedback loops amplify slow queries",
            confidence=0.6,
        ),
    ]


# ── synthesize ───────────────────────────────────────────


def test_empty_input_rejected() -> None:
    with pytest.raises(InvalidArgumentError, match="no outputs to synthesize"):
        Synthesizer().synthesize(SynthesisInput(outputs=[]))


def test_mechanical_synthesis(outputs: list[ModeOutput]) -> None:
    result = Synthesizer().synthesize(SynthesisInput(outputs=outputs))

    assert result.summary == "The pool is undersized"
    assert result.confidence == pytest.approx(0.75)
    assert [f.finding for f in result.findings] == [
        "connection pool exhausted under load",
        "missing timeout on db calls",
    ]
    assert [r.risk for r in result.risks] == ["cascading outage"]
    assert [q.question for q in result.questions_for_user] == ["What is peak QPS?"]
    assert result.explanation is not None
    assert result.contributions is not None
    assert result.contributions.scores[0].mode_id == "deductive"


def test_synthesis_limits_override_merge_config() -> None:
    synth = Synthesizer(
        SynthesisConfig(max_findings=1, min_confidence=0.0),
        MergeConfig(max_findings=20, min_confidence=0.4),
    )
    cfg = synth.effective_merge_config()
    assert cfg.max_findings == 1
    assert cfg.min_confidence == 0.4


def test_max_findings_applied(outputs: list[ModeOutput]) -> None:
    result = Synthesizer(SynthesisConfig(max_findings=1)).synthesize(
        SynthesisInput(outputs=outputs)
    )
    assert len(result.findings) == 1


def test_explanation_can_be_disabled(outputs: list[ModeOutput]) -> None:
    config = SynthesisConfig(include_explanation=False)
    result = Synthesizer(config).synthesize(SynthesisInput(outputs=outputs))
    assert result.explanation is None


def test_input_config_overrides_synthesizer(make_output: MakeOutput) -> None:
    many = make_output(
        "deductive",
        [
            "connection pool exhausted under load",
            "cache keys never expire",
            "retry storm after deploys",
            "log volume saturates disk",
            "feature flags read on every request",
        ],
    )
    config = SynthesisConfig(max_findings=2, include_explanation=False)
    result = Synthesizer().synthesize(SynthesisInput(outputs=[many], config=config))
    assert len(result.findings) == 2
    assert result.explanation is None


def test_citations_recorded_with_provenance(outputs: list[ModeOutput]) -> None:
    tracker = ProvenanceTracker("why is the api slow?", [o.mode_id for o in outputs])
    result = Synthesizer().synthesize(SynthesisInput(outputs=outputs, provenance=tracker))

    stats = tracker.stats()
    assert stats.total_findings == 3
    assert stats.merged_findings == 1
    assert stats.cited_findings == 2
    assert result.contributions is not None
    deductive = result.contributions.get_score("deductive")
    assert deductive is not None
    assert deductive.citation_count == 2


def test_manual_strategy_has_no_template() -> None:
    synth = Synthesizer(SynthesisConfig(strategy=StrategyName.MANUAL))
    assert synth.strategy.requires_agent is False


# ── agent prompt ─────────────────────────────────────────


def test_generate_prompt(outputs: list[ModeOutput]) -> None:
    prompt = Synthesizer().generate_prompt(
        SynthesisInput(outputs=outputs, original_question="Why is the API slow?")
    )
    assert "## Original Question\nWhy is the API slow?" in prompt
    assert "## Synthesis Strategy: consensus" in prompt
    assert '"mode_id": "deductive"' in prompt
    assert "No disagreement analysis available." in prompt
    assert "Minimum confidence threshold: 0.50" in prompt


def test_generate_prompt_uses_input_config(outputs: list[ModeOutput]) -> None:
    config = SynthesisConfig(
        strategy=StrategyName.WEIGHTED, max_findings=3, min_confidence=0.7
    )
    prompt = Synthesizer().generate_prompt(SynthesisInput(outputs=outputs, config=config))
    assert "## Synthesis Strategy: weighted" in prompt
    assert "Maximum findings to include: 3" in prompt
    assert "Minimum confidence threshold: 0.70" in prompt


def test_audit_summary_without_conflicts() -> None:
    assert format_audit_summary(AuditReport()) == "No significant disagreements detected."


# ── agent reply parsing ──────────────────────────────────


def test_parse_fenced_json() -> None:
    raw = '```json\n{"summary": "ok", "confidence": "high", "findings": null}\n```'
    result = parse_synthesis_output(raw)
    assert result.summary == "ok"
    assert result.confidence == pytest.approx(0.8)
    assert result.findings == []
    assert result.raw_output == raw


def test_parse_yaml_after_preamble() -> None:
    raw = (
        "Sure, here it is.\n\n"
        "summary: Pool too small\nconfidence: 70%\nfindings:\n  - finding: x\n"
    )
    result = parse_synthesis_output(raw)
    assert result.summary == "Pool too small"
    assert result.confidence == pytest.approx(0.7)
    assert result.findings[0].finding == "x"


@pytest.mark.parametrize("raw", ["", "   ", "- a\n- b\n", "just words"])
def test_parse_rejects_non_mappings(raw: str) -> None:
    with pytest.raises(ParseError):
        parse_synthesis_output(raw)


def test_parse_and_validate_reports_issues() -> None:
    raw = '{"summary": "", "findings": [{"finding": "x", "impact": "severe"}]}'
    _, issues = parse_and_validate_synthesis_output(raw)
    assert [i.field for i in issues] == ["summary", "findings[0].impact"]


# ── engine ───────────────────────────────────────────────


def test_engine_process(outputs: list[ModeOutput]) -> None:
    engine = SynthesisEngine()
    for output in outputs:
        engine.add_output(output)
    result, audit = engine.process("Why is the API slow?")
    assert result.summary == "The pool is undersized"
    assert audit is not None


def test_engine_requires_minimum_outputs(outputs: list[ModeOutput]) -> None:
    engine = SynthesisEngine(collector_config=OutputCollectorConfig(min_outputs=3))
    for output in outputs:
        engine.add_output(output)
    with pytest.raises(InvalidArgumentError, match="insufficient outputs"):
        engine.process("Why is the API slow?")
