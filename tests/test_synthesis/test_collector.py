"""Tests for the output collector."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from ensemble_fusion.errors import InvalidArgumentError, ParseError
from ensemble_fusion.schema.outputs import ModeOutput
from ensemble_fusion.synthesis.collector import OutputCollector, OutputCollectorConfig

MakeOutput = Callable[..., ModeOutput]

VALID_REPLY = """\
Here is my analysis.

```yaml
thesis: Retries amplify load during outages
confidence: 0.7
top_findings:
  - finding: Retry loop has no jitter
    impact: High
    confidence: 0.8
    evidence_pointer: client.py:88
```
"""


# ── add / add_raw ────────────────────────────────────────


def test_valid_outputs_are_kept(make_output: MakeOutput) -> None:
    collector = OutputCollector()
    collector.add(make_output("deductive"))
    collector.add(make_output("inductive"))
    assert collector.count() == 2
    assert collector.error_count() == 0
    assert collector.has_enough()


def test_invalid_output_set_aside(make_output: MakeOutput) -> None:
    collector = OutputCollector()
    collector.add(make_output("Bad Mode"))
    assert collector.count() == 0
    assert collector.error_count() == 1
    issues = collector.validation_errors["Bad Mode"]
    assert [i.field for i in issues] == ["mode_id"]


def test_output_without_mode_id_gets_placeholder_key() -> None:
    collector = OutputCollector()
    collector.add(ModeOutput(thesis="t"))
    assert list(collector.validation_errors) == ["unknown-1"]


def test_require_all_raises(make_output: MakeOutput) -> None:
    collector = OutputCollector(OutputCollectorConfig(require_all=True))
    with pytest.raises(InvalidArgumentError, match="invalid output from Bad Mode"):
        collector.add(make_output("Bad Mode"))


def test_add_raw_parses_fenced_reply() -> None:
    collector = OutputCollector()
    collector.add_raw("abductive", VALID_REPLY)
    assert collector.count() == 1
    output = collector.outputs[0]
    assert output.mode_id == "abductive"
    assert output.top_findings[0].impact == "high"


def test_add_raw_records_parse_failure() -> None:
    collector = OutputCollector()
    collector.add_raw("abductive", "just some prose, no structure")
    assert collector.count() == 0
    issues = collector.validation_errors["abductive"]
    assert issues[0].field == "raw_output"


def test_add_raw_require_all_propagates_parse_error() -> None:
    collector = OutputCollector(OutputCollectorConfig(require_all=True))
    with pytest.raises(ParseError):
        collector.add_raw("abductive", "")


# ── collect / build ──────────────────────────────────────


def test_collect_reports_stats(make_output: MakeOutput) -> None:
    collector = OutputCollector(OutputCollectorConfig(min_outputs=2))
    collector.add(make_output("deductive"))
    collector.add(make_output("Bad Mode"))
    result = collector.collect()

    assert result.stats.total_received == 2
    assert result.stats.valid_count == 1
    assert result.stats.invalid_count == 1
    assert result.invalid_outputs[0].mode_id == "Bad Mode"
    assert result.sufficient is False


def test_build_input_with_no_outputs() -> None:
    with pytest.raises(InvalidArgumentError, match="no valid outputs collected"):
        OutputCollector().build_synthesis_input("why?", None)


def test_build_input_below_minimum(make_output: MakeOutput) -> None:
    collector = OutputCollector(OutputCollectorConfig(min_outputs=3))
    collector.add(make_output("deductive"))
    with pytest.raises(InvalidArgumentError, match="have 1, need 3"):
        collector.build_synthesis_input("why?", None)


def test_build_input_bundles_audit(make_output: MakeOutput) -> None:
    collector = OutputCollector()
    collector.add(make_output("deductive", thesis="We should add rate limiting to prevent abuse"))
    collector.add(
        make_output("inductive", thesis="We should not add rate limiting as it blocks users")
    )
    synthesis_input = collector.build_synthesis_input("add limits?", None)

    assert synthesis_input.original_question == "add limits?"
    assert len(synthesis_input.outputs) == 2
    assert synthesis_input.audit_report is not None
    assert len(synthesis_input.audit_report.conflicts) == 1


def test_reset(make_output: MakeOutput) -> None:
    collector = OutputCollector()
    collector.add(make_output("deductive"))
    collector.add(make_output("Bad Mode"))
    collector.reset()
    assert collector.count() == 0
    assert collector.error_count() == 0
