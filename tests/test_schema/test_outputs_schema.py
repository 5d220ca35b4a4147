"""Tests for the lenient confidence decoder and output models."""

from __future__ import annotations

import pytest

from ensemble_fusion.errors import InvalidConfidenceError
from ensemble_fusion.schema.outputs import ModeOutput, Risk, parse_confidence


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (0.7, 0.7),
        (1, 1.0),
        ("0.25", 0.25),
        ("80%", 0.8),
        (" 5 % ", 0.05),
        ("very low", 0.1),
        ("Low", 0.2),
        ("med", 0.5),
        ("HIGH", 0.8),
        ("very high", 0.95),
    ],
)
def test_parse_confidence_accepts(raw: object, expected: float) -> None:
    assert parse_confidence(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["certain", "abc%", "nan", float("nan"), True, None, [0.5]])
def test_parse_confidence_rejects(raw: object) -> None:
    with pytest.raises(InvalidConfidenceError):
        parse_confidence(raw)


def test_out_of_range_values_are_decoded_not_rejected() -> None:
    """Range is a validation concern, not a decode failure."""
    assert parse_confidence("150%") == pytest.approx(1.5)


def test_mode_output_accepts_plain_string_questions() -> None:
    output = ModeOutput.model_validate(
        {"mode_id": "x", "questions_for_user": ["Why?", {"question": "How?"}]}
    )
    assert [q.question for q in output.questions_for_user] == ["Why?", "How?"]


def test_mode_output_null_lists_become_empty() -> None:
    output = ModeOutput.model_validate({"mode_id": "x", "risks": None, "thesis": None})
    assert output.risks == []
    assert output.thesis == ""


def test_mode_output_plain_failure_modes() -> None:
    output = ModeOutput.model_validate({"failure_modes_to_watch": ["anchoring"]})
    assert output.failure_modes_to_watch[0].description == "anchoring"


def test_risk_likelihood_uses_confidence_decoder() -> None:
    assert Risk(risk="r", likelihood="high").likelihood == pytest.approx(0.8)
