"""Pydantic models for structured reasoning-mode output.

Agents reply in YAML or JSON; these models are the canonical form after
normalization. Confidence and likelihood go through a lenient decoder so
"high", "80%", "0.8" and 0.8 all land as floats. Range and vocabulary
checks are NOT enforced here; they are reported by the normalizer as
non-fatal validation issues so a best-effort object always survives.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ensemble_fusion.constants import CONFIDENCE_LITERALS, ImpactLevel
from ensemble_fusion.errors import InvalidConfidenceError


def parse_confidence(value: Any) -> float:
    """Decode a confidence/likelihood value.

    Accepts numbers, qualitative literals ("very low" .. "very high",
    "med"), percentages ("80%") and numeric strings. Anything else
    raises InvalidConfidenceError. Range is checked by the caller.
    """
    if isinstance(value, bool):
        msg = f"confidence must be a number or string, got {value!r}"
        raise InvalidConfidenceError(msg)
    if isinstance(value, (int, float)):
        f = float(value)
        if math.isnan(f):
            msg = "confidence must not be NaN"
            raise InvalidConfidenceError(msg)
        return f
    if not isinstance(value, str):
        msg = f"confidence must be a number or string, got {type(value).__name__}"
        raise InvalidConfidenceError(msg)

    s = value.strip().lower()
    if s in CONFIDENCE_LITERALS:
        return CONFIDENCE_LITERALS[s]

    if s.endswith("%"):
        try:
            return float(s[:-1].strip()) / 100
        except ValueError:
            msg = f"invalid confidence percentage: {value!r}"
            raise InvalidConfidenceError(msg) from None

    try:
        f = float(s)
    except ValueError:
        msg = f"invalid confidence value: {value!r}"
        raise InvalidConfidenceError(msg) from None
    if math.isnan(f):
        msg = "confidence must not be NaN"
        raise InvalidConfidenceError(msg)
    return f


def scalar_text(value: Any) -> Any:
    """Text fields take YAML scalars as written: ``42`` and ``true`` become strings."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


def is_valid_confidence(value: float) -> bool:
    """Confidence accepts exactly [0, 1]."""
    return 0.0 <= value <= 1.0


def is_valid_impact(level: str) -> bool:
    return level in ImpactLevel.__members__.values()


class ValidationIssue(BaseModel):
    """A non-fatal field-level problem with a JSONPath-like locator."""

    field: str
    message: str
    value: Any = None

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got {self.value!r})"
        return f"{self.field}: {self.message}"


class Finding(BaseModel):
    """A specific discovery from one reasoning mode."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    finding: str = ""
    impact: str = ""
    confidence: float = 0.0
    evidence_pointer: str = ""
    reasoning: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _decode_confidence(cls, v: Any) -> float:
        return parse_confidence(v)

    @field_validator("finding", "impact", "evidence_pointer", "reasoning", mode="before")
    @classmethod
    def _scalar_text(cls, v: Any) -> Any:
        return scalar_text(v)

    @property
    def text(self) -> str:
        return self.finding


class Risk(BaseModel):
    """A potential negative outcome identified by a mode."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    risk: str = ""
    impact: str = ""
    likelihood: float = 0.0
    mitigation: str = ""
    affected_areas: list[str] = Field(default_factory=lambda: list[str]())

    @field_validator("likelihood", mode="before")
    @classmethod
    def _decode_likelihood(cls, v: Any) -> float:
        return parse_confidence(v)

    @field_validator("risk", "impact", "mitigation", mode="before")
    @classmethod
    def _scalar_text(cls, v: Any) -> Any:
        return scalar_text(v)

    @property
    def text(self) -> str:
        return self.risk


class Recommendation(BaseModel):
    """A suggested action."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    recommendation: str = ""
    priority: str = ""
    rationale: str = ""
    effort: str = ""
    related_findings: list[str] = Field(default_factory=lambda: list[str]())

    @field_validator("recommendation", "priority", "rationale", "effort", mode="before")
    @classmethod
    def _scalar_text(cls, v: Any) -> Any:
        return scalar_text(v)

    @property
    def text(self) -> str:
        return self.recommendation


class Question(BaseModel):
    """A clarifying question a mode wants answered by the user."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    question: str = ""
    context: str = ""
    blocking: bool = False
    suggested_answers: list[str] = Field(default_factory=lambda: list[str]())

    @field_validator("question", "context", mode="before")
    @classmethod
    def _scalar_text(cls, v: Any) -> Any:
        return scalar_text(v)


class FailureModeWarning(BaseModel):
    """A reasoning pitfall the mode asks reviewers to watch for."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    mode: str = ""
    description: str = ""
    indicators: list[str] = Field(default_factory=lambda: list[str]())
    prevention: str = ""

    @field_validator("mode", "description", "prevention", mode="before")
    @classmethod
    def _scalar_text(cls, v: Any) -> Any:
        return scalar_text(v)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ModeOutput(BaseModel):
    """Canonical structured output of one reasoning mode.

    Treated as immutable once produced by the normalizer.
    """

    model_config = ConfigDict(coerce_numbers_to_str=True)

    mode_id: str = ""
    thesis: str = ""
    top_findings: list[Finding] = Field(default_factory=lambda: list[Finding]())
    risks: list[Risk] = Field(default_factory=lambda: list[Risk]())
    recommendations: list[Recommendation] = Field(
        default_factory=lambda: list[Recommendation]()
    )
    questions_for_user: list[Question] = Field(
        default_factory=lambda: list[Question]()
    )
    failure_modes_to_watch: list[FailureModeWarning] = Field(
        default_factory=lambda: list[FailureModeWarning]()
    )
    confidence: float = 0.0
    raw_output: str = ""
    generated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("confidence", mode="before")
    @classmethod
    def _decode_confidence(cls, v: Any) -> float:
        return parse_confidence(v)

    @field_validator("mode_id", "thesis", "raw_output", mode="before")
    @classmethod
    def _scalar_text(cls, v: Any) -> Any:
        return scalar_text(v)

    @field_validator(
        "top_findings",
        "risks",
        "recommendations",
        "questions_for_user",
        "failure_modes_to_watch",
        mode="before",
    )
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("questions_for_user", mode="before")
    @classmethod
    def _plain_questions(cls, v: Any) -> Any:
        """Agents often reply with bare strings instead of objects."""
        if isinstance(v, list):
            return [{"question": q} if isinstance(q, (str, int, float)) else q for q in v]
        return v

    @field_validator("failure_modes_to_watch", mode="before")
    @classmethod
    def _plain_failure_modes(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [
                {"description": w} if isinstance(w, (str, int, float)) else w for w in v
            ]
        return v
