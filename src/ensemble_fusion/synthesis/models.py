"""Synthesis input, result and streaming chunk models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ensemble_fusion.constants import ChunkType
from ensemble_fusion.fusion.audit import AuditReport
from ensemble_fusion.fusion.provenance import ProvenanceTracker
from ensemble_fusion.schema.configs import SynthesisConfig
from ensemble_fusion.schema.context_pack import ContextPack
from ensemble_fusion.schema.outputs import (
    Finding,
    ModeOutput,
    Question,
    Recommendation,
    Risk,
    parse_confidence,
    scalar_text,
)
from ensemble_fusion.synthesis.contributions import ContributionReport
from ensemble_fusion.synthesis.explanation import ExplanationLayer


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class SynthesisInput:
    """Everything one synthesis pass needs."""

    outputs: list[ModeOutput]
    original_question: str = ""
    context_pack: ContextPack | None = None
    config: SynthesisConfig | None = None
    audit_report: AuditReport | None = None
    provenance: ProvenanceTracker | None = None


class SynthesisResult(BaseModel):
    """Final synthesis returned to the user (or parsed from an agent)."""

    summary: str = ""
    findings: list[Finding] = Field(default_factory=lambda: list[Finding]())
    risks: list[Risk] = Field(default_factory=lambda: list[Risk]())
    recommendations: list[Recommendation] = Field(
        default_factory=lambda: list[Recommendation]()
    )
    questions_for_user: list[Question] = Field(default_factory=lambda: list[Question]())
    confidence: float = 0.0
    explanation: ExplanationLayer | None = None
    contributions: ContributionReport | None = None
    raw_output: str = ""
    generated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("confidence", mode="before")
    @classmethod
    def _decode_confidence(cls, v: Any) -> float:
        return parse_confidence(v)

    @field_validator("summary", "raw_output", mode="before")
    @classmethod
    def _scalar_text(cls, v: Any) -> Any:
        return scalar_text(v)

    @field_validator("findings", "risks", "recommendations", "questions_for_user", mode="before")
    @classmethod
    def _none_to_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("questions_for_user", mode="before")
    @classmethod
    def _plain_questions(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [{"question": q} if isinstance(q, str) else q for q in v]
        return v


class SynthesisChunk(BaseModel):
    """One streamed synthesis event; ``index`` is 1-based and contiguous."""

    type: ChunkType
    content: str = ""
    mode_id: str = ""
    index: int = 0
    timestamp: datetime = Field(default_factory=_utcnow)

    def to_wire(self) -> dict[str, Any]:
        """``{type, content, mode_id?, index, timestamp}``"""
        payload = self.model_dump(mode="json")
        if not self.mode_id:
            payload.pop("mode_id")
        return payload
