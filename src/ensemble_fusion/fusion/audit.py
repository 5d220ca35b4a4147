"""Disagreement audit: turn detected conflicts into a reviewable report."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from ensemble_fusion.constants import ConflictSeverity, ConflictType
from ensemble_fusion.fusion.mechanical import MechanicalMerger, PotentialConflict
from ensemble_fusion.schema.outputs import ModeOutput

logger = logging.getLogger(__name__)

# Resolution paths name the method so the explanation layer can infer it
_RESOLUTION_PATHS: dict[ConflictType, str] = {
    ConflictType.THESIS: "seek consensus by comparing the evidence behind each thesis",
    ConflictType.SEVERITY: "weighted review of severity using each mode's confidence",
    ConflictType.RECOMMENDATION: (
        "deferred to the user: recommendations point in opposite directions"
    ),
}

_SUGGESTIONS: dict[ConflictType, str] = {
    ConflictType.THESIS: "Compare the evidence cited for each opposing thesis before concluding",
    ConflictType.SEVERITY: "Agree on a severity rubric for the disputed risks",
    ConflictType.RECOMMENDATION: "Ask the user to choose between the opposing recommendations",
}


class ConflictPosition(BaseModel):
    mode_id: str
    position: str = ""
    confidence: float = 0.0


class DetailedConflict(BaseModel):
    topic: str
    positions: list[ConflictPosition] = Field(
        default_factory=lambda: list[ConflictPosition]()
    )
    severity: ConflictSeverity = ConflictSeverity.MEDIUM
    resolution_path: str = ""


class AuditReport(BaseModel):
    conflicts: list[DetailedConflict] = Field(
        default_factory=lambda: list[DetailedConflict]()
    )
    resolution_suggestions: list[str] = Field(default_factory=lambda: list[str]())


def classify_conflict_severity(score: float) -> ConflictSeverity:
    if score >= 0.7:
        return ConflictSeverity.HIGH
    if score >= 0.4:
        return ConflictSeverity.MEDIUM
    return ConflictSeverity.LOW


def to_detailed(
    conflict: PotentialConflict, confidences: dict[str, float] | None = None
) -> DetailedConflict:
    """Convert a pairwise conflict; *confidences* maps mode_id to its confidence."""
    confidences = confidences or {}
    return DetailedConflict(
        topic=conflict.topic,
        positions=[
            ConflictPosition(
                mode_id=conflict.mode_a,
                position=conflict.position_a,
                confidence=confidences.get(conflict.mode_a, 0.0),
            ),
            ConflictPosition(
                mode_id=conflict.mode_b,
                position=conflict.position_b,
                confidence=confidences.get(conflict.mode_b, 0.0),
            ),
        ],
        severity=classify_conflict_severity(conflict.severity),
        resolution_path=_RESOLUTION_PATHS[conflict.conflict_type],
    )


class DisagreementAuditor:
    """Builds an AuditReport from the mechanical conflict channels."""

    def __init__(self, outputs: list[ModeOutput]) -> None:
        self.outputs = outputs
        self._confidences = {o.mode_id: o.confidence for o in outputs}

    def _potential(self) -> list[PotentialConflict]:
        if len(self.outputs) < 2:
            return []
        return MechanicalMerger(self.outputs).detect_conflicts()

    def identify_conflicts(self) -> list[DetailedConflict]:
        return [to_detailed(c, self._confidences) for c in self._potential()]

    def audit(self) -> AuditReport:
        potential = self._potential()
        suggestions: list[str] = []
        for conflict in potential:
            suggestion = _SUGGESTIONS[conflict.conflict_type]
            if suggestion not in suggestions:
                suggestions.append(suggestion)
        report = AuditReport(
            conflicts=[to_detailed(c, self._confidences) for c in potential],
            resolution_suggestions=suggestions,
        )
        logger.debug("event=audit_complete conflicts=%d", len(report.conflicts))
        return report
