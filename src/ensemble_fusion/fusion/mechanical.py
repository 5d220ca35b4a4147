"""Algorithmic pre-processing before synthesis: display groups and conflicts.

The vocabularies below (sentiment indicators, opposing action pairs and
action-type patterns) are closed lists. Changing them changes which
conflicts are reported and how recommendations are grouped.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from ensemble_fusion.constants import (
    EVIDENCE_GROUP_THRESHOLD,
    RECOMMENDATION_TOPIC_THRESHOLD,
    SEVERITY_MIN_RANK_GAP,
    SEVERITY_RANK,
    SEVERITY_TOPIC_THRESHOLD,
    THESIS_TOPIC_THRESHOLD,
    ConflictType,
    ImpactLevel,
)
from ensemble_fusion.fusion.similarity import (
    contains_any,
    extract_topic,
    jaccard,
    tokenize,
)
from ensemble_fusion.schema.outputs import (
    Finding,
    ModeOutput,
    Recommendation,
    Risk,
    is_valid_impact,
)

logger = logging.getLogger(__name__)

NEGATIVE_INDICATORS: tuple[str, ...] = (
    "should not", "shouldn't", "must not", "cannot", "will not",
    "avoid", "prevent", "stop", "reject", "against", "oppose",
    "not recommended", "inadvisable", "risky", "dangerous",
)

POSITIVE_INDICATORS: tuple[str, ...] = (
    "should", "must", "recommend", "suggest", "advise",
    "beneficial", "important", "essential", "necessary",
    "approve", "support", "embrace", "adopt",
)

OPPOSING_ACTION_PAIRS: tuple[tuple[str, str], ...] = (
    ("add", "remove"),
    ("enable", "disable"),
    ("increase", "decrease"),
    ("should", "should not"),
    ("use", "avoid"),
    ("implement", "remove"),
    ("keep", "delete"),
)

# More specific patterns first; first match wins
ACTION_TYPE_PATTERNS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("add-test", ("add test", "write test", "test coverage", "unit test", "integration test")),
    ("refactor", ("refactor", "restructure", "reorganize", "simplify", "clean up")),
    ("document", ("document", "add comment", "add documentation", "update readme")),
    ("fix", ("fix", "resolve", "correct", "repair", "patch")),
    ("add-feature", ("add", "implement", "create", "introduce", "include")),
    ("remove", ("remove", "delete", "eliminate", "drop")),
    ("update", ("update", "upgrade", "migrate", "bump")),
    ("monitor", ("monitor", "log", "track", "observe")),
    ("security", ("secure", "encrypt", "validate", "sanitize")),
    ("optimize", ("optimize", "improve performance", "speed up", "cache")),
)
OTHER_ACTION_TYPE = "other"

_SEVERITY_ORDER = (
    ImpactLevel.CRITICAL,
    ImpactLevel.HIGH,
    ImpactLevel.MEDIUM,
    ImpactLevel.LOW,
)


class PotentialConflict(BaseModel):
    """Two modes taking contradictory positions on a shared topic."""

    topic: str
    mode_a: str
    mode_b: str
    position_a: str
    position_b: str
    conflict_type: ConflictType
    severity: float


class FindingGroup(BaseModel):
    evidence_pointer: str = ""
    findings: list[Finding] = Field(default_factory=lambda: list[Finding]())
    modes: list[str] = Field(default_factory=lambda: list[str]())


class RiskGroup(BaseModel):
    severity: ImpactLevel
    risks: list[Risk] = Field(default_factory=lambda: list[Risk]())
    modes: list[str] = Field(default_factory=lambda: list[str]())


class RecommendationGroup(BaseModel):
    action_type: str
    recommendations: list[Recommendation] = Field(
        default_factory=lambda: list[Recommendation]()
    )
    modes: list[str] = Field(default_factory=lambda: list[str]())


class MergeResultStats(BaseModel):
    total_findings: int = 0
    unique_findings: int = 0
    duplicate_rate: float = 0.0
    conflict_count: int = 0
    total_risks: int = 0
    total_recommendations: int = 0
    evidence_groups: int = 0


class MergeResult(BaseModel):
    grouped_findings: list[FindingGroup] = Field(
        default_factory=lambda: list[FindingGroup]()
    )
    grouped_risks: list[RiskGroup] = Field(default_factory=lambda: list[RiskGroup]())
    grouped_recommendations: list[RecommendationGroup] = Field(
        default_factory=lambda: list[RecommendationGroup]()
    )
    identified_conflicts: list[PotentialConflict] = Field(
        default_factory=lambda: list[PotentialConflict]()
    )
    statistics: MergeResultStats = Field(default_factory=MergeResultStats)


def infer_action_type(text: str) -> str:
    """Categorize a recommendation by the first matching action pattern."""
    lower = text.lower()
    for action_type, keywords in ACTION_TYPE_PATTERNS:
        if contains_any(lower, keywords):
            return action_type
    return OTHER_ACTION_TYPE


def severity_rank(level: str) -> int:
    """Rank impact levels; unknown literals rank as medium."""
    return SEVERITY_RANK.get(level, SEVERITY_RANK[ImpactLevel.MEDIUM])


def _is_near_duplicate(text: str, existing: list[str]) -> bool:
    tokens = tokenize(text)
    return any(
        jaccard(tokens, tokenize(other)) > EVIDENCE_GROUP_THRESHOLD for other in existing
    )


class MechanicalMerger:
    """Groups mode outputs for display and flags potential conflicts."""

    def __init__(self, outputs: list[ModeOutput]) -> None:
        self.outputs = outputs

    def merge(self) -> MergeResult:
        if not self.outputs:
            return MergeResult()

        result = MergeResult(
            grouped_findings=self.group_findings_by_evidence(),
            grouped_risks=self.group_risks_by_severity(),
            grouped_recommendations=self.group_recommendations_by_action(),
            identified_conflicts=self.detect_conflicts(),
        )

        total_findings = sum(len(o.top_findings) for o in self.outputs)
        unique_findings = sum(len(g.findings) for g in result.grouped_findings)
        duplicate_rate = 0.0
        if total_findings > 0:
            duplicate_rate = max(0.0, 1.0 - unique_findings / total_findings)

        result.statistics = MergeResultStats(
            total_findings=total_findings,
            unique_findings=unique_findings,
            duplicate_rate=duplicate_rate,
            conflict_count=len(result.identified_conflicts),
            total_risks=sum(len(o.risks) for o in self.outputs),
            total_recommendations=sum(len(o.recommendations) for o in self.outputs),
            evidence_groups=len(result.grouped_findings),
        )
        logger.debug(
            "event=mechanical_merge findings=%d unique=%d conflicts=%d",
            total_findings,
            unique_findings,
            len(result.identified_conflicts),
        )
        return result

    # ── grouping ─────────────────────────────────────────

    def group_findings_by_evidence(self) -> list[FindingGroup]:
        """Group by evidence pointer; pointed groups sort first, then ""."""
        findings: dict[str, list[Finding]] = {}
        modes: dict[str, set[str]] = {}
        for output in self.outputs:
            for f in output.top_findings:
                key = f.evidence_pointer
                bucket = findings.setdefault(key, [])
                if not _is_near_duplicate(f.finding, [e.finding for e in bucket]):
                    bucket.append(f)
                modes.setdefault(key, set()).add(output.mode_id)

        keys = sorted(findings, key=lambda k: (k == "", k))
        return [
            FindingGroup(
                evidence_pointer=key,
                findings=findings[key],
                modes=sorted(modes[key]),
            )
            for key in keys
        ]

    def group_risks_by_severity(self) -> list[RiskGroup]:
        """Group by impact (critical..low); invalid impacts count as medium."""
        risks: dict[ImpactLevel, list[Risk]] = {level: [] for level in _SEVERITY_ORDER}
        modes: dict[ImpactLevel, set[str]] = {level: set() for level in _SEVERITY_ORDER}
        for output in self.outputs:
            for r in output.risks:
                level = (
                    ImpactLevel(r.impact) if is_valid_impact(r.impact) else ImpactLevel.MEDIUM
                )
                if not _is_near_duplicate(r.risk, [e.risk for e in risks[level]]):
                    risks[level].append(r)
                modes[level].add(output.mode_id)

        return [
            RiskGroup(severity=level, risks=risks[level], modes=sorted(modes[level]))
            for level in _SEVERITY_ORDER
            if risks[level]
        ]

    def group_recommendations_by_action(self) -> list[RecommendationGroup]:
        """Group by inferred action type, sorted by action type name."""
        recs: dict[str, list[Recommendation]] = {}
        modes: dict[str, set[str]] = {}
        for output in self.outputs:
            for r in output.recommendations:
                action = infer_action_type(r.recommendation)
                bucket = recs.setdefault(action, [])
                if not _is_near_duplicate(
                    r.recommendation, [e.recommendation for e in bucket]
                ):
                    bucket.append(r)
                modes.setdefault(action, set()).add(output.mode_id)

        return [
            RecommendationGroup(
                action_type=action, recommendations=recs[action], modes=sorted(modes[action])
            )
            for action in sorted(recs)
        ]

    # ── conflicts ────────────────────────────────────────

    def detect_conflicts(self) -> list[PotentialConflict]:
        """Run all three channels; results sorted by severity descending."""
        conflicts = (
            self.detect_thesis_conflicts()
            + self.detect_severity_conflicts()
            + self.detect_recommendation_conflicts()
        )
        return sorted(conflicts, key=lambda c: -c.severity)

    def detect_thesis_conflicts(self) -> list[PotentialConflict]:
        conflicts: list[PotentialConflict] = []
        for i, a in enumerate(self.outputs):
            for b in self.outputs[i + 1 :]:
                thesis_a = a.thesis.lower()
                thesis_b = b.thesis.lower()
                similarity = jaccard(tokenize(thesis_a), tokenize(thesis_b))
                if similarity < THESIS_TOPIC_THRESHOLD:
                    continue

                neg_a = contains_any(thesis_a, NEGATIVE_INDICATORS)
                pos_a = contains_any(thesis_a, POSITIVE_INDICATORS)
                neg_b = contains_any(thesis_b, NEGATIVE_INDICATORS)
                pos_b = contains_any(thesis_b, POSITIVE_INDICATORS)
                if (neg_a and pos_b) or (pos_a and neg_b):
                    conflicts.append(
                        PotentialConflict(
                            topic=extract_topic(thesis_a, thesis_b),
                            mode_a=a.mode_id,
                            mode_b=b.mode_id,
                            position_a=a.thesis,
                            position_b=b.thesis,
                            conflict_type=ConflictType.THESIS,
                            severity=0.5 + similarity * 0.5,
                        )
                    )
        return conflicts

    def detect_severity_conflicts(self) -> list[PotentialConflict]:
        entries = [(o.mode_id, r) for o in self.outputs for r in o.risks]
        conflicts: list[PotentialConflict] = []
        for i, (mode_a, risk_a) in enumerate(entries):
            for mode_b, risk_b in entries[i + 1 :]:
                if mode_a == mode_b:
                    continue
                similarity = jaccard(tokenize(risk_a.risk), tokenize(risk_b.risk))
                if similarity < SEVERITY_TOPIC_THRESHOLD:
                    continue
                gap = abs(severity_rank(risk_a.impact) - severity_rank(risk_b.impact))
                if gap >= SEVERITY_MIN_RANK_GAP:
                    conflicts.append(
                        PotentialConflict(
                            topic=extract_topic(risk_a.risk, risk_b.risk),
                            mode_a=mode_a,
                            mode_b=mode_b,
                            position_a=risk_a.impact,
                            position_b=risk_b.impact,
                            conflict_type=ConflictType.SEVERITY,
                            severity=gap / 3.0,
                        )
                    )
        return conflicts

    def detect_recommendation_conflicts(self) -> list[PotentialConflict]:
        entries = [
            (o.mode_id, r.recommendation) for o in self.outputs for r in o.recommendations
        ]
        conflicts: list[PotentialConflict] = []
        for i, (mode_a, text_a) in enumerate(entries):
            for mode_b, text_b in entries[i + 1 :]:
                if mode_a == mode_b:
                    continue
                lower_a = text_a.lower()
                lower_b = text_b.lower()
                similarity = jaccard(tokenize(lower_a), tokenize(lower_b))
                if similarity < RECOMMENDATION_TOPIC_THRESHOLD:
                    continue
                for first, second in OPPOSING_ACTION_PAIRS:
                    if (first in lower_a and second in lower_b) or (
                        second in lower_a and first in lower_b
                    ):
                        conflicts.append(
                            PotentialConflict(
                                topic=extract_topic(text_a, text_b),
                                mode_a=mode_a,
                                mode_b=mode_b,
                                position_a=text_a,
                                position_b=text_b,
                                conflict_type=ConflictType.RECOMMENDATION,
                                severity=0.4 + similarity * 0.6,
                            )
                        )
                        break
        return conflicts
