"""Explanation layer: why each conclusion and conflict resolution happened.

The tracker collects conclusions (with their source finding IDs,
contributing modes and evidence) and conflict resolutions while a
synthesis runs, then freezes them into an ExplanationLayer. Writers that
name an unknown conclusion are no-ops, so partial pipelines never fail
on bookkeeping.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from ensemble_fusion.constants import ConclusionType, ResolutionMethod, impact_weight
from ensemble_fusion.fusion.audit import AuditReport
from ensemble_fusion.fusion.merge import MergedOutput
from ensemble_fusion.fusion.provenance import ProvenanceTracker
from ensemble_fusion.fusion.similarity import hash16
from ensemble_fusion.synthesis.strategies import StrategyConfig

logger = logging.getLogger(__name__)

_SANITIZED_ID_LENGTH = 20

# Checked in order; first keyword found in the resolution path wins
_METHOD_KEYWORDS: tuple[tuple[str, ResolutionMethod], ...] = (
    ("consensus", ResolutionMethod.CONSENSUS),
    ("majority", ResolutionMethod.MAJORITY),
    ("weighted", ResolutionMethod.WEIGHTED),
    ("defer", ResolutionMethod.DEFERRED),
)


class PositionSummary(BaseModel):
    mode_id: str
    position: str = ""
    strength: float = 0.0


class ConclusionExplanation(BaseModel):
    conclusion_id: str
    type: ConclusionType
    text: str = ""
    source_findings: list[str] = Field(default_factory=lambda: list[str]())
    contributing_modes: list[str] = Field(default_factory=lambda: list[str]())
    confidence: float = 0.0
    confidence_basis: str = ""
    supporting_evidence: list[str] = Field(default_factory=lambda: list[str]())
    counter_evidence: list[str] = Field(default_factory=lambda: list[str]())
    reasoning: str = ""


class ConflictResolution(BaseModel):
    conflict_id: str
    topic: str
    positions: list[PositionSummary] = Field(
        default_factory=lambda: list[PositionSummary]()
    )
    resolution: str = ""
    method: ResolutionMethod = ResolutionMethod.MANUAL


class ExplanationLayer(BaseModel):
    strategy_rationale: str = ""
    mode_weights: dict[str, float] = Field(default_factory=lambda: dict[str, float]())
    conclusions: list[ConclusionExplanation] = Field(
        default_factory=lambda: list[ConclusionExplanation]()
    )
    conflicts_resolved: list[ConflictResolution] = Field(
        default_factory=lambda: list[ConflictResolution]()
    )
    generated_at: datetime

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)


def sanitize_id(text: str) -> str:
    """Lower-case, dash-separated, at most 20 characters."""
    return text.strip().lower().replace(" ", "-")[:_SANITIZED_ID_LENGTH]


def generate_conflict_id(topic: str, positions: list[PositionSummary]) -> str:
    parts = sorted(f"{p.mode_id}:{p.position}" for p in positions)
    return hash16("|".join([topic, *parts]))


def infer_resolution_method(resolution_path: str) -> ResolutionMethod:
    lowered = resolution_path.lower()
    for keyword, method in _METHOD_KEYWORDS:
        if keyword in lowered:
            return method
    return ResolutionMethod.MANUAL


class ExplanationTracker:
    """Collects explanation records during one synthesis."""

    def __init__(self, provenance: ProvenanceTracker | None = None) -> None:
        self.provenance = provenance
        self._conclusions: dict[str, ConclusionExplanation] = {}
        self._conflicts: list[ConflictResolution] = []
        self._mode_weights: dict[str, float] = {}
        self._strategy_rationale = ""
        self._lock = threading.Lock()

    # ── conclusions ──────────────────────────────────────

    def record_conclusion(
        self,
        conclusion_id: str,
        conclusion_type: ConclusionType,
        text: str,
        modes: list[str],
        confidence: float,
    ) -> None:
        with self._lock:
            self._conclusions[conclusion_id] = ConclusionExplanation(
                conclusion_id=conclusion_id,
                type=conclusion_type,
                text=text,
                contributing_modes=sorted(set(modes)),
                confidence=confidence,
            )

    def add_source_finding(self, conclusion_id: str, finding_id: str) -> None:
        with self._lock:
            c = self._conclusions.get(conclusion_id)
            if c is not None and finding_id and finding_id not in c.source_findings:
                c.source_findings.append(finding_id)

    def set_confidence_basis(self, conclusion_id: str, basis: str) -> None:
        with self._lock:
            c = self._conclusions.get(conclusion_id)
            if c is not None:
                c.confidence_basis = basis

    def add_supporting_evidence(self, conclusion_id: str, evidence: str) -> None:
        with self._lock:
            c = self._conclusions.get(conclusion_id)
            if c is not None and evidence:
                c.supporting_evidence.append(evidence)

    def add_counter_evidence(self, conclusion_id: str, evidence: str) -> None:
        with self._lock:
            c = self._conclusions.get(conclusion_id)
            if c is not None and evidence:
                c.counter_evidence.append(evidence)

    def set_reasoning(self, conclusion_id: str, reasoning: str) -> None:
        with self._lock:
            c = self._conclusions.get(conclusion_id)
            if c is not None:
                c.reasoning = reasoning

    # ── conflicts and strategy ───────────────────────────

    def record_conflict_resolution(
        self,
        topic: str,
        positions: list[PositionSummary] | None,
        resolution: str,
        method: ResolutionMethod,
    ) -> None:
        positions = list(positions or [])
        with self._lock:
            self._conflicts.append(
                ConflictResolution(
                    conflict_id=generate_conflict_id(topic, positions),
                    topic=topic,
                    positions=positions,
                    resolution=resolution,
                    method=method,
                )
            )

    def set_strategy_rationale(self, rationale: str) -> None:
        with self._lock:
            self._strategy_rationale = rationale

    def set_mode_weight(self, mode_id: str, weight: float) -> None:
        with self._lock:
            self._mode_weights[mode_id] = weight

    def generate_layer(self) -> ExplanationLayer:
        """Snapshot everything recorded so far."""
        with self._lock:
            layer = ExplanationLayer(
                strategy_rationale=self._strategy_rationale,
                mode_weights=dict(sorted(self._mode_weights.items())),
                conclusions=[c.model_copy(deep=True) for c in self._conclusions.values()],
                conflicts_resolved=[c.model_copy(deep=True) for c in self._conflicts],
                generated_at=datetime.now(UTC),
            )
        logger.debug(
            "event=explanation_generated conclusions=%d conflicts=%d",
            len(layer.conclusions),
            len(layer.conflicts_resolved),
        )
        return layer


def _confidence_basis(source_modes: list[str]) -> str:
    if len(source_modes) > 1:
        return f"Confirmed by {len(source_modes)} modes"
    if source_modes:
        return f"Single-mode finding from {source_modes[0]}"
    return "No contributing modes recorded"


def build_explanation_from_merge(
    tracker: ExplanationTracker,
    merged: MergedOutput,
    strategy: StrategyConfig | None = None,
) -> None:
    """Record one conclusion per merged finding, risk and recommendation."""
    if strategy is not None:
        rationale = f"Strategy '{strategy.name}': {strategy.description}"
        if strategy.best_for:
            rationale += f" Best for: {', '.join(strategy.best_for)}."
        tracker.set_strategy_rationale(rationale)

    mode_counts: dict[str, int] = {}
    for i, mf in enumerate(merged.findings):
        cid = f"finding-{i}-{sanitize_id(mf.finding.finding)}"
        tracker.record_conclusion(
            cid,
            ConclusionType.FINDING,
            mf.finding.finding,
            mf.source_modes,
            mf.finding.confidence,
        )
        tracker.set_confidence_basis(cid, _confidence_basis(mf.source_modes))
        if mf.provenance_id:
            tracker.add_source_finding(cid, mf.provenance_id)
            chain = (
                tracker.provenance.get_chain(mf.provenance_id)
                if tracker.provenance is not None
                else None
            )
            if chain is not None:
                for fid in chain.merged_from:
                    tracker.add_source_finding(cid, fid)
        if mf.finding.evidence_pointer:
            tracker.add_supporting_evidence(cid, mf.finding.evidence_pointer)
        if mf.finding.reasoning:
            tracker.set_reasoning(cid, mf.finding.reasoning)
        for mode in mf.source_modes:
            mode_counts[mode] = mode_counts.get(mode, 0) + 1

    for i, mr in enumerate(merged.risks):
        cid = f"risk-{i}-{sanitize_id(mr.risk.risk)}"
        tracker.record_conclusion(
            cid, ConclusionType.RISK, mr.risk.risk, mr.source_modes, mr.risk.likelihood
        )
        tracker.set_confidence_basis(cid, _confidence_basis(mr.source_modes))
        if mr.risk.mitigation:
            tracker.add_supporting_evidence(cid, f"Mitigation: {mr.risk.mitigation}")

    for i, mrec in enumerate(merged.recommendations):
        rec = mrec.recommendation
        cid = f"recommendation-{i}-{sanitize_id(rec.recommendation)}"
        tracker.record_conclusion(
            cid,
            ConclusionType.RECOMMENDATION,
            rec.recommendation,
            mrec.source_modes,
            impact_weight(rec.priority),
        )
        tracker.set_confidence_basis(cid, _confidence_basis(mrec.source_modes))
        if rec.rationale:
            tracker.set_reasoning(cid, rec.rationale)

    total = sum(mode_counts.values())
    for mode, count in mode_counts.items():
        tracker.set_mode_weight(mode, count / total)


def build_explanation_from_conflicts(
    tracker: ExplanationTracker, report: AuditReport | None
) -> None:
    if report is None:
        return
    for conflict in report.conflicts:
        positions = [
            PositionSummary(mode_id=p.mode_id, position=p.position, strength=p.confidence)
            for p in conflict.positions
        ]
        tracker.record_conflict_resolution(
            conflict.topic,
            positions,
            conflict.resolution_path or "unresolved",
            infer_resolution_method(conflict.resolution_path),
        )


def format_explanation(layer: ExplanationLayer | None) -> str:
    """Human-readable rendering of an explanation layer."""
    if layer is None:
        return "No explanation available"

    lines = ["Synthesis Explanation", "=" * 21, ""]

    if layer.strategy_rationale:
        lines += ["Strategy Rationale:", f"  {layer.strategy_rationale}", ""]

    if layer.mode_weights:
        lines.append("Mode Weights:")
        for mode, weight in sorted(layer.mode_weights.items()):
            lines.append(f"  {mode}: {weight:.2f}")
        lines.append("")

    if layer.conclusions:
        lines.append("Conclusion Explanations:")
        for i, c in enumerate(layer.conclusions, start=1):
            lines.append(f"  {i}. [{c.type}] {c.text}")
            lines.append(f"     Confidence: {c.confidence:.2f}")
            if c.confidence_basis:
                lines.append(f"     Basis: {c.confidence_basis}")
            if c.contributing_modes:
                lines.append(f"     Modes: {', '.join(c.contributing_modes)}")
            if c.supporting_evidence:
                lines.append(f"     Evidence: {'; '.join(c.supporting_evidence)}")
            if c.counter_evidence:
                lines.append(f"     Counter: {'; '.join(c.counter_evidence)}")
        lines.append("")

    if layer.conflicts_resolved:
        lines.append("Conflicts Resolved:")
        for i, cr in enumerate(layer.conflicts_resolved, start=1):
            lines.append(f"  {i}. {cr.topic} ({cr.method})")
            for p in cr.positions:
                lines.append(f"     - {p.mode_id}: {p.position} (strength: {p.strength:.2f})")
            lines.append(f"     Resolution: {cr.resolution}")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
