"""Conflict density across mode pairs.

Conflicts come either from an audit report (source ``auditor``) or from
running the mechanical conflict channels directly (source ``fallback``).
Densities from different sources are not comparable.
"""

from __future__ import annotations

import logging
from collections import Counter

from pydantic import BaseModel, Field

from ensemble_fusion.constants import (
    HIGH_CONFLICT_PAIR_COUNT,
    ConflictSeverity,
    ConflictSource,
)
from ensemble_fusion.fusion.audit import AuditReport, DetailedConflict, DisagreementAuditor
from ensemble_fusion.schema.outputs import ModeOutput

logger = logging.getLogger(__name__)


class Conflict(BaseModel):
    """A disagreement between two modes; mode_a <= mode_b."""

    topic: str
    mode_a: str
    mode_b: str
    position_a: str = ""
    position_b: str = ""
    severity: ConflictSeverity = ConflictSeverity.MEDIUM
    resolved: bool = False
    resolution: str = ""

    @property
    def pair_key(self) -> str:
        return f"{self.mode_a} <-> {self.mode_b}"


class ConflictDensity(BaseModel):
    total_conflicts: int = 0
    resolved_conflicts: int = 0
    unresolved_conflicts: int = 0
    conflicts_per_pair: float = 0.0
    high_conflict_pairs: list[str] = Field(default_factory=lambda: list[str]())
    source: ConflictSource | None = None


def flatten_conflicts(conflicts: list[DetailedConflict]) -> list[Conflict]:
    """Expand multi-position conflicts into lexically ordered pairs."""
    out: list[Conflict] = []
    for conflict in conflicts:
        positions = conflict.positions
        for i, left in enumerate(positions):
            for right in positions[i + 1 :]:
                if not left.mode_id or not right.mode_id:
                    continue
                if right.mode_id < left.mode_id:
                    left, right = right, left
                out.append(
                    Conflict(
                        topic=conflict.topic,
                        mode_a=left.mode_id,
                        mode_b=right.mode_id,
                        position_a=left.position,
                        position_b=right.position,
                        severity=conflict.severity,
                        resolution=conflict.resolution_path,
                    )
                )
    return out


class ConflictTracker:
    def __init__(self) -> None:
        self.conflicts: list[Conflict] = []
        self.source: ConflictSource | None = None

    def from_audit(self, report: AuditReport | None) -> list[Conflict]:
        self.source = ConflictSource.AUDITOR
        self.conflicts = flatten_conflicts(report.conflicts) if report is not None else []
        logger.debug(
            "event=conflict_source source=%s conflicts=%d", self.source, len(self.conflicts)
        )
        return self.conflicts

    def detect_conflicts(self, outputs: list[ModeOutput]) -> list[Conflict]:
        self.source = ConflictSource.FALLBACK
        detailed = DisagreementAuditor(outputs).identify_conflicts() if outputs else []
        self.conflicts = flatten_conflicts(detailed)
        logger.debug(
            "event=conflict_source source=%s conflicts=%d", self.source, len(self.conflicts)
        )
        return self.conflicts

    def mark_resolved(self, topic: str, resolution: str) -> int:
        """Resolve every conflict on *topic*; returns how many changed."""
        changed = 0
        for conflict in self.conflicts:
            if conflict.topic == topic and not conflict.resolved:
                conflict.resolved = True
                conflict.resolution = resolution
                changed += 1
        return changed

    def get_high_conflict_pairs(self, threshold: int = HIGH_CONFLICT_PAIR_COUNT) -> list[str]:
        if threshold <= 0:
            return []
        counts = Counter(c.pair_key for c in self.conflicts)
        return sorted(pair for pair, count in counts.items() if count >= threshold)

    def get_density(self, total_pairs: int) -> ConflictDensity:
        resolved = sum(1 for c in self.conflicts if c.resolved)
        total = len(self.conflicts)
        density = ConflictDensity(
            total_conflicts=total,
            resolved_conflicts=resolved,
            unresolved_conflicts=total - resolved,
            conflicts_per_pair=total / total_pairs if total_pairs > 0 else 0.0,
            high_conflict_pairs=self.get_high_conflict_pairs(),
            source=self.source,
        )
        logger.debug(
            "event=conflict_density source=%s total=%d unresolved=%d per_pair=%.2f",
            density.source,
            total,
            density.unresolved_conflicts,
            density.conflicts_per_pair,
        )
        return density

    def render(self, total_pairs: int) -> str:
        density = self.get_density(total_pairs)
        lines = [
            "Conflict Density:",
            f"Source: {density.source or 'none'}",
            f"Total: {density.total_conflicts} "
            f"(resolved {density.resolved_conflicts}, unresolved {density.unresolved_conflicts})",
            f"Conflicts per pair: {density.conflicts_per_pair:.2f}",
        ]
        if density.high_conflict_pairs:
            lines.append("High-conflict pairs:")
            lines.extend(f"- {pair}" for pair in density.high_conflict_pairs)
        if self.conflicts:
            lines.append("")
            lines.append("Conflicts:")
            for c in self.conflicts:
                status = "resolved" if c.resolved else "open"
                lines.append(f"- [{c.severity}] {c.topic}: {c.pair_key} ({status})")
        return "\n".join(lines) + "\n"
