"""Per-mode contribution scoring.

Each mode is scored on five components (surviving findings, unique
insights, synthesis citations, risks, recommendations). Every component
is normalized by its maximum across modes, so the top mode on a
component receives that component's full weight. ``score`` is on a
0-100 scale.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from ensemble_fusion.fusion.merge import MergedOutput
from ensemble_fusion.schema.configs import ContributionConfig
from ensemble_fusion.schema.outputs import ModeOutput

logger = logging.getLogger(__name__)


class ModeContributionScore(BaseModel):
    mode_id: str
    mode_name: str = ""
    score: float = 0.0
    rank: int = 0
    original_findings: int = 0
    findings_count: int = 0
    unique_insights: int = 0
    citation_count: int = 0
    risks_count: int = 0
    recommendations_count: int = 0
    highlight_findings: list[str] = Field(default_factory=lambda: list[str]())


class ContributionReport(BaseModel):
    scores: list[ModeContributionScore] = Field(
        default_factory=lambda: list[ModeContributionScore]()
    )
    total_findings: int = 0
    deduped_findings: int = 0
    overlap_rate: float = 0.0
    diversity_score: float = 0.0
    generated_at: datetime

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    def get_score(self, mode_id: str) -> ModeContributionScore | None:
        for score in self.scores:
            if score.mode_id == mode_id:
                return score
        return None


class ContributionTracker:
    """Thread-safe accumulator of per-mode contribution counts."""

    def __init__(self, config: ContributionConfig | None = None) -> None:
        self.config = config or ContributionConfig()
        self._scores: dict[str, ModeContributionScore] = {}
        self._lock = threading.Lock()

    def _entry(self, mode_id: str) -> ModeContributionScore:
        entry = self._scores.get(mode_id)
        if entry is None:
            entry = ModeContributionScore(mode_id=mode_id)
            self._scores[mode_id] = entry
        return entry

    def record_original_finding(self, mode_id: str) -> None:
        with self._lock:
            self._entry(mode_id).original_findings += 1

    def record_surviving_finding(self, mode_id: str, text: str) -> None:
        with self._lock:
            self._entry(mode_id).findings_count += 1

    def record_unique_finding(self, mode_id: str, text: str) -> None:
        """Count a unique insight; the first few become highlights."""
        with self._lock:
            entry = self._entry(mode_id)
            entry.unique_insights += 1
            if len(entry.highlight_findings) < self.config.max_highlights:
                entry.highlight_findings.append(text)

    def record_citation(self, mode_id: str) -> None:
        with self._lock:
            self._entry(mode_id).citation_count += 1

    def record_risk(self, mode_id: str) -> None:
        with self._lock:
            self._entry(mode_id).risks_count += 1

    def record_recommendation(self, mode_id: str) -> None:
        with self._lock:
            self._entry(mode_id).recommendations_count += 1

    def set_mode_name(self, mode_id: str, name: str) -> None:
        with self._lock:
            self._entry(mode_id).mode_name = name

    def snapshot(self, mode_id: str) -> ModeContributionScore | None:
        with self._lock:
            entry = self._scores.get(mode_id)
            return entry.model_copy(deep=True) if entry is not None else None

    def generate_report(self) -> ContributionReport:
        with self._lock:
            entries = [e.model_copy(deep=True) for e in self._scores.values()]

        cfg = self.config
        components = (
            (cfg.findings_weight, lambda e: e.findings_count),
            (cfg.unique_weight, lambda e: e.unique_insights),
            (cfg.citation_weight, lambda e: e.citation_count),
            (cfg.risk_weight, lambda e: e.risks_count),
            (cfg.recommendation_weight, lambda e: e.recommendations_count),
        )
        maxima = [max((get(e) for e in entries), default=0) for _, get in components]

        for entry in entries:
            total = 0.0
            for (weight, get), peak in zip(components, maxima, strict=True):
                if peak > 0:
                    total += weight * get(entry) / peak
            entry.score = total * 100

        entries.sort(key=lambda e: (-e.score, e.mode_id))
        for rank, entry in enumerate(entries, start=1):
            entry.rank = rank

        total_findings = sum(e.original_findings for e in entries)
        deduped = sum(e.findings_count for e in entries)
        unique = sum(e.unique_insights for e in entries)
        report = ContributionReport(
            scores=entries,
            total_findings=total_findings,
            deduped_findings=deduped,
            overlap_rate=(1 - deduped / total_findings) if total_findings else 0.0,
            diversity_score=(unique / deduped) if deduped else 0.0,
            generated_at=datetime.now(UTC),
        )
        logger.debug(
            "event=contribution_report modes=%d total=%d deduped=%d",
            len(entries),
            total_findings,
            deduped,
        )
        return report


def track_original_findings(tracker: ContributionTracker, outputs: list[ModeOutput]) -> None:
    for output in outputs:
        for _ in output.top_findings:
            tracker.record_original_finding(output.mode_id)


def track_contributions_from_merge(tracker: ContributionTracker, merged: MergedOutput) -> None:
    """Credit surviving findings, unique insights, risks and recs per mode."""
    for mf in merged.findings:
        for mode in mf.source_modes:
            tracker.record_surviving_finding(mode, mf.finding.finding)
        if len(mf.source_modes) == 1:
            tracker.record_unique_finding(mf.source_modes[0], mf.finding.finding)
    for mr in merged.risks:
        for mode in mr.source_modes:
            tracker.record_risk(mode)
    for mrec in merged.recommendations:
        for mode in mrec.source_modes:
            tracker.record_recommendation(mode)


def format_report(report: ContributionReport | None) -> str:
    if report is None:
        return "No contribution data available"

    lines = [
        "Mode Contribution Report",
        "=" * 24,
        "",
        f"Total findings: {report.total_findings}  "
        f"Deduplicated: {report.deduped_findings}  "
        f"Overlap: {report.overlap_rate * 100:.0f}%  "
        f"Diversity: {report.diversity_score:.2f}",
        "",
    ]
    for s in report.scores:
        name = s.mode_name or s.mode_id
        label = f"{name} ({s.mode_id})" if s.mode_name else name
        lines.append(f"{s.rank}. {label}: {s.score:.1f}")
        lines.append(
            f"   findings={s.findings_count}/{s.original_findings} "
            f"unique={s.unique_insights} citations={s.citation_count} "
            f"risks={s.risks_count} recs={s.recommendations_count}"
        )
        for highlight in s.highlight_findings:
            lines.append(f"   * {highlight}")
    return "\n".join(lines) + "\n"
