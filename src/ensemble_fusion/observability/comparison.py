"""Deterministic diff between two ensemble runs.

Findings are matched across runs by their stable finding id, so two runs
that produced the same finding text (modulo case and surrounding
whitespace) for the same mode line up even if everything else moved.
Every list in the result is sorted; serializing the same comparison twice
yields identical JSON apart from ``generated_at``.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from ensemble_fusion.constants import SYNTHESIS_TRUNCATE_CHARS
from ensemble_fusion.fusion.similarity import finding_id
from ensemble_fusion.schema.outputs import ModeOutput
from ensemble_fusion.synthesis.contributions import ContributionReport

logger = logging.getLogger(__name__)

_MAX_LISTED_FINDINGS = 5
_MAX_LISTED_CHANGES = 3
_DISPLAY_TEXT_CHARS = 60


class ModeDiff(BaseModel):
    added: list[str] = Field(default_factory=lambda: list[str]())
    removed: list[str] = Field(default_factory=lambda: list[str]())
    unchanged: list[str] = Field(default_factory=lambda: list[str]())
    added_count: int = 0
    removed_count: int = 0
    unchanged_count: int = 0


class FindingDiffEntry(BaseModel):
    finding_id: str
    mode_id: str
    text: str
    impact: str = ""
    confidence: float


class FindingChange(BaseModel):
    finding_id: str
    mode_id: str
    text_a: str = ""
    text_b: str = ""
    impact_a: str = ""
    impact_b: str = ""
    confidence_a: float = 0.0
    confidence_b: float = 0.0
    changes: list[str] = Field(default_factory=lambda: list[str]())


class FindingsDiff(BaseModel):
    new: list[FindingDiffEntry] = Field(default_factory=lambda: list[FindingDiffEntry]())
    missing: list[FindingDiffEntry] = Field(default_factory=lambda: list[FindingDiffEntry]())
    changed: list[FindingChange] = Field(default_factory=lambda: list[FindingChange]())
    unchanged: list[FindingDiffEntry] = Field(
        default_factory=lambda: list[FindingDiffEntry]()
    )
    new_count: int = 0
    missing_count: int = 0
    changed_count: int = 0
    unchanged_count: int = 0


class ThesisChange(BaseModel):
    mode_id: str
    thesis_a: str
    thesis_b: str


class ConclusionDiff(BaseModel):
    thesis_changes: list[ThesisChange] = Field(default_factory=lambda: list[ThesisChange]())
    synthesis_changed: bool = False
    synthesis_a: str | None = None
    synthesis_b: str | None = None


class ScoreDelta(BaseModel):
    mode_id: str
    score_a: float
    score_b: float
    delta: float


class RankChange(BaseModel):
    mode_id: str
    rank_a: int
    rank_b: int
    delta: int  # negative means the mode moved up


class ContributionDiff(BaseModel):
    score_deltas: list[ScoreDelta] = Field(default_factory=lambda: list[ScoreDelta]())
    rank_changes: list[RankChange] = Field(default_factory=lambda: list[RankChange]())
    overlap_rate_a: float = 0.0
    overlap_rate_b: float = 0.0
    diversity_score_a: float = 0.0
    diversity_score_b: float = 0.0


class RunSnapshot(BaseModel):
    """What one run contributes to a comparison."""

    run_id: str
    mode_ids: list[str] = Field(default_factory=lambda: list[str]())
    outputs: list[ModeOutput] = Field(default_factory=lambda: list[ModeOutput]())
    synthesis_text: str = ""
    contributions: ContributionReport | None = None


def _drop_empty_lists(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: _drop_empty_lists(v) for k, v in value.items() if not (isinstance(v, list) and not v)
        }
    if isinstance(value, list):
        return [_drop_empty_lists(v) for v in value]
    return value


class ComparisonResult(BaseModel):
    run_a: str
    run_b: str
    generated_at: datetime
    mode_diff: ModeDiff = Field(default_factory=ModeDiff)
    findings_diff: FindingsDiff = Field(default_factory=FindingsDiff)
    conclusion_diff: ConclusionDiff = Field(default_factory=ConclusionDiff)
    contribution_diff: ContributionDiff = Field(default_factory=ContributionDiff)
    summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict; empty lists and unset synthesis texts are omitted."""
        return _drop_empty_lists(self.model_dump(mode="json", exclude_none=True))

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    def has_mode_changes(self) -> bool:
        return self.mode_diff.added_count > 0 or self.mode_diff.removed_count > 0

    def has_finding_changes(self) -> bool:
        fd = self.findings_diff
        return fd.new_count > 0 or fd.missing_count > 0 or fd.changed_count > 0

    def has_conclusion_changes(self) -> bool:
        return bool(self.conclusion_diff.thesis_changes) or self.conclusion_diff.synthesis_changed

    def has_contribution_changes(self) -> bool:
        cd = self.contribution_diff
        return bool(cd.score_deltas) or bool(cd.rank_changes)

    def is_empty(self) -> bool:
        return not (
            self.has_mode_changes()
            or self.has_finding_changes()
            or self.has_conclusion_changes()
            or self.has_contribution_changes()
        )


def truncate_for_diff(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def compare_modes(modes_a: list[str], modes_b: list[str]) -> ModeDiff:
    set_a, set_b = set(modes_a), set(modes_b)
    added = sorted(set_b - set_a)
    removed = sorted(set_a - set_b)
    unchanged = sorted(set_a & set_b)
    return ModeDiff(
        added=added,
        removed=removed,
        unchanged=unchanged,
        added_count=len(added),
        removed_count=len(removed),
        unchanged_count=len(unchanged),
    )


def _finding_map(outputs: list[ModeOutput]) -> dict[str, FindingDiffEntry]:
    entries: dict[str, FindingDiffEntry] = {}
    for output in outputs:
        for f in output.top_findings:
            fid = finding_id(output.mode_id, f.finding)
            entries[fid] = FindingDiffEntry(
                finding_id=fid,
                mode_id=output.mode_id,
                text=f.finding,
                impact=f.impact,
                confidence=f.confidence,
            )
    return entries


def _entry_changes(a: FindingDiffEntry, b: FindingDiffEntry) -> list[str]:
    changes: list[str] = []
    if a.text != b.text:
        changes.append("text")
    if a.impact != b.impact:
        changes.append(f"impact: {a.impact} -> {b.impact}")
    if a.confidence != b.confidence:
        changes.append(f"confidence: {a.confidence:.2f} -> {b.confidence:.2f}")
    return changes


def compare_findings(outputs_a: list[ModeOutput], outputs_b: list[ModeOutput]) -> FindingsDiff:
    map_a, map_b = _finding_map(outputs_a), _finding_map(outputs_b)
    diff = FindingsDiff()
    diff.new = [map_b[fid] for fid in sorted(map_b.keys() - map_a.keys())]
    diff.missing = [map_a[fid] for fid in sorted(map_a.keys() - map_b.keys())]
    for fid in sorted(map_a.keys() & map_b.keys()):
        a, b = map_a[fid], map_b[fid]
        changes = _entry_changes(a, b)
        if not changes:
            diff.unchanged.append(a)
            continue
        diff.changed.append(
            FindingChange(
                finding_id=fid,
                mode_id=a.mode_id,
                text_a=a.text,
                text_b=b.text,
                impact_a=a.impact,
                impact_b=b.impact,
                confidence_a=a.confidence,
                confidence_b=b.confidence,
                changes=changes,
            )
        )
    diff.new_count = len(diff.new)
    diff.missing_count = len(diff.missing)
    diff.changed_count = len(diff.changed)
    diff.unchanged_count = len(diff.unchanged)
    return diff


def compare_conclusions(run_a: RunSnapshot, run_b: RunSnapshot) -> ConclusionDiff:
    theses_a = {o.mode_id: o.thesis for o in run_a.outputs}
    theses_b = {o.mode_id: o.thesis for o in run_b.outputs}
    diff = ConclusionDiff()
    for mode_id in sorted(theses_a.keys() & theses_b.keys()):
        if theses_a[mode_id] != theses_b[mode_id]:
            diff.thesis_changes.append(
                ThesisChange(
                    mode_id=mode_id, thesis_a=theses_a[mode_id], thesis_b=theses_b[mode_id]
                )
            )
    if run_a.synthesis_text != run_b.synthesis_text:
        diff.synthesis_changed = True
        diff.synthesis_a = truncate_for_diff(run_a.synthesis_text, SYNTHESIS_TRUNCATE_CHARS)
        diff.synthesis_b = truncate_for_diff(run_b.synthesis_text, SYNTHESIS_TRUNCATE_CHARS)
    return diff


def compare_contributions(
    report_a: ContributionReport | None, report_b: ContributionReport | None
) -> ContributionDiff:
    diff = ContributionDiff()
    if report_a is None or report_b is None:
        return diff
    diff.overlap_rate_a = report_a.overlap_rate
    diff.overlap_rate_b = report_b.overlap_rate
    diff.diversity_score_a = report_a.diversity_score
    diff.diversity_score_b = report_b.diversity_score

    scores_a = {s.mode_id: s for s in report_a.scores}
    scores_b = {s.mode_id: s for s in report_b.scores}
    for mode_id in sorted(scores_a.keys() & scores_b.keys()):
        a, b = scores_a[mode_id], scores_b[mode_id]
        if b.score != a.score:
            diff.score_deltas.append(
                ScoreDelta(
                    mode_id=mode_id, score_a=a.score, score_b=b.score, delta=b.score - a.score
                )
            )
        if b.rank != a.rank:
            diff.rank_changes.append(
                RankChange(mode_id=mode_id, rank_a=a.rank, rank_b=b.rank, delta=b.rank - a.rank)
            )
    return diff


def comparison_summary(result: ComparisonResult) -> str:
    parts: list[str] = []
    md, fd, cd = result.mode_diff, result.findings_diff, result.conclusion_diff
    if md.added_count:
        parts.append(f"+{md.added_count} modes")
    if md.removed_count:
        parts.append(f"-{md.removed_count} modes")
    if fd.new_count:
        parts.append(f"+{fd.new_count} findings")
    if fd.missing_count:
        parts.append(f"-{fd.missing_count} findings")
    if fd.changed_count:
        parts.append(f"~{fd.changed_count} findings modified")
    if cd.thesis_changes:
        parts.append(f"{len(cd.thesis_changes)} thesis changes")
    if cd.synthesis_changed:
        parts.append("synthesis changed")
    if result.contribution_diff.rank_changes:
        parts.append(f"{len(result.contribution_diff.rank_changes)} rank changes")
    return ", ".join(parts) if parts else "No differences found"


def compare(run_a: RunSnapshot, run_b: RunSnapshot) -> ComparisonResult:
    logger.debug("event=compare_runs run_a=%s run_b=%s", run_a.run_id, run_b.run_id)
    result = ComparisonResult(
        run_a=run_a.run_id,
        run_b=run_b.run_id,
        generated_at=datetime.now(UTC),
        mode_diff=compare_modes(run_a.mode_ids, run_b.mode_ids),
        findings_diff=compare_findings(run_a.outputs, run_b.outputs),
        conclusion_diff=compare_conclusions(run_a, run_b),
        contribution_diff=compare_contributions(run_a.contributions, run_b.contributions),
    )
    result.summary = comparison_summary(result)
    return result


def _listed(lines: list[str], items: list[str], limit: int) -> None:
    for i, item in enumerate(items):
        if i >= limit:
            lines.append(f"    ... and {len(items) - limit} more")
            break
        lines.append(item)


def format_comparison(result: ComparisonResult | None) -> str:
    if result is None:
        return "No comparison result"

    md, fd = result.mode_diff, result.findings_diff
    lines = [
        f"Ensemble Comparison: {result.run_a} vs {result.run_b}",
        f"Generated: {result.generated_at.isoformat(timespec='seconds')}",
        f"Summary: {result.summary}",
        "",
        "Mode Changes:",
    ]
    if md.added_count:
        lines.append(f"  Added ({md.added_count}): {', '.join(md.added)}")
    if md.removed_count:
        lines.append(f"  Removed ({md.removed_count}): {', '.join(md.removed)}")
    if not md.added_count and not md.removed_count:
        lines.append(f"  No mode changes ({md.unchanged_count} unchanged)")
    lines.append("")

    lines.append("Finding Changes:")
    lines.append(
        f"  New: {fd.new_count} | Missing: {fd.missing_count} | "
        f"Changed: {fd.changed_count} | Unchanged: {fd.unchanged_count}"
    )
    if fd.new:
        lines.append("  New findings:")
        _listed(
            lines,
            [
                f"    + [{f.mode_id}] {truncate_for_diff(f.text, _DISPLAY_TEXT_CHARS)}"
                for f in fd.new
            ],
            _MAX_LISTED_FINDINGS,
        )
    if fd.missing:
        lines.append("  Missing findings:")
        _listed(
            lines,
            [
                f"    - [{f.mode_id}] {truncate_for_diff(f.text, _DISPLAY_TEXT_CHARS)}"
                for f in fd.missing
            ],
            _MAX_LISTED_FINDINGS,
        )
    if fd.changed:
        lines.append("  Changed findings:")
        _listed(
            lines,
            [f"    ~ [{c.mode_id}] {', '.join(c.changes)}" for c in fd.changed],
            _MAX_LISTED_CHANGES,
        )
    lines.append("")

    if result.contribution_diff.rank_changes:
        lines.append("Contribution Rank Changes:")
        for rc in result.contribution_diff.rank_changes:
            arrow = "↑" if rc.delta < 0 else "↓"
            lines.append(f"  {rc.mode_id}: #{rc.rank_a} → #{rc.rank_b} ({arrow}{abs(rc.delta)})")
        lines.append("")

    if result.conclusion_diff.synthesis_changed:
        lines.append("Synthesis Output: Changed")
    return "\n".join(lines) + "\n"
