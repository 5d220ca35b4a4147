"""Mechanical merging of mode outputs: score, cluster, rank, trim.

Clustering is a sequential sweep over the collected items in input
order: each not-yet-merged item absorbs every later item whose token
Jaccard reaches ``dedup_threshold``. A merged cluster keeps the first
item's text, unions source modes and takes the higher score times the
agreement boost. Merging never raises; limits clip and log.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

from ensemble_fusion.constants import AGREEMENT_BOOST, TRIM_REASON, impact_weight
from ensemble_fusion.errors import ProvenanceCycleError
from ensemble_fusion.fusion.provenance import ProvenanceTracker
from ensemble_fusion.fusion.similarity import finding_id, jaccard, tokenize
from ensemble_fusion.schema.configs import MergeConfig
from ensemble_fusion.schema.outputs import (
    Finding,
    ModeOutput,
    Question,
    Recommendation,
    Risk,
)

logger = logging.getLogger(__name__)

BELOW_MIN_CONFIDENCE_REASON = "below min confidence"

T = TypeVar("T")


class MergedFinding(BaseModel):
    finding: Finding
    source_modes: list[str] = Field(default_factory=lambda: list[str]())
    merge_score: float = 0.0
    provenance_id: str = ""


class MergedRisk(BaseModel):
    risk: Risk
    source_modes: list[str] = Field(default_factory=lambda: list[str]())
    merge_score: float = 0.0


class MergedRecommendation(BaseModel):
    recommendation: Recommendation
    source_modes: list[str] = Field(default_factory=lambda: list[str]())
    merge_score: float = 0.0


class MergeStats(BaseModel):
    input_count: int = 0
    total_findings: int = 0
    deduped_findings: int = 0
    total_risks: int = 0
    deduped_risks: int = 0
    total_recommendations: int = 0
    deduped_recommendations: int = 0
    merge_time_ms: float = 0.0


class MergedOutput(BaseModel):
    """Deduplicated, ranked union of several mode outputs."""

    findings: list[MergedFinding] = Field(default_factory=lambda: list[MergedFinding]())
    risks: list[MergedRisk] = Field(default_factory=lambda: list[MergedRisk]())
    recommendations: list[MergedRecommendation] = Field(
        default_factory=lambda: list[MergedRecommendation]()
    )
    questions: list[Question] = Field(default_factory=lambda: list[Question]())
    source_modes: list[str] = Field(default_factory=lambda: list[str]())
    stats: MergeStats = Field(default_factory=MergeStats)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)


@dataclass
class _Entry(Generic[T]):
    item: T
    text: str
    source_modes: list[str]
    score: float
    sort_id: str
    provenance_ids: list[str] = field(default_factory=lambda: list[str]())


def _deduplicate(
    entries: list[_Entry[T]],
    threshold: float,
    on_merge: Callable[[_Entry[T], _Entry[T], float], None] | None = None,
) -> list[_Entry[T]]:
    merged = [False] * len(entries)
    tokens = [tokenize(e.text) for e in entries]
    result: list[_Entry[T]] = []

    for i, entry in enumerate(entries):
        if merged[i]:
            continue
        current = _Entry(
            item=entry.item,
            text=entry.text,
            source_modes=list(entry.source_modes),
            score=entry.score,
            sort_id=entry.sort_id,
            provenance_ids=list(entry.provenance_ids),
        )
        for j in range(i + 1, len(entries)):
            if merged[j]:
                continue
            similarity = jaccard(tokens[i], tokens[j])
            if similarity >= threshold:
                other = entries[j]
                if on_merge is not None:
                    on_merge(current, other, similarity)
                current.source_modes = sorted(
                    set(current.source_modes) | set(other.source_modes)
                )
                current.score = max(current.score, other.score) * AGREEMENT_BOOST
                current.provenance_ids.extend(other.provenance_ids)
                merged[j] = True
        merged[i] = True
        result.append(current)

    return result


def _rank(entries: list[_Entry[T]]) -> list[_Entry[T]]:
    return sorted(entries, key=lambda e: (-e.score, e.sort_id))


def _trim(
    entries: list[_Entry[T]],
    limit: int,
    kind: str,
    tracker: ProvenanceTracker | None = None,
) -> list[_Entry[T]]:
    if limit <= 0 or len(entries) <= limit:
        return entries
    dropped = entries[limit:]
    logger.info(
        "event=merge_trimmed kind=%s dropped=%d limit=%d", kind, len(dropped), limit
    )
    if tracker is not None:
        for entry in dropped:
            for pid in entry.provenance_ids:
                tracker.record_filter(pid, TRIM_REASON)
    return entries[:limit]


def _merge_findings(
    outputs: list[ModeOutput],
    cfg: MergeConfig,
    tracker: ProvenanceTracker | None,
) -> tuple[list[MergedFinding], int]:
    collected: list[_Entry[Finding]] = []
    for output in outputs:
        for f in output.top_findings:
            pid = tracker.record_discovery(output.mode_id, f) if tracker else ""
            if f.confidence < cfg.min_confidence:
                if tracker is not None:
                    tracker.record_filter(pid, BELOW_MIN_CONFIDENCE_REASON)
                continue
            score = f.confidence
            if cfg.weight_by_confidence:
                score *= output.confidence
            if cfg.prefer_high_impact:
                score *= impact_weight(f.impact)
            collected.append(
                _Entry(
                    item=f,
                    text=f.finding,
                    source_modes=[output.mode_id],
                    score=score,
                    sort_id=finding_id(output.mode_id, f.finding),
                    provenance_ids=[pid] if pid else [],
                )
            )

    def record(current: _Entry[Finding], other: _Entry[Finding], similarity: float) -> None:
        if tracker is None or not current.provenance_ids or not other.provenance_ids:
            return
        try:
            tracker.record_merge(current.provenance_ids[0], other.provenance_ids, similarity)
        except ProvenanceCycleError as exc:
            logger.warning("event=provenance_merge_rejected error=%s", exc)

    clusters = _rank(_deduplicate(collected, cfg.dedup_threshold, record))
    clusters = _trim(clusters, cfg.max_findings, "findings", tracker)

    merged = [
        MergedFinding(
            finding=e.item,
            source_modes=sorted(set(e.source_modes)),
            merge_score=e.score,
            provenance_id=e.provenance_ids[0] if e.provenance_ids else "",
        )
        for e in clusters
    ]
    return merged, len(collected)


def _merge_risks(
    outputs: list[ModeOutput], cfg: MergeConfig
) -> tuple[list[MergedRisk], int]:
    collected: list[_Entry[Risk]] = []
    for output in outputs:
        for r in output.risks:
            score = impact_weight(r.impact) * r.likelihood
            if cfg.weight_by_confidence:
                score *= output.confidence
            collected.append(
                _Entry(
                    item=r,
                    text=r.risk,
                    source_modes=[output.mode_id],
                    score=score,
                    sort_id=finding_id(output.mode_id, r.risk),
                )
            )

    clusters = _trim(
        _rank(_deduplicate(collected, cfg.dedup_threshold)), cfg.max_risks, "risks"
    )
    merged = [
        MergedRisk(risk=e.item, source_modes=sorted(set(e.source_modes)), merge_score=e.score)
        for e in clusters
    ]
    return merged, len(collected)


def _merge_recommendations(
    outputs: list[ModeOutput], cfg: MergeConfig
) -> tuple[list[MergedRecommendation], int]:
    collected: list[_Entry[Recommendation]] = []
    for output in outputs:
        for r in output.recommendations:
            score = impact_weight(r.priority)
            if cfg.weight_by_confidence:
                score *= output.confidence
            collected.append(
                _Entry(
                    item=r,
                    text=r.recommendation,
                    source_modes=[output.mode_id],
                    score=score,
                    sort_id=finding_id(output.mode_id, r.recommendation),
                )
            )

    clusters = _trim(
        _rank(_deduplicate(collected, cfg.dedup_threshold)),
        cfg.max_recommendations,
        "recommendations",
    )
    merged = [
        MergedRecommendation(
            recommendation=e.item,
            source_modes=sorted(set(e.source_modes)),
            merge_score=e.score,
        )
        for e in clusters
    ]
    return merged, len(collected)


def merge_outputs(outputs: list[ModeOutput], cfg: MergeConfig | None = None) -> MergedOutput:
    return merge_outputs_with_provenance(outputs, cfg, None)


def merge_outputs_with_provenance(
    outputs: list[ModeOutput],
    cfg: MergeConfig | None = None,
    tracker: ProvenanceTracker | None = None,
) -> MergedOutput:
    """Merge *outputs* and, when *tracker* is given, record provenance.

    Findings below ``min_confidence`` are dropped and filter-logged;
    questions are concatenated without dedup.
    """
    cfg = cfg or MergeConfig()
    start = time.perf_counter()

    findings, total_findings = _merge_findings(outputs, cfg, tracker)
    risks, total_risks = _merge_risks(outputs, cfg)
    recs, total_recs = _merge_recommendations(outputs, cfg)

    questions: list[Question] = []
    for output in outputs:
        questions.extend(output.questions_for_user)

    stats = MergeStats(
        input_count=len(outputs),
        total_findings=total_findings,
        deduped_findings=len(findings),
        total_risks=total_risks,
        deduped_risks=len(risks),
        total_recommendations=total_recs,
        deduped_recommendations=len(recs),
        merge_time_ms=(time.perf_counter() - start) * 1000,
    )
    logger.debug(
        "event=merge_complete inputs=%d findings=%d/%d risks=%d/%d recs=%d/%d",
        stats.input_count,
        stats.deduped_findings,
        stats.total_findings,
        stats.deduped_risks,
        stats.total_risks,
        stats.deduped_recommendations,
        stats.total_recommendations,
    )
    return MergedOutput(
        findings=findings,
        risks=risks,
        recommendations=recs,
        questions=questions,
        source_modes=[o.mode_id for o in outputs],
        stats=stats,
    )


def consolidate_theses(outputs: list[ModeOutput]) -> str:
    """Thesis of the most confident output; ties go to the earliest."""
    best: ModeOutput | None = None
    for output in outputs:
        if not output.thesis.strip():
            continue
        if best is None or output.confidence > best.confidence:
            best = output
        elif (
            output.confidence == best.confidence
            and output.generated_at < best.generated_at
        ):
            best = output
    return best.thesis.strip() if best is not None else ""


def average_confidence(outputs: list[ModeOutput]) -> float:
    """Arithmetic mean of per-mode confidences (0.0 for no outputs)."""
    if not outputs:
        return 0.0
    return sum(o.confidence for o in outputs) / len(outputs)
