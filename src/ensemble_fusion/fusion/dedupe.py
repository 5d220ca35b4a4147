"""Cluster view of findings: greedy clustering with stable cluster IDs.

Similarity combines token Jaccard on the finding text with evidence
pointer proximity, using the configured weights rescaled to sum to 1.
Cluster IDs hash the sorted member texts, so the same inputs always
produce the same IDs regardless of mode order.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from ensemble_fusion.constants import CLUSTER_ID_HEX_LENGTH
from ensemble_fusion.errors import ProvenanceCycleError
from ensemble_fusion.fusion.provenance import ProvenanceTracker
from ensemble_fusion.fusion.similarity import evidence_proximity, jaccard, tokenize
from ensemble_fusion.schema.configs import DedupeConfig
from ensemble_fusion.schema.outputs import Finding, ModeOutput

logger = logging.getLogger(__name__)

_CANONICAL_TRUNCATE = 60


class ClusterMember(BaseModel):
    finding: Finding
    source_mode: str
    similarity: float  # to the cluster seed
    provenance_id: str = ""


class FindingCluster(BaseModel):
    cluster_id: str = ""
    canonical: Finding
    members: list[ClusterMember] = Field(default_factory=lambda: list[ClusterMember]())
    member_count: int = 0
    source_modes: list[str] = Field(default_factory=lambda: list[str]())
    average_confidence: float = 0.0
    max_confidence: float = 0.0
    provenance_ids: list[str] = Field(default_factory=lambda: list[str]())


class DedupeStats(BaseModel):
    input_findings: int = 0
    output_clusters: int = 0
    duplicates_found: int = 0
    reduction_percent: float = 0.0
    largest_cluster: int = 0
    average_similarity: float = 0.0
    processing_time_ms: float = 0.0


class DedupeResult(BaseModel):
    generated_at: datetime
    clusters: list[FindingCluster] = Field(default_factory=lambda: list[FindingCluster]())
    stats: DedupeStats = Field(default_factory=DedupeStats)
    config: DedupeConfig = Field(default_factory=DedupeConfig)

    def canonical_findings(self) -> list[Finding]:
        return [c.canonical for c in self.clusters]

    def get_cluster(self, cluster_id: str) -> FindingCluster | None:
        for cluster in self.clusters:
            if cluster.cluster_id == cluster_id:
                return cluster
        return None

    def render(self) -> str:
        s = self.stats
        lines = [
            "Deduplication Results:",
            "-" * 50,
            "",
            f"Input Findings:    {s.input_findings}",
            f"Output Clusters:   {s.output_clusters}",
            f"Duplicates Found:  {s.duplicates_found}",
            f"Reduction:         {s.reduction_percent:.1f}%",
            f"Largest Cluster:   {s.largest_cluster} members",
            f"Avg Similarity:    {s.average_similarity:.2f}",
            "",
            "Clusters:",
        ]
        for i, c in enumerate(self.clusters, start=1):
            lines.append("")
            lines.append(
                f"{i}. [{c.cluster_id}] ({c.member_count} members, "
                f"conf: {c.max_confidence:.2f})"
            )
            lines.append(f"   Canonical: {_truncate(c.canonical.finding, _CANONICAL_TRUNCATE)}")
            if c.canonical.evidence_pointer:
                lines.append(f"   Evidence: {c.canonical.evidence_pointer}")
            lines.append(f"   Sources: {', '.join(c.source_modes)}")
        return "\n".join(lines) + "\n"


@dataclass
class _Candidate:
    finding: Finding
    source_mode: str
    provenance_id: str


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def cluster_id_for(texts: list[str]) -> str:
    """``clu-`` + first 8 hex of SHA-256 over sorted texts, NUL-terminated."""
    h = hashlib.sha256()
    for text in sorted(texts):
        h.update(text.encode("utf-8"))
        h.update(b"\0")
    return "clu-" + h.hexdigest()[:CLUSTER_ID_HEX_LENGTH]


class DedupeEngine:
    """Greedy finding clustering with optional provenance recording."""

    def __init__(
        self,
        config: DedupeConfig | None = None,
        tracker: ProvenanceTracker | None = None,
    ) -> None:
        self.config = config or DedupeConfig()
        self.tracker = tracker

    def similarity(self, a: Finding, b: Finding) -> float:
        text_w, evidence_w = self.config.normalized_weights()
        text_sim = jaccard(tokenize(a.finding), tokenize(b.finding))
        evidence_sim = evidence_proximity(a.evidence_pointer, b.evidence_pointer)
        return text_w * text_sim + evidence_w * evidence_sim

    def dedupe(self, outputs: list[ModeOutput]) -> DedupeResult:
        start = time.perf_counter()
        logger.info(
            "event=dedupe_start modes=%d threshold=%.2f",
            len(outputs),
            self.config.similarity_threshold,
        )

        tracker = self.tracker if self.config.preserve_provenance else None
        candidates: list[_Candidate] = []
        for output in outputs:
            for f in output.top_findings:
                pid = tracker.record_discovery(output.mode_id, f) if tracker else ""
                candidates.append(_Candidate(f, output.mode_id, pid))

        clusters = self._build_clusters(candidates)

        input_count = len(candidates)
        duplicates = input_count - len(clusters)
        similarities = [
            m.similarity for c in clusters for m in c.members if 0 < m.similarity < 1.0
        ]
        stats = DedupeStats(
            input_findings=input_count,
            output_clusters=len(clusters),
            duplicates_found=duplicates,
            reduction_percent=(duplicates / input_count * 100) if input_count else 0.0,
            largest_cluster=max((c.member_count for c in clusters), default=0),
            average_similarity=(
                sum(similarities) / len(similarities) if similarities else 0.0
            ),
            processing_time_ms=(time.perf_counter() - start) * 1000,
        )
        logger.info(
            "event=dedupe_complete input=%d clusters=%d duplicates=%d reduction=%.1f%%",
            input_count,
            len(clusters),
            duplicates,
            stats.reduction_percent,
        )
        return DedupeResult(
            generated_at=datetime.now(UTC),
            clusters=clusters,
            stats=stats,
            config=self.config,
        )

    def _build_clusters(self, candidates: list[_Candidate]) -> list[FindingCluster]:
        assigned = [False] * len(candidates)
        clusters: list[FindingCluster] = []

        for i, seed in enumerate(candidates):
            if assigned[i]:
                continue
            assigned[i] = True
            members = [
                ClusterMember(
                    finding=seed.finding,
                    source_mode=seed.source_mode,
                    similarity=1.0,
                    provenance_id=seed.provenance_id,
                )
            ]
            canonical = seed.finding

            for j in range(i + 1, len(candidates)):
                if assigned[j]:
                    continue
                other = candidates[j]
                sim = self.similarity(seed.finding, other.finding)
                if sim < self.config.similarity_threshold:
                    continue
                assigned[j] = True
                members.append(
                    ClusterMember(
                        finding=other.finding,
                        source_mode=other.source_mode,
                        similarity=sim,
                        provenance_id=other.provenance_id,
                    )
                )
                if (
                    self.config.prefer_high_confidence
                    and other.finding.confidence > canonical.confidence
                ):
                    canonical = other.finding
                self._record_merge(seed.provenance_id, other.provenance_id, sim)

            clusters.append(_finalize(canonical, members))

        return sorted(clusters, key=lambda c: c.cluster_id)

    def _record_merge(self, primary: str, secondary: str, sim: float) -> None:
        if self.tracker is None or not self.config.preserve_provenance:
            return
        if not primary or not secondary:
            return
        try:
            self.tracker.record_merge(primary, [secondary], sim)
        except ProvenanceCycleError as exc:
            logger.warning("event=provenance_merge_rejected error=%s", exc)


def _finalize(canonical: Finding, members: list[ClusterMember]) -> FindingCluster:
    members = sorted(members, key=lambda m: (m.source_mode, m.finding.finding))
    confidences = [m.finding.confidence for m in members]
    return FindingCluster(
        cluster_id=cluster_id_for([m.finding.finding for m in members]),
        canonical=canonical,
        members=members,
        member_count=len(members),
        source_modes=sorted({m.source_mode for m in members}),
        average_confidence=sum(confidences) / len(confidences),
        max_confidence=max(confidences),
        provenance_ids=[m.provenance_id for m in members if m.provenance_id],
    )


def dedupe_findings(
    outputs: list[ModeOutput],
    config: DedupeConfig | None = None,
    tracker: ProvenanceTracker | None = None,
) -> DedupeResult:
    return DedupeEngine(config, tracker).dedupe(outputs)
