"""Per-finding provenance: discovery, filtering, merging and citation.

Chains live in an arena keyed by finding_id; ``merged_into`` is an index
into the same arena, never an object reference. A chain may be merged
into another exactly once, and merges that would close a loop are
rejected at write time.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from ensemble_fusion.errors import InvalidArgumentError, ProvenanceCycleError
from ensemble_fusion.fusion.similarity import context_hash, finding_id
from ensemble_fusion.schema.outputs import Finding

logger = logging.getLogger(__name__)


class FilterEvent(BaseModel):
    reason: str
    time: datetime


class ProvenanceChain(BaseModel):
    """History of one finding across the fusion pipeline."""

    finding_id: str
    origin_mode: str
    finding_text: str = ""
    discovery_time: datetime
    filtered: FilterEvent | None = None
    merged_from: list[str] = Field(default_factory=lambda: list[str]())
    merged_into: str = ""
    merge_similarity: float = 0.0
    synthesis_citations: list[str] = Field(default_factory=lambda: list[str]())

    @property
    def is_active(self) -> bool:
        return not self.merged_into

    @property
    def is_filtered(self) -> bool:
        return self.filtered is not None


class ProvenanceStats(BaseModel):
    total_findings: int = 0
    active_findings: int = 0
    merged_findings: int = 0
    filtered_findings: int = 0
    cited_findings: int = 0
    mode_breakdown: dict[str, int] = Field(default_factory=lambda: dict[str, int]())


class ProvenanceTracker:
    """Thread-safe arena of provenance chains for one ensemble run."""

    def __init__(self, question: str, mode_ids: list[str]) -> None:
        self._question = question
        self._mode_ids = sorted(mode_ids)
        self._context_hash = context_hash(question, mode_ids)
        self._chains: dict[str, ProvenanceChain] = {}
        self._lock = threading.Lock()

    def context_hash(self) -> str:
        return self._context_hash

    # ── writers ──────────────────────────────────────────

    def record_discovery(self, mode_id: str, finding: Finding) -> str:
        """Open a chain for *finding*; repeated calls return the same id."""
        fid = finding_id(mode_id, finding.finding)
        with self._lock:
            if fid not in self._chains:
                self._chains[fid] = ProvenanceChain(
                    finding_id=fid,
                    origin_mode=mode_id,
                    finding_text=finding.finding,
                    discovery_time=datetime.now(UTC),
                )
        return fid

    def record_filter(self, fid: str, reason: str) -> None:
        """Mark a chain as filtered. Filtering is recorded once."""
        with self._lock:
            chain = self._require(fid)
            if chain.filtered is None:
                chain.filtered = FilterEvent(reason=reason, time=datetime.now(UTC))
                logger.debug("event=provenance_filtered id=%s reason=%s", fid, reason)

    def record_merge(
        self, primary_id: str, secondary_ids: list[str], similarity: float
    ) -> None:
        """Point each secondary at *primary_id* and record it on the primary.

        Raises ProvenanceCycleError if a secondary is already merged
        elsewhere or if the merge would make the primary reachable from
        itself. Self-references and filtered chains are skipped.
        """
        with self._lock:
            primary = self._require(primary_id)
            if primary.is_filtered:
                return
            for sid in secondary_ids:
                if sid == primary_id:
                    continue
                secondary = self._require(sid)
                if secondary.is_filtered:
                    continue
                if secondary.merged_into == primary_id:
                    continue
                if secondary.merged_into:
                    msg = (
                        f"finding {sid} already merged into "
                        f"{secondary.merged_into}"
                    )
                    raise ProvenanceCycleError(msg)
                if self._reaches(primary_id, sid):
                    msg = f"merging {sid} into {primary_id} would create a cycle"
                    raise ProvenanceCycleError(msg)
                secondary.merged_into = primary_id
                secondary.merge_similarity = similarity
                primary.merged_from.append(sid)

    def record_synthesis_citation(self, fid: str, path: str) -> None:
        with self._lock:
            chain = self._require(fid)
            if chain.is_filtered:
                return
            chain.synthesis_citations.append(path)

    # ── queries ──────────────────────────────────────────

    def count(self) -> int:
        with self._lock:
            return len(self._chains)

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for c in self._chains.values() if c.is_active)

    def get_chain(self, fid: str) -> ProvenanceChain | None:
        """Return a snapshot copy of the chain, or None."""
        with self._lock:
            chain = self._chains.get(fid)
            return chain.model_copy(deep=True) if chain is not None else None

    def stats(self) -> ProvenanceStats:
        with self._lock:
            return self._stats_locked()

    def export(self) -> str:
        """Stable JSON (sorted keys) of every chain plus run context."""
        with self._lock:
            payload = {
                "context_hash": self._context_hash,
                "question": self._question,
                "mode_ids": self._mode_ids,
                "chains": {
                    fid: chain.model_dump(mode="json")
                    for fid, chain in self._chains.items()
                },
                "stats": self._stats_locked().model_dump(mode="json"),
            }
        return json.dumps(payload, sort_keys=True, indent=2)

    # ── internals ────────────────────────────────────────

    def _require(self, fid: str) -> ProvenanceChain:
        if not fid:
            msg = "finding id is required"
            raise InvalidArgumentError(msg)
        chain = self._chains.get(fid)
        if chain is None:
            msg = f"unknown finding id: {fid}"
            raise InvalidArgumentError(msg)
        return chain

    def _reaches(self, start: str, target: str) -> bool:
        """True if following merged_into from *start* arrives at *target*."""
        seen: set[str] = set()
        current = start
        while current and current not in seen:
            if current == target:
                return True
            seen.add(current)
            chain = self._chains.get(current)
            current = chain.merged_into if chain is not None else ""
        return False

    def _stats_locked(self) -> ProvenanceStats:
        stats = ProvenanceStats(total_findings=len(self._chains))
        for chain in self._chains.values():
            if chain.is_active:
                stats.active_findings += 1
            else:
                stats.merged_findings += 1
            if chain.is_filtered:
                stats.filtered_findings += 1
            if chain.synthesis_citations:
                stats.cited_findings += 1
            stats.mode_breakdown[chain.origin_mode] = (
                stats.mode_breakdown.get(chain.origin_mode, 0) + 1
            )
        return stats
