"""Mechanical fusion: similarity, provenance, merging, conflicts, dedupe."""

from ensemble_fusion.fusion.audit import AuditReport, DisagreementAuditor
from ensemble_fusion.fusion.dedupe import DedupeEngine, DedupeResult, dedupe_findings
from ensemble_fusion.fusion.mechanical import MechanicalMerger, PotentialConflict
from ensemble_fusion.fusion.merge import (
    MergedOutput,
    average_confidence,
    consolidate_theses,
    merge_outputs,
    merge_outputs_with_provenance,
)
from ensemble_fusion.fusion.provenance import ProvenanceChain, ProvenanceTracker

__all__ = [
    "AuditReport",
    "DedupeEngine",
    "DedupeResult",
    "DisagreementAuditor",
    "MechanicalMerger",
    "MergedOutput",
    "PotentialConflict",
    "ProvenanceChain",
    "ProvenanceTracker",
    "average_confidence",
    "consolidate_theses",
    "dedupe_findings",
    "merge_outputs",
    "merge_outputs_with_provenance",
]
