"""Run-level metrics: coverage, velocity, redundancy, conflicts, early stop, comparison."""

from ensemble_fusion.observability.comparison import (
    ComparisonResult,
    RunSnapshot,
    compare,
    format_comparison,
)
from ensemble_fusion.observability.conflict_tracker import (
    Conflict,
    ConflictDensity,
    ConflictTracker,
)
from ensemble_fusion.observability.coverage import CoverageMap, CoverageReport
from ensemble_fusion.observability.early_stop import EarlyStopDetector, StopDecision
from ensemble_fusion.observability.redundancy import (
    PairSimilarity,
    RedundancyAnalysis,
    calculate_redundancy,
)
from ensemble_fusion.observability.velocity import VelocityReport, VelocityTracker

__all__ = [
    "ComparisonResult",
    "Conflict",
    "ConflictDensity",
    "ConflictTracker",
    "CoverageMap",
    "CoverageReport",
    "EarlyStopDetector",
    "PairSimilarity",
    "RedundancyAnalysis",
    "RunSnapshot",
    "StopDecision",
    "VelocityReport",
    "VelocityTracker",
    "calculate_redundancy",
    "compare",
    "format_comparison",
]
