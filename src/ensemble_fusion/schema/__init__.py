"""Domain schema: mode outputs, configs, catalog and context packs."""

from ensemble_fusion.schema.catalog import (
    ModeCatalog,
    ReasoningMode,
    estimate_typical_cost,
    load_mode_catalog,
)
from ensemble_fusion.schema.configs import (
    BudgetConfig,
    CacheConfig,
    ContributionConfig,
    DedupeConfig,
    EarlyStopConfig,
    MergeConfig,
    SynthesisConfig,
)
from ensemble_fusion.schema.context_pack import (
    ContextFingerprint,
    ContextPack,
    ContextPackCache,
)
from ensemble_fusion.schema.normalizer import parse, parse_normalize
from ensemble_fusion.schema.outputs import (
    Finding,
    ModeOutput,
    Question,
    Recommendation,
    Risk,
    ValidationIssue,
    parse_confidence,
)

__all__ = [
    "BudgetConfig",
    "CacheConfig",
    "ContextFingerprint",
    "ContextPack",
    "ContextPackCache",
    "ContributionConfig",
    "DedupeConfig",
    "EarlyStopConfig",
    "Finding",
    "MergeConfig",
    "ModeCatalog",
    "ModeOutput",
    "Question",
    "ReasoningMode",
    "Recommendation",
    "Risk",
    "SynthesisConfig",
    "ValidationIssue",
    "estimate_typical_cost",
    "load_mode_catalog",
    "parse",
    "parse_confidence",
    "parse_normalize",
]
