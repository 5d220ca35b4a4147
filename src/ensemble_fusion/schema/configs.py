"""Tunable knobs for merging, synthesis, budgets and early stopping."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from ensemble_fusion.constants import (
    CONTEXT_CACHE_MAX_ENTRIES,
    CONTEXT_CACHE_TTL_SECONDS,
    MAX_HIGHLIGHTS,
    StrategyName,
)


class MergeConfig(BaseModel):
    """Controls mechanical merging of mode outputs."""

    max_findings: int = 20
    max_risks: int = 10
    max_recommendations: int = 10
    min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    dedup_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    weight_by_confidence: bool = True
    prefer_high_impact: bool = True


class SynthesisConfig(BaseModel):
    """Controls synthesis strategy and output limits."""

    strategy: StrategyName = StrategyName.CONSENSUS
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    max_findings: int = 10
    include_explanation: bool = True
    conflict_resolution: str = "highlight"


class BudgetConfig(BaseModel):
    """Token and time limits for an ensemble run."""

    max_tokens_per_mode: int = 4000
    max_total_tokens: int = 50000
    synthesis_reserve_tokens: int = 0
    context_reserve_tokens: int = 0
    timeout_per_mode_seconds: float = 300.0
    total_timeout_seconds: float = 1800.0
    max_retries: int = 2


def merge_budget_defaults(budget: BudgetConfig | None) -> BudgetConfig:
    """Fill zero/negative limits with the default budget."""
    defaults = BudgetConfig()
    if budget is None:
        return defaults
    updates: dict[str, float | int] = {}
    if budget.max_tokens_per_mode <= 0:
        updates["max_tokens_per_mode"] = defaults.max_tokens_per_mode
    if budget.max_total_tokens <= 0:
        updates["max_total_tokens"] = defaults.max_total_tokens
    if budget.timeout_per_mode_seconds <= 0:
        updates["timeout_per_mode_seconds"] = defaults.timeout_per_mode_seconds
    if budget.total_timeout_seconds <= 0:
        updates["total_timeout_seconds"] = defaults.total_timeout_seconds
    if budget.synthesis_reserve_tokens < 0:
        updates["synthesis_reserve_tokens"] = 0
    if budget.context_reserve_tokens < 0:
        updates["context_reserve_tokens"] = 0
    return budget.model_copy(update=updates)


class CacheConfig(BaseModel):
    """Context-pack cache settings."""

    enabled: bool = True
    ttl_seconds: float = CONTEXT_CACHE_TTL_SECONDS
    max_entries: int = CONTEXT_CACHE_MAX_ENTRIES
    cache_dir: str = ""
    share_across_modes: bool = True


class EarlyStopConfig(BaseModel):
    """Marginal-utility thresholds for stopping an ensemble early."""

    enabled: bool = False
    min_agents_before_stop: int = 3
    findings_threshold: float = 0.0005
    similarity_threshold: float = 0.85
    window_size: int = 3


class DedupeConfig(BaseModel):
    """Weights for the cluster-view deduplication engine."""

    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    evidence_weight: float = Field(default=0.3, ge=0.0)
    text_weight: float = Field(default=0.7, ge=0.0)
    prefer_high_confidence: bool = True
    preserve_provenance: bool = True

    def normalized_weights(self) -> tuple[float, float]:
        """Return (text, evidence) weights rescaled to sum to 1."""
        total = self.text_weight + self.evidence_weight
        if total <= 0:
            return 1.0, 0.0
        return self.text_weight / total, self.evidence_weight / total


class ContributionConfig(BaseModel):
    """Component weights for contribution scoring (must sum to 1.0)."""

    findings_weight: float = 0.4
    unique_weight: float = 0.3
    citation_weight: float = 0.1
    risk_weight: float = 0.1
    recommendation_weight: float = 0.1
    max_highlights: int = MAX_HIGHLIGHTS

    @field_validator(
        "findings_weight",
        "unique_weight",
        "citation_weight",
        "risk_weight",
        "recommendation_weight",
    )
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            msg = "contribution weights must be non-negative"
            raise ValueError(msg)
        return v
