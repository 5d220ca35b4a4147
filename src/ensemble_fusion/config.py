"""Environment-based configuration for the fusion core."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

from ensemble_fusion.constants import (
    CONTEXT_CACHE_MAX_ENTRIES,
    CONTEXT_CACHE_TTL_SECONDS,
    STREAM_BUFFER_SIZE,
    StrategyName,
)
from ensemble_fusion.schema.configs import (
    BudgetConfig,
    CacheConfig,
    EarlyStopConfig,
    MergeConfig,
    SynthesisConfig,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Reads from .env file and environment variables."""

    # Logging
    log_level: str = "INFO"

    # Directories (empty = caller decides)
    checkpoint_dir: Path = Path(".ensemble")
    context_cache_dir: str = ""

    # Context-pack cache
    context_cache_enabled: bool = True
    context_cache_ttl_seconds: int = CONTEXT_CACHE_TTL_SECONDS
    context_cache_max_entries: int = CONTEXT_CACHE_MAX_ENTRIES

    # Merging
    merge_dedup_threshold: float = 0.7
    merge_min_confidence: float = 0.3
    merge_max_findings: int = 20

    # Synthesis
    synthesis_strategy: StrategyName = StrategyName.CONSENSUS
    synthesis_max_findings: int = 10
    synthesis_min_confidence: float = 0.5
    stream_buffer_size: int = STREAM_BUFFER_SIZE

    # Early stop
    early_stop_enabled: bool = False
    early_stop_min_agents: int = 3
    early_stop_findings_threshold: float = 0.0005
    early_stop_similarity_threshold: float = 0.85
    early_stop_window_size: int = 3

    # Budget
    budget_max_tokens_per_mode: int = 4000
    budget_max_total_tokens: int = 50000
    budget_synthesis_reserve_tokens: int = 0
    budget_context_reserve_tokens: int = 0

    # Default ensemble when none is requested
    default_modes: Annotated[list[str], NoDecode] = []

    @field_validator("default_modes", mode="before")
    @classmethod
    def _parse_modes(cls, v: Any) -> Any:
        """Accept comma-separated string or JSON array."""
        if isinstance(v, str):
            return [s.strip().lower() for s in v.split(",") if s.strip()]
        return v

    @field_validator(
        "merge_dedup_threshold",
        "merge_min_confidence",
        "synthesis_min_confidence",
        "early_stop_similarity_threshold",
    )
    @classmethod
    def _clamp_unit(cls, v: float) -> float:
        if v < 0.0 or v > 1.0:
            clamped = min(1.0, max(0.0, v))
            logger.warning(
                "event=setting_clamped value=%s clamped=%s", v, clamped
            )
            return clamped
        return v

    @field_validator("stream_buffer_size")
    @classmethod
    def _positive_buffer(cls, v: int) -> int:
        if v < 1:
            raise ValueError("stream_buffer_size must be at least 1")
        return v

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "",
        "extra": "ignore",
    }

    def merge_config(self) -> MergeConfig:
        return MergeConfig(
            max_findings=self.merge_max_findings,
            min_confidence=self.merge_min_confidence,
            dedup_threshold=self.merge_dedup_threshold,
        )

    def synthesis_config(self) -> SynthesisConfig:
        return SynthesisConfig(
            strategy=self.synthesis_strategy,
            min_confidence=self.synthesis_min_confidence,
            max_findings=self.synthesis_max_findings,
        )

    def budget_config(self) -> BudgetConfig:
        return BudgetConfig(
            max_tokens_per_mode=self.budget_max_tokens_per_mode,
            max_total_tokens=self.budget_max_total_tokens,
            synthesis_reserve_tokens=self.budget_synthesis_reserve_tokens,
            context_reserve_tokens=self.budget_context_reserve_tokens,
        )

    def early_stop_config(self) -> EarlyStopConfig:
        return EarlyStopConfig(
            enabled=self.early_stop_enabled,
            min_agents_before_stop=self.early_stop_min_agents,
            findings_threshold=self.early_stop_findings_threshold,
            similarity_threshold=self.early_stop_similarity_threshold,
            window_size=self.early_stop_window_size,
        )

    def cache_config(self) -> CacheConfig:
        return CacheConfig(
            enabled=self.context_cache_enabled,
            ttl_seconds=self.context_cache_ttl_seconds,
            max_entries=self.context_cache_max_entries,
            cache_dir=self.context_cache_dir,
        )
