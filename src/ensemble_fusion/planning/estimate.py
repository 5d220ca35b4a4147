"""Token-budget projection for a planned ensemble run."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from ensemble_fusion.constants import MAX_ALTERNATIVES, MIN_ALTERNATIVE_SAVINGS, ModeTier
from ensemble_fusion.errors import InvalidArgumentError
from ensemble_fusion.planning.preamble import PreambleEngine
from ensemble_fusion.schema.catalog import ModeCatalog, ReasoningMode, estimate_typical_cost
from ensemble_fusion.schema.configs import BudgetConfig, merge_budget_defaults
from ensemble_fusion.schema.context_pack import ContextPack

logger = logging.getLogger(__name__)

_TIER_VALUE: dict[ModeTier, float] = {
    ModeTier.CORE: 1.0,
    ModeTier.ADVANCED: 0.85,
    ModeTier.EXPERIMENTAL: 0.7,
}
_BEST_FOR_STEP = 0.03
_BEST_FOR_CAP = 0.3
_DIFFERENTIATOR_BONUS = 0.05
_SAVINGS_FRACTION = 0.1


class ModeAlternative(BaseModel):
    id: str
    code: str = ""
    name: str = ""
    estimated_tokens: int
    savings: int
    value_score: float
    value_per_token: float
    reason: str = ""


class ModeEstimate(BaseModel):
    id: str
    code: str = ""
    name: str = ""
    category: str = ""
    tier: str = ""
    prompt_tokens: int = 0
    base_prompt_tokens: int = 0
    context_tokens: int = 0
    output_tokens: int = 0
    typical_output_tokens: int = 0
    total_tokens: int = 0
    value_score: float = 0.0
    value_per_token: float = 0.0
    alternatives: list[ModeAlternative] = Field(default_factory=lambda: list[ModeAlternative]())


class EnsembleEstimate(BaseModel):
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    question: str = ""
    mode_count: int = 0
    budget: BudgetConfig
    estimated_total_tokens: int = 0
    over_budget: bool = False
    over_by: int = 0
    warnings: list[str] = Field(default_factory=lambda: list[str]())
    modes: list[ModeEstimate] = Field(default_factory=lambda: list[ModeEstimate]())


@dataclass
class EstimateInput:
    mode_ids: list[str]
    question: str = ""
    budget: BudgetConfig | None = None
    context_pack: ContextPack | None = None
    allow_advanced: bool = False


def mode_value_score(mode: ReasoningMode) -> float:
    """Tier factor plus small bonuses for breadth and a stated differentiator."""
    score = _TIER_VALUE.get(mode.tier, 0.9)
    if mode.best_for:
        score += min(_BEST_FOR_CAP, _BEST_FOR_STEP * len(mode.best_for))
    if mode.differentiator.strip():
        score += _DIFFERENTIATOR_BONUS
    return score


class Estimator:
    def __init__(self, catalog: ModeCatalog, preambles: PreambleEngine | None = None) -> None:
        self.catalog = catalog
        self.preambles = preambles or PreambleEngine()

    def _estimate_mode(
        self,
        mode: ReasoningMode,
        question: str,
        pack: ContextPack | None,
        budget: BudgetConfig,
        cache: dict[str, ModeEstimate],
    ) -> ModeEstimate:
        cached = cache.get(mode.id)
        if cached is not None:
            return cached

        preamble = self.preambles.render(mode, question, pack, budget.max_tokens_per_mode)
        prompt_tokens = self.preambles.estimate_tokens(preamble)
        context_tokens = pack.token_estimate if pack is not None else 0
        base_prompt = prompt_tokens
        if 0 < context_tokens < prompt_tokens:
            base_prompt = prompt_tokens - context_tokens

        typical = estimate_typical_cost(mode)
        output_tokens = typical
        if budget.max_tokens_per_mode > 0:
            output_tokens = min(output_tokens, budget.max_tokens_per_mode)

        total = prompt_tokens + output_tokens
        value = mode_value_score(mode)
        estimate = ModeEstimate(
            id=mode.id,
            code=mode.code,
            name=mode.name,
            category=mode.category,
            tier=mode.tier,
            prompt_tokens=prompt_tokens,
            base_prompt_tokens=base_prompt,
            context_tokens=context_tokens,
            output_tokens=output_tokens,
            typical_output_tokens=typical,
            total_tokens=total,
            value_score=value,
            value_per_token=value / total if total > 0 else 0.0,
        )
        cache[mode.id] = estimate
        logger.info(
            "event=estimate_mode mode=%s prompt_tokens=%d output_tokens=%d "
            "calibration_delta=%d total=%d",
            mode.id,
            prompt_tokens,
            output_tokens,
            output_tokens - typical,
            total,
        )
        return estimate

    def estimate(self, request: EstimateInput) -> EnsembleEstimate:
        """Project token use for *request*; over-budget runs get alternatives.

        Raises ``InvalidArgumentError`` when no modes are given or a mode
        is not in the catalog.
        """
        if not request.mode_ids:
            msg = "no modes to estimate"
            raise InvalidArgumentError(msg)

        budget = merge_budget_defaults(request.budget)
        question = request.question.strip()
        cache: dict[str, ModeEstimate] = {}
        result = EnsembleEstimate(
            question=question, mode_count=len(request.mode_ids), budget=budget
        )

        requested: list[ReasoningMode] = []
        for mode_id in request.mode_ids:
            mode = self.catalog.get_mode(mode_id)
            if mode is None:
                msg = f"mode {mode_id!r} not found in catalog"
                raise InvalidArgumentError(msg)
            requested.append(mode)
            est = self._estimate_mode(mode, question, request.context_pack, budget, cache)
            result.modes.append(est.model_copy(deep=True))
            result.estimated_total_tokens += est.total_tokens

        result.estimated_total_tokens += budget.synthesis_reserve_tokens
        result.estimated_total_tokens += budget.context_reserve_tokens

        if budget.max_total_tokens > 0 and result.estimated_total_tokens > budget.max_total_tokens:
            result.over_budget = True
            result.over_by = result.estimated_total_tokens - budget.max_total_tokens
            result.warnings.append(
                f"estimated tokens ({result.estimated_total_tokens}) exceed budget "
                f"({budget.max_total_tokens}) by {result.over_by}"
            )

        for est in result.modes:
            cap = budget.max_tokens_per_mode
            if cap > 0 and est.typical_output_tokens > cap:
                result.warnings.append(
                    f"mode {est.id} typical output ({est.typical_output_tokens}) "
                    f"exceeds per-mode cap ({budget.max_tokens_per_mode})"
                )

        allow_advanced = request.allow_advanced or any(not m.is_core for m in requested)
        if result.over_budget:
            for mode, est in zip(requested, result.modes, strict=True):
                est.alternatives = self._alternatives(
                    mode, est, allow_advanced, question, request.context_pack, budget, cache
                )

        logger.info(
            "event=estimate_summary modes=%d total=%d budget=%d over_budget=%s",
            len(result.modes),
            result.estimated_total_tokens,
            budget.max_total_tokens,
            result.over_budget,
        )
        return result

    def _alternatives(
        self,
        mode: ReasoningMode,
        current: ModeEstimate,
        allow_advanced: bool,
        question: str,
        pack: ContextPack | None,
        budget: BudgetConfig,
        cache: dict[str, ModeEstimate],
    ) -> list[ModeAlternative]:
        """Cheaper modes from the same category, best value per token first."""
        min_savings = max(MIN_ALTERNATIVE_SAVINGS, int(current.total_tokens * _SAVINGS_FRACTION))
        alternatives: list[ModeAlternative] = []
        for candidate in self.catalog.list_by_category(mode.category):
            if candidate.id == mode.id:
                continue
            if not allow_advanced and not candidate.is_core:
                continue
            est = self._estimate_mode(candidate, question, pack, budget, cache)
            savings = current.total_tokens - est.total_tokens
            if savings <= 0 or savings < min_savings:
                continue
            alternatives.append(
                ModeAlternative(
                    id=candidate.id,
                    code=candidate.code,
                    name=candidate.name,
                    estimated_tokens=est.total_tokens,
                    savings=savings,
                    value_score=est.value_score,
                    value_per_token=est.value_per_token,
                    reason=(
                        f"lower-cost {candidate.tier}-tier mode in "
                        f"{candidate.category} category"
                    ),
                )
            )
        alternatives.sort(key=lambda a: (-a.value_per_token, -a.savings))
        return alternatives[:MAX_ALTERNATIVES]
