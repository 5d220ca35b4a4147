"""Registry of synthesis strategies."""

from __future__ import annotations

from dataclasses import dataclass, field

from ensemble_fusion.constants import StrategyName
from ensemble_fusion.errors import UnknownStrategyError


@dataclass(frozen=True)
class StrategyConfig:
    """How a synthesis strategy combines mode outputs."""

    name: StrategyName
    description: str
    requires_agent: bool
    template_key: str = ""
    best_for: tuple[str, ...] = field(default_factory=tuple)


_STRATEGIES: dict[StrategyName, StrategyConfig] = {
    StrategyName.MANUAL: StrategyConfig(
        name=StrategyName.MANUAL,
        description="Mechanical merge only: deduplicate, rank and trim without an agent.",
        requires_agent=False,
        best_for=("quick triage", "offline runs", "reproducible output"),
    ),
    StrategyName.CONSENSUS: StrategyConfig(
        name=StrategyName.CONSENSUS,
        description="Prefer conclusions that several modes reach independently.",
        requires_agent=True,
        template_key="synthesis_consensus",
        best_for=("broad reviews", "agreement discovery"),
    ),
    StrategyName.MAJORITY: StrategyConfig(
        name=StrategyName.MAJORITY,
        description="Resolve disagreements by the position most modes hold.",
        requires_agent=True,
        template_key="synthesis_majority",
        best_for=("large ensembles", "binary decisions"),
    ),
    StrategyName.WEIGHTED: StrategyConfig(
        name=StrategyName.WEIGHTED,
        description="Weigh each mode's contribution by its confidence and track record.",
        requires_agent=True,
        template_key="synthesis_weighted",
        best_for=("mixed-confidence ensembles", "risk assessment"),
    ),
    StrategyName.DEFERRED: StrategyConfig(
        name=StrategyName.DEFERRED,
        description="Merge mechanically and defer every conflict to the user.",
        requires_agent=False,
        best_for=("contested questions", "human-in-the-loop decisions"),
    ),
}


def get_strategy(name: str) -> StrategyConfig:
    """Look up a strategy by name.

    Raises ``UnknownStrategyError`` for unregistered names.
    """
    try:
        return _STRATEGIES[StrategyName(name.strip().lower())]
    except ValueError:
        msg = f"unknown synthesis strategy: {name!r}"
        raise UnknownStrategyError(msg) from None


def list_strategies() -> list[StrategyConfig]:
    return list(_STRATEGIES.values())


def requires_agent(name: str) -> bool:
    return get_strategy(name).requires_agent
