"""Category coverage: which reasoning families an ensemble run touched."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from ensemble_fusion.constants import ModeCategory, ModeTier
from ensemble_fusion.schema.catalog import ModeCatalog, ReasoningMode, estimate_typical_cost

logger = logging.getLogger(__name__)

COVERAGE_BAR_WIDTH = 4

_TIER_RANK: dict[ModeTier, int] = {
    ModeTier.CORE: 0,
    ModeTier.ADVANCED: 1,
    ModeTier.EXPERIMENTAL: 2,
}


class CategoryCoverage(BaseModel):
    category: ModeCategory
    total_modes: int = 0
    used_modes: list[str] = Field(default_factory=lambda: list[str]())
    coverage: float = 0.0


class CoverageReport(BaseModel):
    overall: float = 0.0
    per_category: dict[ModeCategory, CategoryCoverage] = Field(
        default_factory=lambda: dict[ModeCategory, CategoryCoverage]()
    )
    blind_spots: list[ModeCategory] = Field(default_factory=lambda: list[ModeCategory]())
    suggestions: list[str] = Field(default_factory=lambda: list[str]())


def _category_label(category: ModeCategory) -> str:
    return f"{category} reasoning ({category.letter})"


def coverage_bar(used: int, total: int, width: int = COVERAGE_BAR_WIDTH) -> str:
    """``#`` per covered slot, ``-`` for the rest, rounded to nearest."""
    if width <= 0:
        return ""
    filled = 0
    if total > 0:
        filled = min(max((used * width + total // 2) // total, 0), width)
    return "#" * filled + "-" * (width - filled)


def _suggestion_key(mode: ReasoningMode) -> tuple[int, int, str, str]:
    return (
        _TIER_RANK.get(mode.tier, len(_TIER_RANK)),
        estimate_typical_cost(mode),
        mode.code,
        mode.id,
    )


class CoverageMap:
    """Tracks which catalog categories the modes of a run belong to."""

    def __init__(self, catalog: ModeCatalog) -> None:
        self.catalog = catalog
        self._used: dict[ModeCategory, list[str]] = {c: [] for c in ModeCategory}

    def record_mode(self, mode_id: str) -> None:
        """Count *mode_id* once; unknown ids are ignored."""
        mode = self.catalog.get_mode(mode_id) if mode_id else None
        if mode is None:
            return
        used = self._used[mode.category]
        if mode_id not in used:
            used.append(mode_id)

    def calculate_coverage(self) -> CoverageReport:
        report = CoverageReport()
        covered = 0
        for category in ModeCategory:
            total = len(self.catalog.list_by_category(category))
            used = sorted(self._used[category])
            report.per_category[category] = CategoryCoverage(
                category=category,
                total_modes=total,
                used_modes=used,
                coverage=len(used) / total if total else 0.0,
            )
            if used:
                covered += 1
            else:
                report.blind_spots.append(category)

        report.overall = covered / len(ModeCategory)
        report.suggestions = self.suggest_modes(report.blind_spots)
        logger.debug(
            "event=coverage_calculated overall=%.2f blind_spots=%d",
            report.overall,
            len(report.blind_spots),
        )
        return report

    def suggest_modes(self, blind_spots: list[ModeCategory]) -> list[str]:
        """One mode per blind spot: core first, then cheaper, then code, then id."""
        suggestions: list[str] = []
        for category in blind_spots:
            candidates = self.catalog.list_by_category(category)
            if not candidates:
                suggestions.append(f"No available modes to cover {_category_label(category)}")
                continue
            best = min(candidates, key=_suggestion_key)
            label = f"{best.id} ({best.code})" if best.code else best.id
            suggestions.append(f"Add {label} to cover {_category_label(category)}")
        return suggestions

    def render(self) -> str:
        report = self.calculate_coverage()
        lines = ["Category Coverage:"]
        for category in ModeCategory:
            cov = report.per_category[category]
            bar = coverage_bar(len(cov.used_modes), cov.total_modes)
            lines.append(
                f"[{category.letter}] {category.value:<12} {bar} "
                f"{len(cov.used_modes)}/{cov.total_modes} modes"
            )
        lines.append("")
        lines.append(f"Overall Coverage: {report.overall:.2f}")
        if report.blind_spots:
            lines.append("")
            lines.append(
                "Blind Spots: " + ", ".join(_category_label(c) for c in report.blind_spots)
            )
        if report.suggestions:
            lines.append("")
            lines.append("Suggestions:")
            lines.extend(f"- {s}" for s in report.suggestions)
        return "\n".join(lines) + "\n"
