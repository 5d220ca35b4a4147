"""Pairwise redundancy between mode outputs.

A higher overall score means the selected modes are repeating each other
instead of contributing new findings.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from ensemble_fusion.constants import (
    HIGH_REDUNDANCY_THRESHOLD,
    REPLACEMENT_THRESHOLD,
    ModeCategory,
    ModeTier,
)
from ensemble_fusion.fusion.similarity import (
    count_overlap,
    dice,
    finding_key,
    jaccard_nonempty,
    normalize,
)
from ensemble_fusion.schema.catalog import ModeCatalog, ReasoningMode
from ensemble_fusion.schema.outputs import ModeOutput

logger = logging.getLogger(__name__)

GOOD_DIVERSITY_THRESHOLD = 0.2


class RedundancyConfig(BaseModel):
    findings_weight: float = 0.8
    recommendations_weight: float = 0.2
    high_redundancy_threshold: float = HIGH_REDUNDANCY_THRESHOLD


class PairSimilarity(BaseModel):
    """Similarity of one mode pair; ``mode_a`` sorts before ``mode_b``."""

    mode_a: str
    mode_b: str
    similarity: float = 0.0
    shared_findings: int = 0
    unique_to_a: int = 0
    unique_to_b: int = 0


class RedundancyAnalysis(BaseModel):
    overall_score: float = 0.0
    pairwise_scores: list[PairSimilarity] = Field(
        default_factory=lambda: list[PairSimilarity]()
    )
    recommendations: list[str] = Field(default_factory=lambda: list[str]())

    def get_high_redundancy_pairs(
        self, threshold: float = HIGH_REDUNDANCY_THRESHOLD
    ) -> list[PairSimilarity]:
        return [p for p in self.pairwise_scores if p.similarity >= threshold]

    def suggest_replacements(self, catalog: ModeCatalog) -> list[str]:
        """Swap one mode of a same-category redundant pair for another family."""
        pairs = self.get_high_redundancy_pairs()
        if not pairs:
            return ["No high-redundancy pairs found - mode selection is diverse"]

        suggestions: list[str] = []
        suggested: set[str] = set()
        for pair in pairs:
            mode_a = catalog.get_mode(pair.mode_a)
            mode_b = catalog.get_mode(pair.mode_b)
            if mode_a is None or mode_b is None or mode_a.category != mode_b.category:
                continue
            alt = _alternative(catalog, mode_a.category, suggested)
            if alt is None:
                continue
            suggested.add(alt.id)
            suggestions.append(
                f"Consider replacing {pair.mode_b} with {alt.id} ({alt.category}) "
                "for more diverse analysis"
            )

        if not suggestions:
            suggestions.append(
                "Redundant modes span multiple categories - consider domain-specific alternatives"
            )
        return suggestions

    def render(self) -> str:
        lines = [
            "Redundancy Analysis:",
            f"Overall Score: {self.overall_score:.2f} ({interpret_score(self.overall_score)})",
            "",
        ]
        if self.pairwise_scores:
            lines.append("Pairwise Similarity:")
            for pair in self.pairwise_scores:
                lines.append(
                    f"{pair.mode_a} ↔ {pair.mode_b}: {pair.similarity:.2f} "
                    f"({classify_similarity(pair.similarity)} - {diversity_note(pair.similarity)})"
                )
            lines.append("")
        lines.extend(f"Recommendation: {rec}" for rec in self.recommendations)
        return "\n".join(lines) + "\n"


def _alternative(
    catalog: ModeCatalog, exclude: ModeCategory, suggested: set[str]
) -> ReasoningMode | None:
    """First unsuggested mode outside *exclude*, core tier preferred."""
    fallback: ReasoningMode | None = None
    for category in ModeCategory:
        if category == exclude:
            continue
        for mode in catalog.list_by_category(category):
            if mode.id in suggested:
                continue
            if mode.tier == ModeTier.CORE:
                return mode
            if fallback is None:
                fallback = mode
    return fallback


def interpret_score(score: float) -> str:
    if score >= 0.7:
        return "high redundancy - significant overlap"
    if score >= 0.5:
        return "moderate redundancy"
    if score >= 0.3:
        return "acceptable"
    return "low redundancy - good diversity"


def classify_similarity(score: float) -> str:
    if score >= 0.7:
        return "HIGH"
    if score >= 0.4:
        return "moderate"
    return "low"


def diversity_note(score: float) -> str:
    return "overlapping insights" if score >= 0.5 else "good diversity"


def _recommendations(analysis: RedundancyAnalysis, threshold: float) -> list[str]:
    recs: list[str] = []
    for pair in analysis.get_high_redundancy_pairs(threshold):
        logger.debug(
            "event=redundancy_recommendation mode_a=%s mode_b=%s shared=%d",
            pair.mode_a,
            pair.mode_b,
            pair.shared_findings,
        )
        if pair.similarity >= REPLACEMENT_THRESHOLD:
            recs.append(
                f"Consider replacing {pair.mode_b} with different mode "
                f"({pair.similarity * 100:.0f}% overlap with {pair.mode_a})"
            )
    if analysis.overall_score >= HIGH_REDUNDANCY_THRESHOLD:
        recs.append("High overall redundancy - consider more diverse mode selection")
    elif analysis.overall_score < GOOD_DIVERSITY_THRESHOLD:
        recs.append("Good mode diversity - findings coverage is well distributed")
    return recs


def calculate_redundancy(
    outputs: list[ModeOutput], config: RedundancyConfig | None = None
) -> RedundancyAnalysis:
    cfg = config or RedundancyConfig()
    if len(outputs) < 2:
        return RedundancyAnalysis(recommendations=["Need at least 2 modes to analyze redundancy"])

    finding_sets = {o.mode_id: {finding_key(f) for f in o.top_findings} for o in outputs}
    rec_sets = {
        o.mode_id: {normalize(r.recommendation) for r in o.recommendations} for o in outputs
    }

    mode_ids = sorted(finding_sets)
    pairs: list[PairSimilarity] = []
    for i, mode_a in enumerate(mode_ids):
        for mode_b in mode_ids[i + 1 :]:
            findings_a, findings_b = finding_sets[mode_a], finding_sets[mode_b]
            recs_a, recs_b = rec_sets[mode_a], rec_sets[mode_b]

            similarity = dice(findings_a, findings_b)
            if recs_a or recs_b:
                similarity = (
                    cfg.findings_weight * similarity
                    + cfg.recommendations_weight * jaccard_nonempty(recs_a, recs_b)
                )

            shared, only_a, only_b = count_overlap(findings_a, findings_b)
            pairs.append(
                PairSimilarity(
                    mode_a=mode_a,
                    mode_b=mode_b,
                    similarity=similarity,
                    shared_findings=shared,
                    unique_to_a=only_a,
                    unique_to_b=only_b,
                )
            )
            if similarity >= cfg.high_redundancy_threshold:
                logger.debug(
                    "event=high_redundancy_pair mode_a=%s mode_b=%s similarity=%.2f shared=%d",
                    mode_a,
                    mode_b,
                    similarity,
                    shared,
                )

    pairs.sort(key=lambda p: (-p.similarity, p.mode_a, p.mode_b))
    analysis = RedundancyAnalysis(
        overall_score=sum(p.similarity for p in pairs) / len(pairs) if pairs else 0.0,
        pairwise_scores=pairs,
    )
    analysis.recommendations = _recommendations(analysis, cfg.high_redundancy_threshold)
    return analysis
