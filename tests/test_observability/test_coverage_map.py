"""Tests for category coverage."""

from __future__ import annotations

from ensemble_fusion.constants import ModeCategory
from ensemble_fusion.observability.coverage import CoverageMap, coverage_bar
from ensemble_fusion.schema.catalog import ModeCatalog


def test_two_categories_covered(catalog: ModeCatalog) -> None:
    coverage = CoverageMap(catalog)
    coverage.record_mode("deductive")
    coverage.record_mode("decision-analysis")
    report = coverage.calculate_coverage()

    assert report.overall == 2 / 12
    expected_gaps = [
        c for c in ModeCategory if c not in (ModeCategory.FORMAL, ModeCategory.PRACTICAL)
    ]
    assert report.blind_spots == expected_gaps
    assert len(report.suggestions) == 10
    assert report.suggestions[0] == "Add inductive (B1) to cover Ampliative reasoning (B)"
    assert report.per_category[ModeCategory.FORMAL].used_modes == ["deductive"]


def test_suggestions_prefer_core_modes(catalog: ModeCatalog) -> None:
    report = CoverageMap(catalog).calculate_coverage()
    suggestions = dict(zip(report.blind_spots, report.suggestions, strict=True))
    assert suggestions[ModeCategory.FORMAL] == "Add deductive (A1) to cover Formal reasoning (A)"
    assert suggestions[ModeCategory.META] == (
        "Add meta-reasoning (L1) to cover Meta reasoning (L)"
    )


def test_duplicates_and_unknown_modes_ignored(catalog: ModeCatalog) -> None:
    coverage = CoverageMap(catalog)
    coverage.record_mode("bayesian")
    coverage.record_mode("bayesian")
    coverage.record_mode("no-such-mode")
    coverage.record_mode("")
    report = coverage.calculate_coverage()

    assert report.per_category[ModeCategory.UNCERTAINTY].used_modes == ["bayesian"]
    assert report.overall == 1 / 12


def test_full_category_coverage_ratio(catalog: ModeCatalog) -> None:
    coverage = CoverageMap(catalog)
    for mode in catalog.list_by_category(ModeCategory.CAUSAL):
        coverage.record_mode(mode.id)
    causal = coverage.calculate_coverage().per_category[ModeCategory.CAUSAL]
    assert causal.coverage == 1.0


def test_coverage_bar() -> None:
    assert coverage_bar(0, 4) == "----"
    assert coverage_bar(1, 3) == "#---"
    assert coverage_bar(2, 3) == "###-"
    assert coverage_bar(3, 3) == "####"
    assert coverage_bar(1, 0) == "----"
    assert coverage_bar(1, 2, width=0) == ""


def test_render(catalog: ModeCatalog) -> None:
    coverage = CoverageMap(catalog)
    coverage.record_mode("deductive")
    text = coverage.render()

    assert text.startswith("Category Coverage:\n[A] Formal")
    assert "Overall Coverage: 0.08" in text
    assert "Blind Spots: Ampliative reasoning (B)" in text
    assert "- Add inductive (B1) to cover Ampliative reasoning (B)" in text
