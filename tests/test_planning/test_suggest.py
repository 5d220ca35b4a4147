"""Tests for question-to-preset suggestions."""

from __future__ import annotations

import pytest

from ensemble_fusion.planning.presets import EnsemblePreset, load_presets
from ensemble_fusion.planning.suggest import (
    NO_MATCH_EMPTY,
    NO_MATCH_NO_PRESET,
    NO_MATCH_NO_TOKENS,
    SuggestionEngine,
    tokenize_question,
)


@pytest.fixture(scope="module")
def engine() -> SuggestionEngine:
    return SuggestionEngine(load_presets())


def test_tokenize_drops_stop_words_and_single_letters() -> None:
    assert tokenize_question("Why is the API a bottleneck, x?") == [
        "why",
        "api",
        "bottleneck",
    ]


# ── no match ─────────────────────────────────────────────


@pytest.mark.parametrize(
    ("question", "reason"),
    [
        ("", NO_MATCH_EMPTY),
        ("   ", NO_MATCH_EMPTY),
        ("what is the", NO_MATCH_NO_TOKENS),
        ("zebra quantum", NO_MATCH_NO_PRESET),
    ],
)
def test_no_match_reasons(engine: SuggestionEngine, question: str, reason: str) -> None:
    result = engine.suggest(question)
    assert result.no_match_reason == reason
    assert result.suggestions == []
    assert result.top_pick is None


# ── ranking ──────────────────────────────────────────────


def test_security_question_picks_safety_preset(engine: SuggestionEngine) -> None:
    result = engine.suggest("SQL injection vulnerability in auth")
    assert result.top_pick is not None
    assert result.top_pick.preset_name == "safety-risk"
    assert [s.preset_name for s in result.suggestions] == ["safety-risk"]
    # three exact keyword hits over 24 keywords
    assert result.top_pick.score == pytest.approx(6.0 / 24)
    assert result.top_pick.reasons == [
        'matches "vulnerability"',
        'matches "injection"',
        'matches "auth"',
    ]


def test_tag_match_adds_bonus(engine: SuggestionEngine) -> None:
    result = engine.suggest("threat modeling of the login flow")
    assert result.top_pick is not None
    assert result.top_pick.preset_name == "safety-risk"
    assert result.top_pick.score == pytest.approx(2.0 / 24 + 0.3)
    assert result.top_pick.reasons == ['matches "threat"', "tag match: threat-modeling"]


def test_ties_keep_preset_order() -> None:
    presets = [
        EnsemblePreset(name="second", display_name="", description="", keywords=("cache",)),
        EnsemblePreset(name="first", display_name="", description="", keywords=("cache",)),
    ]
    result = SuggestionEngine(presets).suggest("cache misses")
    assert [s.preset_name for s in result.suggestions] == ["second", "first"]


def test_suggest_is_deterministic(engine: SuggestionEngine) -> None:
    question = "Why did the deploy fail with a crash in the auth layer?"
    first = engine.suggest(question)
    second = engine.suggest(question)
    assert first.model_dump() == second.model_dump()


# ── score / lookup ───────────────────────────────────────


def test_score_matches_suggestion(engine: SuggestionEngine) -> None:
    question = "SQL injection vulnerability in auth"
    assert engine.score(question, "safety-risk") == pytest.approx(0.25)
    assert engine.score(question, "bug-hunt") == 0.0


def test_score_unknown_preset_or_empty_question(engine: SuggestionEngine) -> None:
    assert engine.score("security audit", "nope") == 0.0
    assert engine.score("", "safety-risk") == 0.0


def test_list_and_get_presets(engine: SuggestionEngine) -> None:
    names = engine.list_presets()
    assert names[0] == "project-diagnosis"
    assert "strategic-planning" in names
    preset = engine.get_preset("bug-hunt")
    assert preset is not None
    assert "root-cause" in preset.modes
    assert engine.get_preset("missing") is None
