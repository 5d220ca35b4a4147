"""Tests for mode preamble rendering."""

from __future__ import annotations

from ensemble_fusion.planning.preamble import PreambleEngine, render_context
from ensemble_fusion.schema.catalog import ModeCatalog
from ensemble_fusion.schema.context_pack import (
    CommitSummary,
    ContextPack,
    ProjectBrief,
    ProjectStructure,
    UserContext,
)


def _pack() -> ContextPack:
    return ContextPack(
        project_brief=ProjectBrief(
            name="shop",
            languages=["python", "go"],
            structure=ProjectStructure(entry_points=["app/main.py"]),
            recent_activity=[CommitSummary(hash="abcdef1234567", summary="fix cache")],
        ),
        user_context=UserContext(focus_areas=["auth"], constraints=["no downtime"]),
        questions=["Is Redis needed?"],
        token_estimate=40,
    )


def test_render_includes_mode_and_question(catalog: ModeCatalog) -> None:
    mode = catalog.get_mode("deductive")
    assert mode is not None
    text = PreambleEngine().render(mode, "  Is the cache safe?  ")
    assert "Deductive Logic (A1)" in text
    assert "Is the cache safe?" in text
    assert 'mode_id: "deductive"' in text
    assert "garbage premises yield confident nonsense, ignores uncertainty" in text
    assert "Keep the whole reply" not in text
    assert "## Project Context" not in text


def test_render_blank_question_and_token_cap(catalog: ModeCatalog) -> None:
    mode = catalog.get_mode("inductive")
    assert mode is not None
    text = PreambleEngine().render(mode, "   ", token_cap=500)
    assert "(no question provided)" in text
    assert "Keep the whole reply under 500 tokens." in text


def test_render_with_context_pack(catalog: ModeCatalog) -> None:
    mode = catalog.get_mode("bayesian")
    assert mode is not None
    bare = PreambleEngine().render(mode, "q")
    rich = PreambleEngine().render(mode, "q", _pack())
    assert "## Project Context" in rich
    assert len(rich) > len(bare)


def test_render_context_lines() -> None:
    text = render_context(_pack())
    assert "Project: shop" in text
    assert "Languages: python, go" in text
    assert "Entry points: app/main.py" in text
    assert "Recent: abcdef12 fix cache" in text
    assert "Focus areas: auth" in text
    assert "Constraints: no downtime" in text
    assert "Open question: Is Redis needed?" in text


def test_render_context_empty() -> None:
    assert render_context(None) == ""
    assert render_context(ContextPack(token_estimate=10)) == ""


def test_estimate_tokens_uses_four_chars_per_token() -> None:
    engine = PreambleEngine()
    assert engine.estimate_tokens("x" * 41) == 10
    assert engine.estimate_tokens("") == 0
