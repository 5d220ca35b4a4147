"""Deterministic question-to-preset suggestions.

Scoring is purely lexical: preset keywords, tags and description are
matched against the question's tokens. Ties keep preset file order.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field

from ensemble_fusion.planning.presets import EnsemblePreset

STOP_WORDS: frozenset[str] = frozenset(
    """
    the a an is are was were be been being have has had do does did will would
    could should may might can this that these those i you he she it we they my
    your his her its our their and or but if then else when where how what which
    who whom to of in for on with at by from as about into through during before
    after above below between under again further once here there all each few
    more most other some such no not only same so than too very just also now
    please help me us want need
    """.split()
)

_WORD_RE = re.compile(r"[a-zA-Z]+")

EXACT_MATCH_WEIGHT = 2.0
TOKEN_MATCH_WEIGHT = 1.0
TAG_BONUS = 0.3
DESCRIPTION_BONUS = 0.1
DESCRIPTION_MIN_TOKEN = 4
MAX_REASONS = 3

NO_MATCH_EMPTY = "empty question"
NO_MATCH_NO_TOKENS = "no meaningful tokens"
NO_MATCH_NO_PRESET = "no preset matched the question keywords"


class SuggestionScore(BaseModel):
    preset_name: str
    score: float = 0.0
    reasons: list[str] = Field(default_factory=lambda: list[str]())


class SuggestionResult(BaseModel):
    question: str
    suggestions: list[SuggestionScore] = Field(default_factory=lambda: list[SuggestionScore]())
    top_pick: SuggestionScore | None = None
    no_match_reason: str = ""


def tokenize_question(text: str) -> list[str]:
    """Lower-cased alphabetic words, minus stop words and single letters."""
    return [w for w in _WORD_RE.findall(text.lower()) if len(w) > 1 and w not in STOP_WORDS]


class SuggestionEngine:
    def __init__(self, presets: list[EnsemblePreset]) -> None:
        self._presets = list(presets)

    def list_presets(self) -> list[str]:
        return [p.name for p in self._presets]

    def get_preset(self, name: str) -> EnsemblePreset | None:
        return next((p for p in self._presets if p.name == name), None)

    def _score_preset(
        self, preset: EnsemblePreset, tokens: list[str], question: str
    ) -> SuggestionScore:
        result = SuggestionScore(preset_name=preset.name)
        if not preset.keywords:
            return result

        question_lower = question.lower()
        token_set = set(tokens)
        keyword_score = 0.0
        matched = 0
        for keyword in preset.keywords:
            if keyword in question_lower:
                keyword_score += EXACT_MATCH_WEIGHT
                matched += 1
                if len(result.reasons) < MAX_REASONS:
                    result.reasons.append(f'matches "{keyword}"')
                continue
            for kt in tokenize_question(keyword):
                if kt in token_set:
                    keyword_score += TOKEN_MATCH_WEIGHT
                    matched += 1

        result.score = keyword_score / len(preset.keywords)

        for tag in preset.tags:
            tag_lower = tag.lower()
            if any(t in tag_lower or tag_lower in t for t in tokens):
                result.score += TAG_BONUS
                if len(result.reasons) < MAX_REASONS:
                    result.reasons.append(f"tag match: {tag}")

        description = preset.description.lower()
        for token in tokens:
            if len(token) >= DESCRIPTION_MIN_TOKEN and token in description:
                result.score += DESCRIPTION_BONUS

        if matched and not result.reasons:
            result.reasons.append(description)
        return result

    def suggest(self, question: str) -> SuggestionResult:
        """Rank presets for *question*; highest score first."""
        result = SuggestionResult(question=question)
        if not question.strip():
            result.no_match_reason = NO_MATCH_EMPTY
            return result

        tokens = tokenize_question(question)
        if not tokens:
            result.no_match_reason = NO_MATCH_NO_TOKENS
            return result

        scored = [
            (i, s)
            for i, preset in enumerate(self._presets)
            if (s := self._score_preset(preset, tokens, question)).score > 0
        ]
        if not scored:
            result.no_match_reason = NO_MATCH_NO_PRESET
            return result

        scored.sort(key=lambda item: (-item[1].score, item[0]))
        result.suggestions = [s for _, s in scored]
        result.top_pick = result.suggestions[0]
        return result

    def score(self, question: str, preset_name: str) -> float:
        tokens = tokenize_question(question)
        preset = self.get_preset(preset_name)
        if not tokens or preset is None:
            return 0.0
        return self._score_preset(preset, tokens, question).score
