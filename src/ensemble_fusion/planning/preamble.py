"""Mode preambles: the per-mode instructions sent ahead of the question.

Only the rendered text's size matters to the fusion core (it feeds the
estimator); the agents themselves receive it from the dispatcher.
"""

from __future__ import annotations

from ensemble_fusion.constants import estimate_tokens
from ensemble_fusion.schema.catalog import ReasoningMode
from ensemble_fusion.schema.context_pack import ContextPack

# ── Mode preamble ─────────────────────────────────────────

MODE_PREAMBLE_TEMPLATE = """\
You are one member of a reasoning ensemble. Apply exactly one reasoning \
mode and report in the structured format below; other members cover the \
other modes.

## Mode
{name} ({code}) - {category} reasoning, {tier} tier
{description}

Expected outputs: {outputs}
Watch for these failure modes in your own reasoning: {failure_modes}

## Problem
{question}
{context}
## Output Requirements
Reply with a single YAML document containing:
- mode_id: "{mode_id}"
- thesis: one-sentence core claim
- top_findings: list of {{finding, impact (critical|high|medium|low), \
confidence (0.0-1.0), evidence_pointer (file:line), reasoning}}
- risks: list of {{risk, impact, likelihood (0.0-1.0), mitigation}}
- recommendations: list of {{recommendation, priority, rationale}}
- questions_for_user: list of {{question, context}}
- failure_modes_to_watch: list of {{mode, description, indicators}}
- confidence: overall confidence (0.0-1.0)
{token_cap}"""

CONTEXT_SECTION_TEMPLATE = """
## Project Context
{lines}
"""


def _join(items: list[str] | tuple[str, ...], empty: str = "none listed") -> str:
    return ", ".join(items) if items else empty


def render_context(pack: ContextPack | None) -> str:
    """Flatten the parts of a context pack that help a mode reason."""
    if pack is None:
        return ""
    lines: list[str] = []
    brief = pack.project_brief
    if brief is not None:
        if brief.name:
            lines.append(f"Project: {brief.name}")
        if brief.description:
            lines.append(f"Description: {brief.description}")
        if brief.languages:
            lines.append(f"Languages: {_join(brief.languages)}")
        if brief.frameworks:
            lines.append(f"Frameworks: {_join(brief.frameworks)}")
        if brief.structure is not None and brief.structure.entry_points:
            lines.append(f"Entry points: {_join(brief.structure.entry_points)}")
        for commit in brief.recent_activity:
            lines.append(f"Recent: {commit.hash[:8]} {commit.summary}".rstrip())
    user = pack.user_context
    if user is not None:
        if user.problem_statement:
            lines.append(f"Problem statement: {user.problem_statement}")
        if user.focus_areas:
            lines.append(f"Focus areas: {_join(user.focus_areas)}")
        if user.constraints:
            lines.append(f"Constraints: {_join(user.constraints)}")
        if user.success_criteria:
            lines.append(f"Success criteria: {_join(user.success_criteria)}")
    lines.extend(f"Open question: {q}" for q in pack.questions)
    if not lines:
        return ""
    return CONTEXT_SECTION_TEMPLATE.format(lines="\n".join(lines))


class PreambleEngine:
    def render(
        self,
        mode: ReasoningMode,
        question: str,
        pack: ContextPack | None = None,
        token_cap: int = 0,
    ) -> str:
        cap = (
            f"\nKeep the whole reply under {token_cap} tokens.\n" if token_cap > 0 else ""
        )
        return MODE_PREAMBLE_TEMPLATE.format(
            name=mode.name,
            code=mode.code,
            category=mode.category,
            tier=mode.tier,
            description=mode.description or mode.short_desc,
            outputs=mode.outputs or "structured findings",
            failure_modes=_join(mode.failure_modes),
            question=question.strip() or "(no question provided)",
            context=render_context(pack),
            mode_id=mode.id,
            token_cap=cap,
        )

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text)
