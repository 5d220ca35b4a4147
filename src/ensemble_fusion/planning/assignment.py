"""Deterministic binding of reasoning modes to agent panes.

All three strategies sort their inputs first, so the same modes and
panes always produce the same plan regardless of input order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from ensemble_fusion.constants import AgentType, AssignmentStatus, ModeCategory
from ensemble_fusion.errors import BadSpecError, InsufficientPanesError, InvalidArgumentError
from ensemble_fusion.schema.catalog import ModeCatalog, ReasoningMode

logger = logging.getLogger(__name__)

# Preferred agent types per category, best first
CATEGORY_AFFINITIES: dict[ModeCategory, tuple[str, ...]] = {
    ModeCategory.FORMAL: (AgentType.CLAUDE, AgentType.CODEX),
    ModeCategory.UNCERTAINTY: (AgentType.CODEX, AgentType.CLAUDE),
    ModeCategory.CAUSAL: (AgentType.CLAUDE, AgentType.CODEX),
    ModeCategory.PRACTICAL: (AgentType.CODEX, AgentType.CLAUDE),
    ModeCategory.STRATEGIC: (AgentType.CLAUDE, AgentType.CODEX),
    ModeCategory.DIALECTICAL: (AgentType.CLAUDE,),
    ModeCategory.MODAL: (AgentType.CLAUDE, AgentType.CODEX),
    ModeCategory.DOMAIN: (AgentType.CLAUDE, AgentType.GEMINI),
    ModeCategory.META: (AgentType.CLAUDE,),
    ModeCategory.AMPLIATIVE: (AgentType.GEMINI, AgentType.CLAUDE),
    ModeCategory.VAGUENESS: (AgentType.GEMINI, AgentType.CLAUDE),
    ModeCategory.CHANGE: (AgentType.CLAUDE, AgentType.CODEX),
}

DEFAULT_PREFERRED_TYPES: tuple[str, ...] = (AgentType.CLAUDE, AgentType.CODEX, AgentType.GEMINI)


@dataclass(frozen=True)
class AgentPane:
    """A multiplexer pane hosting one agent."""

    title: str
    agent_type: str
    index: int = 0
    ntm_index: int = 0  # stable launcher index; 0 when unknown

    @property
    def sort_key(self) -> tuple[int, int, str]:
        stable = self.ntm_index if self.ntm_index > 0 else self.index
        return (stable, self.index, self.title)


class ModeAssignment(BaseModel):
    mode_id: str
    pane_name: str
    agent_type: str
    status: AssignmentStatus = AssignmentStatus.PENDING
    assigned_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    fallback_reason: str = ""


def normalize_mode_key(mode: str) -> str:
    return mode.strip().lower()


def is_assignable_agent_type(agent_type: str) -> bool:
    return agent_type in {t.value for t in AgentType} and agent_type != AgentType.USER


def is_assignable_pane(pane: AgentPane) -> bool:
    return bool(pane.title) and is_assignable_agent_type(pane.agent_type)


def sort_assignable_panes(panes: Iterable[AgentPane]) -> list[AgentPane]:
    return sorted((p for p in panes if is_assignable_pane(p)), key=lambda p: p.sort_key)


def _normalize_mode_keys(modes: Iterable[str]) -> list[str]:
    keys = [normalize_mode_key(m) for m in modes]
    if any(not k for k in keys):
        msg = "mode key cannot be empty"
        raise InvalidArgumentError(msg)
    return sorted(keys)


def _require_panes(needed: int, panes: list[AgentPane]) -> None:
    if needed > len(panes):
        msg = f"assignment requires {needed} panes, only {len(panes)} available"
        raise InsufficientPanesError(msg)


def _group_by_type(panes: list[AgentPane]) -> dict[str, list[AgentPane]]:
    grouped: dict[str, list[AgentPane]] = {}
    for pane in panes:
        grouped.setdefault(pane.agent_type, []).append(pane)
    return grouped


def _pick_pane(
    by_type: dict[str, list[AgentPane]], preferred: Iterable[str], used: set[str]
) -> tuple[AgentPane | None, str]:
    """First unused pane of a preferred type, else any unused pane.

    Returns the pane (or None) and a fallback reason ("" when preferred).
    """
    for agent_type in preferred:
        for pane in by_type.get(agent_type, []):
            if pane.title not in used:
                return pane, ""
    for agent_type in sorted(by_type):
        for pane in by_type[agent_type]:
            if pane.title not in used:
                return pane, f"preferred panes unavailable; fell back to {agent_type}"
    return None, "no panes available"


def resolve_mode(raw: str, catalog: ModeCatalog) -> ReasoningMode:
    """Resolve a catalog id or code (case-insensitive)."""
    key = raw.strip()
    if not key:
        msg = "mode key is empty"
        raise BadSpecError(msg)
    mode = catalog.resolve(key)
    if mode is None:
        msg = f"mode {key!r} not found in catalog"
        raise BadSpecError(msg)
    return mode


def assign_round_robin(modes: list[str], panes: list[AgentPane]) -> list[ModeAssignment]:
    """Pair the i-th sorted pane with the i-th sorted mode."""
    mode_ids = _normalize_mode_keys(modes)
    ordered = sort_assignable_panes(panes)
    _require_panes(len(mode_ids), ordered)

    assignments: list[ModeAssignment] = []
    for mode_id, pane in zip(mode_ids, ordered, strict=False):
        assignments.append(
            ModeAssignment(mode_id=mode_id, pane_name=pane.title, agent_type=pane.agent_type)
        )
        logger.info(
            "event=assignment_decided strategy=round_robin mode=%s pane=%s agent=%s",
            mode_id,
            pane.title,
            pane.agent_type,
        )
    validate_assignments(assignments, mode_ids)
    return assignments


def assign_by_category(
    modes: list[str], panes: list[AgentPane], catalog: ModeCatalog
) -> list[ModeAssignment]:
    """Prefer agent types with affinity for each mode's category."""
    resolved = sorted((resolve_mode(m, catalog) for m in modes), key=lambda m: m.id)
    ordered = sort_assignable_panes(panes)
    _require_panes(len(resolved), ordered)

    by_type = _group_by_type(ordered)
    used: set[str] = set()
    assignments: list[ModeAssignment] = []
    for mode in resolved:
        preferred = CATEGORY_AFFINITIES.get(mode.category) or DEFAULT_PREFERRED_TYPES
        pane, reason = _pick_pane(by_type, preferred, used)
        if pane is None:
            msg = f"no available pane for mode {mode.id!r}"
            raise InsufficientPanesError(msg)
        used.add(pane.title)
        assignments.append(
            ModeAssignment(
                mode_id=mode.id,
                pane_name=pane.title,
                agent_type=pane.agent_type,
                fallback_reason=reason,
            )
        )
        logger.info(
            "event=assignment_decided strategy=category_affinity mode=%s category=%s "
            "pane=%s agent=%s fallback=%s",
            mode.id,
            mode.category,
            pane.title,
            pane.agent_type,
            bool(reason),
        )
    validate_assignments(assignments, [m.id for m in resolved])
    return assignments


def expand_specs(specs: Iterable[str]) -> list[str]:
    """Split comma-separated ``mode:agent`` entries, dropping blanks."""
    return [part.strip() for spec in specs for part in spec.split(",") if part.strip()]


def parse_explicit_specs(
    specs: Iterable[str], catalog: ModeCatalog | None = None
) -> dict[str, str]:
    """Map mode id -> agent type; raises ``BadSpecError`` on malformed entries."""
    expanded = expand_specs(specs)
    if not expanded:
        msg = "explicit assignment requires at least one mapping"
        raise BadSpecError(msg)

    mapping: dict[str, str] = {}
    for spec in expanded:
        mode_raw, sep, agent_raw = spec.partition(":")
        if not sep:
            msg = f"invalid assignment {spec!r}: expected mode:agent"
            raise BadSpecError(msg)
        mode_id = normalize_mode_key(mode_raw)
        if not mode_id:
            msg = f"invalid assignment {spec!r}: empty mode"
            raise BadSpecError(msg)
        agent_type = agent_raw.strip().lower()
        if not agent_type:
            msg = f"invalid assignment {spec!r}: empty agent type"
            raise BadSpecError(msg)
        if not is_assignable_agent_type(agent_type):
            msg = f"invalid assignment {spec!r}: unknown agent type {agent_type!r}"
            raise BadSpecError(msg)
        if catalog is not None:
            mode_id = resolve_mode(mode_raw, catalog).id
        if mode_id in mapping:
            msg = f"duplicate assignment for mode {mode_id!r}"
            raise BadSpecError(msg)
        mapping[mode_id] = agent_type
    return mapping


def assign_explicit(
    specs: list[str], panes: list[AgentPane], catalog: ModeCatalog | None = None
) -> list[ModeAssignment]:
    """Honor user-specified ``mode:agent`` pairs."""
    mapping = parse_explicit_specs(specs, catalog)
    ordered = sort_assignable_panes(panes)
    _require_panes(len(mapping), ordered)

    by_type = _group_by_type(ordered)
    used: set[str] = set()
    assignments: list[ModeAssignment] = []
    for mode_id in sorted(mapping):
        agent_type = mapping[mode_id]
        pane = next((p for p in by_type.get(agent_type, []) if p.title not in used), None)
        if pane is None:
            msg = f"no available pane for mode {mode_id!r} with agent type {agent_type!r}"
            raise InsufficientPanesError(msg)
        used.add(pane.title)
        assignments.append(
            ModeAssignment(mode_id=mode_id, pane_name=pane.title, agent_type=pane.agent_type)
        )
        logger.info(
            "event=assignment_decided strategy=explicit mode=%s pane=%s agent=%s",
            mode_id,
            pane.title,
            pane.agent_type,
        )
    validate_assignments(assignments, sorted(mapping))
    return assignments


def validate_assignments(assignments: list[ModeAssignment], modes: list[str]) -> None:
    """Raise ``InvalidArgumentError`` unless the plan is a bijection onto *modes*."""
    expected = _normalize_mode_keys(modes)
    if len(assignments) != len(expected):
        msg = (
            f"assignment count mismatch: {len(assignments)} assignments "
            f"for {len(expected)} modes"
        )
        raise InvalidArgumentError(msg)

    remaining: dict[str, int] = {}
    for mode_id in expected:
        remaining[mode_id] = remaining.get(mode_id, 0) + 1

    panes_seen: set[str] = set()
    for a in assignments:
        mode_id = normalize_mode_key(a.mode_id)
        if not mode_id:
            msg = "assignment missing mode ID"
            raise InvalidArgumentError(msg)
        if not a.pane_name:
            msg = f"assignment for mode {a.mode_id!r} missing pane name"
            raise InvalidArgumentError(msg)
        if not a.agent_type:
            msg = f"assignment for mode {a.mode_id!r} missing agent type"
            raise InvalidArgumentError(msg)
        if not is_assignable_agent_type(a.agent_type):
            msg = f"assignment for mode {a.mode_id!r} has unknown agent type {a.agent_type!r}"
            raise InvalidArgumentError(msg)
        if mode_id not in remaining:
            msg = f"assignment for unknown mode {a.mode_id!r}"
            raise InvalidArgumentError(msg)
        remaining[mode_id] -= 1
        if remaining[mode_id] < 0:
            msg = f"mode {a.mode_id!r} assigned more than once"
            raise InvalidArgumentError(msg)
        if a.pane_name in panes_seen:
            msg = f"pane {a.pane_name!r} assigned more than once"
            raise InvalidArgumentError(msg)
        panes_seen.add(a.pane_name)

    missing = sorted(m for m, count in remaining.items() if count != 0)
    if missing:
        msg = f"mode {missing[0]!r} not assigned"
        raise InvalidArgumentError(msg)
