"""Load and validate the embedded reasoning-mode catalog."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ensemble_fusion.constants import ModeCategory, ModeTier

logger = logging.getLogger(__name__)

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"

MODE_ID_RE = re.compile(r"^[a-z][a-z0-9-]*$")
MODE_CODE_RE = re.compile(r"^[A-L][0-9]+$")
MAX_MODE_ID_LENGTH = 64
MAX_SHORT_DESC_LENGTH = 80

# Typical output tokens per mode, used when sizing prompts
_CORE_COST_BY_CATEGORY: dict[ModeCategory, int] = {
    ModeCategory.FORMAL: 3000,
    ModeCategory.DIALECTICAL: 2800,
    ModeCategory.META: 2500,
    ModeCategory.STRATEGIC: 2500,
}
_CORE_DEFAULT_COST = 2000
_ADVANCED_COST = 2400
_EXPERIMENTAL_COST = 3000


@dataclass(frozen=True)
class ReasoningMode:
    """One entry of the reasoning-mode taxonomy."""

    id: str
    code: str
    name: str
    category: ModeCategory
    tier: ModeTier
    short_desc: str = ""
    description: str = ""
    outputs: str = ""
    best_for: tuple[str, ...] = field(default_factory=tuple)
    failure_modes: tuple[str, ...] = field(default_factory=tuple)
    differentiator: str = ""
    icon: str = ""
    color: str = ""
    preamble_key: str = ""

    @property
    def is_core(self) -> bool:
        return self.tier == ModeTier.CORE


def validate_mode(mode: ReasoningMode) -> None:
    """Raise ValueError when a catalog entry breaks an invariant."""
    if not MODE_ID_RE.match(mode.id) or len(mode.id) > MAX_MODE_ID_LENGTH:
        msg = f"Invalid mode id: {mode.id!r}"
        raise ValueError(msg)
    if not MODE_CODE_RE.match(mode.code):
        msg = f"Invalid mode code {mode.code!r} for mode {mode.id!r}"
        raise ValueError(msg)
    if mode.code[0] != mode.category.letter:
        msg = (
            f"Mode {mode.id!r} code {mode.code!r} does not match "
            f"category {mode.category} ({mode.category.letter})"
        )
        raise ValueError(msg)
    if not mode.name:
        msg = f"Mode {mode.id!r} has no name"
        raise ValueError(msg)
    if len(mode.short_desc) > MAX_SHORT_DESC_LENGTH:
        msg = (
            f"Mode {mode.id!r} short_desc exceeds "
            f"{MAX_SHORT_DESC_LENGTH} characters"
        )
        raise ValueError(msg)


def _mode_from_raw(raw: dict[str, Any]) -> ReasoningMode:
    try:
        category = ModeCategory(str(raw.get("category", "")))
        tier = ModeTier(str(raw.get("tier", "")).lower())
    except ValueError as exc:
        msg = f"Invalid catalog entry {raw.get('id')!r}: {exc}"
        raise ValueError(msg) from exc

    return ReasoningMode(
        id=str(raw.get("id", "")),
        code=str(raw.get("code", "")).upper(),
        name=str(raw.get("name", "")),
        category=category,
        tier=tier,
        short_desc=str(raw.get("short_desc", "")).strip(),
        description=str(raw.get("description", "")).strip(),
        outputs=str(raw.get("outputs", "")).strip(),
        best_for=tuple(str(b) for b in raw.get("best_for", []) or []),
        failure_modes=tuple(str(f) for f in raw.get("failure_modes", []) or []),
        differentiator=str(raw.get("differentiator", "")).strip(),
        icon=str(raw.get("icon", "")),
        color=str(raw.get("color", "")),
        preamble_key=str(raw.get("preamble_key", "")) or str(raw.get("id", "")),
    )


class ModeCatalog:
    """Read-only index over reasoning modes, by id and by code."""

    def __init__(self, modes: list[ReasoningMode]) -> None:
        self._modes: list[ReasoningMode] = []
        self._by_id: dict[str, ReasoningMode] = {}
        self._by_code: dict[str, ReasoningMode] = {}
        for mode in modes:
            validate_mode(mode)
            if mode.id in self._by_id:
                msg = f"Duplicate mode id: {mode.id!r}"
                raise ValueError(msg)
            if mode.code in self._by_code:
                msg = f"Duplicate mode code: {mode.code!r}"
                raise ValueError(msg)
            self._modes.append(mode)
            self._by_id[mode.id] = mode
            self._by_code[mode.code] = mode

    def __len__(self) -> int:
        return len(self._modes)

    def __contains__(self, mode_id: object) -> bool:
        return mode_id in self._by_id

    def get_mode(self, mode_id: str) -> ReasoningMode | None:
        return self._by_id.get(mode_id.strip().lower())

    def get_mode_by_code(self, code: str) -> ReasoningMode | None:
        """Case-insensitive code lookup (``a1`` == ``A1``)."""
        return self._by_code.get(code.strip().upper())

    def resolve(self, id_or_code: str) -> ReasoningMode | None:
        """Look up by id first, then by code."""
        return self.get_mode(id_or_code) or self.get_mode_by_code(id_or_code)

    def list_modes(self) -> list[ReasoningMode]:
        return list(self._modes)

    def list_by_category(self, category: ModeCategory) -> list[ReasoningMode]:
        return [m for m in self._modes if m.category == category]

    def list_by_tier(self, tier: ModeTier) -> list[ReasoningMode]:
        return [m for m in self._modes if m.tier == tier]

    def list_default(self) -> list[ReasoningMode]:
        """Core-tier modes, the default selection for new ensembles."""
        return self.list_by_tier(ModeTier.CORE)

    def search(self, term: str) -> list[ReasoningMode]:
        """Case-insensitive substring match over id, name and descriptions."""
        needle = term.strip().lower()
        if not needle:
            return []
        results: list[ReasoningMode] = []
        for mode in self._modes:
            haystack = " ".join(
                (
                    mode.id,
                    mode.name,
                    mode.short_desc,
                    mode.description,
                    " ".join(mode.best_for),
                )
            ).lower()
            if needle in haystack:
                results.append(mode)
        return results


def estimate_typical_cost(mode: ReasoningMode | None) -> int:
    """Typical output tokens for a mode; 0 when the mode is unknown."""
    if mode is None:
        return 0
    if mode.tier == ModeTier.CORE:
        return _CORE_COST_BY_CATEGORY.get(mode.category, _CORE_DEFAULT_COST)
    if mode.tier == ModeTier.ADVANCED:
        return _ADVANCED_COST
    return _EXPERIMENTAL_COST


def load_mode_catalog(*, path: Path | None = None) -> ModeCatalog:
    """Load ``data/modes.yaml`` (or *path*) into a validated catalog.

    Raises ``FileNotFoundError`` if the file doesn't exist and
    ``ValueError`` if any entry breaks the id/code/category rules.
    """
    source = path or _DATA_DIR / "modes.yaml"
    if not source.exists():
        msg = f"Mode catalog not found: {source}"
        raise FileNotFoundError(msg)

    raw: dict[str, Any] = yaml.safe_load(source.read_text(encoding="utf-8")) or {}
    modes = [_mode_from_raw(entry) for entry in raw.get("modes", []) or []]
    catalog = ModeCatalog(modes)
    logger.debug("event=catalog_loaded path=%s modes=%d", source, len(catalog))
    return catalog
