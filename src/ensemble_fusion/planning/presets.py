"""Load embedded ensemble presets from YAML."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ensemble_fusion.constants import StrategyName
from ensemble_fusion.schema.catalog import ModeCatalog

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


@dataclass(frozen=True)
class EnsemblePreset:
    """A named bundle of modes recommended for a class of questions."""

    name: str
    display_name: str
    description: str
    modes: tuple[str, ...] = field(default_factory=tuple)
    tags: tuple[str, ...] = field(default_factory=tuple)
    synthesis: StrategyName = StrategyName.CONSENSUS
    keywords: tuple[str, ...] = field(default_factory=tuple)


def _preset_from_raw(raw: dict[str, Any]) -> EnsemblePreset:
    name = str(raw.get("name", ""))
    if not name or ".." in name or "/" in name or "\\" in name:
        msg = f"Invalid preset name: {name!r}"
        raise ValueError(msg)

    strategy_raw = str(raw.get("synthesis", StrategyName.CONSENSUS))
    try:
        strategy = StrategyName(strategy_raw)
    except ValueError as exc:
        msg = f"Invalid synthesis strategy {strategy_raw!r} in preset {name!r}"
        raise ValueError(msg) from exc

    return EnsemblePreset(
        name=name,
        display_name=str(raw.get("display_name", name)),
        description=str(raw.get("description", "")).strip(),
        modes=tuple(str(m) for m in raw.get("modes", []) or []),
        tags=tuple(str(t) for t in raw.get("tags", []) or []),
        synthesis=strategy,
        keywords=tuple(str(k).lower() for k in raw.get("keywords", []) or []),
    )


def load_presets(
    *, path: Path | None = None, catalog: ModeCatalog | None = None
) -> list[EnsemblePreset]:
    """Load presets in file order.

    When *catalog* is given, every referenced mode must exist in it.
    Raises ``FileNotFoundError`` if the file doesn't exist.
    """
    source = path or _DATA_DIR / "presets.yaml"
    if not source.exists():
        msg = f"Presets file not found: {source}"
        raise FileNotFoundError(msg)

    raw: dict[str, Any] = yaml.safe_load(source.read_text(encoding="utf-8")) or {}
    presets = [_preset_from_raw(entry) for entry in raw.get("presets", []) or []]

    seen: set[str] = set()
    for preset in presets:
        if preset.name in seen:
            msg = f"Duplicate preset name: {preset.name!r}"
            raise ValueError(msg)
        seen.add(preset.name)
        if catalog is not None:
            unknown = [m for m in preset.modes if catalog.get_mode(m) is None]
            if unknown:
                msg = (
                    f"Preset {preset.name!r} references unknown modes: "
                    f"{', '.join(unknown)}"
                )
                raise ValueError(msg)
    return presets
