"""Shared constants used across modules.

All magic strings and numbers that appear in 2+ files belong here.
StrEnum members are str-compatible, so downstream code (JSON payloads,
checkpoint files, YAML catalogs) works unchanged.
"""

from __future__ import annotations

from enum import StrEnum

# ── String Enums ─────────────────────────────────────────


class ImpactLevel(StrEnum):
    """Closed severity/priority vocabulary for findings, risks, recommendations."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ModeCategory(StrEnum):
    """Reasoning-mode taxonomy. Declaration order is catalog order (A..L)."""

    FORMAL = "Formal"
    AMPLIATIVE = "Ampliative"
    UNCERTAINTY = "Uncertainty"
    VAGUENESS = "Vagueness"
    CHANGE = "Change"
    CAUSAL = "Causal"
    PRACTICAL = "Practical"
    STRATEGIC = "Strategic"
    DIALECTICAL = "Dialectical"
    MODAL = "Modal"
    DOMAIN = "Domain"
    META = "Meta"

    @property
    def letter(self) -> str:
        """Code letter for this category (Formal=A ... Meta=L)."""
        return "ABCDEFGHIJKL"[list(ModeCategory).index(self)]

    @classmethod
    def from_letter(cls, letter: str) -> ModeCategory | None:
        if len(letter) != 1:
            return None
        idx = "ABCDEFGHIJKL".find(letter.upper())
        if idx < 0:
            return None
        return list(cls)[idx]


class ModeTier(StrEnum):
    """Maturity tier of a reasoning mode."""

    CORE = "core"
    ADVANCED = "advanced"
    EXPERIMENTAL = "experimental"


class AgentType(StrEnum):
    """Agent families that can host a reasoning mode."""

    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"
    USER = "user"


class RunStatus(StrEnum):
    """Lifecycle of a checkpointed ensemble run."""

    ACTIVE = "active"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELED = "canceled"


class ModeStatus(StrEnum):
    """Per-mode checkpoint status."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"


class AssignmentStatus(StrEnum):
    """Lifecycle of a mode-to-pane assignment."""

    PENDING = "pending"
    INJECTING = "injecting"
    ACTIVE = "active"
    DONE = "done"
    ERROR = "error"


class ChunkType(StrEnum):
    """Streaming synthesis chunk kinds, in emission order."""

    STATUS = "status"
    FINDING = "finding"
    RISK = "risk"
    RECOMMENDATION = "recommendation"
    QUESTION = "question"
    EXPLANATION = "explanation"
    COMPLETE = "complete"


class ConflictType(StrEnum):
    """Channel that detected a potential conflict."""

    THESIS = "thesis"
    SEVERITY = "severity"
    RECOMMENDATION = "recommendation"


class ConflictSeverity(StrEnum):
    """Coarse severity of an audited disagreement."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConflictSource(StrEnum):
    """Where a conflict list came from."""

    AUDITOR = "auditor"
    FALLBACK = "fallback"


class StrategyName(StrEnum):
    """Synthesis strategies."""

    MANUAL = "manual"
    CONSENSUS = "consensus"
    MAJORITY = "majority"
    WEIGHTED = "weighted"
    DEFERRED = "deferred"


class ResolutionMethod(StrEnum):
    """How a conflict was resolved during synthesis."""

    CONSENSUS = "consensus"
    MAJORITY = "majority"
    WEIGHTED = "weighted"
    DEFERRED = "deferred"
    MANUAL = "manual"


class ConclusionType(StrEnum):
    """Kinds of synthesized conclusions tracked by the explanation layer."""

    FINDING = "finding"
    RISK = "risk"
    RECOMMENDATION = "recommendation"
    THESIS = "thesis"


class EarlyStopReason(StrEnum):
    """Decision reasons reported by the early-stop detector."""

    DISABLED = "disabled"
    MIN_AGENTS = "min_agents"
    FINDINGS_RATE = "findings_rate"
    SIMILARITY = "similarity"
    FINDINGS_RATE_AND_SIMILARITY = "findings_rate_and_similarity"
    CONTINUE = "continue"


class AssignmentStrategy(StrEnum):
    """Mode-to-pane assignment strategies."""

    ROUND_ROBIN = "round-robin"
    BY_CATEGORY = "by-category"
    EXPLICIT = "explicit"


# ── Impact weights ───────────────────────────────────────


class ImpactWeight:
    """Ranking weights per impact level."""

    CRITICAL = 1.0
    HIGH = 0.8
    MEDIUM = 0.5
    LOW = 0.3
    UNKNOWN = 0.4


def impact_weight(level: str) -> float:
    """Map an impact/priority literal to its ranking weight."""
    _map: dict[str, float] = {
        ImpactLevel.CRITICAL: ImpactWeight.CRITICAL,
        ImpactLevel.HIGH: ImpactWeight.HIGH,
        ImpactLevel.MEDIUM: ImpactWeight.MEDIUM,
        ImpactLevel.LOW: ImpactWeight.LOW,
    }
    return _map.get(level, ImpactWeight.UNKNOWN)


# Severity ranks used by the conflict severity channel
SEVERITY_RANK: dict[str, int] = {
    ImpactLevel.CRITICAL: 4,
    ImpactLevel.HIGH: 3,
    ImpactLevel.MEDIUM: 2,
    ImpactLevel.LOW: 1,
}

# ── Confidence literals ──────────────────────────────────

CONFIDENCE_LITERALS: dict[str, float] = {
    "very low": 0.1,
    "low": 0.2,
    "med": 0.5,
    "medium": 0.5,
    "high": 0.8,
    "very high": 0.95,
}

# ── Hashing ──────────────────────────────────────────────

HASH_HEX_LENGTH = 16
CLUSTER_ID_HEX_LENGTH = 8

# ── Merge / similarity thresholds ────────────────────────

AGREEMENT_BOOST = 1.1
EVIDENCE_GROUP_THRESHOLD = 0.8
THESIS_TOPIC_THRESHOLD = 0.3
SEVERITY_TOPIC_THRESHOLD = 0.5
SEVERITY_MIN_RANK_GAP = 2
RECOMMENDATION_TOPIC_THRESHOLD = 0.3
TRIM_REASON = "trimmed by limit"

# ── Checkpoint layout ────────────────────────────────────

CHECKPOINT_DIR_NAME = "ensemble-checkpoints"
CHECKPOINT_META_FILE = "_meta.json"
CHECKPOINT_SYNTHESIS_FILE = "synthesis.json"
CHECKPOINT_FILE_MODE = 0o644
CHECKPOINT_DIR_MODE = 0o755
NO_OUTPUT_ERROR = "no output captured"

# ── Streaming ────────────────────────────────────────────

STREAM_BUFFER_SIZE = 4
SYNTHESIS_TRUNCATE_CHARS = 500

# ── Context cache ────────────────────────────────────────

CONTEXT_CACHE_VERSION = 1
CONTEXT_CACHE_TTL_SECONDS = 3600
CONTEXT_CACHE_MAX_ENTRIES = 32

# ── Contributions ────────────────────────────────────────

MAX_HIGHLIGHTS = 3

# ── Redundancy / conflicts ───────────────────────────────

HIGH_REDUNDANCY_THRESHOLD = 0.5
REPLACEMENT_THRESHOLD = 0.7
HIGH_CONFLICT_PAIR_COUNT = 2

# ── Estimation ───────────────────────────────────────────

MIN_ALTERNATIVE_SAVINGS = 200
MAX_ALTERNATIVES = 3

# ── Token Estimation ────────────────────────────────────

CHARS_PER_TOKEN_ESTIMATE = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate using chars-per-token ratio."""
    return len(text) // CHARS_PER_TOKEN_ESTIMATE
