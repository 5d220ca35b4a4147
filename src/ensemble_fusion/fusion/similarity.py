"""Text similarity kit: normalization, token sets, Jaccard/Dice, stable IDs.

All functions are pure. Token sets come from a whitespace split of the
normalized (trimmed, lower-cased) text; no stemming or punctuation
stripping, so results are reproducible across processes.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable

from ensemble_fusion.constants import HASH_HEX_LENGTH
from ensemble_fusion.schema.outputs import Finding

# Words skipped when naming a conflict topic
TOPIC_STOP_WORDS: frozenset[str] = frozenset({
    "the", "this", "that", "with", "from", "have", "been", "will",
    "should", "would", "could", "being", "there", "their", "when", "where",
})

_LINE_RE = re.compile(r"^\s*(-?\d+)")


def normalize(text: str) -> str:
    """Trim and lower-case."""
    return text.strip().lower()


def tokenize(text: str) -> set[str]:
    """Whitespace-split the normalized text into a token set."""
    return set(normalize(text).split())


def jaccard(a: set[str], b: set[str]) -> float:
    """|A∩B| / |A∪B|; 1.0 when both empty, 0.0 when exactly one is."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def jaccard_nonempty(a: set[str], b: set[str]) -> float:
    """Jaccard that treats empty inputs as incomparable (returns 0.0)."""
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def dice(a: set[str], b: set[str]) -> float:
    """Sørensen–Dice coefficient; 0.0 if either set is empty."""
    if not a or not b:
        return 0.0
    return 2.0 * len(a & b) / (len(a) + len(b))


def text_similarity(a: str, b: str) -> float:
    """Jaccard over the token sets of two strings."""
    return jaccard(tokenize(a), tokenize(b))


def count_overlap(a: set[str], b: set[str]) -> tuple[int, int, int]:
    """Return (shared, unique_to_a, unique_to_b)."""
    shared = len(a & b)
    return shared, len(a) - shared, len(b) - shared


def hash16(value: str) -> str:
    """16-hex-char prefix of the SHA-256 of *value*."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:HASH_HEX_LENGTH]


def finding_key(finding: Finding) -> str:
    """Normalized text, plus ``|evidence`` when an evidence pointer exists."""
    key = normalize(finding.finding)
    if finding.evidence_pointer:
        key += "|" + normalize(finding.evidence_pointer)
    return key


def finding_id(mode_id: str, text: str) -> str:
    """Stable ID for a finding: same mode + same normalized text → same ID."""
    return hash16(normalize(mode_id) + "|" + normalize(text))


def context_hash(question: str, mode_ids: Iterable[str]) -> str:
    """Stable hash of a run's question and (sorted) mode set."""
    return hash16(question + "|" + ",".join(sorted(mode_ids)))


def parse_evidence_pointer(pointer: str) -> tuple[str, int]:
    """Split ``file[:line]``; line is -1 when absent or non-numeric."""
    parts = pointer.split(":")
    file = parts[0]
    if len(parts) < 2:
        return file, -1
    match = _LINE_RE.match(parts[1])
    if match is None:
        return file, -1
    return file, int(match.group(1))


def evidence_proximity(a: str, b: str) -> float:
    """Score how close two evidence pointers are.

    1.0 equal, 0.9/0.7/0.5 same file within 5/10/20 lines, 0.3 same file
    further apart, 0.8 same file without line numbers, 0.0 otherwise.
    """
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    file_a, line_a = parse_evidence_pointer(a)
    file_b, line_b = parse_evidence_pointer(b)
    if file_a != file_b:
        return 0.0
    if line_a < 0 or line_b < 0:
        return 0.8

    diff = abs(line_a - line_b)
    if diff == 0:
        return 1.0
    if diff <= 5:
        return 0.9
    if diff <= 10:
        return 0.7
    if diff <= 20:
        return 0.5
    return 0.3


def extract_topic(text_a: str, text_b: str) -> str:
    """Name a shared topic from up to three common significant words."""
    common = sorted(
        tok
        for tok in tokenize(text_a) & tokenize(text_b)
        if len(tok) > 3 and tok not in TOPIC_STOP_WORDS
    )
    if not common:
        return "general"
    return " ".join(common[:3])


def contains_any(text: str, patterns: Iterable[str]) -> bool:
    return any(p in text for p in patterns)
