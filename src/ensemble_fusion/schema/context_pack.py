"""Context-pack schema and its on-disk cache.

The pack itself is produced outside the fusion core; this module only
models it, hashes it and caches it. The cache keeps a TTL-bounded
in-memory hot layer in front of one JSON file per key and prunes the
oldest files (by mtime) once the entry cap is exceeded.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from ensemble_fusion.atomic import atomic_write_text
from ensemble_fusion.constants import (
    CONTEXT_CACHE_MAX_ENTRIES,
    CONTEXT_CACHE_TTL_SECONDS,
    CONTEXT_CACHE_VERSION,
    HASH_HEX_LENGTH,
)
from ensemble_fusion.schema.configs import CacheConfig

logger = logging.getLogger(__name__)


class ProjectStructure(BaseModel):
    entry_points: list[str] = Field(default_factory=lambda: list[str]())
    core_packages: list[str] = Field(default_factory=lambda: list[str]())
    total_files: int = 0
    total_lines: int = 0


class CommitSummary(BaseModel):
    hash: str = ""
    author: str = ""
    summary: str = ""
    date: datetime | None = None


class ProjectBrief(BaseModel):
    name: str = ""
    description: str = ""
    languages: list[str] = Field(default_factory=lambda: list[str]())
    frameworks: list[str] = Field(default_factory=lambda: list[str]())
    structure: ProjectStructure | None = None
    recent_activity: list[CommitSummary] = Field(
        default_factory=lambda: list[CommitSummary]()
    )
    open_issues: int = 0


class UserContext(BaseModel):
    problem_statement: str = ""
    focus_areas: list[str] = Field(default_factory=lambda: list[str]())
    constraints: list[str] = Field(default_factory=lambda: list[str]())
    stakeholders: list[str] = Field(default_factory=lambda: list[str]())
    decisions: list[str] = Field(default_factory=lambda: list[str]())
    history: list[str] = Field(default_factory=lambda: list[str]())
    success_criteria: list[str] = Field(default_factory=lambda: list[str]())


class ContextPack(BaseModel):
    """Project and user context shared by every mode of a run."""

    generated_at: datetime | None = None
    project_brief: ProjectBrief | None = None
    user_context: UserContext | None = None
    questions: list[str] = Field(default_factory=lambda: list[str]())
    token_estimate: int = 0
    hash: str = ""

    def compute_hash(self) -> str:
        """16-hex SHA-256 over the pack with hash and generated_at zeroed."""
        data = self.model_dump(mode="json")
        data["hash"] = ""
        data["generated_at"] = None
        encoded = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:HASH_HEX_LENGTH]

    def with_hash(self) -> ContextPack:
        return self.model_copy(update={"hash": self.compute_hash()})


class ContextFingerprint(BaseModel):
    """Inputs that should invalidate a cached pack."""

    project_root: str
    git_head: str = ""
    git_status: str = ""
    readme_hash: str = ""
    question_hash: str = ""
    mode_key: str = ""

    def cache_key(self) -> str:
        encoded = json.dumps(
            self.model_dump(mode="json"), separators=(",", ":")
        )
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:HASH_HEX_LENGTH]


class CachedContextPack(BaseModel):
    """On-disk envelope for one cache entry."""

    version: int
    key: str
    created_at: datetime
    expires_at: datetime
    fingerprint: ContextFingerprint
    pack: ContextPack | None = None


class ContextPackCache:
    """TTL + entry-capped cache of context packs, one JSON file per key."""

    def __init__(self, cache_dir: Path, config: CacheConfig | None = None) -> None:
        cfg = config or CacheConfig()
        self._dir = cache_dir
        self._ttl = (
            cfg.ttl_seconds if cfg.ttl_seconds > 0 else CONTEXT_CACHE_TTL_SECONDS
        )
        self._max_entries = (
            cfg.max_entries if cfg.max_entries > 0 else CONTEXT_CACHE_MAX_ENTRIES
        )
        # key -> (pack, monotonic expiry)
        self._mem: dict[str, tuple[ContextPack, float]] = {}
        self._lock = threading.Lock()
        self._dir.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._dir

    def _file_path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    def get(self, key: str) -> ContextPack | None:
        """Return the cached pack, or None on miss, expiry or decode failure."""
        if not key:
            return None

        with self._lock:
            hot = self._mem.get(key)
            if hot is not None:
                pack, expires = hot
                if time.monotonic() < expires:
                    return pack
                del self._mem[key]

        path = self._file_path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError:
            return None

        try:
            stored = CachedContextPack.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("event=context_cache_decode_failed key=%s error=%s", key, exc)
            return None

        if stored.version != CONTEXT_CACHE_VERSION:
            return None
        if datetime.now(UTC) > stored.expires_at:
            path.unlink(missing_ok=True)
            logger.debug("event=context_cache_expired key=%s", key)
            return None
        if stored.pack is None:
            return None

        with self._lock:
            self._mem[key] = (stored.pack, time.monotonic() + self._ttl)
        return stored.pack

    def put(self, key: str, pack: ContextPack | None, fingerprint: ContextFingerprint) -> None:
        """Persist *pack* under *key*; empty key or None pack is a no-op."""
        if not key or pack is None:
            return

        now = datetime.now(UTC)
        stored = CachedContextPack(
            version=CONTEXT_CACHE_VERSION,
            key=key,
            created_at=now,
            expires_at=now + timedelta(seconds=self._ttl),
            fingerprint=fingerprint,
            pack=pack,
        )
        atomic_write_text(self._file_path(key), stored.model_dump_json())

        with self._lock:
            self._mem[key] = (pack, time.monotonic() + self._ttl)
        self._prune_if_needed()

    def _prune_if_needed(self) -> None:
        with self._lock:
            files: list[tuple[float, Path]] = []
            for path in self._dir.glob("*.json"):
                try:
                    files.append((path.stat().st_mtime, path))
                except OSError:
                    continue
            if len(files) <= self._max_entries:
                return

            files.sort(key=lambda item: item[0])
            for _, path in files[: len(files) - self._max_entries]:
                path.unlink(missing_ok=True)
                self._mem.pop(path.stem, None)
                logger.debug("event=context_cache_pruned key=%s", path.stem)


def hash_string(value: str) -> str:
    """16-hex SHA-256 of *value*, or "" for the empty string."""
    if not value:
        return ""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:HASH_HEX_LENGTH]