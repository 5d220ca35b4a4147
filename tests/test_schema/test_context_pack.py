"""Tests for context-pack hashing and the on-disk pack cache."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from ensemble_fusion.constants import CONTEXT_CACHE_VERSION
from ensemble_fusion.schema.configs import CacheConfig
from ensemble_fusion.schema.context_pack import (
    ContextFingerprint,
    ContextPack,
    ContextPackCache,
    ProjectBrief,
    hash_string,
)


def _pack(name: str = "demo") -> ContextPack:
    return ContextPack(project_brief=ProjectBrief(name=name), token_estimate=120)


def _fingerprint() -> ContextFingerprint:
    return ContextFingerprint(project_root="/repo", git_head="abc123")


# ── hashing ──────────────────────────────────────────────────


def test_hash_ignores_generated_at_and_existing_hash() -> None:
    a = _pack().model_copy(update={"generated_at": datetime(2024, 1, 1, tzinfo=UTC)})
    b = _pack().model_copy(update={"hash": "stale"})
    assert a.compute_hash() == b.compute_hash()
    assert len(a.compute_hash()) == 16


def test_hash_changes_with_content() -> None:
    assert _pack("one").compute_hash() != _pack("two").compute_hash()


def test_with_hash_sets_hash() -> None:
    pack = _pack().with_hash()
    assert pack.hash == pack.compute_hash()


def test_hash_string_empty_is_empty() -> None:
    assert hash_string("") == ""
    assert len(hash_string("x")) == 16


def test_fingerprint_key_is_stable() -> None:
    assert _fingerprint().cache_key() == _fingerprint().cache_key()
    changed = _fingerprint().model_copy(update={"git_head": "def456"})
    assert changed.cache_key() != _fingerprint().cache_key()


# ── cache ────────────────────────────────────────────────────


def test_put_then_get_round_trip(tmp_path: Path) -> None:
    cache = ContextPackCache(tmp_path / "cache")
    cache.put("k1", _pack(), _fingerprint())
    assert cache.get("k1") == _pack()
    assert (tmp_path / "cache" / "k1.json").exists()


def test_get_reads_from_disk_in_fresh_instance(tmp_path: Path) -> None:
    ContextPackCache(tmp_path).put("k1", _pack(), _fingerprint())
    assert ContextPackCache(tmp_path).get("k1") == _pack()


def test_missing_and_empty_keys_miss(tmp_path: Path) -> None:
    cache = ContextPackCache(tmp_path)
    assert cache.get("absent") is None
    assert cache.get("") is None
    cache.put("", _pack(), _fingerprint())
    cache.put("k", None, _fingerprint())
    assert list(tmp_path.glob("*.json")) == []


def test_expired_entry_is_removed(tmp_path: Path) -> None:
    path = tmp_path / "old.json"
    path.write_text(
        json.dumps(
            {
                "version": CONTEXT_CACHE_VERSION,
                "key": "old",
                "created_at": "2020-01-01T00:00:00Z",
                "expires_at": "2020-01-01T01:00:00Z",
                "fingerprint": {"project_root": "/repo"},
                "pack": _pack().model_dump(mode="json"),
            }
        ),
        encoding="utf-8",
    )
    assert ContextPackCache(tmp_path).get("old") is None
    assert not path.exists()


def test_version_mismatch_misses(tmp_path: Path) -> None:
    (tmp_path / "v.json").write_text(
        json.dumps(
            {
                "version": CONTEXT_CACHE_VERSION + 1,
                "key": "v",
                "created_at": "2099-01-01T00:00:00Z",
                "expires_at": "2099-01-01T01:00:00Z",
                "fingerprint": {"project_root": "/repo"},
                "pack": _pack().model_dump(mode="json"),
            }
        ),
        encoding="utf-8",
    )
    assert ContextPackCache(tmp_path).get("v") is None


def test_corrupt_entry_misses(tmp_path: Path) -> None:
    (tmp_path / "bad.json").write_text("{not json", encoding="utf-8")
    assert ContextPackCache(tmp_path).get("bad") is None


def test_prunes_to_max_entries(tmp_path: Path) -> None:
    cache = ContextPackCache(tmp_path, CacheConfig(max_entries=2))
    for key in ("a", "b", "c"):
        cache.put(key, _pack(key), _fingerprint())
    assert len(list(tmp_path.glob("*.json"))) == 2
