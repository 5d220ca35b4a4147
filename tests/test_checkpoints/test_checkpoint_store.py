"""Tests for the filesystem checkpoint store."""

from __future__ import annotations

import json
import os
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from ensemble_fusion.checkpoints import (
    CheckpointMetadata,
    CheckpointStore,
    ModeCheckpoint,
    SynthesisCheckpoint,
)
from ensemble_fusion.constants import ModeStatus
from ensemble_fusion.errors import (
    CheckpointNotFoundError,
    ErrorKind,
    InvalidArgumentError,
    classify_error,
    is_not_found,
)
from ensemble_fusion.schema.outputs import ModeOutput

MakeOutput = Callable[..., ModeOutput]


# ── layout ───────────────────────────────────────────────


def test_files_land_in_run_directory(store: CheckpointStore, make_output: MakeOutput) -> None:
    store.save_metadata(CheckpointMetadata(run_id="run-1", pending_ids=["deductive"]))
    store.save_checkpoint(
        "run-1",
        ModeCheckpoint(mode_id="deductive", output=make_output("deductive"), status="done"),
    )
    store.save_synthesis_checkpoint("run-1", SynthesisCheckpoint(last_emitted_index=4))

    run_dir = store.root / "run-1"
    assert store.root.name == "ensemble-checkpoints"
    assert sorted(os.listdir(run_dir)) == ["_meta.json", "deductive.json", "synthesis.json"]
    assert json.loads((run_dir / "_meta.json").read_text())["run_id"] == "run-1"


@pytest.mark.parametrize("run_id", ["", "  ", "../escape", "a/b", "a\\b"])
def test_rejects_unsafe_run_ids(store: CheckpointStore, run_id: str) -> None:
    with pytest.raises(InvalidArgumentError):
        store.run_dir(run_id)
    assert store.run_exists(run_id) is False


def test_rejects_unsafe_mode_ids(store: CheckpointStore) -> None:
    with pytest.raises(InvalidArgumentError, match="invalid mode ID"):
        store.save_checkpoint("run-1", ModeCheckpoint(mode_id="../x"))


# ── mode checkpoints ─────────────────────────────────────


def test_checkpoint_round_trip(store: CheckpointStore, make_output: MakeOutput) -> None:
    output = make_output("deductive", ["pool exhausted"])
    store.save_checkpoint(
        "run-1",
        ModeCheckpoint(mode_id="deductive", output=output, status="done", tokens_used=420),
    )
    loaded = store.load_checkpoint("run-1", "deductive")

    assert loaded.status is ModeStatus.DONE
    assert loaded.tokens_used == 420
    assert loaded.captured_at is not None
    assert loaded.output is not None
    assert loaded.output.top_findings[0].finding == "pool exhausted"


def test_missing_checkpoint_is_not_found(store: CheckpointStore) -> None:
    with pytest.raises(CheckpointNotFoundError) as excinfo:
        store.load_checkpoint("run-1", "deductive")
    assert is_not_found(excinfo.value)
    assert classify_error(excinfo.value) is ErrorKind.NOT_FOUND


def test_load_all_skips_reserved_and_corrupt_files(
    store: CheckpointStore, make_output: MakeOutput
) -> None:
    store.save_metadata(CheckpointMetadata(run_id="run-1"))
    for mode in ("inductive", "deductive"):
        store.save_checkpoint(
            "run-1", ModeCheckpoint(mode_id=mode, output=make_output(mode), status="done")
        )
    (store.run_dir("run-1") / "broken.json").write_text("{not json")

    loaded = store.load_all_checkpoints("run-1")
    assert [cp.mode_id for cp in loaded] == ["deductive", "inductive"]


def test_load_all_for_missing_run(store: CheckpointStore) -> None:
    with pytest.raises(CheckpointNotFoundError, match="run not found"):
        store.load_all_checkpoints("nope")


# ── metadata ─────────────────────────────────────────────


def test_save_metadata_stamps_times(store: CheckpointStore) -> None:
    stored = store.save_metadata(CheckpointMetadata(run_id="run-1"))
    assert stored.created_at is not None
    assert stored.updated_at is not None

    again = store.save_metadata(stored)
    assert again.created_at == stored.created_at
    assert again.updated_at is not None
    assert again.updated_at >= stored.updated_at


def test_update_mode_status_moves_between_lists(store: CheckpointStore) -> None:
    store.save_metadata(CheckpointMetadata(run_id="run-1", pending_ids=["a", "b", "c"]))

    store.update_mode_status("run-1", "a", ModeStatus.DONE)
    store.update_mode_status("run-1", "b", ModeStatus.ERROR)
    meta = store.update_mode_status("run-1", "a", ModeStatus.DONE)

    assert meta.completed_ids == ["a"]
    assert meta.error_ids == ["b"]
    assert meta.pending_ids == ["c"]
    assert store.get_pending_mode_ids("run-1") == ["c"]

    retried = store.update_mode_status("run-1", "b", ModeStatus.PENDING)
    assert retried.error_ids == []
    assert retried.pending_ids == ["c", "b"]


def test_completed_outputs_only_done(store: CheckpointStore, make_output: MakeOutput) -> None:
    store.save_checkpoint(
        "run-1", ModeCheckpoint(mode_id="a", output=make_output("a"), status="done")
    )
    store.save_checkpoint("run-1", ModeCheckpoint(mode_id="b", status="error", error="boom"))
    outputs = store.get_completed_outputs("run-1")
    assert [o.mode_id for o in outputs] == ["a"]


# ── synthesis watermark ──────────────────────────────────


def test_synthesis_checkpoint_round_trip(store: CheckpointStore) -> None:
    stored = store.save_synthesis_checkpoint(
        "run-1", SynthesisCheckpoint(session_name="s", last_emitted_index=7)
    )
    loaded = store.load_synthesis_checkpoint("run-1")
    assert stored.run_id == "run-1"
    assert loaded.last_emitted_index == 7
    assert loaded.created_at == stored.created_at


def test_missing_synthesis_checkpoint(store: CheckpointStore) -> None:
    with pytest.raises(CheckpointNotFoundError):
        store.load_synthesis_checkpoint("run-1")


# ── runs ─────────────────────────────────────────────────


def test_list_runs_newest_first(store: CheckpointStore) -> None:
    store.save_metadata(CheckpointMetadata(run_id="older"))
    time.sleep(0.01)
    store.save_metadata(CheckpointMetadata(run_id="newer"))
    (store.root / "bare").mkdir()
    old = time.time() - 3600
    os.utime(store.root / "bare", (old, old))

    assert [m.run_id for m in store.list_runs()] == ["newer", "older", "bare"]


def test_naive_timestamps_sort_with_aware_ones(store: CheckpointStore) -> None:
    legacy = store.root / "legacy"
    legacy.mkdir(parents=True)
    (legacy / "_meta.json").write_text(
        json.dumps({"run_id": "legacy", "created_at": "2020-01-01T00:00:00"}),
        encoding="utf-8",
    )
    store.save_metadata(CheckpointMetadata(run_id="fresh"))
    store.save_metadata(CheckpointMetadata(run_id="naive", created_at=datetime(2021, 1, 1)))

    runs = store.list_runs()
    assert [m.run_id for m in runs] == ["fresh", "naive", "legacy"]
    assert runs[2].created_at == datetime(2020, 1, 1, tzinfo=UTC)
    assert store.load_metadata("naive").created_at == datetime(2021, 1, 1, tzinfo=UTC)


def test_delete_run(store: CheckpointStore) -> None:
    store.save_metadata(CheckpointMetadata(run_id="run-1"))
    assert store.run_exists("run-1")
    store.delete_run("run-1")
    assert not store.run_exists("run-1")
    store.delete_run("run-1")


def test_clean_old_removes_stale_runs(store: CheckpointStore) -> None:
    store.save_metadata(CheckpointMetadata(run_id="fresh"))
    stale = store.root / "stale"
    stale.mkdir()
    old = time.time() - 3 * 86400
    os.utime(stale, (old, old))

    assert store.clean_old(timedelta(days=1)) == 1
    assert store.run_exists("fresh")
    assert not store.run_exists("stale")


def test_clean_old_keeps_run_touched_exactly_at_cutoff(store: CheckpointStore) -> None:
    now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    with patch("ensemble_fusion.checkpoints.store._utcnow", return_value=now):
        store.save_metadata(CheckpointMetadata(run_id="edge"))
    later = now + timedelta(days=1)
    with patch("ensemble_fusion.checkpoints.store._utcnow", return_value=later):
        assert store.clean_old(timedelta(days=1)) == 0
    assert store.run_exists("edge")

    with patch(
        "ensemble_fusion.checkpoints.store._utcnow",
        return_value=later + timedelta(microseconds=1),
    ):
        assert store.clean_old(timedelta(days=1)) == 1
    assert not store.run_exists("edge")
