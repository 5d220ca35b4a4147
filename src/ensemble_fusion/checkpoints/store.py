"""Filesystem checkpoint store.

Layout::

    <base>/ensemble-checkpoints/<run_id>/_meta.json
                                        /<mode_id>.json
                                        /synthesis.json

Every file is replaced atomically, so a crash mid-write leaves the
previous version readable. Missing files raise
``CheckpointNotFoundError``; other filesystem failures are wrapped in
``CheckpointIOError`` with the failing operation in the message.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from ensemble_fusion.atomic import atomic_write_text
from ensemble_fusion.checkpoints.models import (
    CheckpointMetadata,
    ModeCheckpoint,
    SynthesisCheckpoint,
)
from ensemble_fusion.constants import (
    CHECKPOINT_DIR_MODE,
    CHECKPOINT_DIR_NAME,
    CHECKPOINT_FILE_MODE,
    CHECKPOINT_META_FILE,
    CHECKPOINT_SYNTHESIS_FILE,
    ModeStatus,
)
from ensemble_fusion.errors import (
    CheckpointIOError,
    CheckpointNotFoundError,
    InvalidArgumentError,
)
from ensemble_fusion.schema.outputs import ModeOutput

logger = logging.getLogger(__name__)

_ModelT = TypeVar("_ModelT", bound=BaseModel)

_RESERVED_FILES = frozenset({CHECKPOINT_META_FILE, CHECKPOINT_SYNTHESIS_FILE})


def _utcnow() -> datetime:
    return datetime.now(UTC)


def validate_path_component(value: str, what: str) -> str:
    """Reject ids that are empty or could escape the run directory."""
    if not value or not value.strip():
        msg = f"{what} is required"
        raise InvalidArgumentError(msg)
    if "/" in value or "\\" in value or ".." in value:
        msg = f"invalid {what}: {value!r}"
        raise InvalidArgumentError(msg)
    return value


class CheckpointStore:
    """Per-run JSON files under ``<base>/ensemble-checkpoints``."""

    def __init__(self, base_dir: Path) -> None:
        self._root = base_dir / CHECKPOINT_DIR_NAME
        self._lock = threading.RLock()
        try:
            self._root.mkdir(parents=True, exist_ok=True, mode=CHECKPOINT_DIR_MODE)
        except OSError as exc:
            msg = f"create checkpoint directory: {exc}"
            raise CheckpointIOError(msg) from exc

    @property
    def root(self) -> Path:
        return self._root

    def run_dir(self, run_id: str) -> Path:
        return self._root / validate_path_component(run_id, "run ID")

    # ── low-level IO ─────────────────────────────────────

    def _ensure_run_dir(self, run_id: str) -> Path:
        path = self.run_dir(run_id)
        try:
            path.mkdir(parents=True, exist_ok=True, mode=CHECKPOINT_DIR_MODE)
        except OSError as exc:
            msg = f"create run directory: {exc}"
            raise CheckpointIOError(msg) from exc
        return path

    def _write(self, path: Path, record: BaseModel, what: str) -> None:
        try:
            atomic_write_text(
                path, record.model_dump_json(indent=2), mode=CHECKPOINT_FILE_MODE
            )
        except OSError as exc:
            msg = f"write {what}: {exc}"
            raise CheckpointIOError(msg) from exc

    def _read(self, path: Path, model: type[_ModelT], what: str) -> _ModelT:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            msg = f"{what} not found: {path.name}"
            raise CheckpointNotFoundError(msg) from exc
        except OSError as exc:
            msg = f"read {what}: {exc}"
            raise CheckpointIOError(msg) from exc
        return model.model_validate_json(raw)

    # ── mode checkpoints ─────────────────────────────────

    def save_checkpoint(self, run_id: str, checkpoint: ModeCheckpoint) -> None:
        validate_path_component(checkpoint.mode_id, "mode ID")
        if checkpoint.captured_at is None:
            checkpoint = checkpoint.model_copy(update={"captured_at": _utcnow()})
        with self._lock:
            run_dir = self._ensure_run_dir(run_id)
            self._write(run_dir / f"{checkpoint.mode_id}.json", checkpoint, "checkpoint")
        logger.info(
            "event=checkpoint_saved run_id=%s mode=%s status=%s tokens=%d",
            run_id,
            checkpoint.mode_id,
            checkpoint.status,
            checkpoint.tokens_used,
        )

    def load_checkpoint(self, run_id: str, mode_id: str) -> ModeCheckpoint:
        validate_path_component(mode_id, "mode ID")
        path = self.run_dir(run_id) / f"{mode_id}.json"
        return self._read(path, ModeCheckpoint, "checkpoint")

    def load_all_checkpoints(self, run_id: str) -> list[ModeCheckpoint]:
        """Every readable mode checkpoint of a run, ordered by mode id."""
        run_dir = self.run_dir(run_id)
        try:
            names = sorted(os.listdir(run_dir))
        except FileNotFoundError as exc:
            msg = f"run not found: {run_id}"
            raise CheckpointNotFoundError(msg) from exc
        except OSError as exc:
            msg = f"read checkpoint directory: {exc}"
            raise CheckpointIOError(msg) from exc

        checkpoints: list[ModeCheckpoint] = []
        for name in names:
            if not name.endswith(".json") or name in _RESERVED_FILES:
                continue
            mode_id = name.removesuffix(".json")
            try:
                checkpoints.append(self.load_checkpoint(run_id, mode_id))
            except (CheckpointNotFoundError, CheckpointIOError, ValidationError) as exc:
                logger.warning(
                    "event=checkpoint_load_failed run_id=%s mode=%s error=%s",
                    run_id,
                    mode_id,
                    exc,
                )
        return checkpoints

    # ── metadata ─────────────────────────────────────────

    def save_metadata(self, meta: CheckpointMetadata) -> CheckpointMetadata:
        """Persist *meta*, stamping ``updated_at``; returns the stored record."""
        now = _utcnow()
        stored = meta.model_copy(
            update={"created_at": meta.created_at or now, "updated_at": now}
        )
        with self._lock:
            run_dir = self._ensure_run_dir(stored.run_id)
            self._write(run_dir / CHECKPOINT_META_FILE, stored, "metadata")
        logger.info(
            "event=checkpoint_metadata_saved run_id=%s session=%s completed=%d pending=%d",
            stored.run_id,
            stored.session_name,
            len(stored.completed_ids),
            len(stored.pending_ids),
        )
        return stored

    def load_metadata(self, run_id: str) -> CheckpointMetadata:
        path = self.run_dir(run_id) / CHECKPOINT_META_FILE
        return self._read(path, CheckpointMetadata, "metadata")

    def update_mode_status(
        self, run_id: str, mode_id: str, status: ModeStatus
    ) -> CheckpointMetadata:
        """Move *mode_id* into the list matching *status* in one metadata rewrite."""
        validate_path_component(mode_id, "mode ID")
        with self._lock:
            meta = self.load_metadata(run_id)
            pending = [m for m in meta.pending_ids if m != mode_id]
            errors = [m for m in meta.error_ids if m != mode_id]
            completed = list(meta.completed_ids)
            if status == ModeStatus.DONE:
                if mode_id not in completed:
                    completed.append(mode_id)
            elif status == ModeStatus.ERROR:
                errors.append(mode_id)
            else:
                pending.append(mode_id)
            return self.save_metadata(
                meta.model_copy(
                    update={
                        "completed_ids": completed,
                        "pending_ids": pending,
                        "error_ids": errors,
                    }
                )
            )

    def get_pending_mode_ids(self, run_id: str) -> list[str]:
        return list(self.load_metadata(run_id).pending_ids)

    def get_completed_outputs(self, run_id: str) -> list[ModeOutput]:
        return [
            cp.output
            for cp in self.load_all_checkpoints(run_id)
            if cp.status == ModeStatus.DONE and cp.output is not None
        ]

    # ── synthesis watermark ──────────────────────────────

    def save_synthesis_checkpoint(
        self, run_id: str, checkpoint: SynthesisCheckpoint
    ) -> SynthesisCheckpoint:
        now = _utcnow()
        stored = checkpoint.model_copy(
            update={
                "run_id": run_id,
                "created_at": checkpoint.created_at or now,
                "updated_at": now,
            }
        )
        with self._lock:
            run_dir = self._ensure_run_dir(run_id)
            self._write(run_dir / CHECKPOINT_SYNTHESIS_FILE, stored, "synthesis checkpoint")
        logger.info(
            "event=synthesis_checkpoint_saved run_id=%s last_index=%d",
            run_id,
            stored.last_emitted_index,
        )
        return stored

    def load_synthesis_checkpoint(self, run_id: str) -> SynthesisCheckpoint:
        return self._read(
            self.run_dir(run_id) / CHECKPOINT_SYNTHESIS_FILE,
            SynthesisCheckpoint,
            "synthesis checkpoint",
        )

    # ── runs ─────────────────────────────────────────────

    def run_exists(self, run_id: str) -> bool:
        try:
            return self.run_dir(run_id).is_dir()
        except InvalidArgumentError:
            return False

    def list_runs(self) -> list[CheckpointMetadata]:
        """All runs, newest first; runs without metadata use the directory mtime."""
        runs: list[CheckpointMetadata] = []
        try:
            entries = sorted(p for p in self._root.iterdir() if p.is_dir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            msg = f"read checkpoint directory: {exc}"
            raise CheckpointIOError(msg) from exc

        for entry in entries:
            try:
                runs.append(self.load_metadata(entry.name))
            except (CheckpointNotFoundError, CheckpointIOError, ValidationError):
                mtime = datetime.fromtimestamp(entry.stat().st_mtime, tz=UTC)
                runs.append(CheckpointMetadata(run_id=entry.name, created_at=mtime))

        epoch = datetime.min.replace(tzinfo=UTC)
        runs.sort(key=lambda m: m.created_at or epoch, reverse=True)
        return runs

    def delete_run(self, run_id: str) -> None:
        path = self.run_dir(run_id)
        with self._lock:
            try:
                shutil.rmtree(path)
            except FileNotFoundError:
                return
            except OSError as exc:
                msg = f"remove checkpoint directory: {exc}"
                raise CheckpointIOError(msg) from exc
        logger.info("event=checkpoint_deleted run_id=%s", run_id)

    def clean_old(self, max_age: timedelta) -> int:
        """Delete runs last touched strictly before ``now - max_age``."""
        cutoff = _utcnow() - max_age
        removed = 0
        for run in self.list_runs():
            touched = run.last_activity
            if touched is None or touched >= cutoff:
                continue
            try:
                self.delete_run(run.run_id)
            except (CheckpointIOError, InvalidArgumentError) as exc:
                logger.warning(
                    "event=checkpoint_clean_failed run_id=%s error=%s", run.run_id, exc
                )
                continue
            removed += 1
        logger.info("event=checkpoints_cleaned removed=%d max_age=%s", removed, max_age)
        return removed
