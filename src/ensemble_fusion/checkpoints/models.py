"""Checkpoint records persisted per ensemble run."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from ensemble_fusion.constants import ModeStatus, RunStatus
from ensemble_fusion.schema.outputs import ModeOutput


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime | None) -> datetime | None:
    """Naive timestamps are taken to be UTC so runs stay comparable."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CheckpointMetadata(BaseModel):
    """``_meta.json``: the authoritative completed/pending/error partition."""

    session_name: str = ""
    question: str = ""
    run_id: str
    status: RunStatus = RunStatus.ACTIVE
    created_at: datetime | None = None
    updated_at: datetime | None = None
    context_hash: str = ""
    completed_ids: list[str] = Field(default_factory=lambda: list[str]())
    pending_ids: list[str] = Field(default_factory=lambda: list[str]())
    error_ids: list[str] = Field(default_factory=lambda: list[str]())
    total_modes: int = 0

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc_times(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)

    @property
    def last_activity(self) -> datetime | None:
        return self.updated_at or self.created_at


class ModeCheckpoint(BaseModel):
    """``<mode_id>.json``: one mode's captured output or failure."""

    mode_id: str
    output: ModeOutput | None = None
    status: ModeStatus = ModeStatus.PENDING
    captured_at: datetime | None = None
    context_hash: str = ""
    tokens_used: int = 0
    error: str = ""

    @field_validator("captured_at")
    @classmethod
    def _utc_times(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class SynthesisCheckpoint(BaseModel):
    """``synthesis.json``: streaming watermark for resume."""

    run_id: str = ""
    session_name: str = ""
    last_emitted_index: int = 0
    error: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc_times(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class RunSession(BaseModel):
    """The slice of an ensemble session a checkpoint run is seeded from."""

    session_name: str
    question: str = ""
    mode_ids: list[str] = Field(default_factory=lambda: list[str]())
    status: RunStatus = RunStatus.ACTIVE
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("created_at")
    @classmethod
    def _utc_times(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)
