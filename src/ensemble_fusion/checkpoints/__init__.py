"""Crash-safe per-run persistence and resume state."""

from ensemble_fusion.checkpoints.manager import CheckpointManager
from ensemble_fusion.checkpoints.models import (
    CheckpointMetadata,
    ModeCheckpoint,
    RunSession,
    SynthesisCheckpoint,
)
from ensemble_fusion.checkpoints.store import CheckpointStore

__all__ = [
    "CheckpointManager",
    "CheckpointMetadata",
    "CheckpointStore",
    "ModeCheckpoint",
    "RunSession",
    "SynthesisCheckpoint",
]
