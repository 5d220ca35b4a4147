"""Per-run checkpoint bookkeeping used while an ensemble is executing."""

from __future__ import annotations

import logging

from ensemble_fusion.checkpoints.models import (
    CheckpointMetadata,
    ModeCheckpoint,
    RunSession,
    SynthesisCheckpoint,
)
from ensemble_fusion.checkpoints.store import CheckpointStore, validate_path_component
from ensemble_fusion.constants import NO_OUTPUT_ERROR, ModeStatus, RunStatus
from ensemble_fusion.errors import CheckpointNotFoundError, ErrorKind, classify_error
from ensemble_fusion.schema.outputs import ModeOutput

logger = logging.getLogger(__name__)


class CheckpointManager:
    def __init__(self, store: CheckpointStore, run_id: str) -> None:
        self.store = store
        self.run_id = validate_path_component(run_id, "run ID")

    def initialize(self, session: RunSession, context_hash: str = "") -> CheckpointMetadata:
        """Seed metadata with every mode pending."""
        mode_ids = list(session.mode_ids)
        meta = CheckpointMetadata(
            session_name=session.session_name,
            question=session.question,
            run_id=self.run_id,
            status=session.status,
            created_at=session.created_at,
            context_hash=context_hash,
            pending_ids=mode_ids,
            total_modes=len(mode_ids),
        )
        logger.info(
            "event=checkpoint_run_initialized run_id=%s modes=%d", self.run_id, len(mode_ids)
        )
        return self.store.save_metadata(meta)

    def record_output(
        self,
        mode_id: str,
        output: ModeOutput | None,
        tokens_used: int = 0,
        context_hash: str = "",
    ) -> CheckpointMetadata:
        """Store a mode's output; a missing output is recorded as an error."""
        status = ModeStatus.DONE if output is not None else ModeStatus.ERROR
        self.store.save_checkpoint(
            self.run_id,
            ModeCheckpoint(
                mode_id=mode_id,
                output=output,
                status=status,
                context_hash=context_hash,
                tokens_used=max(tokens_used, 0),
                error="" if output is not None else NO_OUTPUT_ERROR,
            ),
        )
        return self.store.update_mode_status(self.run_id, mode_id, status)

    def record_error(self, mode_id: str, error: BaseException | str) -> CheckpointMetadata:
        self.store.save_checkpoint(
            self.run_id,
            ModeCheckpoint(mode_id=mode_id, status=ModeStatus.ERROR, error=str(error)),
        )
        kind = classify_error(error) if isinstance(error, BaseException) else ErrorKind.UNKNOWN
        logger.warning(
            "event=checkpoint_mode_failed run_id=%s mode=%s kind=%s error=%s",
            self.run_id,
            mode_id,
            kind.value,
            error,
        )
        return self.store.update_mode_status(self.run_id, mode_id, ModeStatus.ERROR)

    def mark_complete(self, cleanup: bool = False) -> None:
        meta = self.store.load_metadata(self.run_id)
        self.store.save_metadata(meta.model_copy(update={"status": RunStatus.COMPLETE}))
        if cleanup:
            self.store.delete_run(self.run_id)

    def is_resumable(self) -> bool:
        try:
            meta = self.store.load_metadata(self.run_id)
        except CheckpointNotFoundError:
            return False
        return bool(meta.pending_ids or meta.error_ids)

    def get_resume_state(self) -> tuple[CheckpointMetadata, list[ModeOutput]]:
        """Metadata plus every completed output, for relaunching the rest."""
        meta = self.store.load_metadata(self.run_id)
        return meta, self.store.get_completed_outputs(self.run_id)

    def synthesis_resume_index(self) -> int:
        """Last streamed chunk index, or 0 when no synthesis was checkpointed."""
        try:
            return self.store.load_synthesis_checkpoint(self.run_id).last_emitted_index
        except CheckpointNotFoundError:
            return 0

    def record_synthesis_progress(
        self, last_emitted_index: int, error: BaseException | str | None = None
    ) -> SynthesisCheckpoint:
        """Persist the streaming watermark; an earlier ``created_at`` is kept."""
        try:
            previous = self.store.load_synthesis_checkpoint(self.run_id)
        except CheckpointNotFoundError:
            previous = SynthesisCheckpoint()
        session_name = previous.session_name
        if not session_name:
            try:
                session_name = self.store.load_metadata(self.run_id).session_name
            except CheckpointNotFoundError:
                session_name = ""
        return self.store.save_synthesis_checkpoint(
            self.run_id,
            previous.model_copy(
                update={
                    "session_name": session_name,
                    "last_emitted_index": max(last_emitted_index, 0),
                    "error": "" if error is None else str(error),
                }
            ),
        )
