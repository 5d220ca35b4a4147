"""Whole-file atomic writes (temp file in the same directory, then rename)."""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

from ensemble_fusion.constants import CHECKPOINT_FILE_MODE


def atomic_write_text(
    path: Path, text: str, *, mode: int = CHECKPOINT_FILE_MODE
) -> None:
    """Write *text* to *path* so readers see either the old or new file.

    The temp file lives beside the target so ``os.replace`` never crosses
    filesystems. On failure the temp file is removed and the error
    propagates.
    """
    temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix=".json.tmp")
    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(temp_path)
        raise
