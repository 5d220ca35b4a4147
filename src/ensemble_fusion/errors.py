"""Error taxonomy for the fusion core.

Classifies exceptions by kind to enable:
- Structured logging (which failures are expected empty states vs real faults)
- Callers treating "missing checkpoint" as normal instead of fatal
- Uniform reporting at the boundary (NotFound, Invalid, Budget, Cancelled)
"""

from __future__ import annotations

import asyncio
from enum import Enum

from pydantic import ValidationError as PydanticValidationError


class ErrorKind(Enum):
    NOT_FOUND = "not_found"  # missing checkpoint/metadata, empty state
    INVALID = "invalid"  # missing store, empty ids, malformed spec
    BUDGET = "budget"  # estimate overrun (reported, never raised)
    CANCELLED = "cancelled"  # context cancellation during streaming
    PARSE = "parse"  # agent output could not be decoded
    VALIDATION = "validation"  # decoded but fails field checks
    IO = "io"  # filesystem failure
    UNKNOWN = "unknown"


class EnsembleError(Exception):
    """Base class for all fusion-core errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class ParseError(EnsembleError):
    """Agent output could not be decoded as YAML or JSON."""

    kind = ErrorKind.PARSE


class InvalidArgumentError(EnsembleError, ValueError):
    """Caller supplied an empty or malformed argument."""

    kind = ErrorKind.INVALID


class InvalidConfidenceError(ParseError, ValueError):
    """Confidence/likelihood literal is not a number, percentage or level."""

    kind = ErrorKind.INVALID


class BadSpecError(InvalidArgumentError):
    """Explicit assignment spec could not be resolved."""


class UnknownStrategyError(InvalidArgumentError):
    """Synthesis strategy name is not registered."""


class InsufficientPanesError(EnsembleError):
    """Fewer assignable panes than requested modes."""

    kind = ErrorKind.INVALID


class ProvenanceCycleError(InvalidArgumentError):
    """A merge would create a cycle or re-merge an already merged chain."""


class CheckpointNotFoundError(EnsembleError, FileNotFoundError):
    """Checkpoint, metadata, or synthesis file is absent."""

    kind = ErrorKind.NOT_FOUND


class CheckpointIOError(EnsembleError, OSError):
    """Filesystem failure wrapped with operation context."""

    kind = ErrorKind.IO


def classify_error(error: BaseException) -> ErrorKind:
    """Classify an exception into the boundary taxonomy.

    Checks our own hierarchy first, then falls back to builtin types.
    """
    # 1. Our own errors carry their kind
    if isinstance(error, EnsembleError):
        return error.kind

    # 2. Cancellation and timeouts
    if isinstance(error, asyncio.CancelledError):
        return ErrorKind.CANCELLED

    # 3. Builtins
    if isinstance(error, PydanticValidationError):
        return ErrorKind.VALIDATION
    if isinstance(error, FileNotFoundError):
        return ErrorKind.NOT_FOUND
    if isinstance(error, OSError):
        return ErrorKind.IO
    if isinstance(error, ValueError):
        return ErrorKind.INVALID

    return ErrorKind.UNKNOWN


def is_not_found(error: BaseException) -> bool:
    """Return True if the error represents a normal empty state."""
    return classify_error(error) is ErrorKind.NOT_FOUND
