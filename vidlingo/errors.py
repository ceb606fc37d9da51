"""Error taxonomy and failure classification for pipeline runs."""

from __future__ import annotations

import errno
from typing import Literal, Optional

import httpx
import openai
from pydantic import ValidationError
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior

ErrorKind = Literal[
    "transient_dependency",
    "retries_exhausted",
    "permanent_input",
    "dependency_unavailable",
    "checkpoint_conflict",
    "not_found",
    "cancelled",
]

_TRANSIENT_STATUS_CODES = {408, 425, 429}
_TRANSIENT_ERRNOS = {
    errno.ECONNRESET,
    errno.ECONNREFUSED,
    errno.ECONNABORTED,
    errno.ETIMEDOUT,
    errno.EPIPE,
}


class PipelineError(Exception):
    """Base class for every error surfaced by the orchestrator."""

    kind: ErrorKind = "transient_dependency"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class TransientDependencyError(PipelineError):
    """A downstream call failed in a way that may succeed on retry."""

    kind = "transient_dependency"


class ActivityTimeoutError(TransientDependencyError):
    """An activity attempt exceeded its stage timeout."""


class RetriesExhaustedError(TransientDependencyError):
    """A stage kept failing transiently until its attempt budget ran out."""

    kind = "retries_exhausted"

    def __init__(self, stage: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"{stage} failed after {attempts} attempts: "
            f"{type(last_error).__name__}: {last_error}"
        )
        self.stage = stage
        self.attempts = attempts
        self.last_error = last_error


class PermanentInputError(PipelineError):
    """The request itself is invalid; retrying cannot help."""

    kind = "permanent_input"


class MediaProcessingError(PermanentInputError):
    """The transcoder rejected the media."""

    def __init__(self, message: str, returncode: Optional[int] = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class DependencyUnavailableError(PipelineError):
    """The circuit for a dependency is open; the call was not attempted."""

    kind = "dependency_unavailable"

    def __init__(self, dependency: str, retry_after: float = 0.0) -> None:
        super().__init__(
            f"Dependency '{dependency}' unavailable, retry after {retry_after:.1f}s"
        )
        self.dependency = dependency
        self.retry_after = retry_after


class CheckpointConflictError(PipelineError):
    """A checkpoint was rewritten with a different payload."""

    kind = "checkpoint_conflict"

    def __init__(self, run_id: str, ordinal: int, detail: str = "") -> None:
        message = f"Checkpoint conflict for run {run_id} stage {ordinal}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.run_id = run_id
        self.ordinal = ordinal


class NotFoundError(PipelineError):
    """Unknown run identifier."""

    kind = "not_found"

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id


class RunCancelledError(PipelineError):
    """The run was cancelled while a stage was pending or in flight."""

    kind = "cancelled"


def _status_kind(status_code: int) -> ErrorKind:
    if status_code in _TRANSIENT_STATUS_CODES or status_code >= 500:
        return "transient_dependency"
    return "permanent_input"


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception raised by an activity onto the error taxonomy.

    Anything not recognised is treated as transient so the stage's attempt
    budget decides when to give up.
    """
    if isinstance(exc, PipelineError):
        return exc.kind

    # the openai SDK wraps httpx failures in its own hierarchy
    if isinstance(exc, (openai.APIConnectionError, openai.RateLimitError)):
        return "transient_dependency"
    if isinstance(exc, openai.APIStatusError):
        return _status_kind(exc.status_code)

    if isinstance(exc, ModelHTTPError):
        return _status_kind(exc.status_code)
    if isinstance(exc, UnexpectedModelBehavior):
        return "transient_dependency"

    if isinstance(exc, httpx.HTTPStatusError):
        return _status_kind(exc.response.status_code)
    if isinstance(exc, httpx.TransportError):
        return "transient_dependency"

    if isinstance(exc, ValidationError):
        return "permanent_input"
    if isinstance(exc, TimeoutError):
        return "transient_dependency"
    if isinstance(exc, ConnectionError):
        return "transient_dependency"
    if isinstance(exc, (FileNotFoundError, IsADirectoryError, PermissionError)):
        return "permanent_input"
    if isinstance(exc, OSError) and exc.errno in _TRANSIENT_ERRNOS:
        return "transient_dependency"
    if isinstance(exc, (ValueError, TypeError)):
        return "permanent_input"
    return "transient_dependency"


def is_transient(exc: BaseException) -> bool:
    return classify_error(exc) == "transient_dependency"
