"""
Utilities
=========

Small helpers shared by the pipeline that do not belong to a specific
collaborator:

- `run_with_retries`, the bounded fixed-delay retry loop that restarts an
  action from scratch after every failure;
- `truncate_text`, the positional prefix cut applied before classification;
- `scratch_directory`, a unique per-attempt working directory that is removed
  whatever happens inside it.
"""

from __future__ import annotations

import contextlib
import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable, Iterator, Type, TypeVar

import structlog

log = structlog.get_logger(__name__)
T = TypeVar("T")


class RetriesExhausted(Exception):
    """Raised when every attempt of `run_with_retries` failed."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def run_with_retries(
    action: Callable[[int], T],
    *,
    max_attempts: int,
    delay_seconds: float,
    retryable_exceptions: tuple[Type[Exception], ...] = (Exception,),
    on_failure: Callable[[int, Exception], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``action(attempt)`` until it succeeds or ``max_attempts`` is reached.

    Every call starts from scratch; nothing is carried between attempts except
    the attempt number. ``on_failure(attempt, error)`` runs after each failed
    attempt, before the delay. No delay follows the last attempt.

    Exceptions outside ``retryable_exceptions`` propagate immediately.

    Raises:
        RetriesExhausted: when the last attempt failed.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return action(attempt)
        except retryable_exceptions as e:
            log.warning(
                "Attempt failed",
                action=getattr(action, "__name__", repr(action)),
                attempt=attempt,
                max_attempts=max_attempts,
                error=str(e),
            )
            if on_failure is not None:
                on_failure(attempt, e)
            if attempt == max_attempts:
                raise RetriesExhausted(attempt, e) from e
            log.info(
                "Sleeping before retry",
                delay_seconds=delay_seconds,
                next_attempt=attempt + 1,
                max_attempts=max_attempts,
            )
            sleep(delay_seconds)
    # This part should be unreachable if max_attempts > 0
    raise RuntimeError("Retry loop exited unexpectedly.")


def truncate_text(text: str, max_chars: int) -> str:
    """Keep only the first ``max_chars`` characters of ``text``."""
    if max_chars <= 0:
        return ""
    return text[:max_chars]


@contextlib.contextmanager
def scratch_directory(prefix: str = "scan-classifier-") -> Iterator[Path]:
    """Yield a fresh temporary directory and remove it on exit."""
    path = Path(tempfile.mkdtemp(prefix=prefix))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
