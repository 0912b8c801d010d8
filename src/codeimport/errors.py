"""Exception types raised by the import pipeline.

Every error carries a ``details`` dict so the CLI and logs can report the
category, lock name, attempt counts and holder without string matching.
"""
from __future__ import annotations

import enum
from typing import Any, Optional


class CodeImportError(Exception):
    """Base class for all codeimport errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ClassificationError(CodeImportError):
    """Artifact could not be classified and no code type was supplied."""


class StoreConnectivityError(CodeImportError):
    """A lock or ledger call failed at the connection/session level."""


class LockFailureKind(str, enum.Enum):
    NO_WAIT = "no_wait"
    EXHAUSTED = "exhausted"
    STORE_ERROR = "store_error"


class LockAcquisitionError(CodeImportError):
    """Raised when a lock cannot be acquired.

    ``kind`` tells callers why: the lock was busy in no-wait mode, the retry
    budget ran out, or the acquire primitive itself failed.
    """

    kind = LockFailureKind.STORE_ERROR

    def __init__(
        self,
        message: str,
        lock_name: str,
        attempts: int = 1,
        waited_seconds: float = 0.0,
        holder: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        merged = {
            "lock_name": lock_name,
            "attempts": attempts,
            "waited_seconds": waited_seconds,
            "holder": holder,
        }
        merged.update(details or {})
        super().__init__(message, merged)
        self.lock_name = lock_name
        self.attempts = attempts
        self.waited_seconds = waited_seconds
        self.holder = holder


class NoWaitContention(LockAcquisitionError):
    kind = LockFailureKind.NO_WAIT


class LockContentionExhausted(LockAcquisitionError):
    kind = LockFailureKind.EXHAUSTED


class LoaderError(CodeImportError):
    """The external loader reported failure or is not registered."""


class LedgerUpdateError(CodeImportError):
    """Writing the tracking record failed after a successful load."""
