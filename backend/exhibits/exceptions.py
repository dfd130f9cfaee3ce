"""Error classes raised inside the exhibits services.

Services raise these; the lifecycle coordinator catches them at its boundary
and converts them into structured results with an HTTP status code.
"""

from __future__ import annotations

from typing import Any


class ExhibitsError(RuntimeError):
    """Base exception for the exhibits backend."""


class ValidationFailed(ExhibitsError):
    """Input is malformed or fails its schema.

    ``errors`` carries the validator's structured error list and is returned
    to the caller unmodified.
    """

    def __init__(self, errors: list[dict[str, Any]] | str):
        if isinstance(errors, str):
            errors = [{"message": errors}]
        self.errors = errors
        super().__init__(errors[0].get("message", "Validation failed") if errors else "Validation failed")


class NotLockOwner(ExhibitsError):
    """Unlock attempted by a user who does not hold the lock."""

    def __init__(self, record_id: Any, locked_by: Any):
        self.record_id = record_id
        self.locked_by = locked_by
        super().__init__(f"Record {record_id} is locked by another user: {locked_by}")


class StoreFailure(ExhibitsError):
    """A write to the record store failed and was rolled back."""


class IndexFailure(ExhibitsError):
    """The search index did not reach the intended state."""


class UnknownRecordKind(ExhibitsError):
    """A type discriminator does not name a record kind."""

    def __init__(self, key: str | None):
        self.key = key
        super().__init__(f"Unknown record type: {key}")
