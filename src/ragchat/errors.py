"""Exception hierarchy for the retrieval pipeline.

Every error carries a human readable message plus a ``details`` dictionary
with the identifiers needed to act on it (file name, chunk index, record id).
"""

from __future__ import annotations

from typing import Any, Sequence


class RagError(Exception):
    """Base class for all ragchat errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class UnreadableFile(RagError):
    """Text extraction produced nothing usable."""

    def __init__(self, name: str, reason: str = "File appears to be empty or unreadable") -> None:
        self.name = name
        self.reason = reason
        super().__init__(reason, {"name": name})


class EmbeddingFailure(RagError):
    """The embedding backend could not produce a vector.

    ``item`` identifies the failing input (batch index or chunk id).
    ``completed`` holds whatever was finished before the failure so the
    caller can decide what to keep.
    """

    def __init__(
        self,
        message: str,
        *,
        item: int | str | None = None,
        completed: Sequence[Any] = (),
    ) -> None:
        self.item = item
        self.completed = list(completed)
        details: dict[str, Any] = {}
        if item is not None:
            details["item"] = item
        if self.completed:
            details["completed"] = len(self.completed)
        super().__init__(message, details)


class DimensionMismatch(RagError, ValueError):
    """Two vectors being compared do not have the same length."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Vector dimension mismatch: expected {expected}, got {actual}",
            {"expected": expected, "actual": actual},
        )


class DuplicateKey(RagError):
    """A record with the same identifier already exists."""

    def __init__(self, collection: str, key: str) -> None:
        self.collection = collection
        self.key = key
        super().__init__(
            f"Duplicate key in {collection}: {key}",
            {"collection": collection, "key": key},
        )


class StorageFailure(RagError):
    """The persistence layer rejected an operation."""

    def __init__(self, operation: str, record_id: str | None = None, reason: str = "") -> None:
        self.operation = operation
        self.record_id = record_id
        message = f"Storage operation '{operation}' failed"
        if reason:
            message = f"{message}: {reason}"
        details: dict[str, Any] = {"operation": operation}
        if record_id is not None:
            details["record_id"] = record_id
        super().__init__(message, details)


class ModelServerError(RagError):
    """The language-model server could not be reached or answered badly."""
