"""
Error types for campusdb.

This module defines the exceptions raised by the consistency core and
the services built on it:
- CampusDbError: Base exception
- NotFoundError: Referenced entity does not exist
- ConflictError: Concurrency token mismatch
- HasDependentsError: Delete blocked by a guard
- PartialSynchronizationError: Multi-document write sequence failed midway
- DuplicateIdError: Caller-supplied business id already taken
- ValidationError: Request cannot be applied as given

Invariants:
    - All errors inherit from CampusDbError
    - Errors carry a stable code for programmatic handling
    - Guard and conflict errors are raised before any mutation

How to change safely:
    - Never change an existing code string, callers map them to HTTP statuses
    - Add new error types as subclasses with their own code
"""

from __future__ import annotations

from typing import Any


class CampusDbError(Exception):
    """Base exception for all campusdb errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CAMPUSDB_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "error": self.message,
            "error_code": self.code,
            "details": self.details,
        }


class NotFoundError(CampusDbError):
    """Referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: int) -> None:
        super().__init__(
            f"{entity} not found: {entity_id}",
            code="NOT_FOUND",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(CampusDbError):
    """The supplied concurrency token does not match the stored one.

    The caller should reload the entity and retry with the fresh token.
    """

    def __init__(self, entity: str, entity_id: int) -> None:
        super().__init__(
            f"The {entity} {entity_id} was modified by another user",
            code="CONFLICT",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class HasDependentsError(CampusDbError):
    """Delete blocked because dependent records still reference the entity."""

    def __init__(self, entity: str, entity_id: int, dependent: str, count: int) -> None:
        super().__init__(
            f"Cannot delete {entity} {entity_id}: {count} {dependent} record(s) reference it",
            code="HAS_DEPENDENTS",
            details={
                "entity": entity,
                "id": entity_id,
                "dependent": dependent,
                "count": count,
            },
        )
        self.entity = entity
        self.entity_id = entity_id
        self.dependent = dependent
        self.count = count


class PartialSynchronizationError(CampusDbError):
    """A multi-document write sequence failed after some writes were applied.

    Applied writes are not rolled back. Re-issuing the same logical
    operation converges because synchronizer operations are idempotent.

    Attributes:
        operation: Name of the synchronizer operation
        applied: Writes that were applied before the failure
        pending: Writes that were not applied
    """

    def __init__(
        self,
        operation: str,
        applied: list[str],
        pending: list[str],
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            f"{operation} failed after {len(applied)} of "
            f"{len(applied) + len(pending)} writes: {cause}",
            code="PARTIAL_SYNCHRONIZATION",
            details={"operation": operation, "applied": applied, "pending": pending},
        )
        self.operation = operation
        self.applied = applied
        self.pending = pending


class DuplicateIdError(CampusDbError):
    """A record with the caller-supplied id already exists."""

    def __init__(self, entity: str, entity_id: int) -> None:
        super().__init__(
            f"A {entity} with id {entity_id} already exists",
            code="DUPLICATE_ID",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(CampusDbError):
    """Request cannot be applied as given."""

    def __init__(self, message: str, field_name: str | None = None) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name},
        )
        self.field_name = field_name
