"""
Shared pieces for the entity services.

Invariants:
    - Services never write derived fields (Instructor.courseIds,
      Department.administratorName) directly; the synchronizer does
    - Every insert carries a freshly issued concurrency token
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from ..consistency import (
    CascadeEngine,
    ConcurrencyTokenManager,
    RelationshipSynchronizer,
    SequenceAllocator,
)
from ..errors import NotFoundError, ValidationError
from ..store.base import DocumentStore

T = TypeVar("T")

NAME_MAX_LENGTH = 50


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Marks an optional argument the caller did not pass, so None can mean "clear".
UNSET: Any = _Unset()


def require_text(value: str, field_name: str, min_length: int = 1) -> str:
    """Strip and length-check a required text field.

    Raises:
        ValidationError: If the value is empty, too short, or too long
    """
    value = (value or "").strip()
    if len(value) < min_length:
        raise ValidationError(
            f"{field_name} must be at least {min_length} character(s)", field_name
        )
    if len(value) > NAME_MAX_LENGTH:
        raise ValidationError(
            f"{field_name} cannot be longer than {NAME_MAX_LENGTH} characters", field_name
        )
    return value


@dataclass
class Page(Generic[T]):
    """One page of a sorted listing."""

    items: list[T] = field(default_factory=list)
    page_index: int = 1
    page_size: int = 4
    total_count: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0

    @property
    def has_previous_page(self) -> bool:
        return self.page_index > 1

    @property
    def has_next_page(self) -> bool:
        return self.page_index < self.total_pages


class EntityService:
    """Base class wiring a service to the store and the consistency core."""

    collection: str
    id_field: str
    entity: str

    def __init__(
        self,
        store: DocumentStore,
        sequences: SequenceAllocator,
        tokens: ConcurrencyTokenManager,
        synchronizer: RelationshipSynchronizer,
        cascades: CascadeEngine,
    ) -> None:
        self.store = store
        self.sequences = sequences
        self.tokens = tokens
        self.synchronizer = synchronizer
        self.cascades = cascades

    async def ensure_indexes(self) -> None:
        await self.store.create_unique_index(self.collection, self.id_field)

    async def _get_document(self, entity_id: int) -> dict[str, Any]:
        doc = await self.store.find_one(self.collection, {self.id_field: entity_id})
        if doc is None:
            raise NotFoundError(self.entity, entity_id)
        return doc

    async def exists(self, entity_id: int) -> bool:
        return await self.store.count(self.collection, {self.id_field: entity_id}) > 0

    async def _update(
        self, entity_id: int, supplied: bytes | None, changes: dict[str, Any]
    ) -> dict[str, Any]:
        return await self.tokens.versioned_update(
            self.collection, self.entity, self.id_field, entity_id, supplied, changes
        )
