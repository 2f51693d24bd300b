"""
Sequence allocator for numeric business ids.

Document collections have no auto-increment, so ids come from one
counter document per sequence name in the "counters" collection, shaped
{name, value}. Allocation is a single atomic upsert-increment-fetch on
that document; it is the only place in campusdb with true atomicity.

Invariants:
    - No two allocate() calls for the same name return the same value
    - Values are strictly increasing per name and always > base
    - A failed insert after allocate() leaves a gap, never a duplicate

How to change safely:
    - Never replace increment() with a read followed by a write
    - Changing base only affects sequences that do not exist yet
"""

from __future__ import annotations

import logging

from ..models import COUNTERS, Counter
from ..store.base import DocumentStore

logger = logging.getLogger(__name__)


class SequenceAllocator:
    """Issues unique, monotonically increasing integers per sequence name.

    Example:
        >>> allocator = SequenceAllocator(store)
        >>> await allocator.allocate("student")
        1
        >>> await allocator.allocate("student")
        2
    """

    def __init__(self, store: DocumentStore, base: int = 0) -> None:
        if base < 0:
            raise ValueError("Sequence base must be >= 0")
        self.store = store
        self.base = base

    async def allocate(self, sequence_name: str) -> int:
        """Atomically increment a counter and return the new value.

        The first call for an unseen name creates the counter and
        returns base + 1.
        """
        if not sequence_name:
            raise ValueError("Sequence name is required")

        value = await self.store.increment(
            COUNTERS,
            {"name": sequence_name},
            "value",
            amount=1,
            base=self.base,
        )
        logger.debug("Allocated id", extra={"sequence": sequence_name, "value": value})
        return value

    async def current(self, sequence_name: str) -> int | None:
        """Last value issued for a sequence, or None if never used."""
        doc = await self.store.find_one(COUNTERS, {"name": sequence_name})
        return Counter.from_document(doc).value if doc else None
