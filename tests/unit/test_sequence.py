"""
Unit tests for the sequence allocator.

Tests cover:
- First allocation from the base
- Monotonic, duplicate-free values under concurrency
- Independence of sequence names
- Gaps after failed inserts
"""

import asyncio

import pytest

from campusdb.consistency import SequenceAllocator
from campusdb.models import COUNTERS


class TestSequenceAllocator:
    """Tests for SequenceAllocator."""

    @pytest.mark.asyncio
    async def test_first_value_is_base_plus_one(self, store):
        allocator = SequenceAllocator(store)

        assert await allocator.allocate("student") == 1
        assert await allocator.allocate("student") == 2

    @pytest.mark.asyncio
    async def test_custom_base(self, store):
        allocator = SequenceAllocator(store, base=1000)

        assert await allocator.allocate("enrollment") == 1001

    def test_negative_base_rejected(self, store):
        with pytest.raises(ValueError):
            SequenceAllocator(store, base=-1)

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, sequences):
        with pytest.raises(ValueError):
            await sequences.allocate("")

    @pytest.mark.asyncio
    async def test_names_are_independent(self, sequences):
        assert await sequences.allocate("student") == 1
        assert await sequences.allocate("instructor") == 1
        assert await sequences.allocate("student") == 2

    @pytest.mark.asyncio
    async def test_concurrent_allocations_are_unique(self, sequences):
        """N concurrent allocations yield N distinct values above the base."""
        values = await asyncio.gather(*(sequences.allocate("student") for _ in range(50)))

        assert len(set(values)) == 50
        assert min(values) >= 1

    @pytest.mark.asyncio
    async def test_counter_document_shape(self, store, sequences):
        await sequences.allocate("department")
        await sequences.allocate("department")

        docs = await store.find(COUNTERS)

        assert len(docs) == 1
        assert docs[0]["name"] == "department"
        assert docs[0]["value"] == 2

    @pytest.mark.asyncio
    async def test_current(self, sequences):
        assert await sequences.current("student") is None

        await sequences.allocate("student")

        assert await sequences.current("student") == 1

    @pytest.mark.asyncio
    async def test_failed_insert_leaves_gap(self, store, sequences):
        """An id whose insert never happens is not handed out again."""
        abandoned = await sequences.allocate("student")

        next_value = await sequences.allocate("student")

        assert next_value == abandoned + 1

    @pytest.mark.asyncio
    async def test_sqlite_backend(self, sqlite_store):
        allocator = SequenceAllocator(sqlite_store)

        values = [await allocator.allocate("student") for _ in range(3)]

        assert values == [1, 2, 3]
