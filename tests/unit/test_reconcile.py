"""
Unit tests for drift detection and repair.

Tests cover:
- Clean state after synchronizer writes
- Each kind of drift
- Repair converging in one pass
- Partial repair failures
"""

import pytest

from campusdb.errors import PartialSynchronizationError
from campusdb.models import COURSES, DEPARTMENTS, INSTRUCTORS
from campusdb.store import StoreError


class TestCheck:
    """Tests for Reconciler.check()."""

    @pytest.mark.asyncio
    async def test_clean_after_synchronizer(self, raw, synchronizer, reconciler):
        await raw.instructor(1)
        await raw.instructor(2)
        await raw.course(1050)
        await raw.department(1, instructor_id=1, name="Smith, Ann")
        await synchronizer.set_course_instructors(1050, {1, 2})

        report = await reconciler.check()

        assert report.is_clean
        assert report.to_dict()["clean"] is True

    @pytest.mark.asyncio
    async def test_mirror_drift(self, raw, reconciler):
        await raw.instructor(1)
        await raw.instructor(2, course_ids=[4022])
        await raw.course(1050, [1])
        await raw.course(4022, [])
        await raw.course(2021, [9])

        report = await reconciler.check()

        assert report.missing_mirror_entries == [(1, 1050)]
        assert report.extra_mirror_entries == [(2, 4022)]
        assert report.dangling_course_instructors == [(2021, 9)]
        assert not report.is_clean

    @pytest.mark.asyncio
    async def test_administrator_drift(self, raw, reconciler):
        await raw.instructor(1, last="Kapoor", first="Candace")
        await raw.department(1, instructor_id=7, name="Gone, Person")
        await raw.department(2, instructor_id=1, name="Kapoor, C.")
        await raw.department(3, instructor_id=None, name="Left, Over")
        await raw.department(4, instructor_id=1, name="Kapoor, Candace")

        report = await reconciler.check()

        assert report.dangling_administrators == [1]
        assert report.stale_administrator_names == [2, 3]

    @pytest.mark.asyncio
    async def test_check_never_writes(self, store, raw, reconciler):
        await raw.instructor(1)
        await raw.course(1050, [1])
        before = store.dump(INSTRUCTORS) + store.dump(COURSES)

        await reconciler.check()

        assert store.dump(INSTRUCTORS) + store.dump(COURSES) == before


class TestRepair:
    """Tests for Reconciler.repair()."""

    @pytest.fixture
    async def drifted(self, raw):
        await raw.instructor(1)
        await raw.instructor(2, course_ids=[4022])
        await raw.course(1050, [1])
        await raw.course(4022, [])
        await raw.course(2021, [2, 9])
        await raw.department(1, instructor_id=7, name="Gone, Person")
        await raw.department(2, instructor_id=1, name="Wrong, Name")

    @pytest.mark.asyncio
    async def test_repair_fixes_everything(self, raw, reconciler, drifted):
        report = await reconciler.repair()

        assert not report.is_clean
        assert report.writes
        assert (await reconciler.check()).is_clean
        assert await raw.instructor_ids_of(2021) == [2]
        assert await raw.course_ids_of(1) == [1050]
        assert await raw.course_ids_of(2) == [2021]
        dept1 = await raw.department_doc(1)
        assert dept1["instructorId"] is None
        assert dept1["administratorName"] is None
        assert (await raw.department_doc(2))["administratorName"] == "Smith, Ann"

    @pytest.mark.asyncio
    async def test_second_repair_writes_nothing(self, reconciler, drifted):
        await reconciler.repair()

        second = await reconciler.repair()

        assert second.is_clean
        assert second.writes == []

    @pytest.mark.asyncio
    async def test_clean_repair_writes_nothing(self, raw, reconciler):
        await raw.instructor(1, course_ids=[1050])
        await raw.course(1050, [1])

        report = await reconciler.repair()

        assert report.is_clean
        assert report.writes == []

    @pytest.mark.asyncio
    async def test_failed_repair_can_be_rerun(self, store, reconciler, drifted):
        store.inject_failure(DEPARTMENTS, StoreError("unavailable"))

        with pytest.raises(PartialSynchronizationError) as exc_info:
            await reconciler.repair()

        assert exc_info.value.operation == "reconcile"
        assert exc_info.value.pending

        await reconciler.repair()

        assert (await reconciler.check()).is_clean


class TestRepairWritesOnlyDerivedFields:
    """repair() leaves fields it does not fix alone."""

    @pytest.mark.asyncio
    async def test_rename_during_repair_survives(self, store, raw, reconciler, monkeypatch):
        await raw.instructor(1, last="Abercrombie", first="Kim")
        await raw.course(1050, [1])
        scan = store.find
        scans = []

        async def scan_then_rename(collection, filter=None, sort=None):
            docs = await scan(collection, filter, sort=sort)
            if collection == INSTRUCTORS:
                scans.append(collection)
                if len(scans) == 2:
                    await store.update_one(
                        INSTRUCTORS, {"instructorId": 1}, {"lastName": "Zhang"}
                    )
            return docs

        monkeypatch.setattr(store, "find", scan_then_rename)

        report = await reconciler.repair()

        doc = await store.find_one(INSTRUCTORS, {"instructorId": 1})
        assert report.writes == ["instructor:1:courses"]
        assert doc["lastName"] == "Zhang"
        assert doc["courseIds"] == [1050]
