"""
Unit tests for the relationship synchronizer.

Tests cover:
- Course/instructor mirror maintenance
- Idempotency
- Unknown instructors
- Partial failures and convergence on retry
- Administrator name copies
"""

import pytest

from campusdb.errors import NotFoundError, PartialSynchronizationError
from campusdb.models import COURSES, DEPARTMENTS, INSTRUCTORS, TOKEN_KEY
from campusdb.store import StoreError


class TestSetCourseInstructors:
    """Tests for set_course_instructors()."""

    @pytest.fixture
    async def seeded(self, raw):
        for instructor_id in (5, 6, 7):
            await raw.instructor(instructor_id)
        await raw.course(1050)

    @pytest.mark.asyncio
    async def test_attach_updates_both_sides(self, store, raw, synchronizer, seeded):
        result = await synchronizer.set_course_instructors(1050, {5, 7})

        assert result.added == [5, 7]
        assert result.removed == []
        assert await raw.instructor_ids_of(1050) == [5, 7]
        assert await raw.course_ids_of(5) == [1050]
        assert await raw.course_ids_of(6) == []
        assert await raw.course_ids_of(7) == [1050]

    @pytest.mark.asyncio
    async def test_replace_set(self, store, raw, synchronizer, seeded):
        await synchronizer.set_course_instructors(1050, {5, 7})

        result = await synchronizer.set_course_instructors(1050, {6, 7})

        assert result.added == [6]
        assert result.removed == [5]
        assert await raw.instructor_ids_of(1050) == [6, 7]
        assert await raw.course_ids_of(5) == []
        assert await raw.course_ids_of(6) == [1050]

    @pytest.mark.asyncio
    async def test_idempotent(self, store, raw, synchronizer, seeded):
        """Calling twice yields the same state and no writes the second time."""
        await synchronizer.set_course_instructors(1050, {5, 7})
        state = {i: await raw.course_ids_of(i) for i in (5, 6, 7)}

        second = await synchronizer.set_course_instructors(1050, {5, 7})

        assert second.writes == []
        assert {i: await raw.course_ids_of(i) for i in (5, 6, 7)} == state
        assert await raw.instructor_ids_of(1050) == [5, 7]

    @pytest.mark.asyncio
    async def test_no_duplicate_mirror_entries(self, store, raw, synchronizer):
        await raw.instructor(5, course_ids=[1050])
        await raw.course(1050, [5])

        await synchronizer.set_course_instructors(1050, [5, 5])

        assert await raw.course_ids_of(5) == [1050]

    @pytest.mark.asyncio
    async def test_unknown_instructor_rejected_before_writes(
        self, store, raw, synchronizer, seeded
    ):
        before = store.dump(INSTRUCTORS) + store.dump(COURSES)

        with pytest.raises(NotFoundError) as exc_info:
            await synchronizer.set_course_instructors(1050, {5, 99})

        assert exc_info.value.entity_id == 99
        assert store.dump(INSTRUCTORS) + store.dump(COURSES) == before

    @pytest.mark.asyncio
    async def test_writes_are_in_ascending_order(self, store, raw, synchronizer, seeded):
        result = await synchronizer.set_course_instructors(1050, {7, 5, 6})

        assert result.writes == [
            "course:1050",
            "instructor:5:attach",
            "instructor:6:attach",
            "instructor:7:attach",
        ]

    @pytest.mark.asyncio
    async def test_mirror_writes_rotate_tokens(self, store, raw, synchronizer, seeded):
        await synchronizer.set_course_instructors(1050, {5})

        doc = await store.find_one(INSTRUCTORS, {"instructorId": 5})

        assert doc[TOKEN_KEY] is not None

    @pytest.mark.asyncio
    async def test_empty_set_detaches_all(self, store, raw, synchronizer, seeded):
        await synchronizer.set_course_instructors(1050, {5, 6})

        await synchronizer.set_course_instructors(1050, set())

        assert await raw.instructor_ids_of(1050) == []
        assert await raw.course_ids_of(5) == []
        assert await raw.course_ids_of(6) == []

    @pytest.mark.asyncio
    async def test_stale_mirror_is_corrected(self, store, raw, synchronizer):
        """An instructor listing the course without the course listing it is detached."""
        await raw.instructor(5, course_ids=[1050])
        await raw.instructor(6)
        await raw.course(1050, [])

        result = await synchronizer.set_course_instructors(1050, {6})

        assert result.removed == [5]
        assert await raw.course_ids_of(5) == []
        assert await raw.course_ids_of(6) == [1050]

    @pytest.mark.asyncio
    async def test_partial_failure_reports_and_retry_converges(
        self, store, raw, synchronizer, seeded
    ):
        # Course write succeeds, first instructor write succeeds, second fails.
        store.inject_failure(INSTRUCTORS, StoreError("disk full"), after=1)

        with pytest.raises(PartialSynchronizationError) as exc_info:
            await synchronizer.set_course_instructors(1050, {5, 7})

        error = exc_info.value
        assert error.applied == ["course:1050", "instructor:5:attach"]
        assert error.pending == ["instructor:7:attach"]
        assert isinstance(error.__cause__, StoreError)
        assert await raw.course_ids_of(5) == [1050]
        assert await raw.course_ids_of(7) == []

        await synchronizer.set_course_instructors(1050, {5, 7})

        assert await raw.course_ids_of(5) == [1050]
        assert await raw.course_ids_of(7) == [1050]
        assert await raw.instructor_ids_of(1050) == [5, 7]


class TestRemoveInstructorEverywhere:
    """Tests for remove_instructor_everywhere()."""

    @pytest.mark.asyncio
    async def test_strips_courses_and_departments(self, store, raw, synchronizer):
        await raw.instructor(1, course_ids=[1050, 4022])
        await raw.instructor(2, course_ids=[1050])
        await raw.course(1050, [1, 2])
        await raw.course(4022, [1])
        await raw.department(1, instructor_id=1, name="Smith, Ann")
        await raw.department(2, instructor_id=2, name="Smith, Ann")

        result = await synchronizer.remove_instructor_everywhere(1)

        assert result.removed == [1050, 4022]
        assert await raw.instructor_ids_of(1050) == [2]
        assert await raw.instructor_ids_of(4022) == []
        dept1 = await store.find_one(DEPARTMENTS, {"departmentId": 1})
        assert dept1["instructorId"] is None
        assert dept1["administratorName"] is None
        dept2 = await store.find_one(DEPARTMENTS, {"departmentId": 2})
        assert dept2["instructorId"] == 2

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, store, raw, synchronizer):
        await raw.instructor(1)

        result = await synchronizer.remove_instructor_everywhere(1)

        assert result.writes == []


class TestAdministrators:
    """Tests for administrator name maintenance."""

    @pytest.mark.asyncio
    async def test_administrator_name_for(self, store, raw, synchronizer):
        await raw.instructor(3, last="Harui", first="Roger")

        assert await synchronizer.administrator_name_for(3) == "Harui, Roger"
        assert await synchronizer.administrator_name_for(None) is None
        with pytest.raises(NotFoundError):
            await synchronizer.administrator_name_for(99)

    @pytest.mark.asyncio
    async def test_set_department_administrator(self, store, raw, synchronizer):
        await raw.instructor(3, last="Harui", first="Roger")
        await raw.department(1)

        await synchronizer.set_department_administrator(1, 3)

        dept = await store.find_one(DEPARTMENTS, {"departmentId": 1})
        assert dept["instructorId"] == 3
        assert dept["administratorName"] == "Harui, Roger"
        assert dept[TOKEN_KEY] is not None

    @pytest.mark.asyncio
    async def test_set_department_administrator_missing_department(
        self, store, raw, synchronizer
    ):
        await raw.instructor(3)

        with pytest.raises(NotFoundError) as exc_info:
            await synchronizer.set_department_administrator(1, 3)

        assert exc_info.value.entity == "Department"

    @pytest.mark.asyncio
    async def test_propagate_instructor_name(self, store, raw, synchronizer):
        await raw.instructor(3, last="Harui", first="Roger")
        await raw.department(1, instructor_id=3, name="Old, Name")
        await raw.department(2, instructor_id=3, name="Harui, Roger")

        result = await synchronizer.propagate_instructor_name(3)

        assert result.writes == ["department:1:administrator"]
        dept = await store.find_one(DEPARTMENTS, {"departmentId": 1})
        assert dept["administratorName"] == "Harui, Roger"


class TestFieldScopedWrites:
    """Mirror writes touch only the mirrored field."""

    @pytest.mark.asyncio
    async def test_rename_between_load_and_write_survives(
        self, store, raw, synchronizer, tokens, monkeypatch
    ):
        await raw.instructor(5, last="Abercrombie", first="Kim")
        await raw.course(1050)
        load = store.find_one
        renamed = []

        async def load_then_rename(collection, filter):
            doc = await load(collection, filter)
            if collection == INSTRUCTORS and not renamed:
                renamed.append(True)
                await tokens.versioned_update(
                    INSTRUCTORS, "Instructor", "instructorId", 5, None, {"lastName": "Zhang"}
                )
            return doc

        monkeypatch.setattr(store, "find_one", load_then_rename)

        await synchronizer.set_course_instructors(1050, {5})

        doc = await load(INSTRUCTORS, {"instructorId": 5})
        assert renamed
        assert doc["lastName"] == "Zhang"
        assert doc["courseIds"] == [1050]

    @pytest.mark.asyncio
    async def test_course_strip_keeps_other_fields(self, store, raw, synchronizer):
        await raw.instructor(1, course_ids=[1050])
        await raw.course(1050, [1])
        await store.update_one(COURSES, {"courseId": 1050}, {"title": "Organic Chemistry"})

        await synchronizer.remove_instructor_everywhere(1)

        doc = await store.find_one(COURSES, {"courseId": 1050})
        assert doc["title"] == "Organic Chemistry"
        assert doc["instructorIds"] == []
        assert doc[TOKEN_KEY] is not None


class TestDanglingCoInstructors:
    """Courses that still list a deleted instructor."""

    @pytest.mark.asyncio
    async def test_unassign_next_to_dangling_instructor(self, raw, synchronizer):
        await raw.instructor(5, course_ids=[1050])
        await raw.course(1050, [5, 9])

        result = await synchronizer.set_course_instructors(1050, {9})

        assert result.removed == [5]
        assert await raw.instructor_ids_of(1050) == [9]
        assert await raw.course_ids_of(5) == []

    @pytest.mark.asyncio
    async def test_adding_unknown_instructor_still_rejected(self, raw, synchronizer):
        await raw.instructor(5, course_ids=[1050])
        await raw.course(1050, [5, 9])

        with pytest.raises(NotFoundError) as exc_info:
            await synchronizer.set_course_instructors(1050, {5, 9, 10})

        assert exc_info.value.entity_id == 10
        assert await raw.instructor_ids_of(1050) == [5, 9]

    @pytest.mark.asyncio
    async def test_missing_course(self, synchronizer):
        with pytest.raises(NotFoundError) as exc_info:
            await synchronizer.set_course_instructors(1050, ())

        assert exc_info.value.entity == "Course"
