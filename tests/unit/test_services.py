"""
Unit tests for the entity services.

Tests cover:
- Department optimistic concurrency
- Course creation checks
- Student search, sorting and paging
- Instructor renames and course assignment
- Enrollment reference validation
"""

from datetime import date
from decimal import Decimal

import pytest

from campusdb.config import ConsistencyConfig
from campusdb.errors import (
    ConflictError,
    DuplicateIdError,
    HasDependentsError,
    NotFoundError,
    PartialSynchronizationError,
    ValidationError,
)
from campusdb.models import INSTRUCTORS, Grade
from campusdb.store import StoreError
from campusdb.services import UNSET, CampusServices


@pytest.fixture
async def english(services):
    return await services.departments.create("English", Decimal("350000"), date(2007, 9, 1))


class TestDepartments:
    """Tests for DepartmentService."""

    @pytest.mark.asyncio
    async def test_create_issues_id_and_token(self, services, english):
        assert english.department_id == 1
        assert english.concurrency_token is not None
        assert english.administrator_name is None

    @pytest.mark.asyncio
    async def test_stale_token_leaves_fields_unchanged(self, services, english):
        t1 = english.concurrency_token
        updated = await services.departments.update(1, budget=Decimal("1"), token=t1)

        with pytest.raises(ConflictError):
            await services.departments.update(1, name="Literature", token=t1)

        current = await services.departments.get(1)
        assert current.name == "English"
        assert current.budget == Decimal("1")
        assert current.concurrency_token == updated.concurrency_token
        assert updated.concurrency_token != t1

    @pytest.mark.asyncio
    async def test_administrator_name_is_copied(self, services, english):
        instructor = await services.instructors.create("Harui", "Roger", date(1998, 7, 1))

        dept = await services.departments.update(1, instructor_id=instructor.instructor_id)

        assert dept.administrator_name == "Harui, Roger"

        cleared = await services.departments.update(1, instructor_id=None)

        assert cleared.instructor_id is None
        assert cleared.administrator_name is None

    @pytest.mark.asyncio
    async def test_unknown_administrator(self, services):
        with pytest.raises(NotFoundError):
            await services.departments.create(
                "Economics", Decimal("100000"), date(2007, 9, 1), instructor_id=9
            )

        assert await services.departments.list() == []

    @pytest.mark.asyncio
    async def test_validation(self, services):
        with pytest.raises(ValidationError):
            await services.departments.create("Ec", Decimal("1"), date(2007, 9, 1))
        with pytest.raises(ValidationError):
            await services.departments.create("Economics", Decimal("-1"), date(2007, 9, 1))

    @pytest.mark.asyncio
    async def test_assign_administrator(self, services, english):
        instructor = await services.instructors.create("Kapoor", "Candace", date(2001, 1, 15))

        dept = await services.departments.assign_administrator(1, instructor.instructor_id)

        assert dept.instructor_id == instructor.instructor_id
        assert dept.administrator_name == "Kapoor, Candace"

    @pytest.mark.asyncio
    async def test_delete_blocked_by_course(self, services, english):
        await services.courses.create(1050, "Chemistry", 3, 1)

        assert not await services.departments.can_delete(1)
        with pytest.raises(HasDependentsError):
            await services.departments.delete(1)


class TestCourses:
    """Tests for CourseService."""

    @pytest.mark.asyncio
    async def test_create_with_instructors(self, services, english):
        a = await services.instructors.create("Abercrombie", "Kim", date(1995, 3, 11))
        b = await services.instructors.create("Fakhouri", "Fadi", date(2002, 7, 6))

        course = await services.courses.create(
            1050, "Chemistry", 3, 1, [b.instructor_id, a.instructor_id]
        )

        assert course.instructor_ids == [1, 2]
        assert (await services.instructors.get(1)).course_ids == [1050]
        assert (await services.instructors.get(2)).course_ids == [1050]

    @pytest.mark.asyncio
    async def test_duplicate_id(self, services, english):
        await services.courses.create(1050, "Chemistry", 3, 1)

        with pytest.raises(DuplicateIdError):
            await services.courses.create(1050, "Chemistry II", 3, 1)

    @pytest.mark.asyncio
    async def test_missing_department(self, services):
        with pytest.raises(NotFoundError) as exc_info:
            await services.courses.create(1050, "Chemistry", 3, 7)

        assert exc_info.value.entity == "Department"
        assert await services.courses.list() == []

    @pytest.mark.asyncio
    async def test_missing_instructor_writes_nothing(self, services, english):
        with pytest.raises(NotFoundError):
            await services.courses.create(1050, "Chemistry", 3, 1, [42])

        assert await services.courses.list() == []

    @pytest.mark.asyncio
    async def test_ranges(self, services, english):
        with pytest.raises(ValidationError):
            await services.courses.create(999, "Chemistry", 3, 1)
        with pytest.raises(ValidationError):
            await services.courses.create(1050, "Chemistry", 6, 1)

    @pytest.mark.asyncio
    async def test_update_replaces_instructor_set(self, services, english):
        a = await services.instructors.create("Abercrombie", "Kim", date(1995, 3, 11))
        b = await services.instructors.create("Fakhouri", "Fadi", date(2002, 7, 6))
        course = await services.courses.create(1050, "Chemistry", 3, 1, [a.instructor_id])

        updated = await services.courses.update(
            1050, credits=4, instructor_ids=[b.instructor_id], token=course.concurrency_token
        )

        assert updated.credits == 4
        assert updated.instructor_ids == [b.instructor_id]
        assert (await services.instructors.get(a.instructor_id)).course_ids == []
        assert (await services.instructors.get(b.instructor_id)).course_ids == [1050]

    @pytest.mark.asyncio
    async def test_retry_after_partial_create(self, store, services, english):
        a = await services.instructors.create("Abercrombie", "Kim", date(1995, 3, 11))
        b = await services.instructors.create("Fakhouri", "Fadi", date(2002, 7, 6))
        ids = [a.instructor_id, b.instructor_id]
        store.inject_failure(INSTRUCTORS, StoreError("timeout"), after=1)

        with pytest.raises(PartialSynchronizationError):
            await services.courses.create(1050, "Chemistry", 3, 1, ids)

        course = await services.courses.create(1050, "Chemistry", 3, 1, ids)

        assert course.instructor_ids == ids
        assert (await services.instructors.get(b.instructor_id)).course_ids == [1050]
        assert (await services.reconciler.check()).is_clean

    @pytest.mark.asyncio
    async def test_describe(self, services, english):
        a = await services.instructors.create("Abercrombie", "Kim", date(1995, 3, 11))
        await services.students.create("Alexander", "Carson", date(2016, 9, 1))
        course = await services.courses.create(1050, "Chemistry", 3, 1, [a.instructor_id])
        await services.enrollments.create(1, 1050)

        details = await services.courses.describe(course)

        assert details.department_name == "English"
        assert details.enrollment_count == 1
        assert details.instructors == [(a.instructor_id, "Abercrombie, Kim")]
        assert not await services.courses.can_delete(1050)

    @pytest.mark.asyncio
    async def test_can_delete_without_enrollments(self, services, english):
        await services.courses.create(1050, "Chemistry", 3, 1)

        assert await services.courses.can_delete(1050)
        assert (await services.courses.describe(await services.courses.get(1050))).instructors == []

    @pytest.mark.asyncio
    async def test_update_next_to_dangling_instructor(self, store, services, english):
        a = await services.instructors.create("Abercrombie", "Kim", date(1995, 3, 11))
        b = await services.instructors.create("Fakhouri", "Fadi", date(2002, 7, 6))
        await services.courses.create(1050, "Chemistry", 3, 1, [a.instructor_id, b.instructor_id])
        await store.delete_one(INSTRUCTORS, {"instructorId": b.instructor_id})

        updated = await services.courses.update(
            1050, title="Chemistry I", instructor_ids=[b.instructor_id]
        )

        assert updated.title == "Chemistry I"
        assert updated.instructor_ids == [b.instructor_id]
        assert (await services.instructors.get(a.instructor_id)).course_ids == []

    @pytest.mark.asyncio
    async def test_list_by_department(self, services, english):
        await services.departments.create("Mathematics", Decimal("100000"), date(2007, 9, 1))
        await services.courses.create(1050, "Chemistry", 3, 1)
        await services.courses.create(1045, "Calculus", 4, 2)

        assert [c.course_id for c in await services.courses.list()] == [1045, 1050]
        assert [c.course_id for c in await services.courses.list(department_id=2)] == [1045]


class TestStudents:
    """Tests for StudentService."""

    @pytest.fixture
    async def students(self, services):
        for last, first, enrolled in [
            ("Alexander", "Carson", date(2016, 9, 1)),
            ("Alonso", "Meredith", date(2018, 9, 1)),
            ("Anand", "Arturo", date(2019, 9, 1)),
            ("Barzdukas", "Gytis", date(2018, 9, 1)),
            ("Li", "Yan", date(2018, 9, 1)),
        ]:
            await services.students.create(last, first, enrolled)

    @pytest.mark.asyncio
    async def test_ids_are_sequential(self, services, students):
        assert [s.student_id for s in await services.students.list()] == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_first_page(self, services, students):
        page = await services.students.search()

        assert [s.last_name for s in page.items] == ["Alexander", "Alonso", "Anand", "Barzdukas"]
        assert page.total_pages == 2
        assert not page.has_previous_page
        assert page.has_next_page

    @pytest.mark.asyncio
    async def test_second_page(self, services, students):
        page = await services.students.search(page_index=2)

        assert [s.last_name for s in page.items] == ["Li"]
        assert page.has_previous_page
        assert not page.has_next_page

    @pytest.mark.asyncio
    async def test_search_and_sort(self, services, students):
        page = await services.students.search("al", "name_desc")

        assert [s.last_name for s in page.items] == ["Alonso", "Alexander"]

    @pytest.mark.asyncio
    async def test_sort_by_date(self, services, students):
        page = await services.students.search(sort_order="date_desc", page_size=1)

        assert page.items[0].last_name == "Anand"
        assert page.total_pages == 5

    @pytest.mark.asyncio
    async def test_bad_sort_order(self, services):
        with pytest.raises(ValidationError):
            await services.students.search(sort_order="age")

    @pytest.mark.asyncio
    async def test_enrollment_date_counts(self, services, students):
        counts = await services.students.enrollment_date_counts()

        assert counts == {
            date(2016, 9, 1): 1,
            date(2018, 9, 1): 3,
            date(2019, 9, 1): 1,
        }

    @pytest.mark.asyncio
    async def test_delete_removes_enrollments(self, services, students, english):
        await services.courses.create(1050, "Chemistry", 3, 1)
        await services.enrollments.create(1, 1050, Grade.A)
        await services.enrollments.create(2, 1050)

        removed = await services.students.delete(1)

        assert removed == 1
        assert [e.student_id for e in await services.enrollments.list()] == [2]


class TestInstructors:
    """Tests for InstructorService."""

    @pytest.mark.asyncio
    async def test_rename_propagates_to_department(self, services, english):
        instructor = await services.instructors.create("Harui", "Roger", date(1998, 7, 1))
        await services.departments.update(1, instructor_id=instructor.instructor_id)

        await services.instructors.update(instructor.instructor_id, last_name="Haruki")

        assert (await services.departments.get(1)).administrator_name == "Haruki, Roger"

    @pytest.mark.asyncio
    async def test_assign_courses_from_instructor_side(self, services, english):
        await services.courses.create(1050, "Chemistry", 3, 1)
        await services.courses.create(4022, "Microeconomics", 3, 1)

        instructor = await services.instructors.create(
            "Zheng", "Roger", date(2004, 2, 12), office_location="Gowan 27", course_ids=[1050]
        )
        assert instructor.course_ids == [1050]

        updated = await services.instructors.update(
            instructor.instructor_id, course_ids=[4022], office_location=None
        )

        assert updated.course_ids == [4022]
        assert updated.office_location is None
        assert (await services.courses.get(1050)).instructor_ids == []
        assert (await services.courses.get(4022)).instructor_ids == [instructor.instructor_id]

    @pytest.mark.asyncio
    async def test_unassign_next_to_dangling_co_instructor(self, store, services, english):
        a = await services.instructors.create("Abercrombie", "Kim", date(1995, 3, 11))
        b = await services.instructors.create("Fakhouri", "Fadi", date(2002, 7, 6))
        await services.courses.create(1050, "Chemistry", 3, 1, [a.instructor_id, b.instructor_id])
        await store.delete_one(INSTRUCTORS, {"instructorId": b.instructor_id})

        updated = await services.instructors.update(a.instructor_id, course_ids=[])

        assert updated.course_ids == []
        assert (await services.courses.get(1050)).instructor_ids == [b.instructor_id]

    @pytest.mark.asyncio
    async def test_rename_during_course_assignment_is_kept(
        self, store, services, english, monkeypatch
    ):
        instructor = await services.instructors.create("Abercrombie", "Kim", date(1995, 3, 11))
        instructor_id = instructor.instructor_id
        await services.departments.update(1, instructor_id=instructor_id)
        await services.courses.create(1050, "Chemistry", 3, 1)
        load = store.find_one
        pending = [True]

        async def load_then_rename(collection, filter):
            doc = await load(collection, filter)
            if collection == INSTRUCTORS and pending:
                pending.clear()
                await services.instructors.update(instructor_id, last_name="Zhang")
            return doc

        monkeypatch.setattr(store, "find_one", load_then_rename)

        await services.courses.update(1050, instructor_ids=[instructor_id])

        monkeypatch.undo()
        current = await services.instructors.get(instructor_id)
        assert current.last_name == "Zhang"
        assert current.course_ids == [1050]
        assert (await services.departments.get(1)).administrator_name == "Zhang, Kim"
        assert (await services.reconciler.check()).is_clean

    @pytest.mark.asyncio
    async def test_unknown_course_writes_nothing(self, services):
        with pytest.raises(NotFoundError):
            await services.instructors.create("Zheng", "Roger", date(2004, 2, 12), course_ids=[7])

        assert await services.instructors.list() == []

    @pytest.mark.asyncio
    async def test_stale_token(self, services):
        instructor = await services.instructors.create("Zheng", "Roger", date(2004, 2, 12))
        await services.instructors.update(
            instructor.instructor_id, hire_date=date(2005, 1, 1), token=instructor.concurrency_token
        )

        with pytest.raises(ConflictError):
            await services.instructors.update(
                instructor.instructor_id, last_name="Z", token=instructor.concurrency_token
            )


class TestEnrollments:
    """Tests for EnrollmentService."""

    @pytest.fixture
    async def chemistry(self, services, english):
        await services.students.create("Alexander", "Carson", date(2016, 9, 1))
        await services.courses.create(1050, "Chemistry", 3, 1)

    @pytest.mark.asyncio
    async def test_create_and_grade(self, services, chemistry):
        enrollment = await services.enrollments.create(1, 1050)

        updated = await services.enrollments.update(enrollment.enrollment_id, grade=Grade.C)

        assert updated.grade is Grade.C
        assert (await services.enrollments.update(1, grade=None)).grade is None
        assert (await services.enrollments.update(1, grade=UNSET)).grade is None

    @pytest.mark.asyncio
    async def test_missing_references(self, services, chemistry):
        with pytest.raises(NotFoundError) as exc_info:
            await services.enrollments.create(99, 1050)
        assert exc_info.value.entity == "Student"

        with pytest.raises(NotFoundError) as exc_info:
            await services.enrollments.create(1, 9999)
        assert exc_info.value.entity == "Course"

    @pytest.mark.asyncio
    async def test_validation_disabled(self, store):
        services = CampusServices.create(store, ConsistencyConfig(validate_enrollment_refs=False))

        enrollment = await services.enrollments.create(99, 9999)

        assert enrollment.enrollment_id == 1

    @pytest.mark.asyncio
    async def test_blocks_course_delete(self, services, chemistry):
        await services.enrollments.create(1, 1050, Grade.B)

        with pytest.raises(HasDependentsError):
            await services.courses.delete(1050)

        await services.enrollments.delete(1)
        await services.courses.delete(1050)

        assert await services.courses.list() == []

    @pytest.mark.asyncio
    async def test_list_filters(self, services, chemistry):
        await services.students.create("Alonso", "Meredith", date(2018, 9, 1))
        await services.enrollments.create(1, 1050)
        await services.enrollments.create(2, 1050)

        assert [e.student_id for e in await services.enrollments.list(student_id=2)] == [2]
        assert len(await services.enrollments.list(course_id=1050)) == 2
