"""
Course operations.

Course ids are chosen by the caller (catalog numbers) rather than drawn
from a sequence, so creation has to reject ids that another course
already holds.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from ..errors import DuplicateIdError, NotFoundError, ValidationError
from ..models import COURSES, DEPARTMENTS, ENROLLMENTS, INSTRUCTORS, Course, Instructor
from ..store.base import DuplicateKeyError
from .base import EntityService, require_text

logger = logging.getLogger(__name__)

COURSE_ID_RANGE = range(1000, 10000)
CREDITS_RANGE = range(0, 6)


def _check_credits(credits: int) -> int:
    if credits not in CREDITS_RANGE:
        raise ValidationError("Credits must be between 0 and 5", "credits")
    return credits


@dataclass
class CourseDetails:
    """A course with the names and counts a course listing shows.

    Attributes:
        instructors: (instructor id, display name) pairs; ids that no
            longer resolve to an instructor are left out
    """

    course: Course
    department_name: str | None = None
    enrollment_count: int = 0
    instructors: list[tuple[int, str]] = field(default_factory=list)


class CourseService(EntityService):
    collection = COURSES
    id_field = "courseId"
    entity = "Course"

    async def create(
        self,
        course_id: int,
        title: str,
        credits: int,
        department_id: int,
        instructor_ids: Iterable[int] = (),
    ) -> Course:
        """Insert a course and attach its instructors.

        Re-sending a create whose course document was already stored
        (title, credits and department equal) only re-runs the instructor
        synchronization, so a create that failed midway can be retried.

        Raises:
            ValidationError: If the course number or credits are out of range
            DuplicateIdError: If the course id is taken by a different course
            NotFoundError: If the department or an instructor does not exist
            PartialSynchronizationError: If attaching instructors fails midway
        """
        if course_id not in COURSE_ID_RANGE:
            raise ValidationError("Course number must be between 1000 and 9999", "courseId")
        title = require_text(title, "title", min_length=3)
        _check_credits(credits)
        instructor_ids = sorted(set(instructor_ids))

        existing = await self.store.find_one(COURSES, {"courseId": course_id})
        if existing is not None:
            if (
                existing["title"] != title
                or existing["credits"] != credits
                or existing["departmentId"] != department_id
            ):
                raise DuplicateIdError("Course", course_id)
            logger.info("Course already stored, resuming create", extra={"course_id": course_id})
            await self.synchronizer.set_course_instructors(course_id, instructor_ids)
            return await self.get(course_id)

        await self._require_department(department_id)
        await self._require_instructors(instructor_ids)

        course = Course(
            course_id=course_id,
            title=title,
            credits=credits,
            department_id=department_id,
            concurrency_token=self.tokens.issue_token(),
        )
        try:
            await self.store.insert_one(COURSES, course.to_document())
        except DuplicateKeyError as e:
            raise DuplicateIdError("Course", course_id) from e
        logger.info("Course created", extra={"course_id": course_id})

        await self.synchronizer.set_course_instructors(course_id, instructor_ids)
        return await self.get(course_id)

    async def get(self, course_id: int) -> Course:
        return Course.from_document(await self._get_document(course_id))

    async def list(self, department_id: int | None = None) -> list[Course]:
        filter = {"departmentId": department_id} if department_id is not None else None
        docs = await self.store.find(COURSES, filter, sort="courseId")
        return [Course.from_document(doc) for doc in docs]

    async def enrollment_count(self, course_id: int) -> int:
        return await self.store.count(ENROLLMENTS, {"courseId": course_id})

    async def describe(self, course: Course) -> CourseDetails:
        """Resolve the department name, enrollment count and instructor names."""
        department = await self.store.find_one(
            DEPARTMENTS, {"departmentId": course.department_id}
        )
        instructors = []
        for instructor_id in course.instructor_ids:
            doc = await self.store.find_one(INSTRUCTORS, {"instructorId": instructor_id})
            if doc is not None:
                instructors.append((instructor_id, Instructor.from_document(doc).full_name))
        return CourseDetails(
            course=course,
            department_name=department["name"] if department is not None else None,
            enrollment_count=await self.enrollment_count(course.course_id),
            instructors=instructors,
        )

    async def update(
        self,
        course_id: int,
        *,
        title: str | None = None,
        credits: int | None = None,
        department_id: int | None = None,
        instructor_ids: Iterable[int] | None = None,
        token: bytes | None = None,
    ) -> Course:
        """Change a course and, optionally, its instructor set.

        Scalar fields are written with a token check first; the
        instructor set is synchronized afterwards.

        Raises:
            NotFoundError: If the course, department or an instructor is missing
            ConflictError: If the supplied token is stale
            PartialSynchronizationError: If instructor synchronization fails midway
        """
        changes: dict[str, Any] = {}
        if title is not None:
            changes["title"] = require_text(title, "title", min_length=3)
        if credits is not None:
            changes["credits"] = _check_credits(credits)
        if department_id is not None:
            await self._require_department(department_id)
            changes["departmentId"] = department_id
        if instructor_ids is not None:
            instructor_ids = sorted(set(instructor_ids))
            listed = set((await self._get_document(course_id)).get("instructorIds", []))
            await self._require_instructors([i for i in instructor_ids if i not in listed])

        await self._update(course_id, token, changes)
        if instructor_ids is not None:
            await self.synchronizer.set_course_instructors(course_id, instructor_ids)
        return await self.get(course_id)

    async def can_delete(self, course_id: int) -> bool:
        return await self.cascades.can_delete_course(course_id)

    async def delete(self, course_id: int, token: bytes | None = None) -> None:
        """Detach instructors and delete a course nobody is enrolled in."""
        await self.cascades.delete_course(course_id, token)

    async def _require_department(self, department_id: int) -> None:
        if await self.store.count(DEPARTMENTS, {"departmentId": department_id}) == 0:
            raise NotFoundError("Department", department_id)

    async def _require_instructors(self, instructor_ids: list[int]) -> None:
        for instructor_id in instructor_ids:
            if await self.store.count(INSTRUCTORS, {"instructorId": instructor_id}) == 0:
                raise NotFoundError("Instructor", instructor_id)
