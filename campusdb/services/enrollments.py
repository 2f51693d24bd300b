"""Enrollment operations."""

from __future__ import annotations

import logging
from typing import Any

from ..errors import NotFoundError
from ..models import COURSES, ENROLLMENT_SEQUENCE, ENROLLMENTS, STUDENTS, Enrollment, Grade
from .base import UNSET, EntityService

logger = logging.getLogger(__name__)


class EnrollmentService(EntityService):
    collection = ENROLLMENTS
    id_field = "enrollmentId"
    entity = "Enrollment"

    def __init__(self, *args: Any, validate_references: bool = True, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.validate_references = validate_references

    async def _check_references(self, student_id: int | None, course_id: int | None) -> None:
        if not self.validate_references:
            return
        if student_id is not None and await self.store.count(
            STUDENTS, {"studentId": student_id}
        ) == 0:
            raise NotFoundError("Student", student_id)
        if course_id is not None and await self.store.count(
            COURSES, {"courseId": course_id}
        ) == 0:
            raise NotFoundError("Course", course_id)

    async def create(
        self, student_id: int, course_id: int, grade: Grade | None = None
    ) -> Enrollment:
        """Enroll a student in a course.

        Raises:
            NotFoundError: If reference validation is on and the student or
                course does not exist
        """
        await self._check_references(student_id, course_id)
        enrollment = Enrollment(
            enrollment_id=await self.sequences.allocate(ENROLLMENT_SEQUENCE),
            course_id=course_id,
            student_id=student_id,
            grade=grade,
            concurrency_token=self.tokens.issue_token(),
        )
        enrollment.doc_id = await self.store.insert_one(ENROLLMENTS, enrollment.to_document())
        logger.info(
            "Enrollment created",
            extra={"enrollment_id": enrollment.enrollment_id, "student_id": student_id},
        )
        return enrollment

    async def get(self, enrollment_id: int) -> Enrollment:
        return Enrollment.from_document(await self._get_document(enrollment_id))

    async def list(
        self, student_id: int | None = None, course_id: int | None = None
    ) -> list[Enrollment]:
        filter: dict[str, int] = {}
        if student_id is not None:
            filter["studentId"] = student_id
        if course_id is not None:
            filter["courseId"] = course_id
        docs = await self.store.find(ENROLLMENTS, filter, sort="enrollmentId")
        return [Enrollment.from_document(doc) for doc in docs]

    async def update(
        self,
        enrollment_id: int,
        *,
        grade: Any = UNSET,
        student_id: int | None = None,
        course_id: int | None = None,
        token: bytes | None = None,
    ) -> Enrollment:
        """Change the grade or move the enrollment.

        Passing grade=None clears the grade.
        """
        await self._check_references(student_id, course_id)
        changes: dict[str, Any] = {}
        if grade is not UNSET:
            changes["grade"] = grade.name if grade is not None else None
        if student_id is not None:
            changes["studentId"] = student_id
        if course_id is not None:
            changes["courseId"] = course_id
        return Enrollment.from_document(await self._update(enrollment_id, token, changes))

    async def delete(self, enrollment_id: int, token: bytes | None = None) -> None:
        await self.cascades.delete_enrollment(enrollment_id, token)
