"""
Cascade and guard engine for deletes.

Decides whether a delete may proceed and performs the follow-up writes
that keep references intact when it does.

Delete rules:
    Department  guarded by courses referencing it, no cascade
    Course      guarded by enrollments referencing it, detaches instructors
    Instructor  never guarded, stripped from courses and departments first
    Student     never guarded, its enrollments are deleted first

Invariants:
    - A failed guard raises HasDependentsError before any mutation
    - Cascade writes run before the record itself is removed, so a
      failure midway leaves the record in place and the delete can be
      retried
    - A supplied concurrency token is checked before any cascade write

Known limitation:
    The guard check and the delete are separate store calls. A dependent
    created between them is not detected.
"""

from __future__ import annotations

import logging

from ..errors import HasDependentsError, NotFoundError
from ..models import (
    COURSES,
    DEPARTMENTS,
    ENROLLMENTS,
    INSTRUCTORS,
    STUDENTS,
    TOKEN_KEY,
    decode_token,
)
from ..store.base import Document, DocumentStore
from .sync import RelationshipSynchronizer, Step, run_steps
from .tokens import ConcurrencyTokenManager

logger = logging.getLogger(__name__)


class CascadeEngine:
    """Guarded and cascading deletes.

    Example:
        >>> engine = CascadeEngine(store, tokens, synchronizer)
        >>> if await engine.can_delete_department(1):
        ...     await engine.delete_department(1)
    """

    def __init__(
        self,
        store: DocumentStore,
        tokens: ConcurrencyTokenManager,
        synchronizer: RelationshipSynchronizer,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.synchronizer = synchronizer

    async def _load(
        self,
        collection: str,
        entity: str,
        id_field: str,
        entity_id: int,
        supplied: bytes | None,
    ) -> Document:
        doc = await self.store.find_one(collection, {id_field: entity_id})
        if doc is None:
            raise NotFoundError(entity, entity_id)
        self.tokens.ensure_valid(decode_token(doc.get(TOKEN_KEY)), supplied, entity, entity_id)
        return doc

    async def _delete(self, operation: str, collection: str, id_field: str, entity_id: int) -> None:
        async def delete() -> bool:
            return await self.store.delete_one(collection, {id_field: entity_id})

        await run_steps(operation, [(f"{collection}:{entity_id}:delete", delete)])

    async def can_delete_department(self, department_id: int) -> bool:
        """False while any course belongs to the department."""
        return await self.store.count(COURSES, {"departmentId": department_id}) == 0

    async def can_delete_course(self, course_id: int) -> bool:
        """False while any enrollment references the course."""
        return await self.store.count(ENROLLMENTS, {"courseId": course_id}) == 0

    async def delete_department(self, department_id: int, supplied: bytes | None = None) -> None:
        """Delete a department that no course references.

        Raises:
            NotFoundError: If the department does not exist
            ConflictError: If the supplied token is stale
            HasDependentsError: If courses still reference it
        """
        await self._load(DEPARTMENTS, "Department", "departmentId", department_id, supplied)
        dependents = await self.store.count(COURSES, {"departmentId": department_id})
        if dependents:
            raise HasDependentsError("Department", department_id, "Course", dependents)

        await self._delete("delete_department", DEPARTMENTS, "departmentId", department_id)
        logger.info("Department deleted", extra={"department_id": department_id})

    async def delete_course(self, course_id: int, supplied: bytes | None = None) -> None:
        """Detach all instructors, then delete the course.

        Raises:
            NotFoundError: If the course does not exist
            ConflictError: If the supplied token is stale
            HasDependentsError: If enrollments still reference it
            PartialSynchronizationError: If detaching fails midway
        """
        await self._load(COURSES, "Course", "courseId", course_id, supplied)
        dependents = await self.store.count(ENROLLMENTS, {"courseId": course_id})
        if dependents:
            raise HasDependentsError("Course", course_id, "Enrollment", dependents)

        await self.synchronizer.set_course_instructors(course_id, ())
        await self._delete("delete_course", COURSES, "courseId", course_id)
        logger.info("Course deleted", extra={"course_id": course_id})

    async def delete_instructor(self, instructor_id: int, supplied: bytes | None = None) -> None:
        """Remove every reference to an instructor, then delete it.

        Raises:
            NotFoundError: If the instructor does not exist
            ConflictError: If the supplied token is stale
            PartialSynchronizationError: If a cascade write fails
        """
        await self._load(INSTRUCTORS, "Instructor", "instructorId", instructor_id, supplied)
        await self.synchronizer.remove_instructor_everywhere(instructor_id)
        await self._delete("delete_instructor", INSTRUCTORS, "instructorId", instructor_id)
        logger.info("Instructor deleted", extra={"instructor_id": instructor_id})

    async def delete_student(self, student_id: int, supplied: bytes | None = None) -> int:
        """Delete a student's enrollments, then the student.

        Returns:
            Number of enrollments removed

        Raises:
            NotFoundError: If the student does not exist
            ConflictError: If the supplied token is stale
            PartialSynchronizationError: If a cascade write fails
        """
        await self._load(STUDENTS, "Student", "studentId", student_id, supplied)
        enrollments = await self.store.find(
            ENROLLMENTS, {"studentId": student_id}, sort="enrollmentId"
        )

        steps: list[Step] = []
        for doc in enrollments:
            enrollment_id = doc["enrollmentId"]

            async def delete_enrollment(e: int = enrollment_id) -> bool:
                return await self.store.delete_one(ENROLLMENTS, {"enrollmentId": e})

            steps.append((f"enrollment:{enrollment_id}:delete", delete_enrollment))

        await run_steps("delete_student", steps)
        await self._delete("delete_student", STUDENTS, "studentId", student_id)
        logger.info(
            "Student deleted",
            extra={"student_id": student_id, "enrollments_removed": len(enrollments)},
        )
        return len(enrollments)

    async def delete_enrollment(self, enrollment_id: int, supplied: bytes | None = None) -> None:
        """Delete an enrollment. Nothing references enrollments.

        Raises:
            NotFoundError: If the enrollment does not exist
            ConflictError: If the supplied token is stale
        """
        await self._load(ENROLLMENTS, "Enrollment", "enrollmentId", enrollment_id, supplied)
        await self._delete("delete_enrollment", ENROLLMENTS, "enrollmentId", enrollment_id)
