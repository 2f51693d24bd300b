"""
Instructor operations.

Course assignments made from the instructor side are translated into
course-side updates, because Course.instructorIds is authoritative and
Instructor.courseIds is only its mirror.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date
from typing import Any

from ..errors import NotFoundError
from ..models import COURSES, INSTRUCTOR_SEQUENCE, INSTRUCTORS, Instructor
from .base import UNSET, EntityService, require_text

logger = logging.getLogger(__name__)


class InstructorService(EntityService):
    collection = INSTRUCTORS
    id_field = "instructorId"
    entity = "Instructor"

    async def create(
        self,
        last_name: str,
        first_mid_name: str,
        hire_date: date,
        office_location: str | None = None,
        course_ids: Iterable[int] = (),
    ) -> Instructor:
        """Allocate an id, insert the instructor, then assign courses.

        Raises:
            NotFoundError: If a course does not exist (nothing is written)
            PartialSynchronizationError: If a course assignment fails midway
        """
        last_name = require_text(last_name, "lastName")
        first_mid_name = require_text(first_mid_name, "firstMidName")
        if office_location is not None:
            office_location = require_text(office_location, "officeLocation")
        course_ids = sorted(set(course_ids))
        await self._require_courses(course_ids)

        instructor = Instructor(
            instructor_id=await self.sequences.allocate(INSTRUCTOR_SEQUENCE),
            last_name=last_name,
            first_mid_name=first_mid_name,
            hire_date=hire_date,
            office_location=office_location,
            concurrency_token=self.tokens.issue_token(),
        )
        await self.store.insert_one(INSTRUCTORS, instructor.to_document())
        logger.info("Instructor created", extra={"instructor_id": instructor.instructor_id})

        if course_ids:
            await self._assign_courses(instructor.instructor_id, course_ids)
        return await self.get(instructor.instructor_id)

    async def get(self, instructor_id: int) -> Instructor:
        return Instructor.from_document(await self._get_document(instructor_id))

    async def list(self) -> list[Instructor]:
        docs = await self.store.find(INSTRUCTORS, sort="instructorId")
        return [Instructor.from_document(doc) for doc in docs]

    async def update(
        self,
        instructor_id: int,
        *,
        last_name: str | None = None,
        first_mid_name: str | None = None,
        hire_date: date | None = None,
        office_location: Any = UNSET,
        course_ids: Iterable[int] | None = None,
        token: bytes | None = None,
    ) -> Instructor:
        """Change an instructor's fields and, optionally, its courses.

        A rename is copied to every department it administers.

        Raises:
            NotFoundError: If the instructor or a course does not exist
            ConflictError: If the supplied token is stale
            PartialSynchronizationError: If a follow-up write fails midway
        """
        changes: dict[str, Any] = {}
        if last_name is not None:
            changes["lastName"] = require_text(last_name, "lastName")
        if first_mid_name is not None:
            changes["firstMidName"] = require_text(first_mid_name, "firstMidName")
        if hire_date is not None:
            changes["hireDate"] = hire_date.isoformat()
        if office_location is not UNSET:
            changes["officeLocation"] = (
                require_text(office_location, "officeLocation")
                if office_location is not None
                else None
            )
        if course_ids is not None:
            course_ids = sorted(set(course_ids))
            await self._require_courses(course_ids)

        await self._update(instructor_id, token, changes)

        if "lastName" in changes or "firstMidName" in changes:
            await self.synchronizer.propagate_instructor_name(instructor_id)
        if course_ids is not None:
            await self._assign_courses(instructor_id, course_ids)
        return await self.get(instructor_id)

    async def delete(self, instructor_id: int, token: bytes | None = None) -> None:
        """Detach the instructor from courses and departments, then delete it."""
        await self.cascades.delete_instructor(instructor_id, token)

    async def _require_courses(self, course_ids: list[int]) -> None:
        for course_id in course_ids:
            if await self.store.count(COURSES, {"courseId": course_id}) == 0:
                raise NotFoundError("Course", course_id)

    async def _assign_courses(self, instructor_id: int, course_ids: list[int]) -> None:
        """Make the set of courses listing this instructor equal course_ids."""
        teaching = {
            doc["courseId"]
            for doc in await self.store.find(COURSES, {"instructorIds": instructor_id})
        }
        wanted = set(course_ids)

        for course_id in sorted(teaching | wanted):
            doc = await self.store.find_one(COURSES, {"courseId": course_id})
            if doc is None:
                continue
            current = set(doc.get("instructorIds", []))
            if course_id in wanted:
                current.add(instructor_id)
            else:
                current.discard(instructor_id)
            await self.synchronizer.set_course_instructors(course_id, current)
