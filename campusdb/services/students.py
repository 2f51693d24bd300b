"""Student operations, including the paged and searchable listing."""

from __future__ import annotations

import logging
from collections import Counter as Tally
from datetime import date

from ..errors import ValidationError
from ..models import STUDENT_SEQUENCE, STUDENTS, Student
from .base import EntityService, Page, require_text

logger = logging.getLogger(__name__)

SORT_ORDERS = ("name", "name_desc", "date", "date_desc")


class StudentService(EntityService):
    collection = STUDENTS
    id_field = "studentId"
    entity = "Student"

    async def create(
        self, last_name: str, first_mid_name: str, enrollment_date: date
    ) -> Student:
        """Allocate an id and insert a new student."""
        last_name = require_text(last_name, "lastName")
        first_mid_name = require_text(first_mid_name, "firstMidName")

        student = Student(
            student_id=await self.sequences.allocate(STUDENT_SEQUENCE),
            last_name=last_name,
            first_mid_name=first_mid_name,
            enrollment_date=enrollment_date,
            concurrency_token=self.tokens.issue_token(),
        )
        student.doc_id = await self.store.insert_one(STUDENTS, student.to_document())
        logger.info("Student created", extra={"student_id": student.student_id})
        return student

    async def get(self, student_id: int) -> Student:
        return Student.from_document(await self._get_document(student_id))

    async def list(self) -> list[Student]:
        docs = await self.store.find(STUDENTS, sort="studentId")
        return [Student.from_document(doc) for doc in docs]

    async def search(
        self,
        search_string: str | None = None,
        sort_order: str | None = None,
        page_index: int = 1,
        page_size: int = 4,
    ) -> Page[Student]:
        """List students filtered by name, sorted, one page at a time.

        Args:
            search_string: Case-insensitive substring of last or first name
            sort_order: name (default), name_desc, date, or date_desc
            page_index: 1-based page number
            page_size: Students per page

        Raises:
            ValidationError: For an unknown sort order or bad paging values
        """
        sort_order = (sort_order or "name").lower()
        if sort_order not in SORT_ORDERS:
            raise ValidationError(f"Unknown sort order: {sort_order}", "sortOrder")
        if page_index < 1 or page_size < 1:
            raise ValidationError("Page index and size must be positive", "pageIndex")

        students = await self.list()
        if search_string:
            needle = search_string.lower()
            students = [
                s
                for s in students
                if needle in s.last_name.lower() or needle in s.first_mid_name.lower()
            ]

        if sort_order.startswith("date"):
            students.sort(key=lambda s: s.enrollment_date, reverse=sort_order == "date_desc")
        else:
            students.sort(key=lambda s: s.last_name, reverse=sort_order == "name_desc")

        start = (page_index - 1) * page_size
        return Page(
            items=students[start : start + page_size],
            page_index=page_index,
            page_size=page_size,
            total_count=len(students),
        )

    async def enrollment_date_counts(self) -> dict[date, int]:
        """Number of students per enrollment date, oldest first."""
        tally = Tally(s.enrollment_date for s in await self.list())
        return dict(sorted(tally.items()))

    async def update(
        self,
        student_id: int,
        *,
        last_name: str | None = None,
        first_mid_name: str | None = None,
        enrollment_date: date | None = None,
        token: bytes | None = None,
    ) -> Student:
        """Change a student's fields.

        Raises:
            NotFoundError: If the student does not exist
            ConflictError: If the supplied token is stale
        """
        changes: dict[str, object] = {}
        if last_name is not None:
            changes["lastName"] = require_text(last_name, "lastName")
        if first_mid_name is not None:
            changes["firstMidName"] = require_text(first_mid_name, "firstMidName")
        if enrollment_date is not None:
            changes["enrollmentDate"] = enrollment_date.isoformat()
        return Student.from_document(await self._update(student_id, token, changes))

    async def delete(self, student_id: int, token: bytes | None = None) -> int:
        """Delete a student and its enrollments; returns enrollments removed."""
        return await self.cascades.delete_student(student_id, token)
