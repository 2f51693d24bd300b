"""
Drift detection and repair for derived data.

Instructor.courseIds and Department.administratorName are materialized
copies of authoritative state:
- Course.instructorIds decides which instructors teach a course
- The instructor record decides an administrator's display name

After a partial synchronization failure or a lost update the copies can
disagree with their source. check() reports every disagreement without
writing; repair() rewrites the derived side until check() is clean.

Invariants:
    - check() never writes
    - repair() only removes course instructor ids that point at missing
      instructors; every other write targets derived fields
    - repair() sets only the fields it fixes, so concurrent edits to other
      fields of the same document are kept
    - Running repair() twice in a row performs no writes the second time
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..models import COURSES, DEPARTMENTS, INSTRUCTORS, Instructor
from ..store.base import Document, DocumentStore
from .sync import Step, run_steps
from .tokens import ConcurrencyTokenManager

logger = logging.getLogger(__name__)


@dataclass
class DriftReport:
    """Disagreements between authoritative and derived fields.

    Attributes:
        dangling_course_instructors: (course_id, instructor_id) pairs where
            the instructor does not exist
        missing_mirror_entries: (instructor_id, course_id) pairs the
            instructor should list but does not
        extra_mirror_entries: (instructor_id, course_id) pairs the
            instructor lists but the course does not
        dangling_administrators: Departments pointing at a missing instructor
        stale_administrator_names: Departments whose copied name is wrong
        writes: Writes performed by repair(); empty for check()
    """

    dangling_course_instructors: list[tuple[int, int]] = field(default_factory=list)
    missing_mirror_entries: list[tuple[int, int]] = field(default_factory=list)
    extra_mirror_entries: list[tuple[int, int]] = field(default_factory=list)
    dangling_administrators: list[int] = field(default_factory=list)
    stale_administrator_names: list[int] = field(default_factory=list)
    writes: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (
            self.dangling_course_instructors
            or self.missing_mirror_entries
            or self.extra_mirror_entries
            or self.dangling_administrators
            or self.stale_administrator_names
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "clean": self.is_clean,
            "danglingCourseInstructors": [list(p) for p in self.dangling_course_instructors],
            "missingMirrorEntries": [list(p) for p in self.missing_mirror_entries],
            "extraMirrorEntries": [list(p) for p in self.extra_mirror_entries],
            "danglingAdministrators": self.dangling_administrators,
            "staleAdministratorNames": self.stale_administrator_names,
            "writes": self.writes,
        }


class Reconciler:
    """Detects and repairs drift in mirrored and denormalized fields.

    Example:
        >>> reconciler = Reconciler(store, tokens)
        >>> report = await reconciler.check()
        >>> if not report.is_clean:
        ...     await reconciler.repair()
    """

    def __init__(self, store: DocumentStore, tokens: ConcurrencyTokenManager) -> None:
        self.store = store
        self.tokens = tokens

    async def _snapshot(self) -> tuple[dict[int, Document], list[Document], list[Document]]:
        instructors = {
            doc["instructorId"]: doc
            for doc in await self.store.find(INSTRUCTORS, sort="instructorId")
        }
        courses = await self.store.find(COURSES, sort="courseId")
        departments = await self.store.find(DEPARTMENTS, sort="departmentId")
        return instructors, courses, departments

    @staticmethod
    def _expected_course_ids(
        instructors: dict[int, Document], courses: list[Document]
    ) -> dict[int, set[int]]:
        expected: dict[int, set[int]] = {instructor_id: set() for instructor_id in instructors}
        for course in courses:
            for instructor_id in course.get("instructorIds", []):
                if instructor_id in expected:
                    expected[instructor_id].add(course["courseId"])
        return expected

    async def check(self) -> DriftReport:
        """Report drift without writing anything."""
        instructors, courses, departments = await self._snapshot()
        report = DriftReport()

        for course in courses:
            for instructor_id in sorted(course.get("instructorIds", [])):
                if instructor_id not in instructors:
                    report.dangling_course_instructors.append((course["courseId"], instructor_id))

        expected = self._expected_course_ids(instructors, courses)
        for instructor_id, doc in instructors.items():
            actual = set(doc.get("courseIds", []))
            for course_id in sorted(expected[instructor_id] - actual):
                report.missing_mirror_entries.append((instructor_id, course_id))
            for course_id in sorted(actual - expected[instructor_id]):
                report.extra_mirror_entries.append((instructor_id, course_id))

        for department in departments:
            instructor_id = department.get("instructorId")
            if instructor_id is None:
                if department.get("administratorName") is not None:
                    report.stale_administrator_names.append(department["departmentId"])
            elif instructor_id not in instructors:
                report.dangling_administrators.append(department["departmentId"])
            elif (
                department.get("administratorName")
                != Instructor.from_document(instructors[instructor_id]).full_name
            ):
                report.stale_administrator_names.append(department["departmentId"])

        if not report.is_clean:
            logger.warning("Drift detected", extra={"report": report.to_dict()})
        return report

    async def repair(self) -> DriftReport:
        """Rewrite derived fields so that check() comes back clean.

        Returns:
            The drift found before repairing, with the writes performed

        Raises:
            PartialSynchronizationError: If a write fails midway; rerun
                repair() to finish
        """
        report = await self.check()
        if report.is_clean:
            return report

        instructors, courses, departments = await self._snapshot()
        steps: list[Step] = []

        for course in courses:
            current = course.get("instructorIds", [])
            kept = sorted(i for i in current if i in instructors)
            if kept != sorted(current):
                steps.append(
                    (
                        f"course:{course['courseId']}:instructors",
                        lambda c=course["courseId"], k=kept: self._set(
                            COURSES, "courseId", c, {"instructorIds": k}
                        ),
                    )
                )

        expected = self._expected_course_ids(instructors, courses)
        for instructor_id, doc in instructors.items():
            wanted = sorted(expected[instructor_id])
            if sorted(doc.get("courseIds", [])) != wanted:
                steps.append(
                    (
                        f"instructor:{instructor_id}:courses",
                        lambda i=instructor_id, w=wanted: self._set(
                            INSTRUCTORS, "instructorId", i, {"courseIds": w}
                        ),
                    )
                )

        for department in departments:
            department_id = department["departmentId"]
            instructor_id = department.get("instructorId")
            if department_id in report.dangling_administrators:
                changes = {"instructorId": None, "administratorName": None}
            elif department_id in report.stale_administrator_names:
                name = (
                    Instructor.from_document(instructors[instructor_id]).full_name
                    if instructor_id is not None and instructor_id in instructors
                    else None
                )
                changes = {"administratorName": name}
            else:
                continue
            steps.append(
                (
                    f"department:{department_id}:administrator",
                    lambda d=department_id, ch=changes: self._set(
                        DEPARTMENTS, "departmentId", d, ch
                    ),
                )
            )

        report.writes = await run_steps("reconcile", steps)
        logger.info("Drift repaired", extra={"writes": report.writes})
        return report

    async def _set(
        self, collection: str, id_field: str, entity_id: int, changes: Document
    ) -> bool:
        updated = await self.store.update_one(
            collection, {id_field: entity_id}, self.tokens.stamp(changes)
        )
        return updated is not None
