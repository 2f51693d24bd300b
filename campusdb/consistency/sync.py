"""
Relationship synchronizer.

Keeps mirrored and denormalized references consistent across documents
that the store updates independently:
- Course.instructorIds <-> Instructor.courseIds (bidirectional mirror)
- Department.instructorId -> administratorName (denormalized copy)

Every operation recomputes the full target state, diffs it against what
is stored, and applies the difference one document at a time in
ascending id order. There is no cross-document transaction: a failure
midway leaves earlier writes in place and raises
PartialSynchronizationError. Re-running the same operation converges,
because attach and detach are set operations that skip documents
already in the target state.

Invariants:
    - Course.instructorIds is written before any instructor mirror, so
      the authoritative side is always the most up to date
    - Writes within one call are issued in a deterministic order
    - Instructor ids being added must exist; ids already on the course are
      kept even when dangling, and are left to the Reconciler
    - Every write sets only the derived field plus a fresh concurrency
      token through update_one, never the whole document

Known limitation:
    A mirror list is computed from a read and written back later. Two
    concurrent calls touching the same instructor can interleave so that
    the last writer's list overwrites the other's change. Other fields of
    the document are never affected. The Reconciler detects and repairs
    that drift.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from ..errors import NotFoundError, PartialSynchronizationError
from ..models import COURSES, DEPARTMENTS, INSTRUCTORS, Instructor
from ..store.base import Document, DocumentStore, Filter, StoreError
from .tokens import ConcurrencyTokenManager

logger = logging.getLogger(__name__)

Step = tuple[str, Callable[[], Awaitable[bool]]]


async def run_steps(operation: str, steps: list[Step]) -> list[str]:
    """Execute independent document writes in order.

    Each step returns True when it actually wrote. Steps already applied
    are not undone when a later one fails.

    Returns:
        Labels of steps that wrote something

    Raises:
        PartialSynchronizationError: If a write fails; earlier writes stay
    """
    applied: list[str] = []
    written: list[str] = []
    for index, (label, write) in enumerate(steps):
        try:
            if await write():
                written.append(label)
        except StoreError as e:
            pending = [name for name, _ in steps[index:]]
            logger.error(
                "Synchronization stopped midway, manual reconciliation may be needed",
                extra={
                    "operation": operation,
                    "applied": applied,
                    "pending": pending,
                    "error": str(e),
                },
            )
            raise PartialSynchronizationError(operation, applied, pending, cause=e) from e
        applied.append(label)
    return written


@dataclass
class SyncResult:
    """Outcome of a synchronizer call.

    Attributes:
        added: Ids that gained a reference
        removed: Ids that lost a reference
        writes: Labels of the document writes actually performed
    """

    added: list[int] = field(default_factory=list)
    removed: list[int] = field(default_factory=list)
    writes: list[str] = field(default_factory=list)


class RelationshipSynchronizer:
    """Maintains instructor/course mirrors and department administrators.

    Example:
        >>> sync = RelationshipSynchronizer(store, tokens)
        >>> await sync.set_course_instructors(1050, {1, 2})
        >>> await sync.remove_instructor_everywhere(1)
    """

    def __init__(self, store: DocumentStore, tokens: ConcurrencyTokenManager) -> None:
        self.store = store
        self.tokens = tokens

    async def _run(self, operation: str, steps: list[Step]) -> list[str]:
        return await run_steps(operation, steps)

    async def _missing_instructors(self, instructor_ids: Iterable[int]) -> list[int]:
        missing = []
        for instructor_id in sorted(set(instructor_ids)):
            if await self.store.count(INSTRUCTORS, {"instructorId": instructor_id}) == 0:
                missing.append(instructor_id)
        return missing

    async def _set_fields(self, collection: str, filter: Filter, changes: Document) -> bool:
        # Concurrent edits to fields outside changes must survive.
        updated = await self.store.update_one(collection, filter, self.tokens.stamp(changes))
        return updated is not None

    async def _update_instructor_courses(
        self, instructor_id: int, course_id: int, attach: bool
    ) -> bool:
        doc = await self.store.find_one(INSTRUCTORS, {"instructorId": instructor_id})
        if doc is None:
            logger.warning(
                "Instructor vanished during synchronization",
                extra={"instructor_id": instructor_id, "course_id": course_id},
            )
            return False

        course_ids = set(doc.get("courseIds", []))
        if attach == (course_id in course_ids):
            return False
        if attach:
            course_ids.add(course_id)
        else:
            course_ids.discard(course_id)

        return await self._set_fields(
            INSTRUCTORS, {"instructorId": instructor_id}, {"courseIds": sorted(course_ids)}
        )

    async def _strip_course_instructor(self, course_id: int, instructor_id: int) -> bool:
        doc = await self.store.find_one(COURSES, {"courseId": course_id})
        if doc is None or instructor_id not in doc.get("instructorIds", []):
            return False
        kept = [i for i in doc["instructorIds"] if i != instructor_id]
        return await self._set_fields(COURSES, {"courseId": course_id}, {"instructorIds": kept})

    async def _write_course_instructors(self, course_id: int, desired: list[int]) -> bool:
        doc = await self.store.find_one(COURSES, {"courseId": course_id})
        if doc is None or sorted(doc.get("instructorIds", [])) == desired:
            return False
        return await self._set_fields(
            COURSES, {"courseId": course_id}, {"instructorIds": desired}
        )

    async def _set_administrator(
        self, department_id: int, instructor_id: int | None, name: str | None
    ) -> bool:
        doc = await self.store.find_one(DEPARTMENTS, {"departmentId": department_id})
        if doc is None:
            return False
        if doc.get("instructorId") == instructor_id and doc.get("administratorName") == name:
            return False
        return await self._set_fields(
            DEPARTMENTS,
            {"departmentId": department_id},
            {"instructorId": instructor_id, "administratorName": name},
        )

    async def set_course_instructors(
        self, course_id: int, desired_instructor_ids: Iterable[int]
    ) -> SyncResult:
        """Make a course's instructor set and all instructor mirrors agree.

        The current set is read from the mirror side (instructors whose
        courseIds contain the course), so drift from an earlier partial
        failure is corrected as part of the diff.

        Args:
            course_id: Course business id
            desired_instructor_ids: Target instructor set

        Only instructors the course does not list yet are checked for
        existence. An id the course already lists may be dangling after an
        earlier partial failure; it is kept as is, so unrelated edits to
        the course still go through.

        Raises:
            NotFoundError: If the course or a newly added instructor does
                not exist (no writes)
            PartialSynchronizationError: If a write fails midway
        """
        desired = sorted(set(desired_instructor_ids))
        course = await self.store.find_one(COURSES, {"courseId": course_id})
        if course is None:
            raise NotFoundError("Course", course_id)
        listed = set(course.get("instructorIds", []))
        missing = await self._missing_instructors(i for i in desired if i not in listed)
        if missing:
            raise NotFoundError("Instructor", missing[0])

        mirrored = await self.store.find(INSTRUCTORS, {"courseIds": course_id})
        current = {doc["instructorId"] for doc in mirrored}
        removed = sorted(current - set(desired))
        added = sorted(set(desired) - current)

        steps: list[Step] = [
            (f"course:{course_id}", lambda: self._write_course_instructors(course_id, desired))
        ]
        for instructor_id in removed:
            steps.append(
                (
                    f"instructor:{instructor_id}:detach",
                    lambda i=instructor_id: self._update_instructor_courses(i, course_id, False),
                )
            )
        for instructor_id in added:
            steps.append(
                (
                    f"instructor:{instructor_id}:attach",
                    lambda i=instructor_id: self._update_instructor_courses(i, course_id, True),
                )
            )

        writes = await self._run("set_course_instructors", steps)
        logger.info(
            "Synchronized course instructors",
            extra={"course_id": course_id, "added": added, "removed": removed},
        )
        return SyncResult(added=added, removed=removed, writes=writes)

    async def remove_instructor_everywhere(self, instructor_id: int) -> SyncResult:
        """Strip an instructor from every course and department.

        Courses lose the id from instructorIds; departments it
        administers get instructorId and administratorName cleared.

        Raises:
            PartialSynchronizationError: If a write fails midway
        """
        courses = await self.store.find(COURSES, {"instructorIds": instructor_id}, sort="courseId")
        departments = await self.store.find(
            DEPARTMENTS, {"instructorId": instructor_id}, sort="departmentId"
        )

        steps: list[Step] = []
        for doc in courses:
            course_id = doc["courseId"]
            steps.append(
                (
                    f"course:{course_id}:strip",
                    lambda c=course_id: self._strip_course_instructor(c, instructor_id),
                )
            )
        for doc in departments:
            department_id = doc["departmentId"]
            steps.append(
                (
                    f"department:{department_id}:clear",
                    lambda d=department_id: self._set_administrator(d, None, None),
                )
            )

        writes = await self._run("remove_instructor_everywhere", steps)
        return SyncResult(
            removed=[doc["courseId"] for doc in courses],
            writes=writes,
        )

    async def administrator_name_for(self, instructor_id: int | None) -> str | None:
        """Resolve the display name to store alongside an administrator id.

        Raises:
            NotFoundError: If the instructor does not exist
        """
        if instructor_id is None:
            return None
        doc = await self.store.find_one(INSTRUCTORS, {"instructorId": instructor_id})
        if doc is None:
            raise NotFoundError("Instructor", instructor_id)
        return Instructor.from_document(doc).full_name

    async def set_department_administrator(
        self, department_id: int, instructor_id: int | None
    ) -> SyncResult:
        """Point a department at an administrator and copy the name.

        Raises:
            NotFoundError: If the department or instructor does not exist
        """
        if await self.store.count(DEPARTMENTS, {"departmentId": department_id}) == 0:
            raise NotFoundError("Department", department_id)
        name = await self.administrator_name_for(instructor_id)
        writes = await self._run(
            "set_department_administrator",
            [
                (
                    f"department:{department_id}:administrator",
                    lambda: self._set_administrator(department_id, instructor_id, name),
                )
            ],
        )
        return SyncResult(writes=writes)

    async def propagate_instructor_name(self, instructor_id: int) -> SyncResult:
        """Refresh administratorName on departments after a rename.

        Raises:
            NotFoundError: If the instructor does not exist
            PartialSynchronizationError: If a write fails midway
        """
        name = await self.administrator_name_for(instructor_id)
        departments = await self.store.find(
            DEPARTMENTS, {"instructorId": instructor_id}, sort="departmentId"
        )
        steps: list[Step] = [
            (
                f"department:{doc['departmentId']}:administrator",
                lambda d=doc["departmentId"]: self._set_administrator(d, instructor_id, name),
            )
            for doc in departments
            if doc.get("administratorName") != name
        ]
        writes = await self._run("propagate_instructor_name", steps)
        return SyncResult(writes=writes)
