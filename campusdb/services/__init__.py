"""
Request-facing services for campusdb.

Each service owns one entity and routes every write through the
consistency core:
- Creates allocate an id (except courses) and issue the first token
- Updates go through the token manager's compare-and-swap
- Course membership changes go through the synchronizer
- Deletes go through the cascade engine

Invariants:
    - All services in one CampusServices share a single store and a
      single set of consistency components
    - Business ids are unique per collection (unique index on the id field)

How to change safely:
    - New write paths must use the same components, never the store alone
    - Call CampusServices.ensure_indexes() after adding a collection
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..config import ConsistencyConfig
from ..consistency import (
    CascadeEngine,
    ConcurrencyTokenManager,
    Reconciler,
    RelationshipSynchronizer,
    SequenceAllocator,
)
from ..store.base import DocumentStore
from .base import UNSET, EntityService, Page
from .courses import CourseDetails, CourseService
from .departments import DepartmentService
from .enrollments import EnrollmentService
from .instructors import InstructorService
from .students import StudentService

logger = logging.getLogger(__name__)

__all__ = [
    "CampusServices",
    "CourseDetails",
    "CourseService",
    "DepartmentService",
    "EnrollmentService",
    "EntityService",
    "InstructorService",
    "Page",
    "StudentService",
    "UNSET",
]


@dataclass
class CampusServices:
    """All entity services plus the components they share.

    Example:
        >>> services = CampusServices.create(store)
        >>> await services.ensure_indexes()
        >>> student = await services.students.create("Li", "Yan", date(2018, 9, 1))
    """

    store: DocumentStore
    sequences: SequenceAllocator
    tokens: ConcurrencyTokenManager
    synchronizer: RelationshipSynchronizer
    cascades: CascadeEngine
    reconciler: Reconciler
    students: StudentService
    instructors: InstructorService
    departments: DepartmentService
    courses: CourseService
    enrollments: EnrollmentService

    @classmethod
    def create(
        cls, store: DocumentStore, config: ConsistencyConfig | None = None
    ) -> CampusServices:
        """Wire the consistency components and services around one store."""
        config = config or ConsistencyConfig()
        sequences = SequenceAllocator(store, base=config.sequence_base)
        tokens = ConcurrencyTokenManager(store, token_bytes=config.token_bytes)
        synchronizer = RelationshipSynchronizer(store, tokens)
        cascades = CascadeEngine(store, tokens, synchronizer)
        parts = (store, sequences, tokens, synchronizer, cascades)

        return cls(
            store=store,
            sequences=sequences,
            tokens=tokens,
            synchronizer=synchronizer,
            cascades=cascades,
            reconciler=Reconciler(store, tokens),
            students=StudentService(*parts),
            instructors=InstructorService(*parts),
            departments=DepartmentService(*parts),
            courses=CourseService(*parts),
            enrollments=EnrollmentService(
                *parts, validate_references=config.validate_enrollment_refs
            ),
        )

    async def ensure_indexes(self) -> None:
        """Create the unique index on each collection's business id."""
        for service in (
            self.students,
            self.instructors,
            self.departments,
            self.courses,
            self.enrollments,
        ):
            await service.ensure_indexes()
        logger.debug("Unique indexes ensured")
