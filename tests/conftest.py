"""
Shared fixtures for campusdb tests.

Stores are created fresh per test. The in-memory store is the default;
tests that must hold for every backend use the parametrized any_store.
"""

import tempfile

import pytest

from campusdb.consistency import (
    CascadeEngine,
    ConcurrencyTokenManager,
    Reconciler,
    RelationshipSynchronizer,
    SequenceAllocator,
)
from campusdb.models import (
    COURSES,
    DEPARTMENTS,
    ENROLLMENTS,
    INSTRUCTORS,
    STUDENTS,
    TOKEN_KEY,
    encode_token,
)
from campusdb.services import CampusServices
from campusdb.store import InMemoryDocumentStore, SqliteDocumentStore


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
async def store():
    """Connected in-memory store."""
    s = InMemoryDocumentStore()
    await s.connect()
    yield s
    await s.close()


@pytest.fixture
async def sqlite_store(data_dir):
    """Connected SQLite store in a temporary directory."""
    s = SqliteDocumentStore(data_dir, wal_mode=False)
    await s.connect()
    yield s
    await s.close()


@pytest.fixture(params=["memory", "sqlite"])
async def any_store(request, data_dir):
    """Connected store of each backend."""
    if request.param == "memory":
        s = InMemoryDocumentStore()
    else:
        s = SqliteDocumentStore(data_dir, wal_mode=False)
    await s.connect()
    yield s
    await s.close()


@pytest.fixture
def tokens(store):
    return ConcurrencyTokenManager(store)


@pytest.fixture
def sequences(store):
    return SequenceAllocator(store)


@pytest.fixture
def synchronizer(store, tokens):
    return RelationshipSynchronizer(store, tokens)


@pytest.fixture
def cascades(store, tokens, synchronizer):
    return CascadeEngine(store, tokens, synchronizer)


@pytest.fixture
def reconciler(store, tokens):
    return Reconciler(store, tokens)


@pytest.fixture
async def services(store):
    """Services over the in-memory store, indexes created."""
    s = CampusServices.create(store)
    await s.ensure_indexes()
    return s


class RawDocuments:
    """Inserts documents straight into a store, bypassing the services."""

    def __init__(self, store):
        self.store = store

    async def instructor(self, instructor_id, last="Smith", first="Ann", course_ids=()):
        await self.store.insert_one(
            INSTRUCTORS,
            {
                "instructorId": instructor_id,
                "lastName": last,
                "firstMidName": first,
                "hireDate": "2001-01-01",
                "courseIds": list(course_ids),
            },
        )

    async def course(self, course_id, instructor_ids=(), department_id=1):
        await self.store.insert_one(
            COURSES,
            {
                "courseId": course_id,
                "title": f"Course {course_id}",
                "credits": 3,
                "departmentId": department_id,
                "instructorIds": list(instructor_ids),
            },
        )

    async def department(self, department_id, instructor_id=None, name=None, token=None):
        await self.store.insert_one(
            DEPARTMENTS,
            {
                "departmentId": department_id,
                "name": f"Dept {department_id}",
                "budget": "0",
                "startDate": "2007-09-01",
                "instructorId": instructor_id,
                "administratorName": name,
                TOKEN_KEY: encode_token(token),
            },
        )

    async def student(self, student_id, token=None):
        await self.store.insert_one(
            STUDENTS,
            {
                "studentId": student_id,
                "lastName": "Li",
                "firstMidName": "Yan",
                "enrollmentDate": "2018-09-01",
                TOKEN_KEY: encode_token(token),
            },
        )

    async def enrollment(self, enrollment_id, student_id, course_id):
        await self.store.insert_one(
            ENROLLMENTS,
            {"enrollmentId": enrollment_id, "studentId": student_id, "courseId": course_id},
        )

    async def course_ids_of(self, instructor_id):
        doc = await self.store.find_one(INSTRUCTORS, {"instructorId": instructor_id})
        return doc["courseIds"]

    async def instructor_ids_of(self, course_id):
        doc = await self.store.find_one(COURSES, {"courseId": course_id})
        return doc["instructorIds"]

    async def department_doc(self, department_id):
        return await self.store.find_one(DEPARTMENTS, {"departmentId": department_id})


@pytest.fixture
def raw(store):
    """Helper for inserting raw documents into the in-memory store."""
    return RawDocuments(store)
