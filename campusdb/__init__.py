"""
campusdb - Contoso University records on a document store.

This package keeps a relational-style data model (students, instructors,
departments, courses, enrollments) consistent on a store that only
guarantees single-document atomicity:
- Sequence counters stand in for auto-increment ids
- Instructor/course membership is mirrored on both sides by hand
- Guards and cascades replace foreign-key enforcement
- Concurrency tokens replace rowversion columns

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────────┐
    │   Client    │────▶│  FastAPI    │────▶│  Entity services │
    │ (frontend)  │     │  /api/v1    │     │                  │
    └─────────────┘     └─────────────┘     └────────┬─────────┘
                                                     │
                        ┌────────────────────────────┼──────────────┐
                        │                            │              │
                        ▼                            ▼              ▼
                  ┌───────────┐  ┌──────────────┐  ┌─────────┐  ┌─────────┐
                  │ Sequences │  │ Synchronizer │  │Cascades │  │ Tokens  │
                  └─────┬─────┘  └──────┬───────┘  └────┬────┘  └────┬────┘
                        │               │               │            │
                        ▼               ▼               ▼            ▼
                   ┌─────────────────────────────────────────────────────┐
                   │        DocumentStore (SQLite file / in-memory)      │
                   └─────────────────────────────────────────────────────┘

Invariants:
    - I.id in Course.instructorIds <=> Course.id in Instructor.courseIds
    - Department.administratorName matches its administrator's display name
    - Business ids are never reused within a sequence
    - Courses with enrollments and departments with courses cannot be deleted

How to change safely:
    - Route every write through the services
    - Derived fields must stay repairable by the Reconciler
"""

from ._version import __version__

__all__ = ["__version__"]
