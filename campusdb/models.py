"""
Entity documents for campusdb.

Each entity is stored as one document in its own collection. References
between entities are numeric business ids, never storage ids, and the
store enforces none of them.

Invariants:
    - Persisted field names are camelCase and stable
    - Instructor.course_ids mirrors Course.instructor_ids (derived data)
    - Department.administrator_name is a denormalized copy of the
      administrator's display name (derived data)
    - Concurrency tokens are bytes in models and base64 text in documents

How to change safely:
    - New fields must have defaults so old documents still load
    - Never rename a persisted key without a migration
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar

STUDENTS = "students"
INSTRUCTORS = "instructors"
DEPARTMENTS = "departments"
COURSES = "courses"
ENROLLMENTS = "enrollments"
COUNTERS = "counters"

# Sequence names for allocator-issued ids; course ids are caller-supplied.
STUDENT_SEQUENCE = "student"
INSTRUCTOR_SEQUENCE = "instructor"
DEPARTMENT_SEQUENCE = "department"
ENROLLMENT_SEQUENCE = "enrollment"

TOKEN_KEY = "concurrencyToken"


def encode_token(token: bytes | None) -> str | None:
    """Encode a concurrency token for storage or transport."""
    if token is None:
        return None
    return base64.b64encode(token).decode("ascii")


def decode_token(value: str | None) -> bytes | None:
    """Decode a base64 concurrency token.

    Raises:
        ValueError: If the value is not valid base64
    """
    if value is None or value == "":
        return None
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"Invalid concurrency token: {e}") from e


def _date_out(value: date) -> str:
    return value.isoformat()


def _date_in(value: str) -> date:
    return date.fromisoformat(value[:10])


class Grade(Enum):
    """Letter grade of an enrollment."""

    A = 0
    B = 1
    C = 2
    D = 3
    F = 4


@dataclass
class Student:
    """A student. Has no outbound references."""

    collection: ClassVar[str] = STUDENTS
    id_field: ClassVar[str] = "studentId"
    entity: ClassVar[str] = "Student"

    student_id: int
    last_name: str
    first_mid_name: str
    enrollment_date: date
    concurrency_token: bytes | None = None
    doc_id: str | None = None

    @property
    def id(self) -> int:
        return self.student_id

    @property
    def full_name(self) -> str:
        return f"{self.first_mid_name} {self.last_name}"

    def to_document(self) -> dict[str, Any]:
        return {
            "studentId": self.student_id,
            "lastName": self.last_name,
            "firstMidName": self.first_mid_name,
            "enrollmentDate": _date_out(self.enrollment_date),
            TOKEN_KEY: encode_token(self.concurrency_token),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Student:
        return cls(
            student_id=doc["studentId"],
            last_name=doc["lastName"],
            first_mid_name=doc["firstMidName"],
            enrollment_date=_date_in(doc["enrollmentDate"]),
            concurrency_token=decode_token(doc.get(TOKEN_KEY)),
            doc_id=doc.get("_id"),
        )


@dataclass
class Instructor:
    """An instructor.

    Attributes:
        course_ids: Courses this instructor teaches, kept sorted; mirrors
            Course.instructor_ids
    """

    collection: ClassVar[str] = INSTRUCTORS
    id_field: ClassVar[str] = "instructorId"
    entity: ClassVar[str] = "Instructor"

    instructor_id: int
    last_name: str
    first_mid_name: str
    hire_date: date
    office_location: str | None = None
    course_ids: list[int] = field(default_factory=list)
    concurrency_token: bytes | None = None
    doc_id: str | None = None

    @property
    def id(self) -> int:
        return self.instructor_id

    @property
    def full_name(self) -> str:
        return f"{self.last_name}, {self.first_mid_name}"

    def to_document(self) -> dict[str, Any]:
        return {
            "instructorId": self.instructor_id,
            "lastName": self.last_name,
            "firstMidName": self.first_mid_name,
            "hireDate": _date_out(self.hire_date),
            "officeLocation": self.office_location,
            "courseIds": list(self.course_ids),
            TOKEN_KEY: encode_token(self.concurrency_token),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Instructor:
        return cls(
            instructor_id=doc["instructorId"],
            last_name=doc["lastName"],
            first_mid_name=doc["firstMidName"],
            hire_date=_date_in(doc["hireDate"]),
            office_location=doc.get("officeLocation"),
            course_ids=list(doc.get("courseIds", [])),
            concurrency_token=decode_token(doc.get(TOKEN_KEY)),
            doc_id=doc.get("_id"),
        )


@dataclass
class Department:
    """A department.

    Attributes:
        instructor_id: Administrator reference, optional
        administrator_name: Copy of the administrator's display name
        concurrency_token: Regenerated on every successful write
    """

    collection: ClassVar[str] = DEPARTMENTS
    id_field: ClassVar[str] = "departmentId"
    entity: ClassVar[str] = "Department"

    department_id: int
    name: str
    budget: Decimal
    start_date: date
    instructor_id: int | None = None
    administrator_name: str | None = None
    concurrency_token: bytes | None = None
    doc_id: str | None = None

    @property
    def id(self) -> int:
        return self.department_id

    def to_document(self) -> dict[str, Any]:
        return {
            "departmentId": self.department_id,
            "name": self.name,
            "budget": str(self.budget),
            "startDate": _date_out(self.start_date),
            "instructorId": self.instructor_id,
            "administratorName": self.administrator_name,
            TOKEN_KEY: encode_token(self.concurrency_token),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Department:
        return cls(
            department_id=doc["departmentId"],
            name=doc["name"],
            budget=Decimal(doc["budget"]),
            start_date=_date_in(doc["startDate"]),
            instructor_id=doc.get("instructorId"),
            administrator_name=doc.get("administratorName"),
            concurrency_token=decode_token(doc.get(TOKEN_KEY)),
            doc_id=doc.get("_id"),
        )


@dataclass
class Course:
    """A course. Its id is supplied by the caller, not allocated."""

    collection: ClassVar[str] = COURSES
    id_field: ClassVar[str] = "courseId"
    entity: ClassVar[str] = "Course"

    course_id: int
    title: str
    credits: int
    department_id: int
    instructor_ids: list[int] = field(default_factory=list)
    concurrency_token: bytes | None = None
    doc_id: str | None = None

    @property
    def id(self) -> int:
        return self.course_id

    def to_document(self) -> dict[str, Any]:
        return {
            "courseId": self.course_id,
            "title": self.title,
            "credits": self.credits,
            "departmentId": self.department_id,
            "instructorIds": list(self.instructor_ids),
            TOKEN_KEY: encode_token(self.concurrency_token),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Course:
        return cls(
            course_id=doc["courseId"],
            title=doc["title"],
            credits=doc["credits"],
            department_id=doc["departmentId"],
            instructor_ids=list(doc.get("instructorIds", [])),
            concurrency_token=decode_token(doc.get(TOKEN_KEY)),
            doc_id=doc.get("_id"),
        )


@dataclass
class Enrollment:
    """A student's enrollment in a course."""

    collection: ClassVar[str] = ENROLLMENTS
    id_field: ClassVar[str] = "enrollmentId"
    entity: ClassVar[str] = "Enrollment"

    enrollment_id: int
    course_id: int
    student_id: int
    grade: Grade | None = None
    concurrency_token: bytes | None = None
    doc_id: str | None = None

    @property
    def id(self) -> int:
        return self.enrollment_id

    def to_document(self) -> dict[str, Any]:
        return {
            "enrollmentId": self.enrollment_id,
            "courseId": self.course_id,
            "studentId": self.student_id,
            "grade": self.grade.name if self.grade is not None else None,
            TOKEN_KEY: encode_token(self.concurrency_token),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Enrollment:
        grade = doc.get("grade")
        return cls(
            enrollment_id=doc["enrollmentId"],
            course_id=doc["courseId"],
            student_id=doc["studentId"],
            grade=Grade[grade] if grade is not None else None,
            concurrency_token=decode_token(doc.get(TOKEN_KEY)),
            doc_id=doc.get("_id"),
        )


@dataclass
class Counter:
    """Last value issued for a sequence."""

    name: str
    value: int

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Counter:
        return cls(name=doc["name"], value=doc["value"])
