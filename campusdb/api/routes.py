"""
API routes for the campusdb HTTP surface.

Thin handlers: they translate JSON into service calls and service
results back into JSON. Concurrency tokens travel as base64 strings in
the "concurrencyToken" field (request bodies) or query parameter
(deletes).
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models import (
    Course,
    Department,
    Enrollment,
    Grade,
    Instructor,
    Student,
    decode_token,
    encode_token,
)
from ..services import CampusServices
from .settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Contoso University"])

GradeName = Literal["A", "B", "C", "D", "F"]


# --- Request/Response Models ---


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Versioned(ApiModel):
    concurrency_token: str | None = Field(
        None, description="Token from the last read; omit to overwrite unconditionally"
    )


class StudentRequest(ApiModel):
    last_name: str = Field(..., min_length=1, max_length=50)
    first_mid_name: str = Field(..., min_length=1, max_length=50)
    enrollment_date: date


class StudentUpdateRequest(StudentRequest, Versioned):
    pass


class StudentResponse(ApiModel):
    id: int
    last_name: str
    first_mid_name: str
    full_name: str
    enrollment_date: date
    concurrency_token: str | None = None


class StudentPageResponse(ApiModel):
    students: list[StudentResponse]
    page_index: int
    total_pages: int
    has_previous_page: bool
    has_next_page: bool
    total_count: int


class EnrollmentDateGroup(ApiModel):
    enrollment_date: date
    student_count: int


class InstructorRequest(ApiModel):
    last_name: str = Field(..., min_length=1, max_length=50)
    first_mid_name: str = Field(..., min_length=1, max_length=50)
    hire_date: date
    office_location: str | None = Field(None, max_length=50)
    course_ids: list[int] = Field(default_factory=list)


class InstructorUpdateRequest(InstructorRequest, Versioned):
    pass


class InstructorResponse(ApiModel):
    id: int
    last_name: str
    first_mid_name: str
    full_name: str
    hire_date: date
    office_location: str | None = None
    course_ids: list[int]
    concurrency_token: str | None = None


class DepartmentRequest(ApiModel):
    name: str = Field(..., min_length=3, max_length=50)
    budget: Decimal = Field(..., ge=0)
    start_date: date
    instructor_id: int | None = None


class DepartmentUpdateRequest(DepartmentRequest, Versioned):
    pass


class DepartmentResponse(ApiModel):
    department_id: int
    name: str
    budget: Decimal
    start_date: date
    instructor_id: int | None = None
    administrator_name: str | None = None
    concurrency_token: str | None = None


class CourseRequest(ApiModel):
    course_id: int = Field(..., ge=1000, le=9999, description="Course number")
    title: str = Field(..., min_length=3, max_length=50)
    credits: int = Field(..., ge=0, le=5)
    department_id: int
    instructor_ids: list[int] = Field(default_factory=list)


class CourseUpdateRequest(Versioned):
    title: str = Field(..., min_length=3, max_length=50)
    credits: int = Field(..., ge=0, le=5)
    department_id: int
    instructor_ids: list[int] = Field(default_factory=list)


class CourseInstructorSummary(ApiModel):
    id: int
    full_name: str


class CourseResponse(ApiModel):
    course_id: int
    title: str
    credits: int
    department_id: int
    department_name: str | None = None
    enrollment_count: int = 0
    instructor_ids: list[int]
    instructors: list[CourseInstructorSummary] = Field(default_factory=list)
    concurrency_token: str | None = None


class EnrollmentRequest(ApiModel):
    student_id: int
    course_id: int
    grade: GradeName | None = None


class EnrollmentUpdateRequest(Versioned):
    grade: GradeName | None = None


class EnrollmentResponse(ApiModel):
    enrollment_id: int
    student_id: int
    course_id: int
    grade: GradeName | None = None
    concurrency_token: str | None = None


# --- Converters ---


def _student_out(s: Student) -> StudentResponse:
    return StudentResponse(
        id=s.student_id,
        last_name=s.last_name,
        first_mid_name=s.first_mid_name,
        full_name=s.full_name,
        enrollment_date=s.enrollment_date,
        concurrency_token=encode_token(s.concurrency_token),
    )


def _instructor_out(i: Instructor) -> InstructorResponse:
    return InstructorResponse(
        id=i.instructor_id,
        last_name=i.last_name,
        first_mid_name=i.first_mid_name,
        full_name=i.full_name,
        hire_date=i.hire_date,
        office_location=i.office_location,
        course_ids=i.course_ids,
        concurrency_token=encode_token(i.concurrency_token),
    )


def _department_out(d: Department) -> DepartmentResponse:
    return DepartmentResponse(
        department_id=d.department_id,
        name=d.name,
        budget=d.budget,
        start_date=d.start_date,
        instructor_id=d.instructor_id,
        administrator_name=d.administrator_name,
        concurrency_token=encode_token(d.concurrency_token),
    )


async def _course_out(c: Course, services: CampusServices) -> CourseResponse:
    details = await services.courses.describe(c)
    return CourseResponse(
        course_id=c.course_id,
        title=c.title,
        credits=c.credits,
        department_id=c.department_id,
        department_name=details.department_name,
        enrollment_count=details.enrollment_count,
        instructor_ids=c.instructor_ids,
        instructors=[
            CourseInstructorSummary(id=i, full_name=name) for i, name in details.instructors
        ],
        concurrency_token=encode_token(c.concurrency_token),
    )


def _enrollment_out(e: Enrollment) -> EnrollmentResponse:
    return EnrollmentResponse(
        enrollment_id=e.enrollment_id,
        student_id=e.student_id,
        course_id=e.course_id,
        grade=e.grade.name if e.grade is not None else None,
        concurrency_token=encode_token(e.concurrency_token),
    )


def _token(value: str | None) -> bytes | None:
    try:
        return decode_token(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def _grade(value: str | None) -> Grade | None:
    return Grade[value] if value is not None else None


# --- Dependencies ---


def get_services(request: Request) -> CampusServices:
    """Get services from app state."""
    return request.app.state.services


def get_settings(request: Request) -> Settings:
    """Get API settings from app state."""
    return request.app.state.settings


# --- Student Routes ---


@router.get("/students", response_model=StudentPageResponse)
async def list_students(
    search_string: str | None = Query(None, alias="searchString"),
    sort_order: str | None = Query(None, alias="sortOrder"),
    page_index: int = Query(1, alias="pageIndex", ge=1),
    page_size: int | None = Query(None, alias="pageSize", ge=1),
    services: CampusServices = Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    """
    List students with search, sorting and pagination.

    sortOrder is one of name (default), name_desc, date, date_desc.
    """
    size = min(page_size or settings.default_page_size, settings.max_page_size)
    page = await services.students.search(search_string, sort_order, page_index, size)
    return StudentPageResponse(
        students=[_student_out(s) for s in page.items],
        page_index=page.page_index,
        total_pages=page.total_pages,
        has_previous_page=page.has_previous_page,
        has_next_page=page.has_next_page,
        total_count=page.total_count,
    )


@router.get("/students/enrollment-dates", response_model=list[EnrollmentDateGroup])
async def enrollment_date_statistics(services: CampusServices = Depends(get_services)):
    """Number of students per enrollment date."""
    counts = await services.students.enrollment_date_counts()
    return [EnrollmentDateGroup(enrollment_date=d, student_count=n) for d, n in counts.items()]


@router.get("/students/{student_id}", response_model=StudentResponse)
async def get_student(student_id: int, services: CampusServices = Depends(get_services)):
    return _student_out(await services.students.get(student_id))


@router.post("/students", response_model=StudentResponse, status_code=201)
async def create_student(body: StudentRequest, services: CampusServices = Depends(get_services)):
    student = await services.students.create(
        body.last_name, body.first_mid_name, body.enrollment_date
    )
    return _student_out(student)


@router.put("/students/{student_id}", response_model=StudentResponse)
async def update_student(
    student_id: int,
    body: StudentUpdateRequest,
    services: CampusServices = Depends(get_services),
):
    student = await services.students.update(
        student_id,
        last_name=body.last_name,
        first_mid_name=body.first_mid_name,
        enrollment_date=body.enrollment_date,
        token=_token(body.concurrency_token),
    )
    return _student_out(student)


@router.delete("/students/{student_id}", status_code=204)
async def delete_student(
    student_id: int,
    concurrency_token: str | None = Query(None, alias="concurrencyToken"),
    services: CampusServices = Depends(get_services),
):
    """Delete a student together with its enrollments."""
    await services.students.delete(student_id, _token(concurrency_token))
    return Response(status_code=204)


# --- Instructor Routes ---


@router.get("/instructors", response_model=list[InstructorResponse])
async def list_instructors(services: CampusServices = Depends(get_services)):
    return [_instructor_out(i) for i in await services.instructors.list()]


@router.get("/instructors/{instructor_id}", response_model=InstructorResponse)
async def get_instructor(instructor_id: int, services: CampusServices = Depends(get_services)):
    return _instructor_out(await services.instructors.get(instructor_id))


@router.post("/instructors", response_model=InstructorResponse, status_code=201)
async def create_instructor(
    body: InstructorRequest, services: CampusServices = Depends(get_services)
):
    instructor = await services.instructors.create(
        body.last_name,
        body.first_mid_name,
        body.hire_date,
        office_location=body.office_location,
        course_ids=body.course_ids,
    )
    return _instructor_out(instructor)


@router.put("/instructors/{instructor_id}", response_model=InstructorResponse)
async def update_instructor(
    instructor_id: int,
    body: InstructorUpdateRequest,
    services: CampusServices = Depends(get_services),
):
    """
    Update an instructor and its course assignments.

    A rename is copied to the departments the instructor administers.
    """
    instructor = await services.instructors.update(
        instructor_id,
        last_name=body.last_name,
        first_mid_name=body.first_mid_name,
        hire_date=body.hire_date,
        office_location=body.office_location,
        course_ids=body.course_ids,
        token=_token(body.concurrency_token),
    )
    return _instructor_out(instructor)


@router.delete("/instructors/{instructor_id}", status_code=204)
async def delete_instructor(
    instructor_id: int,
    concurrency_token: str | None = Query(None, alias="concurrencyToken"),
    services: CampusServices = Depends(get_services),
):
    """Delete an instructor after removing it from courses and departments."""
    await services.instructors.delete(instructor_id, _token(concurrency_token))
    return Response(status_code=204)


# --- Department Routes ---


@router.get("/departments", response_model=list[DepartmentResponse])
async def list_departments(services: CampusServices = Depends(get_services)):
    return [_department_out(d) for d in await services.departments.list()]


@router.get("/departments/{department_id}", response_model=DepartmentResponse)
async def get_department(department_id: int, services: CampusServices = Depends(get_services)):
    return _department_out(await services.departments.get(department_id))


@router.post("/departments", response_model=DepartmentResponse, status_code=201)
async def create_department(
    body: DepartmentRequest, services: CampusServices = Depends(get_services)
):
    department = await services.departments.create(
        body.name, body.budget, body.start_date, body.instructor_id
    )
    return _department_out(department)


@router.put("/departments/{department_id}", response_model=DepartmentResponse)
async def update_department(
    department_id: int,
    body: DepartmentUpdateRequest,
    services: CampusServices = Depends(get_services),
):
    """
    Update a department.

    Returns 409 when concurrencyToken no longer matches; reload and retry.
    """
    department = await services.departments.update(
        department_id,
        name=body.name,
        budget=body.budget,
        start_date=body.start_date,
        instructor_id=body.instructor_id,
        token=_token(body.concurrency_token),
    )
    return _department_out(department)


@router.delete("/departments/{department_id}", status_code=204)
async def delete_department(
    department_id: int,
    concurrency_token: str | None = Query(None, alias="concurrencyToken"),
    services: CampusServices = Depends(get_services),
):
    """Delete a department. Returns 400 while courses still belong to it."""
    await services.departments.delete(department_id, _token(concurrency_token))
    return Response(status_code=204)


# --- Course Routes ---


@router.get("/courses", response_model=list[CourseResponse])
async def list_courses(
    department_id: int | None = Query(None, alias="departmentId"),
    services: CampusServices = Depends(get_services),
):
    return [await _course_out(c, services) for c in await services.courses.list(department_id)]


@router.get("/courses/{course_id}", response_model=CourseResponse)
async def get_course(course_id: int, services: CampusServices = Depends(get_services)):
    return await _course_out(await services.courses.get(course_id), services)


@router.post("/courses", response_model=CourseResponse, status_code=201)
async def create_course(body: CourseRequest, services: CampusServices = Depends(get_services)):
    course = await services.courses.create(
        body.course_id, body.title, body.credits, body.department_id, body.instructor_ids
    )
    return await _course_out(course, services)


@router.put("/courses/{course_id}", response_model=CourseResponse)
async def update_course(
    course_id: int,
    body: CourseUpdateRequest,
    services: CampusServices = Depends(get_services),
):
    course = await services.courses.update(
        course_id,
        title=body.title,
        credits=body.credits,
        department_id=body.department_id,
        instructor_ids=body.instructor_ids,
        token=_token(body.concurrency_token),
    )
    return await _course_out(course, services)


@router.delete("/courses/{course_id}", status_code=204)
async def delete_course(
    course_id: int,
    concurrency_token: str | None = Query(None, alias="concurrencyToken"),
    services: CampusServices = Depends(get_services),
):
    """Delete a course. Returns 400 while students are enrolled in it."""
    await services.courses.delete(course_id, _token(concurrency_token))
    return Response(status_code=204)


# --- Enrollment Routes ---


@router.get("/enrollments", response_model=list[EnrollmentResponse])
async def list_enrollments(
    student_id: int | None = Query(None, alias="studentId"),
    course_id: int | None = Query(None, alias="courseId"),
    services: CampusServices = Depends(get_services),
):
    return [_enrollment_out(e) for e in await services.enrollments.list(student_id, course_id)]


@router.get("/enrollments/{enrollment_id}", response_model=EnrollmentResponse)
async def get_enrollment(enrollment_id: int, services: CampusServices = Depends(get_services)):
    return _enrollment_out(await services.enrollments.get(enrollment_id))


@router.post("/enrollments", response_model=EnrollmentResponse, status_code=201)
async def create_enrollment(
    body: EnrollmentRequest, services: CampusServices = Depends(get_services)
):
    enrollment = await services.enrollments.create(
        body.student_id, body.course_id, _grade(body.grade)
    )
    return _enrollment_out(enrollment)


@router.put("/enrollments/{enrollment_id}", response_model=EnrollmentResponse)
async def update_enrollment(
    enrollment_id: int,
    body: EnrollmentUpdateRequest,
    services: CampusServices = Depends(get_services),
):
    enrollment = await services.enrollments.update(
        enrollment_id,
        grade=_grade(body.grade),
        token=_token(body.concurrency_token),
    )
    return _enrollment_out(enrollment)


@router.delete("/enrollments/{enrollment_id}", status_code=204)
async def delete_enrollment(
    enrollment_id: int,
    concurrency_token: str | None = Query(None, alias="concurrencyToken"),
    services: CampusServices = Depends(get_services),
):
    await services.enrollments.delete(enrollment_id, _token(concurrency_token))
    return Response(status_code=204)


# --- Maintenance Routes ---


@router.post("/maintenance/reconcile")
async def reconcile(
    dry_run: bool = Query(False, description="Only report drift"),
    services: CampusServices = Depends(get_services),
):
    """
    Detect drift in mirrored instructor/course lists and administrator names.

    Without dry_run the drift is repaired and the writes are listed.
    """
    if dry_run:
        report = await services.reconciler.check()
    else:
        report = await services.reconciler.repair()
    return report.to_dict()
