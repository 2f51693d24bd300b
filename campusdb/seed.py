"""
Sample data for an empty database.

Everything is inserted through the services, so ids come from the
sequence allocator and course assignments go through the synchronizer
exactly as they would for API requests.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from .models import STUDENTS, Grade
from .services import CampusServices

logger = logging.getLogger(__name__)

SEED_DEPARTMENTS = [
    ("English", Decimal("350000")),
    ("Mathematics", Decimal("100000")),
    ("Engineering", Decimal("350000")),
    ("Economics", Decimal("100000")),
]
DEPARTMENT_START = date(2007, 9, 1)

# (first, last, hire date, office)
SEED_INSTRUCTORS = [
    ("Kim", "Abercrombie", date(1995, 3, 11), "Smith 17"),
    ("Fadi", "Fakhouri", date(2002, 7, 6), "Gowan 27"),
    ("Roger", "Harui", date(1998, 7, 1), "Thompson 304"),
    ("Candace", "Kapoor", date(2001, 1, 15), None),
    ("Roger", "Zheng", date(2004, 2, 12), None),
]

# (course id, title, credits, department index, instructor index)
SEED_COURSES = [
    (1050, "Chemistry", 3, 2, 0),
    (4022, "Microeconomics", 3, 3, 1),
    (4041, "Macroeconomics", 3, 3, 1),
    (1045, "Calculus", 4, 1, 2),
    (3141, "Trigonometry", 4, 1, 2),
    (2021, "Composition", 3, 0, 3),
    (2042, "Literature", 4, 0, 3),
]

SEED_STUDENTS = [
    ("Carson", "Alexander", date(2016, 9, 1)),
    ("Meredith", "Alonso", date(2018, 9, 1)),
    ("Arturo", "Anand", date(2019, 9, 1)),
    ("Gytis", "Barzdukas", date(2018, 9, 1)),
    ("Yan", "Li", date(2018, 9, 1)),
    ("Peggy", "Justice", date(2017, 9, 1)),
    ("Laura", "Norman", date(2019, 9, 1)),
    ("Nino", "Olivetto", date(2011, 9, 1)),
]

# (student index, course index, grade)
SEED_ENROLLMENTS = [
    (0, 0, Grade.A),
    (0, 1, Grade.C),
    (0, 2, Grade.B),
    (1, 3, Grade.B),
    (1, 4, Grade.B),
    (1, 5, Grade.B),
    (2, 0, None),
    (3, 0, None),
    (4, 5, Grade.B),
    (5, 6, None),
    (6, 3, Grade.A),
]


async def seed_database(services: CampusServices) -> bool:
    """Insert the sample data unless any student already exists.

    Returns:
        True if data was inserted
    """
    if await services.store.count(STUDENTS) > 0:
        logger.info("Database already seeded")
        return False

    departments = [
        await services.departments.create(name, budget, DEPARTMENT_START)
        for name, budget in SEED_DEPARTMENTS
    ]
    instructors = [
        await services.instructors.create(last, first, hired, office_location=office)
        for first, last, hired, office in SEED_INSTRUCTORS
    ]
    courses = [
        await services.courses.create(
            course_id,
            title,
            credits,
            departments[department].department_id,
            [instructors[instructor].instructor_id],
        )
        for course_id, title, credits, department, instructor in SEED_COURSES
    ]
    students = [
        await services.students.create(last, first, enrolled)
        for first, last, enrolled in SEED_STUDENTS
    ]
    for student, course, grade in SEED_ENROLLMENTS:
        await services.enrollments.create(
            students[student].student_id, courses[course].course_id, grade
        )

    logger.info(
        "Seeded database",
        extra={
            "departments": len(departments),
            "instructors": len(instructors),
            "courses": len(courses),
            "students": len(students),
            "enrollments": len(SEED_ENROLLMENTS),
        },
    )
    return True
