"""Read-side composition of stored rows into nested views.

Every function here is pure: it takes snapshots (lists of rows as
returned by the store) and builds response schemas without touching
storage. Listing helpers group children in a single pass so composing
all students costs one scan per kind, not one per student.
"""

import math
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from . import models
from .schemas import (
    DocumentRead,
    LessonPackageRead,
    LessonRead,
    LessonWithContext,
    PackageWithLessons,
    Stats,
    StudentDetail,
    StudentRead,
    StudentWithPackages,
)


def day_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """Return local midnight of `now`'s day and the following midnight."""
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def scheduled_between(lessons: Iterable[models.Lesson], start: datetime, end: datetime) -> List[models.Lesson]:
    """Lessons scheduled in `[start, end)`, earliest first; unscheduled ones are skipped."""
    hits = [l for l in lessons if l.scheduled_date is not None and start <= l.scheduled_date < end]
    return sorted(hits, key=lambda l: (l.scheduled_date, l.id))


def _group(rows: Iterable, attr: str) -> Dict[str, list]:
    grouped = defaultdict(list)
    for row in rows:
        grouped[getattr(row, attr)].append(row)
    return grouped


def _package_view(package: models.LessonPackage, lessons: List[models.Lesson]) -> PackageWithLessons:
    view = PackageWithLessons.model_validate(package)
    view.lessons = [LessonRead.model_validate(l) for l in lessons]
    return view


def _student_view(student: models.Student, packages: List[models.LessonPackage],
                  lessons_by_package: Dict[str, list]) -> StudentWithPackages:
    view = StudentWithPackages.model_validate(student)
    view.packages = [_package_view(p, lessons_by_package.get(p.id, [])) for p in packages]
    return view


def compose_student(student: models.Student, packages: Iterable[models.LessonPackage],
                    lessons: Iterable[models.Lesson]) -> StudentWithPackages:
    """One student with every package it owns, each carrying all its lessons."""
    owned = [p for p in packages if p.student_id == student.id]
    return _student_view(student, owned, _group(lessons, "package_id"))


def compose_students(students: Iterable[models.Student], packages: Iterable[models.LessonPackage],
                     lessons: Iterable[models.Lesson]) -> List[StudentWithPackages]:
    """`compose_student` for every student, grouping children once."""
    packages_by_student = _group(packages, "student_id")
    lessons_by_package = _group(lessons, "package_id")
    return [_student_view(s, packages_by_student.get(s.id, []), lessons_by_package) for s in students]


def compose_student_detail(student: models.Student, packages: Iterable[models.LessonPackage],
                           lessons: Iterable[models.Lesson],
                           documents: Iterable[models.Document]) -> StudentDetail:
    """`compose_student` plus the student's documents."""
    base = compose_student(student, packages, lessons)
    detail = StudentDetail.model_validate(base.model_dump())
    detail.documents = [DocumentRead.model_validate(d) for d in documents if d.student_id == student.id]
    return detail


def enrich_lessons(lessons: Iterable[models.Lesson], students: Iterable[models.Student],
                   packages: Iterable[models.LessonPackage]) -> List[LessonWithContext]:
    """Attach the owning student and package to each lesson."""
    students_by_id = {s.id: s for s in students}
    packages_by_id = {p.id: p for p in packages}
    enriched = []
    for lesson in lessons:
        view = LessonWithContext.model_validate(lesson)
        student = students_by_id.get(lesson.student_id)
        package = packages_by_id.get(lesson.package_id)
        view.student = StudentRead.model_validate(student) if student else None
        view.lesson_package = LessonPackageRead.model_validate(package) if package else None
        enriched.append(view)
    return enriched


def completion_rate(lessons: List[models.Lesson]) -> str:
    """Share of completed lessons as a whole percent, rounded half up; "0%" when empty."""
    if not lessons:
        return "0%"
    completed = sum(1 for l in lessons if l.is_completed)
    return f"{math.floor(completed * 100 / len(lessons) + 0.5)}%"


def compute_stats(students: List[models.Student], lessons: List[models.Lesson],
                  now: Optional[datetime] = None) -> Stats:
    """Dashboard figures.

    Today's lessons are those scheduled within the local calendar day of
    `now`; pending attendance is the uncompleted part of them. The
    completion rate is computed over all lessons, not just today's.
    """
    start, end = day_bounds(now or models.local_now())
    todays = scheduled_between(lessons, start, end)
    return Stats(
        total_students=len(students),
        todays_lessons=len(todays),
        pending_attendance=sum(1 for l in todays if not l.is_completed),
        completion_rate=completion_rate(lessons),
    )
