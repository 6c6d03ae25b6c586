"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate the entity
store, the credit ledger and the aggregation functions. Services
validate references, run the domain rules and persist rows via the
store. Every public operation answers with a `Result`: found,
not-found, or a failure carrying a lessonbook error.
"""

import json
import logging
from datetime import datetime
from typing import Callable, List, Optional

from pydantic.alias_generators import to_camel

from . import aggregation, models
from .errors import LessonbookError, ValidationFailed
from .ledger import CreditLedger
from .repositories import EntityStore
from .results import Result, returns_result
from .schemas import (
    DocumentIn,
    DocumentRead,
    LessonIn,
    LessonPackageIn,
    LessonPackageRead,
    LessonPackageUpdate,
    LessonRead,
    LessonUpdate,
    StudentIn,
    StudentRead,
    StudentUpdate,
    StudentWithPackageIn,
)
from .utils.keyed_lock import KeyedLock
from .utils.masking import mask_email

logger = logging.getLogger("lessonbook.services")

REQUIRED_STUDENT_FIELDS = ("first_name", "last_name", "email")


def _read(schema, row):
    return None if row is None else schema.model_validate(row)


class StudentService:
    """Student CRUD, search and the nested student views.

    Email checks and the write that follows run under a lock keyed on the
    normalized address; share `locks` between instances serving one store.
    """
    def __init__(self, store: EntityStore, locks: Optional[KeyedLock] = None):
        self.store = store
        self.locks = locks or KeyedLock()

    def _email_taken(self, email: str, exclude_id: Optional[str] = None) -> bool:
        wanted = email.strip().lower()
        return any(
            s.email.strip().lower() == wanted and s.id != exclude_id
            for s in self.store.list(models.Student)
        )

    def _insert_student(self, payload: StudentIn) -> models.Student:
        with self.locks.hold(payload.email.strip().lower()):
            if self._email_taken(payload.email):
                raise ValidationFailed.single("email", "Email already exists")
            student = self.store.insert(models.Student(**payload.model_dump()))
        logger.info("student_created %s", json.dumps({"student_id": student.id, "email": mask_email(student.email)}))
        return student

    @returns_result
    def create(self, payload: StudentIn) -> Result[StudentRead]:
        """Create a student; the email must not belong to anyone else."""
        return Result.found(StudentRead.model_validate(self._insert_student(payload)))

    @returns_result
    def create_with_package(self, payload: StudentWithPackageIn) -> Result:
        """Create a student and their initial package (remaining = total).

        Returns the new student composed with its package.
        """
        student = self._insert_student(payload.student)
        try:
            self.store.insert(models.LessonPackage(
                student_id=student.id,
                package_type=payload.package_type,
                total_lessons=payload.total_lessons,
                remaining_lessons=payload.total_lessons,
                is_active=True,
            ))
        except LessonbookError as exc:
            # no student without its initial package
            try:
                self.store.delete(models.Student, student.id)
            except LessonbookError as rollback_exc:
                logger.error(
                    "student_rollback_failed %s",
                    json.dumps({"student_id": student.id, "cause": str(exc), "error": str(rollback_exc)}),
                )
            raise exc
        return self.get_with_packages(student.id)

    @returns_result
    def get(self, student_id: str) -> Result[StudentRead]:
        return Result.of_optional(_read(StudentRead, self.store.get(models.Student, student_id)))

    @returns_result
    def get_by_email(self, email: str) -> Result[StudentRead]:
        wanted = email.strip().lower()
        match = next((s for s in self.store.list(models.Student) if s.email.strip().lower() == wanted), None)
        return Result.of_optional(_read(StudentRead, match))

    @returns_result
    def list(self) -> Result[List[StudentRead]]:
        return Result.found([StudentRead.model_validate(s) for s in self.store.list(models.Student)])

    @returns_result
    def search(self, query: str) -> Result[List[StudentRead]]:
        """Students whose first name, last name or email contains `query`, ignoring case."""
        needle = query.lower()
        hits = [
            s for s in self.store.list(models.Student)
            if needle in s.first_name.lower() or needle in s.last_name.lower() or needle in s.email.lower()
        ]
        return Result.found([StudentRead.model_validate(s) for s in hits])

    @returns_result
    def get_with_packages(self, student_id: str) -> Result:
        student = self.store.get(models.Student, student_id)
        if student is None:
            return Result.not_found()
        return Result.found(aggregation.compose_student(
            student, self.store.list(models.LessonPackage), self.store.list(models.Lesson)))

    @returns_result
    def list_with_packages(self) -> Result:
        return Result.found(aggregation.compose_students(
            self.store.list(models.Student),
            self.store.list(models.LessonPackage),
            self.store.list(models.Lesson),
        ))

    @returns_result
    def get_detail(self, student_id: str) -> Result:
        """Student with packages, lessons and documents."""
        student = self.store.get(models.Student, student_id)
        if student is None:
            return Result.not_found()
        return Result.found(aggregation.compose_student_detail(
            student,
            self.store.list(models.LessonPackage),
            self.store.list(models.Lesson),
            self.store.list(models.Document),
        ))

    @returns_result
    def update(self, student_id: str, payload: StudentUpdate) -> Result[StudentRead]:
        """Merge the supplied fields into a student."""
        fields = payload.model_dump(exclude_unset=True)
        cleared = [name for name in REQUIRED_STUDENT_FIELDS if name in fields and fields[name] is None]
        if cleared:
            raise ValidationFailed([{"field": to_camel(name), "message": "must not be null"} for name in cleared])
        if self.store.get(models.Student, student_id) is None:
            return Result.not_found()
        if "email" not in fields:
            return Result.of_optional(_read(StudentRead, self.store.update(models.Student, student_id, fields)))
        with self.locks.hold(fields["email"].strip().lower()):
            if self._email_taken(fields["email"], exclude_id=student_id):
                raise ValidationFailed.single("email", "Email already exists")
            return Result.of_optional(_read(StudentRead, self.store.update(models.Student, student_id, fields)))

    @returns_result
    def delete(self, student_id: str) -> Result[bool]:
        """Delete a student together with its lessons, packages and documents."""
        if self.store.get(models.Student, student_id) is None:
            return Result.not_found()
        package_ids = {p.id for p in self.store.list(models.LessonPackage) if p.student_id == student_id}
        keys = [(models.Lesson, l.id) for l in self.store.list(models.Lesson)
                if l.student_id == student_id or l.package_id in package_ids]
        keys += [(models.LessonPackage, pid) for pid in sorted(package_ids)]
        keys += [(models.Document, d.id) for d in self.store.list(models.Document) if d.student_id == student_id]
        keys.append((models.Student, student_id))
        removed = self.store.delete_many(keys)
        logger.info("student_deleted %s", json.dumps({"student_id": student_id, "rows_removed": removed}))
        return Result.found(True)


class LessonPackageService:
    """Package creation and the few package fields users may edit."""
    def __init__(self, store: EntityStore):
        self.store = store

    @returns_result
    def create(self, payload: LessonPackageIn) -> Result[LessonPackageRead]:
        if self.store.get(models.Student, payload.student_id) is None:
            raise ValidationFailed.single("studentId", "Student not found")
        remaining = payload.total_lessons if payload.remaining_lessons is None else payload.remaining_lessons
        if remaining > payload.total_lessons:
            raise ValidationFailed.single("remainingLessons", "must not exceed totalLessons")
        package = self.store.insert(models.LessonPackage(
            student_id=payload.student_id,
            package_type=payload.package_type,
            total_lessons=payload.total_lessons,
            remaining_lessons=remaining,
            is_active=True,
        ))
        return Result.found(LessonPackageRead.model_validate(package))

    @returns_result
    def get(self, package_id: str) -> Result[LessonPackageRead]:
        return Result.of_optional(_read(LessonPackageRead, self.store.get(models.LessonPackage, package_id)))

    @returns_result
    def list(self) -> Result[List[LessonPackageRead]]:
        return Result.found([LessonPackageRead.model_validate(p) for p in self.store.list(models.LessonPackage)])

    @returns_result
    def list_for_student(self, student_id: str) -> Result[List[LessonPackageRead]]:
        return Result.found([
            LessonPackageRead.model_validate(p)
            for p in self.store.list(models.LessonPackage) if p.student_id == student_id
        ])

    @returns_result
    def update(self, package_id: str, payload: LessonPackageUpdate) -> Result[LessonPackageRead]:
        fields = payload.model_dump(exclude_unset=True, exclude_none=True)
        return Result.of_optional(_read(LessonPackageRead, self.store.update(models.LessonPackage, package_id, fields)))

    @returns_result
    def delete(self, package_id: str) -> Result[bool]:
        """Delete a package and every lesson drawn from it."""
        if self.store.get(models.LessonPackage, package_id) is None:
            return Result.not_found()
        keys = [(models.Lesson, l.id) for l in self.store.list(models.Lesson) if l.package_id == package_id]
        keys.append((models.LessonPackage, package_id))
        self.store.delete_many(keys)
        return Result.found(True)


class LessonService:
    """Lesson scheduling, updates and the completion toggles."""
    def __init__(self, store: EntityStore, ledger: Optional[CreditLedger] = None,
                 clock: Callable[[], datetime] = models.local_now):
        self.store = store
        self.clock = clock
        self.ledger = ledger or CreditLedger(store, clock=clock)

    @returns_result
    def create(self, payload: LessonIn) -> Result[LessonRead]:
        """Schedule a lesson against an active package."""
        package = self.store.get(models.LessonPackage, payload.package_id)
        if package is None:
            raise ValidationFailed.single("packageId", "Lesson package not found")
        if not package.is_active:
            raise ValidationFailed.single("packageId", "Lesson package is not active")
        student_id = payload.student_id or package.student_id
        if student_id != package.student_id:
            raise ValidationFailed.single("studentId", "Student does not own this lesson package")
        lesson = self.store.insert(models.Lesson(
            package_id=package.id,
            student_id=student_id,
            scheduled_date=payload.scheduled_date,
            topic=payload.topic,
            notes=payload.notes,
            is_completed=False,
            completed_date=None,
        ))
        return Result.found(LessonRead.model_validate(lesson))

    @returns_result
    def get(self, lesson_id: str) -> Result[LessonRead]:
        return Result.of_optional(_read(LessonRead, self.store.get(models.Lesson, lesson_id)))

    @returns_result
    def list(self) -> Result[List[LessonRead]]:
        return Result.found([LessonRead.model_validate(l) for l in self.store.list(models.Lesson)])

    @returns_result
    def list_for_package(self, package_id: str) -> Result[List[LessonRead]]:
        return Result.found([LessonRead.model_validate(l) for l in self.store.list(models.Lesson) if l.package_id == package_id])

    @returns_result
    def list_for_student(self, student_id: str) -> Result[List[LessonRead]]:
        return Result.found([LessonRead.model_validate(l) for l in self.store.list(models.Lesson) if l.student_id == student_id])

    @returns_result
    def update(self, lesson_id: str, payload: LessonUpdate) -> Result[LessonRead]:
        """Merge supplied fields; completion changes adjust the package's credit."""
        lesson = self.ledger.update_lesson(lesson_id, payload.model_dump(exclude_unset=True))
        return Result.of_optional(_read(LessonRead, lesson))

    @returns_result
    def complete(self, lesson_id: str) -> Result[LessonRead]:
        lesson = self.ledger.update_lesson(lesson_id, {"is_completed": True, "completed_date": self.clock()})
        return Result.of_optional(_read(LessonRead, lesson))

    @returns_result
    def uncomplete(self, lesson_id: str) -> Result[LessonRead]:
        lesson = self.ledger.update_lesson(lesson_id, {"is_completed": False})
        return Result.of_optional(_read(LessonRead, lesson))

    @returns_result
    def delete(self, lesson_id: str) -> Result[bool]:
        """Delete a lesson that has not been completed."""
        lesson = self.store.get(models.Lesson, lesson_id)
        if lesson is None:
            return Result.not_found()
        if lesson.is_completed:
            raise ValidationFailed.single("isCompleted", "Uncomplete the lesson before deleting it")
        return Result.found(self.store.delete(models.Lesson, lesson_id))

    @returns_result
    def in_range(self, start: datetime, end: datetime) -> Result[List[LessonRead]]:
        """Lessons scheduled in `[start, end)`; unscheduled lessons never match."""
        lessons = aggregation.scheduled_between(self.store.list(models.Lesson), start, end)
        return Result.found([LessonRead.model_validate(l) for l in lessons])

    def today(self) -> Result[List[LessonRead]]:
        return self.in_range(*aggregation.day_bounds(self.clock()))

    @returns_result
    def today_enriched(self) -> Result:
        """Today's lessons with their student and package attached."""
        start, end = aggregation.day_bounds(self.clock())
        lessons = aggregation.scheduled_between(self.store.list(models.Lesson), start, end)
        return Result.found(aggregation.enrich_lessons(
            lessons, self.store.list(models.Student), self.store.list(models.LessonPackage)))


class DocumentService:
    """Documents are created and deleted, never edited."""
    def __init__(self, store: EntityStore):
        self.store = store

    @returns_result
    def create(self, payload: DocumentIn) -> Result[DocumentRead]:
        if self.store.get(models.Student, payload.student_id) is None:
            raise ValidationFailed.single("studentId", "Student not found")
        document = self.store.insert(models.Document(**payload.model_dump()))
        return Result.found(DocumentRead.model_validate(document))

    @returns_result
    def get(self, document_id: str) -> Result[DocumentRead]:
        return Result.of_optional(_read(DocumentRead, self.store.get(models.Document, document_id)))

    @returns_result
    def list(self) -> Result[List[DocumentRead]]:
        return Result.found([DocumentRead.model_validate(d) for d in self.store.list(models.Document)])

    @returns_result
    def list_for_student(self, student_id: str) -> Result[List[DocumentRead]]:
        return Result.found([
            DocumentRead.model_validate(d) for d in self.store.list(models.Document) if d.student_id == student_id
        ])

    @returns_result
    def delete(self, document_id: str) -> Result[bool]:
        if not self.store.delete(models.Document, document_id):
            return Result.not_found()
        return Result.found(True)


class StatsService:
    """Dashboard roll-ups."""
    def __init__(self, store: EntityStore, clock: Callable[[], datetime] = models.local_now):
        self.store = store
        self.clock = clock

    @returns_result
    def stats(self) -> Result:
        return Result.found(aggregation.compute_stats(
            self.store.list(models.Student), self.store.list(models.Lesson), self.clock()))
