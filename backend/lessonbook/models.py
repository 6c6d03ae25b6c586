"""SQLModel data models.

This module defines the four stored entity kinds. The same classes are
used by both store backends: the SQL store maps them to tables, the
JSON file store keeps their field sets in per-kind files.

Timestamps are naive datetimes in the server's local time zone.
"""

from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime


def local_now() -> datetime:
    """Current local time without tzinfo, the convention for stored timestamps."""
    return datetime.now()


class Student(SQLModel, table=True):
    """A tutoring student.

    `email` is unique across all students (compared case-insensitively
    by the service layer).
    """
    __tablename__ = "students"

    id: Optional[str] = Field(default=None, primary_key=True)
    first_name: str
    last_name: str
    email: str = Field(index=True, unique=True)
    phone: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None)


class LessonPackage(SQLModel, table=True):
    """A prepaid bundle of lessons purchased by a student.

    `remaining_lessons` is only changed by the credit ledger once the
    package exists.
    """
    __tablename__ = "lesson_packages"

    id: Optional[str] = Field(default=None, primary_key=True)
    student_id: str = Field(foreign_key="students.id", index=True)
    package_type: str
    total_lessons: int
    remaining_lessons: int
    is_active: bool = True
    created_at: Optional[datetime] = Field(default=None)


class Lesson(SQLModel, table=True):
    """A single scheduled or completed session drawn from a package."""
    __tablename__ = "lessons"

    id: Optional[str] = Field(default=None, primary_key=True)
    package_id: str = Field(foreign_key="lesson_packages.id", index=True)
    student_id: str = Field(foreign_key="students.id", index=True)
    scheduled_date: Optional[datetime] = Field(default=None, index=True)
    completed_date: Optional[datetime] = None
    is_completed: bool = False
    topic: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None)


class Document(SQLModel, table=True):
    """A file reference attached to a student."""
    __tablename__ = "documents"

    id: Optional[str] = Field(default=None, primary_key=True)
    student_id: str = Field(foreign_key="students.id", index=True)
    file_name: str
    file_url: str
    file_type: Optional[str] = None
    notes: Optional[str] = None
    uploaded_at: Optional[datetime] = Field(default=None)


# Name of the creation timestamp per kind; stores fill it on insert and
# order scans by it.
CREATED_FIELD = {
    Student: "created_at",
    LessonPackage: "created_at",
    Lesson: "created_at",
    Document: "uploaded_at",
}

DATE_FIELDS = {
    Student: ("created_at",),
    LessonPackage: ("created_at",),
    Lesson: ("scheduled_date", "completed_date", "created_at"),
    Document: ("uploaded_at",),
}
