"""Pydantic request/response schemas used by the API and services.

Request schemas are the validation layer: the core only ever sees
payloads that passed them. Response schemas are the read models built
by the aggregation layer. Both use camelCase on the wire (`firstName`,
`remainingLessons`) and snake_case attribute names in Python.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def to_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to server-local time without tzinfo."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class StudentIn(CamelModel):
    """Payload for creating a student."""
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: str = Field(pattern=EMAIL_PATTERN)
    phone: Optional[str] = None


class StudentUpdate(CamelModel):
    """Partial student update; only supplied fields are merged."""
    first_name: Optional[str] = Field(default=None, min_length=1)
    last_name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN)
    phone: Optional[str] = None


class StudentWithPackageIn(CamelModel):
    """Primary creation flow: a student and their first package."""
    student: StudentIn
    package_type: str = Field(min_length=1)
    total_lessons: int = Field(ge=1)


class LessonPackageIn(CamelModel):
    """Payload for a standalone package; remaining defaults to the total."""
    student_id: str
    package_type: str = Field(min_length=1)
    total_lessons: int = Field(ge=1)
    remaining_lessons: Optional[int] = Field(default=None, ge=0)


class LessonPackageUpdate(CamelModel):
    """Editable package fields. Credit counters are owned by the ledger."""
    package_type: Optional[str] = Field(default=None, min_length=1)
    is_active: Optional[bool] = None


class LessonIn(CamelModel):
    """Payload for scheduling a lesson; `student_id` defaults to the package's."""
    package_id: str
    student_id: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    topic: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("scheduled_date")
    @classmethod
    def normalize_dates(cls, value):
        return to_local_naive(value)


class LessonUpdate(CamelModel):
    """Partial lesson update; a change of `is_completed` goes through the ledger."""
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    is_completed: Optional[bool] = None
    topic: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("scheduled_date", "completed_date")
    @classmethod
    def normalize_dates(cls, value):
        return to_local_naive(value)


class DocumentIn(CamelModel):
    """Payload for attaching a document to a student."""
    student_id: str
    file_name: str = Field(min_length=1)
    file_url: str = Field(min_length=1)
    file_type: Optional[str] = None
    notes: Optional[str] = None


class StudentRead(CamelModel):
    id: str
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    created_at: Optional[datetime] = None


class LessonPackageRead(CamelModel):
    id: str
    student_id: str
    package_type: str
    total_lessons: int
    remaining_lessons: int
    is_active: bool = True
    created_at: Optional[datetime] = None


class LessonRead(CamelModel):
    id: str
    package_id: str
    student_id: str
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    is_completed: bool = False
    topic: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class DocumentRead(CamelModel):
    id: str
    student_id: str
    file_name: str
    file_url: str
    file_type: Optional[str] = None
    notes: Optional[str] = None
    uploaded_at: Optional[datetime] = None


class PackageWithLessons(LessonPackageRead):
    lessons: List[LessonRead] = []


class StudentWithPackages(StudentRead):
    packages: List[PackageWithLessons] = []


class StudentDetail(StudentWithPackages):
    documents: List[DocumentRead] = []


class LessonWithContext(LessonRead):
    """A lesson decorated with its student and package, for the attendance view."""
    student: Optional[StudentRead] = None
    lesson_package: Optional[LessonPackageRead] = None


class Stats(CamelModel):
    """Dashboard roll-up figures."""
    total_students: int
    todays_lessons: int
    pending_attendance: int
    completion_rate: str
