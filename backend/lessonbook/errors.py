"""
Exception taxonomy for the lessonbook core.

Not-found is deliberately absent: lookups return ``None`` and services
return ``Result.not_found()`` instead of raising.
"""

from typing import Dict, List, Optional


class LessonbookError(Exception):
    """Base exception for all lessonbook errors."""
    pass


class ValidationFailed(LessonbookError):
    """Raised when input is rejected; carries field-level violations."""

    def __init__(self, violations: List[Dict[str, str]], message: Optional[str] = None):
        self.violations = violations
        super().__init__(message or "; ".join(f"{v['field']}: {v['message']}" for v in violations))

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationFailed":
        return cls([{"field": field, "message": message}])


class StoreUnavailable(LessonbookError):
    """Raised when the backing store cannot be read or written."""
    pass


class InvariantViolation(LessonbookError):
    """Raised when stored rows break a structural invariant."""
    pass
