"""Credit ledger: the only code that changes `remaining_lessons`.

A package's remaining credit follows the completion state of its
lessons. Completing a lesson debits one credit, uncompleting it gives
the credit back. Two named rules keep the counter inside
`[0, total_lessons]`:

- `debit` floors at zero: completing a lesson on an exhausted package
  records the lesson but leaves the counter at 0.
- `credit` clamps at the package total: uncompleting past a full
  package leaves the counter at `total_lessons`.

`plan_lesson_update` is a pure function that turns a lesson update into
lesson and package field changes. `CreditLedger` applies a plan while
holding the package's lock, writing both rows in one store batch.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from . import models
from .errors import InvariantViolation
from .repositories import EntityStore
from .utils.keyed_lock import KeyedLock

logger = logging.getLogger("lessonbook.ledger")

COMPLETE = "complete"
UNCOMPLETE = "uncomplete"


def debit(remaining: int, total: int) -> int:
    """Remaining credit after one lesson is completed (floor at zero)."""
    return min(max(remaining - 1, 0), total)


def credit(remaining: int, total: int) -> int:
    """Remaining credit after one lesson is uncompleted (clamp at total)."""
    return max(min(remaining + 1, total), 0)


@dataclass
class CreditPlan:
    """Field changes produced by one lesson update."""
    lesson_changes: dict
    package_changes: dict = field(default_factory=dict)
    transition: Optional[str] = None
    before: Optional[int] = None
    after: Optional[int] = None

    @property
    def bounded(self) -> bool:
        """True when a transition did not move the counter (floor or clamp hit)."""
        return self.transition is not None and self.before == self.after


def plan_lesson_update(lesson: models.Lesson, package: models.LessonPackage,
                       changes: dict, now: datetime) -> CreditPlan:
    """Plan the lesson and package writes for `changes` applied to `lesson`.

    `changes` holds only the fields the caller supplied. The returned
    lesson changes always leave `completed_date` set exactly when the
    lesson is completed.
    """
    lesson_changes = dict(changes)
    was_completed = bool(lesson.is_completed)
    completed = lesson_changes.get("is_completed")
    if completed is None:
        completed = was_completed
        lesson_changes.pop("is_completed", None)

    plan = CreditPlan(lesson_changes=lesson_changes)
    remaining, total = package.remaining_lessons, package.total_lessons

    if completed and not was_completed:
        plan.transition = COMPLETE
        lesson_changes["completed_date"] = lesson_changes.get("completed_date") or now
        plan.before, plan.after = remaining, debit(remaining, total)
    elif was_completed and not completed:
        plan.transition = UNCOMPLETE
        lesson_changes["completed_date"] = None
        plan.before, plan.after = remaining, credit(remaining, total)
    elif completed:
        if lesson_changes.get("completed_date", lesson.completed_date) is None:
            lesson_changes["completed_date"] = lesson.completed_date or now
    elif "completed_date" in lesson_changes or lesson.completed_date is not None:
        lesson_changes["completed_date"] = None

    if plan.transition and plan.after != remaining:
        plan.package_changes["remaining_lessons"] = plan.after
    return plan


class CreditLedger:
    """Apply lesson updates and their credit effect as one unit.

    Updates touching lessons of the same package are serialized through
    a per-package lock, so concurrent completions never lose a debit.
    """

    def __init__(self, store: EntityStore, locks: Optional[KeyedLock] = None,
                 clock: Callable[[], datetime] = models.local_now):
        self.store = store
        self.locks = locks or KeyedLock()
        self.clock = clock

    def update_lesson(self, lesson_id: str, changes: dict) -> Optional[models.Lesson]:
        """Apply `changes` to a lesson; `None` when the lesson does not exist."""
        lesson = self.store.get(models.Lesson, lesson_id)
        if lesson is None:
            return None
        with self.locks.hold(lesson.package_id):
            # re-read under the lock; another toggle may have landed first
            lesson = self.store.get(models.Lesson, lesson_id)
            if lesson is None:
                return None
            package = self.store.get(models.LessonPackage, lesson.package_id)
            if package is None:
                raise InvariantViolation(f"lesson {lesson_id} references missing package {lesson.package_id}")
            plan = plan_lesson_update(lesson, package, changes, self.clock())
            batch = [(models.Lesson, lesson_id, plan.lesson_changes)]
            if plan.package_changes:
                batch.append((models.LessonPackage, package.id, plan.package_changes))
            if not self.store.update_many(batch):
                return None
            self._log(plan, lesson_id, package)
        return self.store.get(models.Lesson, lesson_id)

    def _log(self, plan: CreditPlan, lesson_id: str, package: models.LessonPackage) -> None:
        if plan.transition is None:
            return
        event = {
            "package_id": package.id,
            "lesson_id": lesson_id,
            "transition": plan.transition,
            "before": plan.before,
            "after": plan.after,
            "total": package.total_lessons,
        }
        if plan.bounded:
            logger.warning("credit_bounded %s", json.dumps(event))
        else:
            logger.info("credit_adjusted %s", json.dumps(event))
