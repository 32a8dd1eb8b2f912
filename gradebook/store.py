"""
In-process stand-in for the document database behind the gradebook.

Subjects and grades live in dictionaries guarded by a lock. Every mutation that
touches a subject pushes the subject's full, current grade list to its
subscribers; nothing incremental is sent.
"""

import asyncio
import math
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Dict, List, Optional

from .aggregation import timestamp_key
from .config import settings
from .dashboard import SubjectSummary, summarize_subject
from .logger import get_logger
from .models import AssessmentType, Grade, Subject

log = get_logger("store")

GradeListener = Callable[[List[Grade]], None]


class GradebookError(Exception):
    pass


class SubjectValidationError(GradebookError, ValueError):
    pass


class GradeValidationError(GradebookError, ValueError):
    pass


class SubjectNotFoundError(GradebookError, LookupError):
    pass


class GradeNotFoundError(GradebookError, LookupError):
    pass


class GradeOwnershipError(GradebookError):
    pass


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


def validate_subject(subject: Subject) -> None:
    if not isinstance(subject.name, str) or not subject.name.strip():
        raise SubjectValidationError("Subject name cannot be empty")

    passing = subject.passing_grade
    if isinstance(passing, bool) or not isinstance(passing, (int, float)) or not math.isfinite(passing):
        raise SubjectValidationError(f"Passing grade must be a number (got {passing!r}).")

    lo, hi = settings.MIN_PASSING_GRADE, settings.MAX_PASSING_GRADE
    if not (lo <= passing <= hi):
        raise SubjectValidationError(f"Passing grade must be between {lo} and {hi} (got {subject.passing_grade}).")

    for category, weight in (subject.weights or {}).items():
        numeric = not isinstance(weight, bool) and isinstance(weight, (int, float))
        if not numeric or not math.isfinite(weight) or not (0.0 <= weight <= 1.0):
            raise SubjectValidationError(f"Weight for {category} must be in [0, 1] (got {weight}).")


def validate_grade(grade: Grade) -> None:
    if not grade.is_valid():
        raise GradeValidationError(
            f"Invalid grade values: score={grade.score}, max_score={grade.max_score}. "
            "Score must be between 0 and max score."
        )


class GradebookStore:
    """
    Subject/grade store with cascade deletes and per-subject grade subscriptions.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._subjects: Dict[str, Subject] = {}
        self._grades: Dict[str, Grade] = {}
        self._listeners: Dict[str, List[GradeListener]] = {}

    # ------------------------
    # Subjects
    # ------------------------
    def add_subject(
        self,
        user_id: str,
        name: str,
        passing_grade: Optional[float] = None,
        weights: Optional[Dict[str, float]] = None,
    ) -> Subject:
        subject = Subject(
            id=_new_id(),
            user_id=user_id,
            name=name.strip() if name else "",
            passing_grade=settings.DEFAULT_PASSING_GRADE if passing_grade is None else float(passing_grade),
            weights=dict(settings.DEFAULT_WEIGHTS if weights is None else weights),
            created_at=_now(),
        )
        validate_subject(subject)

        with self._lock:
            self._subjects[subject.id] = subject
        log.info("added subject %s (%s) for user %s", subject.id, subject.name, user_id)
        return subject

    def update_subject(self, subject: Subject) -> Subject:
        validate_subject(subject)
        with self._lock:
            if subject.id not in self._subjects:
                raise SubjectNotFoundError(f"Subject not found: {subject.id}")
            self._subjects[subject.id] = subject
        log.info("updated subject %s", subject.id)
        self._notify(subject.id)
        return subject

    def persist_subject(self, subject: Subject) -> bool:
        """Upsert; False when the subject is rejected."""
        try:
            validate_subject(subject)
        except SubjectValidationError as e:
            log.warning("rejected subject %s: %s", subject.id, e)
            return False

        with self._lock:
            self._subjects[subject.id] = subject
        self._notify(subject.id)
        return True

    def delete_subject(self, subject_id: str) -> None:
        """Deletes the subject and every grade that references it."""
        with self._lock:
            if subject_id not in self._subjects:
                raise SubjectNotFoundError(f"Subject not found: {subject_id}")
            orphaned = [gid for gid, g in self._grades.items() if g.subject_id == subject_id]
            for gid in orphaned:
                del self._grades[gid]
            del self._subjects[subject_id]
        log.info("deleted subject %s and %d grades", subject_id, len(orphaned))
        self._notify(subject_id)

    def get_subject(self, subject_id: str) -> Optional[Subject]:
        with self._lock:
            return self._subjects.get(subject_id)

    def fetch_subjects(self, user_id: str) -> List[Subject]:
        """A user's subjects, oldest first. Backend failures come back as an empty list."""
        try:
            with self._lock:
                subjects = [s for s in self._subjects.values() if s.user_id == user_id]
            subjects.sort(key=lambda s: timestamp_key(s.created_at))
        except Exception:
            log.exception("failed to load subjects for user %s", user_id)
            return []
        log.debug("found %d subjects for user %s", len(subjects), user_id)
        return subjects

    # ------------------------
    # Grades
    # ------------------------
    def add_grade(
        self,
        subject_id: str,
        score: float,
        max_score: float,
        title: str = "",
        category: AssessmentType = AssessmentType.ASSIGNMENT,
        date: Optional[datetime] = None,
        description: str = "",
    ) -> Grade:
        subject = self.get_subject(subject_id)
        if subject is None:
            raise SubjectNotFoundError(f"Subject not found: {subject_id}")

        grade = Grade(
            id=_new_id(),
            subject_id=subject_id,
            user_id=subject.user_id,
            score=float(score),
            max_score=float(max_score),
            category=category,
            date=date or _now(),
            title=title,
            description=description,
        )
        validate_grade(grade)
        grade = grade.with_derived_fields()

        with self._lock:
            self._grades[grade.id] = grade
        log.info("added grade %s to subject %s (%.1f/%.1f)", grade.id, subject_id, grade.score, grade.max_score)
        self._notify(subject_id)
        return grade

    def persist_grade(self, grade: Grade) -> bool:
        """
        Upsert a grade as given, with its derived fields refreshed.
        Out-of-range scores are stored (and later ignored by aggregation);
        a grade for an unknown subject is refused.
        """
        with self._lock:
            if grade.subject_id not in self._subjects:
                log.warning("refused grade %s: unknown subject %s", grade.id, grade.subject_id)
                return False
            if not grade.id:
                grade = replace(grade, id=_new_id())
            self._grades[grade.id] = grade.with_derived_fields()
        self._notify(grade.subject_id)
        return True

    def delete_grade(self, subject_id: str, grade_id: str) -> None:
        with self._lock:
            grade = self._grades.get(grade_id)
            if grade is None:
                raise GradeNotFoundError(f"Grade not found: {grade_id}")
            if grade.subject_id != subject_id:
                log.error("grade %s does not belong to subject %s", grade_id, subject_id)
                raise GradeOwnershipError("Grade does not belong to the specified subject")
            del self._grades[grade_id]
        log.info("deleted grade %s from subject %s", grade_id, subject_id)
        self._notify(subject_id)

    def grades_for_subject(self, subject_id: str) -> List[Grade]:
        """Newest first."""
        with self._lock:
            grades = [g for g in self._grades.values() if g.subject_id == subject_id]
        grades.sort(key=lambda g: timestamp_key(g.date), reverse=True)
        return grades

    def all_grades(self, user_id: str) -> List[Grade]:
        grades: List[Grade] = []
        for subject in self.fetch_subjects(user_id):
            grades.extend(self.grades_for_subject(subject.id))
        return grades

    # ------------------------
    # Subscriptions
    # ------------------------
    def subscribe(self, subject_id: str, listener: GradeListener) -> Callable[[], None]:
        """
        Push the subject's grade list to listener now and after every change.
        Returns a callable that removes the listener.

        Snapshots are taken and delivered under the store lock, so a listener
        never receives an older list after a newer one.
        """
        with self._lock:
            self._listeners.setdefault(subject_id, []).append(listener)
            listener(self.grades_for_subject(subject_id))

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(subject_id, [])
                if listener in listeners:
                    listeners.remove(listener)
                if not listeners:
                    self._listeners.pop(subject_id, None)
            log.debug("removed grades listener for subject %s", subject_id)

        return unsubscribe

    async def subscribe_grades(self, subject_id: str) -> AsyncIterator[List[Grade]]:
        """
        Async stream of grade lists for one subject, starting with the current one.
        Closing the iterator removes the subscription.
        """
        loop = asyncio.get_running_loop()
        queue: "asyncio.Queue[List[Grade]]" = asyncio.Queue()

        def push(grades: List[Grade]) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, grades)

        unsubscribe = self.subscribe(subject_id, push)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    def _notify(self, subject_id: str) -> None:
        # snapshot and delivery under one lock hold: deliveries stay in mutation order
        with self._lock:
            listeners = list(self._listeners.get(subject_id, []))
            if not listeners:
                return

            grades = self.grades_for_subject(subject_id)
            for listener in listeners:
                try:
                    listener(grades)
                except Exception:
                    log.exception("grades listener for subject %s failed", subject_id)


async def watch_subject(store: GradebookStore, subject_id: str) -> AsyncIterator[SubjectSummary]:
    """
    Re-run the subject summary on every grade snapshot.
    Ends when the subject is deleted.
    """
    stream = store.subscribe_grades(subject_id)
    try:
        async for grades in stream:
            subject = store.get_subject(subject_id)
            if subject is None:
                break
            yield summarize_subject(subject, grades)
    finally:
        await stream.aclose()
