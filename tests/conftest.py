from datetime import datetime, timezone

import pytest

from gradebook.models import AssessmentType, Grade, Subject

PRE_EXAM = AssessmentType.PRE_EXAM
ASSIGNMENT = AssessmentType.ASSIGNMENT


def make_grade(score, max_score, category=ASSIGNMENT, subject_id="s1", day=1, gid=None):
    return Grade(
        id=gid or f"g-{subject_id}-{category.name}-{score}-{max_score}-{day}",
        subject_id=subject_id,
        score=score,
        max_score=max_score,
        category=category,
        date=datetime(2024, 1, day, tzinfo=timezone.utc),
    )


def make_subject(sid="s1", weights=None, passing_grade=3.0, name=None):
    return Subject(
        id=sid,
        user_id="u1",
        name=name or f"Subject {sid}",
        passing_grade=passing_grade,
        weights={"PRE_EXAM": 0.5, "ASSIGNMENT": 0.5} if weights is None else weights,
    )


@pytest.fixture
def subject():
    return make_subject()
