import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class AssessmentType(Enum):
    PRE_EXAM = "PRE_EXAM"
    ASSIGNMENT = "ASSIGNMENT"


# ------------------------
# Grade point bands
# ------------------------
# (minimum percentage, grade point), checked top-down
GRADE_POINT_BANDS = [
    (90, 5.0),
    (80, 4.5),
    (70, 4.0),
    (60, 3.5),
    (50, 3.0),
    (40, 2.5),
    (30, 2.0),
    (20, 1.5),
    (10, 1.0),
]


def describe_grade_point(point: float) -> str:
    if point >= 4.5:
        return "Excellent"
    elif point >= 3.5:
        return "Very Good"
    elif point >= 2.5:
        return "Good"
    elif point >= 1.5:
        return "Satisfactory"
    elif point >= 1.0:
        return "Passing"
    else:
        return "Failing"


@dataclass(frozen=True)
class Grade:
    """
    One scored assessment.

    grade_point / is_valid_grade / grade_description are a cache of the derived
    values for display and storage. They are never read back by the
    aggregation functions, which always recompute from score and max_score.
    """
    id: str
    subject_id: str
    score: float
    max_score: float
    category: AssessmentType = AssessmentType.ASSIGNMENT
    date: datetime = EPOCH
    title: str = ""
    description: str = ""
    user_id: str = ""

    grade_point: float = 0.0
    is_valid_grade: bool = False
    grade_description: str = ""

    def is_valid(self) -> bool:
        try:
            score = float(self.score)
            max_score = float(self.max_score)
        except (TypeError, ValueError):
            return False
        if not (math.isfinite(score) and math.isfinite(max_score)):
            return False
        return score >= 0 and max_score > 0 and score <= max_score

    def percentage(self) -> float:
        if not self.is_valid():
            return 0.0
        return (float(self.score) / float(self.max_score)) * 100

    def get_grade_point(self) -> float:
        """Percentage mapped onto the 0.0-5.0 step table; 0.0 for invalid grades."""
        if not self.is_valid():
            return 0.0

        pct = self.percentage()
        for threshold, point in GRADE_POINT_BANDS:
            if pct >= threshold:
                return point
        return 0.0

    def get_description(self) -> str:
        return describe_grade_point(self.get_grade_point())

    def with_derived_fields(self) -> "Grade":
        """Copy with the cached derived fields filled in, as stored alongside the raw score."""
        return replace(
            self,
            grade_point=self.get_grade_point(),
            is_valid_grade=self.is_valid(),
            grade_description=self.get_description(),
        )


@dataclass
class Subject:
    """
    A course with a passing threshold and category weights.

    weights is keyed by category name so new categories need no schema change;
    a missing key means weight 0.
    """
    id: str
    user_id: str
    name: str
    passing_grade: float = 0.0
    weights: Dict[str, float] = field(default_factory=lambda: {
        AssessmentType.PRE_EXAM.name: 0.5,
        AssessmentType.ASSIGNMENT.name: 0.5,
    })
    created_at: datetime = EPOCH

    def weight_for(self, category: AssessmentType) -> float:
        raw = self.weights.get(category.name, 0.0) if self.weights else 0.0
        try:
            value = float(raw)
        except (TypeError, ValueError):
            return 0.0
        if not math.isfinite(value):
            return 0.0
        return value


# Function forms of the Grade methods.
def is_valid(grade: Grade) -> bool:
    return grade.is_valid()


def grade_point(grade: Grade) -> float:
    return grade.get_grade_point()


def grade_description(grade: Grade) -> str:
    return grade.get_description()
