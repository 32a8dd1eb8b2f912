from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Tuple

import numpy as np

from .logger import get_logger
from .models import AssessmentType, Grade, Subject

log = get_logger("aggregation")

POINT_SCALE = 5.0


# ------------------------
# Helpers
# ------------------------
def round_1dp_half_up(x: float) -> float:
    return float(Decimal(str(x)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def valid_grades(grades: List[Grade]) -> List[Grade]:
    return [g for g in grades if g.is_valid()]


def group_by_category(grades: List[Grade]) -> Dict[AssessmentType, List[Grade]]:
    """Valid grades grouped by category, in enumeration order."""
    groups: Dict[AssessmentType, List[Grade]] = {}
    for g in valid_grades(grades):
        groups.setdefault(g.category, []).append(g)
    return {c: groups[c] for c in AssessmentType if c in groups}


def score_matrix(grades: List[Grade]) -> np.ndarray:
    """
    grades -> Nx2 numpy array [score, max_score]
    """
    if not grades:
        return np.zeros((0, 2), dtype=float)
    return np.array([[g.score, g.max_score] for g in grades], dtype=float)


def score_fraction(sm: np.ndarray) -> float:
    """sum(score) / sum(max_score) over an Nx2 score matrix; 0.0 when empty."""
    if sm.size == 0:
        return 0.0
    total_max = float(sm[:, 1].sum())
    if total_max <= 0:
        return 0.0
    return float(sm[:, 0].sum() / total_max)


def category_contributions(subject: Subject, grades: List[Grade], scale: float) -> Tuple[float, float]:
    """
    Weighted sum and contributing weight for one subject.

    Every category with at least one valid grade contributes
    (sum(score) / sum(max_score)) * scale, weighted by the subject's weight.
    Only those categories count toward the weight total.

    returns: (weighted sum, total contributing weight)
    """
    groups = group_by_category(grades)
    if not groups:
        return 0.0, 0.0

    averages = np.array([score_fraction(score_matrix(gs)) * scale for gs in groups.values()], dtype=float)
    weights = np.array([subject.weight_for(c) for c in groups], dtype=float)

    return float(np.dot(averages, weights)), float(weights.sum())


# ------------------------
# Core logic
# ------------------------
def progress_by_category(subject: Subject, grades: List[Grade]) -> Dict[AssessmentType, float]:
    """
    Per-category contribution: mean grade point of the category times its weight.
    Every category of the enumeration is present; missing ones are 0.0.
    """
    groups = group_by_category(grades)
    progress: Dict[AssessmentType, float] = {}

    for category in AssessmentType:
        gs = groups.get(category)
        if not gs:
            progress[category] = 0.0
            continue
        points = np.array([g.get_grade_point() for g in gs], dtype=float)
        progress[category] = float(points.mean()) * subject.weight_for(category)

    return progress


def weighted_average(subject: Subject, grades: List[Grade]) -> float:
    """
    Subject average on the 0-5 scale.

    Categories without valid grades are left out of both the sum and the
    weight total, so an incomplete subject is judged on completed work only.
    """
    weighted_sum, total_weight = category_contributions(subject, grades, POINT_SCALE)
    if total_weight <= 0:
        return 0.0

    average = weighted_sum / total_weight
    log.debug("average for %s: %.4f (sum=%.4f, weight=%.4f)", subject.name, average, weighted_sum, total_weight)
    return average


def is_passing(average: float, subject: Subject) -> bool:
    return average >= subject.passing_grade


def needed_average(subject: Subject, current_average: float) -> float:
    """
    Average needed on the remaining work to reach the passing grade.

    Approximation: the share of the 5-point scale not yet reached stands in
    for the share of assessments still outstanding. It does not look at which
    categories are actually missing.
    """
    remaining_weight = 1.0 - (current_average / POINT_SCALE)
    if remaining_weight <= 0:
        return 0.0

    needed_points = subject.passing_grade - current_average * (1 - remaining_weight)
    if needed_points > 0:
        return needed_points / remaining_weight
    return 0.0


def distribution_band(point: float) -> str:
    if point >= 4.5:
        return "5"
    elif point >= 3.5:
        return "4"
    elif point >= 2.5:
        return "3"
    elif point >= 1.5:
        return "2"
    else:
        return "1"


def grade_statistics(grades: List[Grade]) -> Dict[str, object]:
    valid = valid_grades(grades)
    if not valid:
        return {
            "average": 0.0,
            "highest": 0.0,
            "lowest": 0.0,
            "distribution": {},
        }

    points = np.array([g.get_grade_point() for g in valid], dtype=float)

    distribution: Dict[str, int] = {}
    for p in points:
        band = distribution_band(float(p))
        distribution[band] = distribution.get(band, 0) + 1

    return {
        "average": float(points.mean()),
        "highest": float(points.max()),
        "lowest": float(points.min()),
        "distribution": distribution,
    }


def timestamp_key(moment: datetime) -> datetime:
    # naive timestamps are read as UTC so they sort against aware ones
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def grade_trend(grades: List[Grade]) -> List[Tuple[datetime, float]]:
    """(date, grade point) for valid grades, oldest first."""
    ordered = sorted(valid_grades(grades), key=lambda g: timestamp_key(g.date))
    return [(g.date, g.get_grade_point()) for g in ordered]
