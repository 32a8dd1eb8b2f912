from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import numpy as np

from .aggregation import (
    POINT_SCALE,
    category_contributions,
    grade_statistics,
    grade_trend,
    is_passing,
    needed_average,
    progress_by_category,
    round_1dp_half_up,
    timestamp_key,
    weighted_average,
)
from .config import settings
from .logger import get_logger
from .models import AssessmentType, Grade, Subject

log = get_logger("dashboard")


@dataclass
class SubjectRisk:
    subject: Subject
    current_average: float
    needed_average: float


@dataclass
class SubjectSummary:
    """Everything the subject screen shows, recomputed from the full grade list."""
    subject: Subject
    grade_count: int
    average: float
    is_passing: bool
    needed_average: float
    statistics: Dict[str, object]
    trend: List[Tuple[datetime, float]]
    progress: Dict[AssessmentType, float]


@dataclass
class SubjectOverviewRow:
    subject_id: str
    name: str
    grade_count: int
    average: float  # rounded to 1dp for display
    is_passing: bool
    color_band: str


@dataclass
class RecentGrade:
    grade: Grade
    subject_name: str


@dataclass
class DashboardStatistics:
    total_subjects: int = 0
    total_grades: int = 0
    passing_subjects: int = 0
    overall_average: float = 0.0
    semester_progress: float = 0.0
    subjects_at_risk: List[SubjectRisk] = field(default_factory=list)
    overall_progress_by_category: Dict[AssessmentType, float] = field(default_factory=dict)
    recent_activity: List[RecentGrade] = field(default_factory=list)
    subject_overview: List[SubjectOverviewRow] = field(default_factory=list)


# ------------------------
# Per subject
# ------------------------
def grades_for(subject: Subject, grades: List[Grade]) -> List[Grade]:
    return [g for g in grades if g.subject_id == subject.id]


def has_valid_grades(grades: List[Grade]) -> bool:
    return any(g.is_valid() for g in grades)


def summarize_subject(subject: Subject, grades: List[Grade]) -> SubjectSummary:
    average = weighted_average(subject, grades)
    return SubjectSummary(
        subject=subject,
        grade_count=len(grades),
        average=average,
        is_passing=is_passing(average, subject),
        needed_average=needed_average(subject, average),
        statistics=grade_statistics(grades),
        trend=grade_trend(grades),
        progress=progress_by_category(subject, grades),
    )


def grade_color_band(average: float) -> str:
    if average >= 4.5:
        return "good"
    elif average >= 3.0:
        return "ok"
    return "poor"


# ------------------------
# Across subjects
# ------------------------
def _pooled_average(subjects: List[Subject], grades: List[Grade], scale: float) -> float:
    """
    Sum the weighted category contributions and the contributing weights of
    every subject, then divide once. Subjects without valid grades add nothing
    to either side.
    """
    if not subjects:
        return 0.0

    total_sum = 0.0
    total_weight = 0.0
    for subject in subjects:
        weighted_sum, weight = category_contributions(subject, grades_for(subject, grades), scale)
        if weight > 0:
            total_sum += weighted_sum
            total_weight += weight

    return total_sum / total_weight if total_weight > 0 else 0.0


def overall_average(subjects: List[Subject], grades: List[Grade]) -> float:
    return _pooled_average(subjects, grades, POINT_SCALE)


def semester_progress(subjects: List[Subject], grades: List[Grade]) -> float:
    """Completion fraction (0-1) pooled over all subjects."""
    return _pooled_average(subjects, grades, 1.0)


def subjects_at_risk(subjects: List[Subject], grades: List[Grade]) -> List[SubjectRisk]:
    risks = []
    for subject in subjects:
        subject_grades = grades_for(subject, grades)
        if not has_valid_grades(subject_grades):
            continue

        current = weighted_average(subject, subject_grades)
        if current < subject.passing_grade:
            risks.append(SubjectRisk(subject, current, needed_average(subject, current)))
    return risks


def count_passing_subjects(subjects: List[Subject], grades: List[Grade]) -> int:
    count = 0
    for subject in subjects:
        subject_grades = grades_for(subject, grades)
        if has_valid_grades(subject_grades) and is_passing(weighted_average(subject, subject_grades), subject):
            count += 1
    return count


def overall_progress_by_category(subjects: List[Subject], grades: List[Grade]) -> Dict[AssessmentType, float]:
    """Mean of each category's progress value over subjects that have grades."""
    if not subjects:
        return {}

    per_subject = [
        progress_by_category(subject, grades_for(subject, grades))
        for subject in subjects
        if has_valid_grades(grades_for(subject, grades))
    ]

    result: Dict[AssessmentType, float] = {}
    for category in AssessmentType:
        values = np.array([p[category] for p in per_subject], dtype=float)
        result[category] = float(values.mean()) if values.size else 0.0
    return result


def recent_activity(subjects: List[Subject], grades: List[Grade], limit: Optional[int] = None) -> List[RecentGrade]:
    if limit is None:
        limit = settings.RECENT_ACTIVITY_LIMIT

    names = {s.id: s.name for s in subjects}
    known = [g for g in grades if g.subject_id in names]
    known.sort(key=lambda g: timestamp_key(g.date), reverse=True)

    return [RecentGrade(g, names[g.subject_id]) for g in known[:max(0, limit)]]


def subject_overview(subjects: List[Subject], grades: List[Grade]) -> List[SubjectOverviewRow]:
    rows = []
    for subject in subjects:
        subject_grades = grades_for(subject, grades)
        average = weighted_average(subject, subject_grades)
        rows.append(SubjectOverviewRow(
            subject_id=subject.id,
            name=subject.name,
            grade_count=len(subject_grades),
            average=round_1dp_half_up(average),
            is_passing=has_valid_grades(subject_grades) and is_passing(average, subject),
            color_band=grade_color_band(average),
        ))
    return rows


def build_dashboard(subjects: List[Subject], grades: List[Grade]) -> DashboardStatistics:
    """
    Portfolio view over all of a user's subjects.
    Recomputed from scratch on every call; nothing is carried between snapshots.
    """
    stats = DashboardStatistics(
        total_subjects=len(subjects),
        total_grades=len(grades),
        passing_subjects=count_passing_subjects(subjects, grades),
        overall_average=overall_average(subjects, grades),
        semester_progress=semester_progress(subjects, grades),
        subjects_at_risk=subjects_at_risk(subjects, grades),
        overall_progress_by_category=overall_progress_by_category(subjects, grades),
        recent_activity=recent_activity(subjects, grades),
        subject_overview=subject_overview(subjects, grades),
    )

    log.debug(
        "dashboard: %d subjects, %d grades, %d passing, %d at risk",
        stats.total_subjects, stats.total_grades, stats.passing_subjects, len(stats.subjects_at_risk),
    )
    return stats
