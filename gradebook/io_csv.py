import pandas as pd
from typing import List, Optional

from .logger import get_logger
from .models import EPOCH, AssessmentType, Grade, Subject
from .store import GradebookStore

log = get_logger("io_csv")

WEIGHT_PREFIX = "weight_"

# ------------------------
# CSV helpers
# ------------------------

def _normalise_cols(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [str(c).strip().lower().replace(" ", "_") for c in df.columns]
    # allow "maxscore" / "max" and "type" as written by older exports
    renames = {}
    for alias in ("maxscore", "max"):
        if alias in df.columns and "max_score" not in df.columns:
            renames[alias] = "max_score"
    if "type" in df.columns and "category" not in df.columns:
        renames["type"] = "category"
    if renames:
        df = df.rename(columns=renames)
    return df

def _require(df: pd.DataFrame, required: set, expected: str) -> None:
    missing = required - set(df.columns)
    if missing:
        raise ValueError(f"Missing columns: {sorted(missing)}. Expected: {expected}.")

def _text(value, default: str = "") -> str:
    if value is None or pd.isna(value):
        return default
    return str(value).strip()

def parse_category(raw) -> Optional[AssessmentType]:
    """Name or value, any case; None when unknown."""
    s = _text(raw).upper().replace(" ", "_").replace("-", "_")
    if s in AssessmentType.__members__:
        return AssessmentType[s]
    for c in AssessmentType:
        if c.value.upper() == s:
            return c
    return None

def _parse_date(raw):
    if raw is None or pd.isna(raw):
        return EPOCH
    ts = pd.to_datetime(raw, utc=True, errors="coerce")
    if pd.isna(ts):
        return EPOCH
    return ts.to_pydatetime()

def read_csv(path_or_buffer) -> pd.DataFrame:
    df = pd.read_csv(path_or_buffer)
    return _normalise_cols(df)

# ------------------------
# Subjects
# ------------------------

def parse_subjects(df: pd.DataFrame) -> List[Subject]:
    _require(df, {"id", "name", "passing_grade"}, "id, user_id, name, passing_grade, weight_<category>...")
    weight_cols = [c for c in df.columns if c.startswith(WEIGHT_PREFIX)]

    rows = []
    for _, row in df.iterrows():
        name = _text(row.get("name"))
        passing = row.get("passing_grade")
        if not name or pd.isna(passing):
            continue

        weights = {}
        for col in weight_cols:
            value = row.get(col)
            if pd.isna(value):
                continue
            weights[col[len(WEIGHT_PREFIX):].upper()] = float(value)

        rows.append(Subject(
            id=_text(row.get("id")),
            user_id=_text(row.get("user_id")),
            name=name,
            passing_grade=float(passing),
            weights=weights,
            created_at=_parse_date(row.get("created_at")),
        ))
    return rows

def read_subjects_csv(path_or_buffer) -> List[Subject]:
    return parse_subjects(read_csv(path_or_buffer))

# ------------------------
# Grades
# ------------------------

def parse_grades(df: pd.DataFrame) -> List[Grade]:
    """
    Rows with a missing score or max score, or an unknown category, are skipped.
    Out-of-range scores are kept; they are invalid grades, not bad rows.
    """
    _require(df, {"id", "subject_id", "score", "max_score", "category"},
             "id, subject_id, score, max_score, category[, title, date, description]")

    rows = []
    skipped = 0
    unknown = 0
    for _, row in df.iterrows():
        score = row.get("score")
        max_score = row.get("max_score")
        if pd.isna(score) or pd.isna(max_score):
            skipped += 1
            continue

        category = parse_category(row.get("category"))
        if category is None:
            unknown += 1
            continue

        rows.append(Grade(
            id=_text(row.get("id")),
            subject_id=_text(row.get("subject_id")),
            user_id=_text(row.get("user_id")),
            score=float(score),
            max_score=float(max_score),
            category=category,
            date=_parse_date(row.get("date")),
            title=_text(row.get("title")),
            description=_text(row.get("description")),
        ).with_derived_fields())

    if skipped:
        log.warning("skipped %d grade rows without score or max_score", skipped)
    if unknown:
        log.warning("skipped %d grade rows with an unknown category", unknown)
    return rows

def read_grades_csv(path_or_buffer) -> List[Grade]:
    return parse_grades(read_csv(path_or_buffer))

def grades_to_frame(grades: List[Grade]) -> pd.DataFrame:
    """Raw score data plus the derived grade_point / is_valid / description columns."""
    records = []
    for g in grades:
        records.append({
            "id": g.id,
            "subject_id": g.subject_id,
            "user_id": g.user_id,
            "score": g.score,
            "max_score": g.max_score,
            "category": g.category.name,
            "date": g.date.isoformat(),
            "title": g.title,
            "description": g.description,
            "grade_point": g.get_grade_point(),
            "is_valid": g.is_valid(),
            "grade_description": g.get_description(),
        })
    columns = [
        "id", "subject_id", "user_id", "score", "max_score", "category", "date",
        "title", "description", "grade_point", "is_valid", "grade_description",
    ]
    return pd.DataFrame(records, columns=columns)

def write_grades_csv(grades: List[Grade], path_or_buffer) -> None:
    grades_to_frame(grades).to_csv(path_or_buffer, index=False)

def load_store_from_csv(subjects_csv, grades_csv) -> GradebookStore:
    """
    Build a store from two CSV exports.
    Subjects that fail validation and grades of unknown subjects are left out.
    """
    store = GradebookStore()
    for subject in read_subjects_csv(subjects_csv):
        store.persist_subject(subject)

    refused = 0
    for grade in read_grades_csv(grades_csv):
        if not store.persist_grade(grade):
            refused += 1

    if refused:
        log.warning("%d grades reference unknown subjects", refused)
    return store
