import io

import pytest

from gradebook.aggregation import weighted_average
from gradebook.io_csv import (
    grades_to_frame,
    load_store_from_csv,
    parse_category,
    read_grades_csv,
    read_subjects_csv,
    write_grades_csv,
)
from conftest import ASSIGNMENT, PRE_EXAM, make_grade

SUBJECTS_CSV = """ID,User_ID,Name,Passing_Grade,Weight_Pre_Exam,Weight_Assignment
s1,u1,Math,3.0,0.5,0.5
s2,u1,,3.0,0.5,0.5
s3,u1,History,3.0,0.6,
"""

GRADES_CSV = """id,subject_id,score,maxScore,type,date,title
g1,s1,45,50,pre_exam,2024-01-10,Midterm
g2,s1,,50,ASSIGNMENT,2024-01-11,Missing
g3,s1,60,50,ASSIGNMENT,2024-01-12,Over
g4,s1,40,50,Assignment,,Essay
g5,zz,10,10,ASSIGNMENT,2024-01-13,Orphan
"""


def test_read_subjects_csv():
    subjects = read_subjects_csv(io.StringIO(SUBJECTS_CSV))
    assert [s.id for s in subjects] == ["s1", "s3"]
    assert subjects[0].weights == {"PRE_EXAM": 0.5, "ASSIGNMENT": 0.5}
    assert subjects[1].weights == {"PRE_EXAM": 0.6}


def test_read_grades_csv():
    grades = {g.id: g for g in read_grades_csv(io.StringIO(GRADES_CSV))}
    assert set(grades) == {"g1", "g3", "g4", "g5"}
    assert grades["g1"].category is PRE_EXAM
    assert grades["g1"].grade_point == 5.0
    assert grades["g1"].date.year == 2024
    assert grades["g3"].is_valid_grade is False
    assert grades["g4"].category is ASSIGNMENT
    assert grades["g4"].date.year == 1970


def test_missing_columns_are_reported():
    with pytest.raises(ValueError, match="Missing columns"):
        read_grades_csv(io.StringIO("id,score\n1,2\n"))
    with pytest.raises(ValueError, match="Missing columns"):
        read_subjects_csv(io.StringIO("id,name\ns1,Math\n"))


@pytest.mark.parametrize("raw,expected", [
    ("PRE_EXAM", PRE_EXAM),
    ("pre exam", PRE_EXAM),
    ("pre-exam", PRE_EXAM),
    ("assignment", ASSIGNMENT),
    ("lab", None),
    ("QUIZ", None),
    (None, None),
])
def test_parse_category(raw, expected):
    assert parse_category(raw) is expected


def test_unknown_category_rows_are_skipped():
    csv = "id,subject_id,score,max_score,category\na,s1,45,50,PRE_EXAM\nb,s1,5,50,QUIZ\nc,s1,5,50,\n"
    grades = read_grades_csv(io.StringIO(csv))
    assert [g.id for g in grades] == ["a"]


def test_unknown_category_leaves_average_unchanged():
    subjects = "id,user_id,name,passing_grade,weight_pre_exam,weight_assignment\ns1,u1,Math,3.0,0.5,0.5\n"
    grades = "id,subject_id,score,max_score,category\na,s1,45,50,PRE_EXAM\nb,s1,5,50,QUIZ\n"
    store = load_store_from_csv(io.StringIO(subjects), io.StringIO(grades))
    math = store.get_subject("s1")
    assert weighted_average(math, store.grades_for_subject("s1")) == pytest.approx(4.5)


def test_grades_to_frame_includes_derived_columns():
    df = grades_to_frame([make_grade(45, 50, PRE_EXAM), make_grade(60, 50)])
    assert list(df["grade_point"]) == [5.0, 0.0]
    assert list(df["is_valid"]) == [True, False]
    assert list(df["grade_description"]) == ["Excellent", "Failing"]
    assert list(df["category"]) == ["PRE_EXAM", "ASSIGNMENT"]


def test_write_then_read_keeps_scores():
    buf = io.StringIO()
    write_grades_csv([make_grade(45, 50, PRE_EXAM)], buf)
    buf.seek(0)
    (g,) = read_grades_csv(buf)
    assert (g.score, g.max_score, g.category) == (45.0, 50.0, PRE_EXAM)


def test_load_store_from_csv():
    store = load_store_from_csv(io.StringIO(SUBJECTS_CSV), io.StringIO(GRADES_CSV))
    assert [s.id for s in store.fetch_subjects("u1")] == ["s1", "s3"]

    math = store.get_subject("s1")
    grades = store.grades_for_subject("s1")
    assert {g.id for g in grades} == {"g1", "g3", "g4"}
    # g3 is stored but ignored: (4.5 + 4.0) / 2
    assert weighted_average(math, grades) == pytest.approx(4.25)
