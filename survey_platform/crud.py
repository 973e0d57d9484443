"""Parameterized statements for the survey entities.

Each function is a thin mapping from one resource operation to SQL over a
QueryExecutor. Referential integrity of client-supplied foreign keys is left to
the store; a dangling id surfaces as StoreError.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from survey_platform.db import QueryExecutor
from survey_platform.errors import NotFound, ValidationError
from survey_platform.util.time import utcnow_iso


def _created(db: QueryExecutor, table: str, new_id: Optional[int]) -> Dict[str, Any]:
    row = db.get(f"SELECT * FROM {table} WHERE id = ?", (new_id,))
    assert row is not None
    return row


# -----------------------------
# Companies / employees
# -----------------------------


def list_companies(db: QueryExecutor) -> List[Dict[str, Any]]:
    return db.all("SELECT * FROM companies ORDER BY id")


def create_company(db: QueryExecutor, *, name: str) -> Dict[str, Any]:
    res = db.run("INSERT INTO companies (name, created_at) VALUES (?, ?)", (name, utcnow_iso()))
    return _created(db, "companies", res.generated_id)


def list_employees(db: QueryExecutor, *, company_id: Optional[int] = None) -> List[Dict[str, Any]]:
    if company_id is None:
        return db.all("SELECT * FROM employees ORDER BY id")
    return db.all("SELECT * FROM employees WHERE company_id = ? ORDER BY id", (company_id,))


def create_employee(
    db: QueryExecutor,
    *,
    company_id: int,
    name: str,
    email: Optional[str] = None,
) -> Dict[str, Any]:
    res = db.run(
        "INSERT INTO employees (company_id, name, email, created_at) VALUES (?, ?, ?, ?)",
        (company_id, name, email, utcnow_iso()),
    )
    return _created(db, "employees", res.generated_id)


# -----------------------------
# Categories / questions
# -----------------------------


def list_categories(db: QueryExecutor) -> List[Dict[str, Any]]:
    return db.all("SELECT * FROM categories ORDER BY id")


def create_category(db: QueryExecutor, *, name: str) -> Dict[str, Any]:
    res = db.run("INSERT INTO categories (name, created_at) VALUES (?, ?)", (name, utcnow_iso()))
    return _created(db, "categories", res.generated_id)


def list_questions(db: QueryExecutor, *, category_id: Optional[int] = None) -> List[Dict[str, Any]]:
    if category_id is None:
        return db.all("SELECT * FROM questions ORDER BY id")
    return db.all("SELECT * FROM questions WHERE category_id = ? ORDER BY id", (category_id,))


def create_question(
    db: QueryExecutor,
    *,
    text: str,
    type: str,
    category_id: Optional[int] = None,
) -> Dict[str, Any]:
    res = db.run(
        "INSERT INTO questions (category_id, text, type, created_at) VALUES (?, ?, ?, ?)",
        (category_id, text, type, utcnow_iso()),
    )
    return _created(db, "questions", res.generated_id)


# -----------------------------
# Surveys
# -----------------------------


def list_surveys(db: QueryExecutor) -> List[Dict[str, Any]]:
    return db.all("SELECT * FROM surveys ORDER BY id")


def survey_questions(db: QueryExecutor, survey_id: int) -> List[Dict[str, Any]]:
    return db.all(
        """
        SELECT q.id, q.category_id, q.text, q.type, sq.position
        FROM survey_questions sq
        JOIN questions q ON q.id = sq.question_id
        WHERE sq.survey_id = ?
        ORDER BY sq.position, q.id
        """,
        (survey_id,),
    )


def get_survey(db: QueryExecutor, survey_id: int) -> Dict[str, Any]:
    row = db.get("SELECT * FROM surveys WHERE id = ?", (survey_id,))
    if row is None:
        raise NotFound("survey_not_found")
    row["questions"] = survey_questions(db, survey_id)
    return row


def add_survey_question(db: QueryExecutor, *, survey_id: int, question_id: int, position: int) -> bool:
    """Attach a question; returns False when it was already attached."""
    res = db.run(
        """
        INSERT OR IGNORE INTO survey_questions (survey_id, question_id, position)
        VALUES (?, ?, ?)
        RETURNING survey_id
        """,
        (survey_id, question_id, position),
    )
    return res.rows_affected > 0


def create_survey(
    db: QueryExecutor,
    *,
    title: str,
    description: Optional[str],
    created_by: int,
    question_ids: Sequence[int] = (),
) -> Dict[str, Any]:
    # Not atomic: a bad question id leaves the survey row behind with the
    # questions attached so far.
    res = db.run(
        "INSERT INTO surveys (title, description, created_by, created_at) VALUES (?, ?, ?, ?)",
        (title, description, created_by, utcnow_iso()),
    )
    survey_id = int(res.generated_id)
    position = 0
    for qid in question_ids:
        if add_survey_question(db, survey_id=survey_id, question_id=qid, position=position):
            position += 1
    return get_survey(db, survey_id)


# -----------------------------
# Responses
# -----------------------------


def _check_answer(question: Dict[str, Any], answer: str, index: int) -> Optional[Dict[str, str]]:
    if question["type"] != "rating":
        return None
    text = answer.strip()
    # ASCII digits only; int() would also take "+3" or other scripts' digits
    if text.isascii() and text.isdigit() and 1 <= int(text) <= 5:
        return None
    return {"field": f"answers.{index}.answer", "message": "rating must be an integer from 1 to 5"}


def submit_response(
    db: QueryExecutor,
    *,
    survey_id: int,
    user_id: int,
    answers: Sequence[Dict[str, Any]],
) -> Dict[str, Any]:
    survey = get_survey(db, survey_id)
    by_id = {int(q["id"]): q for q in survey["questions"]}

    errors: List[Dict[str, str]] = []
    for i, a in enumerate(answers):
        q = by_id.get(int(a["question_id"]))
        if q is None:
            errors.append({"field": f"answers.{i}.question_id", "message": "question is not part of this survey"})
            continue
        err = _check_answer(q, str(a["answer"]), i)
        if err is not None:
            errors.append(err)
    if errors:
        raise ValidationError(errors)

    now = utcnow_iso()
    saved = 0
    for a in answers:
        res = db.run(
            """
            INSERT INTO responses (survey_id, question_id, user_id, answer, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (survey_id, int(a["question_id"]), user_id, str(a["answer"]), now),
        )
        saved += res.rows_affected
    return {"survey_id": survey_id, "saved": saved}


def list_responses(db: QueryExecutor, survey_id: int) -> List[Dict[str, Any]]:
    get_survey(db, survey_id)
    return db.all(
        """
        SELECT r.id, r.survey_id, r.question_id, r.user_id, u.username, r.answer, r.created_at
        FROM responses r
        JOIN users u ON u.id = r.user_id
        WHERE r.survey_id = ?
        ORDER BY r.id
        """,
        (survey_id,),
    )
