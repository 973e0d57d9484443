"""Seed a local database with demo users and one survey.

Usage:
  python scripts/seed_demo.py

Idempotent: users, the company and the category are inserted with
INSERT OR IGNORE, questions and the survey are looked up before inserting.
Demo passwords are public; never run this against a shared database.
"""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from survey_platform import crud
from survey_platform.auth.security import hash_password
from survey_platform.config import load_config
from survey_platform.db import create_executor, init_db
from survey_platform.util.time import utcnow_iso


DEMO_USERS = [
    ("admin", "admin123", "admin"),
    ("creator", "creator123", "creator"),
    ("respondent", "respondent123", "respondent"),
]

DEMO_QUESTIONS = [
    ("How satisfied are you with your team?", "rating"),
    ("What should we improve?", "text"),
]


def main() -> None:
    cfg = load_config()
    db = create_executor(cfg)
    try:
        init_db(db)
        now = utcnow_iso()

        for username, password, role in DEMO_USERS:
            res = db.run(
                "INSERT OR IGNORE INTO users (username, password_hash, role, created_at) VALUES (?, ?, ?, ?)",
                (username, hash_password(password, rounds=cfg.BCRYPT_ROUNDS), role, now),
            )
            print(f"user {username}: {'created' if res.rows_affected else 'exists'}")

        db.run("INSERT OR IGNORE INTO companies (name, created_at) VALUES (?, ?)", ("Acme Corp", now))
        db.run("INSERT OR IGNORE INTO categories (name, created_at) VALUES (?, ?)", ("Engagement", now))
        category = db.get("SELECT id FROM categories WHERE name = ?", ("Engagement",))

        question_ids = []
        for text, qtype in DEMO_QUESTIONS:
            row = db.get("SELECT id FROM questions WHERE text = ?", (text,))
            if row is None:
                row = crud.create_question(db, text=text, type=qtype, category_id=category["id"])
            question_ids.append(int(row["id"]))

        if db.get("SELECT id FROM surveys WHERE title = ?", ("Team pulse",)) is None:
            admin = db.get("SELECT id FROM users WHERE username = ?", ("admin",))
            survey = crud.create_survey(
                db,
                title="Team pulse",
                description="Quarterly engagement check-in",
                created_by=int(admin["id"]),
                question_ids=question_ids,
            )
            print(f"survey created: id={survey['id']}")
    finally:
        db.close()

    print(f"Demo data ready: {db.describe()}")


if __name__ == "__main__":
    main()
