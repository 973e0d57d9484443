"""Create a user.

Usage:
  python scripts/create_user.py --username alice --password '...' --role creator

NOTE: This is intended for provisioning; the API itself only creates users via the admin endpoint.
"""

import argparse
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from survey_platform.config import load_config
from survey_platform.db import create_executor, init_db
from survey_platform.auth.crud import create_user
from survey_platform.errors import AppError


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--username", required=True)
    ap.add_argument("--password", help="omit to be prompted")
    ap.add_argument("--role", choices=["admin", "creator", "respondent"], default="respondent")
    args = ap.parse_args()

    password = args.password or getpass.getpass("Password: ")

    cfg = load_config()
    db = create_executor(cfg)
    try:
        init_db(db)
        u = create_user(db, username=args.username, password=password, role=args.role, rounds=cfg.BCRYPT_ROUNDS)
    except AppError as e:
        sys.exit(f"Could not create user: {e.code}")
    finally:
        db.close()

    print("Created user:")
    print(u)


if __name__ == "__main__":
    main()
