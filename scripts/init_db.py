import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from survey_platform.config import load_config
from survey_platform.db import create_executor, init_db
from survey_platform.auth.crud import bootstrap_admin_if_needed


def main() -> None:
    cfg = load_config()
    db = create_executor(cfg)
    try:
        init_db(db)
        boot = bootstrap_admin_if_needed(db, cfg)
        if boot:
            print(f"Bootstrapped admin user: {boot['username']}")
    finally:
        db.close()

    print(f"DB initialized: {db.describe()}")


if __name__ == "__main__":
    main()
