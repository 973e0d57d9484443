from __future__ import annotations

from typing import Any, Dict, List, Optional

from survey_platform.config import Config
from survey_platform.db import QueryExecutor
from survey_platform.errors import Conflict, InvalidCredentials, ValidationError
from survey_platform.models import ROLES, SessionToken
from survey_platform.util.time import utcnow_iso

from .security import create_access_token, dummy_verify, hash_password, verify_password


def normalize_username(username: str) -> str:
    return (username or "").strip()


def public_user(row: Dict[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    d.pop("password_hash", None)
    return d


def get_user_by_username(db: QueryExecutor, username: str) -> Optional[Dict[str, Any]]:
    u = normalize_username(username)
    if not u:
        return None
    return db.get("SELECT * FROM users WHERE username = ?", (u,))


def get_user_by_id(db: QueryExecutor, user_id: int) -> Optional[Dict[str, Any]]:
    return db.get("SELECT * FROM users WHERE id = ?", (int(user_id),))


def list_users(db: QueryExecutor) -> List[Dict[str, Any]]:
    rows = db.all("SELECT id, username, role, created_at FROM users ORDER BY id")
    return [public_user(r) for r in rows]


def create_user(
    db: QueryExecutor,
    *,
    username: str,
    password: str,
    role: str,
    rounds: int = 12,
) -> Dict[str, Any]:
    u = normalize_username(username)
    if not u:
        raise ValidationError.field("username", "must not be blank")
    if not password:
        raise ValidationError.field("password", "must not be blank")
    if "\x00" in password:
        raise ValidationError.field("password", "must not contain NUL characters")
    if role not in ROLES:
        raise ValidationError.field("role", f"must be one of {sorted(ROLES)}")

    if get_user_by_username(db, u) is not None:
        raise Conflict("username_exists")

    res = db.run(
        "INSERT INTO users (username, password_hash, role, created_at) VALUES (?, ?, ?, ?)",
        (u, hash_password(password, rounds=rounds), role, utcnow_iso()),
    )
    row = get_user_by_id(db, int(res.generated_id))
    assert row is not None
    return public_user(row)


def authenticate(db: QueryExecutor, cfg: Config, username: str, password: str) -> SessionToken:
    """Check a username/password pair and issue a session token.

    Unknown usernames and wrong passwords raise the same InvalidCredentials, and
    both paths run one bcrypt comparison.
    """

    row = get_user_by_username(db, username)
    if row is None:
        dummy_verify(rounds=cfg.BCRYPT_ROUNDS)
        raise InvalidCredentials()
    if not verify_password(password, str(row["password_hash"]), rounds=cfg.BCRYPT_ROUNDS):
        raise InvalidCredentials()

    return create_access_token(
        secret=cfg.AUTH_JWT_SECRET,
        user_id=int(row["id"]),
        username=str(row["username"]),
        role=str(row["role"]),
        expires_minutes=cfg.AUTH_TOKEN_EXPIRE_MINUTES,
    )


def bootstrap_admin_if_needed(db: QueryExecutor, cfg: Config) -> Optional[Dict[str, Any]]:
    """Create the first admin user if the users table is empty.

    - AUTH_BOOTSTRAP_ADMIN_USERNAME (default: admin)
    - AUTH_BOOTSTRAP_ADMIN_PASSWORD (no default outside DEV_MODE)

    This only runs when there are 0 rows in `users`.
    """

    n = db.get("SELECT COUNT(*) AS n FROM users")["n"]
    if int(n) > 0:
        return None

    username = normalize_username(cfg.AUTH_BOOTSTRAP_ADMIN_USERNAME)
    password = cfg.AUTH_BOOTSTRAP_ADMIN_PASSWORD

    # If either is cleared, don't create anything.
    if not username or not password:
        return None

    return create_user(db, username=username, password=password, role="admin", rounds=cfg.BCRYPT_ROUNDS)
