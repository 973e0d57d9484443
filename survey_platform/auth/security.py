from __future__ import annotations

from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Iterable, Optional

import jwt
from passlib.context import CryptContext

from survey_platform.errors import Forbidden, InvalidToken, Unauthenticated
from survey_platform.models import ROLES, Identity, SessionToken


_JWT_ALG = "HS256"


@lru_cache(maxsize=None)
def _pwd(rounds: int) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def hash_password(password: str, *, rounds: int = 12) -> str:
    if not password:
        raise ValueError("password_blank")
    return _pwd(rounds).hash(password)


def verify_password(password: str, password_hash: str, *, rounds: int = 12) -> bool:
    if not password or not password_hash:
        return False
    try:
        return _pwd(rounds).verify(password, password_hash)
    except (ValueError, TypeError):
        # Malformed or foreign hash in the store.
        return False


def dummy_verify(*, rounds: int = 12) -> None:
    """Burn one hash comparison so an unknown username costs as much as a wrong password."""
    _pwd(rounds).dummy_verify()


def create_access_token(
    *,
    secret: str,
    user_id: int,
    username: str,
    role: str,
    expires_minutes: int,
    now: Optional[datetime] = None,
) -> SessionToken:
    if not secret:
        raise ValueError("jwt_secret_blank")

    issued = (now or datetime.now(timezone.utc)).replace(microsecond=0)
    exp = issued + timedelta(minutes=max(1, int(expires_minutes)))

    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "username": username,
        "role": role,
        "iat": int(issued.timestamp()),
        "exp": int(exp.timestamp()),
    }
    token = jwt.encode(payload, secret, algorithm=_JWT_ALG)
    return SessionToken(
        token=token,
        identity=Identity(id=int(user_id), username=username, role=role),
        issued_at=issued,
        expires_at=exp,
    )


def decode_access_token(*, token: str, secret: str) -> Dict[str, Any]:
    """Check the signature only; expiry is judged by `verify_token` against its clock."""
    if not token:
        raise ValueError("token_blank")
    if not secret:
        raise ValueError("jwt_secret_blank")
    return jwt.decode(
        token,
        secret,
        algorithms=[_JWT_ALG],
        options={"require": ["sub", "exp"], "verify_exp": False, "verify_iat": False},
    )


def verify_token(token: Optional[str], *, secret: str, now: Optional[datetime] = None) -> Identity:
    """Turn a bearer credential into an Identity, without touching the database.

    - no token                          -> Unauthenticated (401)
    - bad signature / malformed claims  -> InvalidToken("token_invalid") (403)
    - exp at or before `now`            -> InvalidToken("token_expired") (403)
    """

    if not token or not token.strip():
        raise Unauthenticated("missing_token")

    try:
        payload = decode_access_token(token=token.strip(), secret=secret)
    except jwt.InvalidTokenError:
        raise InvalidToken("token_invalid")

    try:
        exp = int(payload["exp"])
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise InvalidToken("token_invalid")

    current = now or datetime.now(timezone.utc)
    if exp <= int(current.timestamp()):
        raise InvalidToken("token_expired")

    username = payload.get("username")
    role = payload.get("role")
    if not isinstance(username, str) or role not in ROLES:
        raise InvalidToken("token_invalid")

    return Identity(id=user_id, username=username, role=role)


def authorize(identity: Optional[Identity], allowed_roles: Iterable[str]) -> Identity:
    """Pass the identity through when its role is allowed."""
    if identity is None:
        raise Unauthenticated("missing_token")
    if identity.role not in frozenset(allowed_roles):
        raise Forbidden("forbidden")
    return identity
