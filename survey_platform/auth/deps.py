from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from survey_platform.config import Config
from survey_platform.db import QueryExecutor
from survey_platform.models import ROLE_ADMIN, Identity

from .security import authorize, verify_token


_bearer = HTTPBearer(auto_error=False)


def get_config(request: Request) -> Config:
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise HTTPException(status_code=500, detail="server_config_missing")
    return cfg


def get_db(request: Request) -> QueryExecutor:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=500, detail="server_db_missing")
    return db


def get_current_identity(
    cfg: Config = Depends(get_config),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Identity:
    """Authenticate a request from its `Authorization: Bearer <jwt>` header.

    Trust is the token signature and expiry alone; the users table is not consulted.
    """

    token = credentials.credentials if credentials is not None else None
    return verify_token(token, secret=cfg.AUTH_JWT_SECRET)


def require_roles(*roles: str) -> Callable[..., Identity]:
    allowed = frozenset(roles)

    def _require(identity: Identity = Depends(get_current_identity)) -> Identity:
        return authorize(identity, allowed)

    _require.__name__ = f"require_{'_or_'.join(sorted(allowed))}"
    return _require


require_admin = require_roles(ROLE_ADMIN)
