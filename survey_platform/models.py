from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

ROLE_ADMIN = "admin"
ROLE_CREATOR = "creator"
ROLE_RESPONDENT = "respondent"

ROLES = frozenset({ROLE_ADMIN, ROLE_CREATOR, ROLE_RESPONDENT})

QUESTION_TYPES = frozenset({"text", "rating"})


@dataclass(frozen=True)
class Identity:
    """Who a verified token says the caller is."""

    id: int
    username: str
    role: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "username": self.username, "role": self.role}


@dataclass(frozen=True)
class SessionToken:
    token: str
    identity: Identity
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RunResult:
    rows_affected: int
    generated_id: Optional[int] = None
