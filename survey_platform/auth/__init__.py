"""Authentication / authorization helpers.

Auth is intentionally lightweight:

- Users table (username / bcrypt password hash / role)
- Stateless JWT access tokens sent as `Authorization: Bearer <token>`

A token is trusted on signature and expiry alone, so checking one never needs
the database. Roles are a static allow-list per route (`require_roles`).
"""

from .crud import authenticate, bootstrap_admin_if_needed, create_user
from .deps import get_current_identity, require_admin, require_roles
from .security import authorize, verify_token

__all__ = [
    "authenticate",
    "authorize",
    "bootstrap_admin_if_needed",
    "create_user",
    "get_current_identity",
    "require_admin",
    "require_roles",
    "verify_token",
]
