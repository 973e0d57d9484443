import os
import re
import sys
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

# Optional: load a local .env file if present.
try:
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    # If python-dotenv isn't installed, plain environment variables still work.
    pass

from survey_platform.errors import ConfigError


# Only ever used when DEV_MODE is on; the name makes it obvious in a token dump.
INSECURE_DEV_SECRET = "insecure-dev-secret-DO-NOT-USE-IN-PRODUCTION"
DEV_BOOTSTRAP_ADMIN_PASSWORD = "admin123"


def _warn(msg: str) -> None:
    print(f"[config] WARNING: {msg}", file=sys.stderr)


def _env_bool(env: Mapping[str, str], name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = env.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


def _env_int(env: Mapping[str, str], *names: str, default: int) -> int:
    for name in names:
        raw = (env.get(name) or "").strip()
        if not raw:
            continue
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"{name} must be an integer, got {raw!r}")
    return default


_DURATION_RE = re.compile(r"^(\d+)\s*([smhd])$", re.IGNORECASE)
_DURATION_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def _duration_minutes(name: str, raw: str) -> int:
    """Parse a span like "90s", "30m", "12h" or "7d" into whole minutes (rounded up)."""
    m = _DURATION_RE.match(raw.strip())
    if not m:
        raise ConfigError(f"{name} must be a number with a unit (s, m, h or d), got {raw!r}")
    seconds = int(m.group(1)) * _DURATION_SECONDS[m.group(2).lower()]
    return -(-seconds // 60)


def _env_str(env: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        raw = (env.get(name) or "").strip()
        if raw:
            return raw
    return None


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    Built once at process start by `load_config()` and handed to `create_app()`.
    Provide secrets via environment variables or a .env file, never in source.
    """

    # -----------------
    # Core
    # -----------------
    # Postgres URL (postgres://...) or a SQLite file path / sqlite:///path.
    DB_DSN: str = "./survey_platform.sqlite"
    # Postgres only: sslmode=require when true, sslmode=prefer otherwise.
    DB_REQUIRE_TLS: bool = False
    DB_POOL_MIN: int = 1
    DB_POOL_MAX: int = 10

    API_HOST: str = "0.0.0.0"
    API_PORT: int = 5000

    # Development mode: verbose store errors in responses, dev fallbacks allowed.
    DEV_MODE: bool = False

    # -----------------
    # Auth (JWT + bcrypt)
    # -----------------
    AUTH_JWT_SECRET: str = ""
    AUTH_TOKEN_EXPIRE_MINUTES: int = 60
    BCRYPT_ROUNDS: int = 12

    # Bootstrap first admin user if users table is empty (skipped when password is empty)
    AUTH_BOOTSTRAP_ADMIN_USERNAME: str = "admin"
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str = ""

    # -----------------
    # CORS
    # -----------------
    CORS_ALLOW_ORIGINS: str = "http://localhost:3000"

    @property
    def cors_origins(self) -> Tuple[str, ...]:
        return tuple(o.strip() for o in (self.CORS_ALLOW_ORIGINS or "").split(",") if o.strip())


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Read the environment into a validated, immutable Config.

    Raises ConfigError when the signing secret is missing outside development
    mode, or when a numeric setting is out of range.
    """

    env = os.environ if environ is None else environ

    app_env = (env.get("APP_ENV") or env.get("NODE_ENV") or "").strip().lower()
    dev_mode = _env_bool(env, "DEV_MODE", None)
    if dev_mode is None:
        dev_mode = app_env in ("dev", "development", "local")
    production = app_env in ("prod", "production")

    secret = _env_str(env, "AUTH_JWT_SECRET", "JWT_SECRET")
    if secret is None:
        if not dev_mode:
            raise ConfigError(
                "AUTH_JWT_SECRET is not set. Refusing to start; "
                "set a strong random secret (or DEV_MODE=1 for local development only)."
            )
        _warn("AUTH_JWT_SECRET not set; using the INSECURE development secret. Tokens are forgeable.")
        secret = INSECURE_DEV_SECRET

    dsn = _env_str(env, "SURVEY_DATABASE_URL", "DATABASE_URL", "SURVEY_DB_PATH")
    if dsn is None:
        dsn = Config.DB_DSN
        _warn(f"No database configured; falling back to local SQLite at {dsn}")

    require_tls = _env_bool(env, "DB_REQUIRE_TLS", None)
    if require_tls is None:
        require_tls = production
    elif production and not require_tls:
        _warn("DB_REQUIRE_TLS is off in production; database traffic is not encrypted.")

    rounds = _env_int(env, "BCRYPT_ROUNDS", "BCRYPT_SALT_ROUNDS", default=Config.BCRYPT_ROUNDS)
    if not 4 <= rounds <= 31:
        raise ConfigError(f"BCRYPT_ROUNDS must be between 4 and 31, got {rounds}")

    expire = _env_int(env, "AUTH_TOKEN_EXPIRE_MINUTES", default=Config.AUTH_TOKEN_EXPIRE_MINUTES)
    expires_in = _env_str(env, "JWT_EXPIRES_IN")
    if expires_in and not _env_str(env, "AUTH_TOKEN_EXPIRE_MINUTES"):
        expire = _duration_minutes("JWT_EXPIRES_IN", expires_in)
    if expire < 1:
        raise ConfigError(f"token lifetime must be at least 1 minute, got {expire}")

    pool_min = _env_int(env, "DB_POOL_MIN", default=Config.DB_POOL_MIN)
    pool_max = _env_int(env, "DB_POOL_MAX", default=Config.DB_POOL_MAX)
    if pool_min < 1 or pool_max < pool_min:
        raise ConfigError(f"invalid pool size: min={pool_min} max={pool_max}")

    bootstrap_password = env.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD")
    if bootstrap_password is None and dev_mode:
        _warn("AUTH_BOOTSTRAP_ADMIN_PASSWORD not set; dev bootstrap admin uses the default password.")
        bootstrap_password = DEV_BOOTSTRAP_ADMIN_PASSWORD

    return Config(
        DB_DSN=dsn,
        DB_REQUIRE_TLS=bool(require_tls),
        DB_POOL_MIN=pool_min,
        DB_POOL_MAX=pool_max,
        API_HOST=_env_str(env, "API_HOST") or Config.API_HOST,
        API_PORT=_env_int(env, "API_PORT", "PORT", default=Config.API_PORT),
        DEV_MODE=bool(dev_mode),
        AUTH_JWT_SECRET=secret,
        AUTH_TOKEN_EXPIRE_MINUTES=expire,
        BCRYPT_ROUNDS=rounds,
        AUTH_BOOTSTRAP_ADMIN_USERNAME=_env_str(env, "AUTH_BOOTSTRAP_ADMIN_USERNAME") or "admin",
        AUTH_BOOTSTRAP_ADMIN_PASSWORD=bootstrap_password or "",
        CORS_ALLOW_ORIGINS=(
            _env_str(env, "CORS_ALLOW_ORIGINS", "FRONTEND_BASE_URL") or Config.CORS_ALLOW_ORIGINS
        ),
    )
