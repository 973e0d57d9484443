from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from typing import Annotated, Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Path, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from survey_platform import __version__, crud
from survey_platform.auth import authenticate, bootstrap_admin_if_needed, create_user, require_admin, require_roles
from survey_platform.auth.crud import list_users
from survey_platform.auth.deps import get_config, get_current_identity, get_db
from survey_platform.config import Config, load_config
from survey_platform.db import QueryExecutor, create_executor, init_db
from survey_platform.errors import AppError, StoreError, ValidationError
from survey_platform.models import ROLE_ADMIN, ROLE_CREATOR, ROLE_RESPONDENT, Identity
from survey_platform.util.time import to_iso


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


STAFF = (ROLE_ADMIN, ROLE_CREATOR)
EVERYONE = (ROLE_ADMIN, ROLE_CREATOR, ROLE_RESPONDENT)

require_staff = require_roles(*STAFF)
require_anyone = require_roles(*EVERYONE)
require_respondent = require_roles(ROLE_RESPONDENT)

# Ids are stored as signed 64-bit integers.
MAX_ID = 2**63 - 1

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


# -----------------------------
# Request bodies
# -----------------------------


class _Body(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


class LoginRequest(BaseModel):
    # Passwords are taken verbatim.
    username: str = Field(..., min_length=1, max_length=150)
    password: str = Field(..., min_length=1, max_length=500)


class CreateUserRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=150)
    password: str = Field(..., min_length=8, max_length=500)
    role: str = Field(..., pattern=r"^(admin|creator|respondent)$")


class CompanyIn(_Body):
    name: str = Field(..., min_length=1, max_length=200)


class EmployeeIn(_Body):
    company_id: int = Field(..., ge=1, le=MAX_ID)
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(None, max_length=320)


class CategoryIn(_Body):
    name: str = Field(..., min_length=1, max_length=200)


class QuestionIn(_Body):
    text: str = Field(..., min_length=1, max_length=2000)
    type: str = Field("text", pattern=r"^(text|rating)$")
    category_id: Optional[int] = Field(None, ge=1, le=MAX_ID)


class SurveyIn(_Body):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    question_ids: List[Annotated[int, Field(ge=1, le=MAX_ID)]] = Field(default_factory=list, max_length=500)


class AnswerIn(_Body):
    question_id: int = Field(..., ge=1, le=MAX_ID)
    answer: str = Field(..., max_length=5000)


class ResponseIn(_Body):
    answers: List[AnswerIn] = Field(..., min_length=1, max_length=500)


# -----------------------------
# Error rendering
# -----------------------------


def _field_name(loc: Any) -> str:
    parts = [str(p) for p in (loc or ()) if p != "body"]
    return ".".join(parts) or "body"


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    payload = exc.to_payload()
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    if isinstance(exc, StoreError):
        cfg = getattr(request.app.state, "cfg", None)
        if cfg is not None and cfg.DEV_MODE:
            payload["error"] = str(exc)
    return JSONResponse(status_code=exc.status_code, content=payload, headers=headers)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    err = ValidationError([{"field": _field_name(e.get("loc")), "message": str(e.get("msg"))} for e in exc.errors()])
    return JSONResponse(status_code=err.status_code, content=err.to_payload())


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if exc.status_code == 404 and detail == "Not Found":
        detail = "not_found"
    elif exc.status_code == 405:
        detail = "method_not_allowed"
    return JSONResponse(status_code=exc.status_code, content={"detail": detail}, headers=exc.headers)


# -----------------------------
# Health / auth
# -----------------------------

router = APIRouter()


@router.get("/health")
def health() -> Dict[str, Any]:
    return {"status": "ok", "version": __version__}


def _login(payload: LoginRequest, db: QueryExecutor, cfg: Config) -> Dict[str, Any]:
    session = authenticate(db, cfg, payload.username, payload.password)
    return {
        "token": session.token,
        "token_type": "bearer",
        "expires_at": to_iso(session.expires_at),
        "user": session.identity.to_dict(),
    }


@router.post("/login")
def login(
    payload: LoginRequest,
    db: QueryExecutor = Depends(get_db),
    cfg: Config = Depends(get_config),
) -> Dict[str, Any]:
    return _login(payload, db, cfg)


@router.post("/api/login")
def api_login(
    payload: LoginRequest,
    db: QueryExecutor = Depends(get_db),
    cfg: Config = Depends(get_config),
) -> Dict[str, Any]:
    return _login(payload, db, cfg)


@router.get("/api/me")
def me(identity: Identity = Depends(get_current_identity)) -> Dict[str, Any]:
    return {"user": identity.to_dict()}


# -----------------------------
# Users (admin)
# -----------------------------


@router.get("/api/users")
def users_list(
    _admin: Identity = Depends(require_admin),
    db: QueryExecutor = Depends(get_db),
) -> List[Dict[str, Any]]:
    return list_users(db)


@router.post("/api/users", status_code=201)
def users_create(
    payload: CreateUserRequest,
    _admin: Identity = Depends(require_admin),
    db: QueryExecutor = Depends(get_db),
    cfg: Config = Depends(get_config),
) -> Dict[str, Any]:
    return create_user(
        db,
        username=payload.username,
        password=payload.password,
        role=payload.role,
        rounds=cfg.BCRYPT_ROUNDS,
    )


# -----------------------------
# Companies / employees
# -----------------------------


@router.get("/api/companies")
def companies_list(
    _user: Identity = Depends(require_staff),
    db: QueryExecutor = Depends(get_db),
) -> List[Dict[str, Any]]:
    return crud.list_companies(db)


@router.post("/api/companies", status_code=201)
def companies_create(
    payload: CompanyIn,
    _admin: Identity = Depends(require_admin),
    db: QueryExecutor = Depends(get_db),
) -> Dict[str, Any]:
    return crud.create_company(db, name=payload.name)


@router.get("/api/employees")
def employees_list(
    company_id: Optional[int] = Query(None, ge=1, le=MAX_ID),
    _user: Identity = Depends(require_staff),
    db: QueryExecutor = Depends(get_db),
) -> List[Dict[str, Any]]:
    return crud.list_employees(db, company_id=company_id)


@router.post("/api/employees", status_code=201)
def employees_create(
    payload: EmployeeIn,
    _admin: Identity = Depends(require_admin),
    db: QueryExecutor = Depends(get_db),
) -> Dict[str, Any]:
    return crud.create_employee(db, company_id=payload.company_id, name=payload.name, email=payload.email)


# -----------------------------
# Categories / questions
# -----------------------------


@router.get("/api/categories")
def categories_list(
    _user: Identity = Depends(require_staff),
    db: QueryExecutor = Depends(get_db),
) -> List[Dict[str, Any]]:
    return crud.list_categories(db)


@router.post("/api/categories", status_code=201)
def categories_create(
    payload: CategoryIn,
    _user: Identity = Depends(require_staff),
    db: QueryExecutor = Depends(get_db),
) -> Dict[str, Any]:
    return crud.create_category(db, name=payload.name)


@router.get("/api/questions")
def questions_list(
    category_id: Optional[int] = Query(None, ge=1, le=MAX_ID),
    _user: Identity = Depends(require_staff),
    db: QueryExecutor = Depends(get_db),
) -> List[Dict[str, Any]]:
    return crud.list_questions(db, category_id=category_id)


@router.post("/api/questions", status_code=201)
def questions_create(
    payload: QuestionIn,
    _user: Identity = Depends(require_staff),
    db: QueryExecutor = Depends(get_db),
) -> Dict[str, Any]:
    return crud.create_question(db, text=payload.text, type=payload.type, category_id=payload.category_id)


# -----------------------------
# Surveys / responses
# -----------------------------


@router.get("/api/surveys")
def surveys_list(
    _user: Identity = Depends(require_anyone),
    db: QueryExecutor = Depends(get_db),
) -> List[Dict[str, Any]]:
    return crud.list_surveys(db)


@router.post("/api/surveys", status_code=201)
def surveys_create(
    payload: SurveyIn,
    user: Identity = Depends(require_staff),
    db: QueryExecutor = Depends(get_db),
) -> Dict[str, Any]:
    return crud.create_survey(
        db,
        title=payload.title,
        description=payload.description,
        created_by=user.id,
        question_ids=payload.question_ids,
    )


@router.get("/api/surveys/{survey_id}")
def surveys_get(
    survey_id: int = Path(..., ge=1, le=MAX_ID),
    _user: Identity = Depends(require_anyone),
    db: QueryExecutor = Depends(get_db),
) -> Dict[str, Any]:
    return crud.get_survey(db, survey_id)


@router.post("/api/surveys/{survey_id}/response", status_code=201)
def surveys_respond(
    payload: ResponseIn,
    survey_id: int = Path(..., ge=1, le=MAX_ID),
    user: Identity = Depends(require_respondent),
    db: QueryExecutor = Depends(get_db),
) -> Dict[str, Any]:
    return crud.submit_response(
        db,
        survey_id=survey_id,
        user_id=user.id,
        answers=[a.model_dump() for a in payload.answers],
    )


@router.get("/api/surveys/{survey_id}/responses")
def surveys_responses(
    survey_id: int = Path(..., ge=1, le=MAX_ID),
    _user: Identity = Depends(require_staff),
    db: QueryExecutor = Depends(get_db),
) -> List[Dict[str, Any]]:
    return crud.list_responses(db, survey_id)


# -----------------------------
# App factory
# -----------------------------


def create_app(cfg: Optional[Config] = None, db: Optional[QueryExecutor] = None) -> FastAPI:
    """Build the API around one immutable Config and one QueryExecutor.

    With no arguments (the uvicorn factory path) the config is read from the
    environment; a missing signing secret outside DEV_MODE aborts startup here.
    """

    cfg = cfg or load_config()
    owns_db = db is None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        executor = db if db is not None else create_executor(cfg)
        app.state.cfg = cfg
        app.state.db = executor

        # Ensure schema exists.
        init_db(executor)

        # Bootstrap first admin if needed (only when users table is empty)
        boot = bootstrap_admin_if_needed(executor, cfg)
        if boot:
            _debug(f"Bootstrapped initial admin user: username={boot.get('username')} role={boot.get('role')}")
        if cfg.DEV_MODE:
            print("[api] WARNING: DEV_MODE is on; store errors are echoed to clients.", file=sys.stderr)
        try:
            yield
        finally:
            if owns_db:
                executor.close()

    app = FastAPI(title="Survey Platform", version=__version__, lifespan=lifespan)

    @app.middleware("http")
    async def set_security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    if cfg.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(cfg.cors_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.include_router(router)
    return app
