"""FastAPI application entrypoint and HTTP controllers.

This module builds the StudyBuddy API application: logging, CORS, the
request-context middleware, error rendering, rate limiting and the
routers. Controllers are intentionally thin: they accept requests,
delegate to services, and return JSON responses.

Endpoints implemented here:
- POST /auth/register
- POST /auth/login
- GET /health

Mounted under `settings.API_PREFIX` (default `/api/v1`):
- /modules/...        catalog router (`routers/modules.py`)
- /notifications/...  notification router (`routers/notifications.py`)
"""

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
import json
import logging
import os
import time
import uuid
from .config import settings
from .database import create_db_and_tables, check_db_connection, get_session
from . import services, repositories
from .routers import modules, notifications
from .schemas import LoginIn, RegisterIn, TokenOut
from .utils.rate_limit import InMemoryRateLimiter

app = FastAPI(title="StudyBuddy API")
logger = logging.getLogger("studybuddy.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)
_api_rate_limiter = InMemoryRateLimiter()

# Wide-open CORS keeps local frontends (vite dev server, file://) working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    logged = request.url.path.startswith(settings.API_PREFIX)
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if logged:
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    """Render every HTTP error as `{"error": message}`."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report malformed query/path/body values as 400 with the first problem found."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{where}: {first.get('msg')}" if where else str(first.get("msg"))
    else:
        message = "invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    """Answer unexpected failures with a generic 500; the detail only goes to the log."""
    logger.error("unhandled error on %s %s: %r", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def _enforce_api_rate_limit(request: Request) -> None:
    """Per-client budget across the API, read from the environment on each call.

    `API_RATE_LIMIT_MAX_REQUESTS=0` disables the limiter.
    """
    default_max = "1000" if settings.ENV == "dev" else "100"
    max_requests = int(os.getenv("API_RATE_LIMIT_MAX_REQUESTS", default_max))
    if max_requests <= 0:
        return
    window = int(os.getenv("API_RATE_LIMIT_WINDOW_SECONDS", "900"))
    key = request.client.host if request.client else "unknown"
    allowed, retry_after = _api_rate_limiter.allow(key, max_requests, window)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many requests from this client, please try again later.",
            headers={"Retry-After": str(retry_after)},
        )


app.include_router(modules.router, prefix=settings.API_PREFIX, dependencies=[Depends(_enforce_api_rate_limit)])
app.include_router(notifications.router, prefix=settings.API_PREFIX, dependencies=[Depends(_enforce_api_rate_limit)])


@app.post('/auth/register')
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user (idempotent).

    Returns the existing user if the email is already registered to make
    the operation idempotent (useful for automation/tests).
    """
    auth = services.AuthService(db)
    existing = repositories.UserRepository(db).get_by_email(payload.email.strip().lower())
    if existing:
        return {'user_id': existing.user_id, 'email': existing.email}
    try:
        user = auth.register(
            payload.email,
            payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
            university=payload.university,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'user_id': user.user_id, 'email': user.email}


@app.post('/auth/login', response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a short-lived JWT token.

    The returned token contains `user_id` and `email` and is signed
    using the configured JWT secret.
    """
    auth = services.AuthService(db)
    token = auth.authenticate(payload.email, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return {'access_token': token}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    try:
        db_healthy = check_db_connection()
    except SQLAlchemyError:
        logger.exception("health check database probe failed")
        db_healthy = False
    return {"status": "ok" if db_healthy else "degraded",
            "database": "connected" if db_healthy else "disconnected"}
