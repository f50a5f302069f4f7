from contextlib import asynccontextmanager
import logging
import uuid

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import auth, chat, chats, health, phi, proxy, visuals
from app.api.deps import get_current_user
from app.config import settings
from app.database import close_db, init_db
from app.logging import configure_logging, execution_id_var, request_id_var

configure_logging()
logger = logging.getLogger("veston")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    logger.info("Starting Veston API")
    try:
        await init_db()
        logger.info("Database initialized")
    except Exception:
        logger.exception("Failed to initialize database")
        raise

    yield

    logger.info("Shutting down Veston API")
    try:
        await close_db()
        logger.info("Database connections closed")
    except Exception:
        logger.exception("Error closing database")
    logger.info("Veston API shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    # Veston API

    Chat backend that routes radiology questions to n8n workflow webhooks.

    ## Features

    - **Chat** - Persistent chats with coreference rewriting of follow-ups
    - **Routing** - Workflow classification with explicit user overrides
    - **Replies** - Reconciled workflow replies with sources and charts
    - **PHI placeholders** - Identifiers tokenized before they reach a model
    - **Files** - Allow-listed file proxy and Excel preview
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id", str(uuid.uuid4()))
    request_id_var.set(request_id)
    execution_id_var.set(request.headers.get("execution-id"))
    response = await call_next(request)
    response.headers.setdefault("X-Request-Id", request_id)
    return response

@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    response.headers.setdefault(
        "Content-Security-Policy",
        "default-src 'none'; frame-ancestors 'none'; base-uri 'none'",
    )
    if not settings.debug:
        response.headers.setdefault(
            "Strict-Transport-Security",
            "max-age=63072000; includeSubDomains; preload",
        )
    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=["execution-id", "X-Request-Id"],
)

app.include_router(health.router)
app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(phi.router, prefix=settings.api_prefix)
app.include_router(
    chat.router,
    prefix=settings.api_prefix,
    dependencies=[Depends(get_current_user)],
)
app.include_router(
    chats.router,
    prefix=settings.api_prefix,
    dependencies=[Depends(get_current_user)],
)
app.include_router(
    visuals.router,
    prefix=settings.api_prefix,
    dependencies=[Depends(get_current_user)],
)
app.include_router(
    proxy.router,
    prefix=settings.api_prefix,
    dependencies=[Depends(get_current_user)],
)


def error_response(
    status_code: int,
    message,
    error_type: str,
    headers: dict[str, str] | None = None,
    **extra,
) -> JSONResponse:
    error = {
        "message": message,
        "status_code": status_code,
        "type": error_type,
        **extra,
        "request_id": request_id_var.get(),
    }
    execution_id = execution_id_var.get()
    if execution_id:
        error["execution_id"] = execution_id
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


@app.exception_handler(HTTPException)
async def http_exception_handler(_request: Request, exc: HTTPException):
    return error_response(
        exc.status_code,
        exc.detail,
        "http_error",
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    return error_response(422, "Validation error", "validation_error", details=exc.errors())


@app.exception_handler(Exception)
async def unhandled_exception_handler(_request: Request, _exc: Exception):
    logger.exception("Unhandled error")
    return error_response(500, "Internal server error", "server_error")
