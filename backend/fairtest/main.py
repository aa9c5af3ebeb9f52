"""
FairTest local service - FastAPI application entry point.

This module:
1. Initializes the FastAPI app with CORS middleware
2. Sets up structured JSON logging
3. Implements request ID middleware (X-Request-ID header)
4. Maps pipeline errors to HTTP responses
5. Registers all API route handlers

Layout:
- routes/: API endpoint handlers
- models/: SQLAlchemy ORM models (local identities, reference ledger)
- services/: hash chain, identity manager, auto evaluator, ledger, assembler
- schemas.py: pydantic data models
- errors.py: error taxonomy
"""

import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fairtest.errors import (
    EntropyUnavailable, FairTestError, InvalidIdentity, LedgerError,
    PrivacyViolation, RecordNotFound, StorageUnavailable,
)
from fairtest.logging_config import (
    setup_logging, get_logger, log_with_context,
    request_id_var, generate_request_id
)
from fairtest.routes import evaluations, exams, submissions
from fairtest.routes.dependencies import close_assembler
from fairtest.database import DATABASE_URL, create_tables

# ──────────────────────────────────────────────────────────────
# Initialize structured logging BEFORE anything else
# ──────────────────────────────────────────────────────────────
setup_logging()
logger = get_logger("http")

# Auto-create tables for SQLite local development
if DATABASE_URL.startswith("sqlite"):
    logger.info("Using SQLite, creating tables directly")
    create_tables()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Shutdown: release the ledger client (HTTP connection pool)
    await close_assembler()


app = FastAPI(
    title="FairTest",
    description=(
        "Anonymous exam identities (UID -> UID_HASH -> FINAL_HASH), privacy-audited "
        "submissions, and deterministic auto-grading with manual score merging."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"]
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """
    Generate a request ID for every HTTP request, expose it in the
    X-Request-ID header and log request start and completion.

    Query params and bodies are not logged: they may carry wallet addresses.
    """
    req_id = generate_request_id()
    request_id_var.set(req_id)

    start_time = time.time()

    log_with_context(logger, "INFO",
        f"Request started: {request.method} {request.url.path}",
        context={"request_id": req_id},
        extra_data={
            "ip": request.client.host if request.client else "unknown",
            "user_agent": request.headers.get("user-agent", "")
        })

    response = await call_next(request)

    duration_ms = (time.time() - start_time) * 1000
    response.headers["X-Request-ID"] = req_id

    log_with_context(logger, "INFO",
        f"Request completed: {request.method} {request.url.path} → {response.status_code}",
        context={"request_id": req_id},
        extra_data={
            "duration_ms": round(duration_ms, 2),
            "status_code": response.status_code
        })

    return response


# ──────────────────────────────────────────────────────────────
# Error mapping
#
# Every pipeline error carries a user-facing message; the class
# decides the status code.
# ──────────────────────────────────────────────────────────────
ERROR_STATUS = [
    (RecordNotFound, 404),
    (PrivacyViolation, 422),
    (InvalidIdentity, 400),
    (EntropyUnavailable, 503),
    (StorageUnavailable, 503),
    (LedgerError, 502),
]


@app.exception_handler(FairTestError)
async def fairtest_error_handler(request: Request, exc: FairTestError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    log_with_context(logger, "ERROR" if status_code >= 500 else "WARNING",
        "{} on {} {}".format(type(exc).__name__, request.method, request.url.path),
        extra_data={"status_code": status_code})
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": exc.message}
    )


app.include_router(exams.router, tags=["Exams"])
app.include_router(submissions.router, tags=["Students"])
app.include_router(evaluations.router, tags=["Evaluators"])


@app.get("/health", tags=["Health"])
def health_check():
    return {"status": "healthy", "service": "fairtest", "version": "1.0.0"}
