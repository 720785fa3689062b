# --- imports (top of healthwallet/app.py) ---
import os
import sys
import time
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

# Resolve paths early so env vars are available before importing the app modules
BASE_DIR = Path(__file__).resolve().parent
ROOT_DIR = BASE_DIR.parent
ENV_PATH = BASE_DIR / ".env"

if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

load_dotenv(ENV_PATH, override=True)

from healthwallet.middleware.rate_limit import limiter  # noqa: E402
from healthwallet.middleware.tracing import TracingMiddleware  # noqa: E402
from healthwallet.models import init_db  # noqa: E402
from healthwallet.routers.profile import router as profile_router  # noqa: E402
from healthwallet.routes import admin_routes, records_routes  # noqa: E402
from healthwallet.utils.exceptions import (  # noqa: E402
    DomainError,
    envelope,
    handle_domain_error,
    handle_http_exception,
    handle_unhandled_exception,
    handle_validation_error,
)
from healthwallet.utils.logging_config import configure_logging  # noqa: E402
from healthwallet.worker import RECORD_WORKERS, WorkerPool  # noqa: E402

app = FastAPI(title="HealthWallet Records", version="0.1.0")

logger = configure_logging()

# ---- middleware ----
app.add_middleware(TracingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip()
        for o in (os.getenv("CORS_ORIGINS") or "http://localhost:5173,http://127.0.0.1:5173").split(",")
        if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---- rate limiting (slowapi) ----
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    retry_after = 60
    reset_time = getattr(exc, "reset_time", None)
    if reset_time:
        retry_after = max(1, int(reset_time - time.time()))
    logger.info({
        "function": "rate_limit",
        "path": str(request.url.path),
        "client": get_remote_address(request),
    })
    return envelope(
        429,
        "TOO_MANY_REQUESTS",
        "Too many requests. Please wait a bit and try again.",
        headers={"Retry-After": str(retry_after)},
    )


# ---- error envelope ----
app.add_exception_handler(HTTPException, handle_http_exception)
app.add_exception_handler(DomainError, handle_domain_error)
app.add_exception_handler(RequestValidationError, handle_validation_error)
app.add_exception_handler(Exception, handle_unhandled_exception)


# ---- lifecycle ----
@app.on_event("startup")
def _startup():
    init_db()
    if RECORD_WORKERS > 0:
        pool = WorkerPool(workers=RECORD_WORKERS)
        pool.start()
        app.state.worker_pool = pool


@app.on_event("shutdown")
def _shutdown():
    pool = getattr(app.state, "worker_pool", None)
    if pool is not None:
        pool.stop()


# ---- routers ----
app.include_router(records_routes.router)
app.include_router(profile_router)
app.include_router(admin_routes.router)


@app.get("/health")
def health():
    return {"status": "ok"}
