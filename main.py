"""
Slot coverage backend entry point.

Architecture:
- One Python process, one asyncio event loop
- Two peer services running concurrently:
  1. FastAPI (holder, admin and webhook HTTP API)
  2. APScheduler background ticks (reconciliation, reminders, pause sweep)

We use FastAPI's lifespan to manage startup/shutdown, so the scheduler
shares uvicorn's event loop and signal handling.

Run with: python main.py [--no-scheduler] [--dev] [--port PORT]
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

# Set up import paths before any local imports
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

# Load .env.local first (if exists), then .env as fallback
# .env.local is gitignored and used for local dev overrides
load_dotenv(project_root / ".env.local")
load_dotenv()

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vigil.config import check_required_env_vars, get_api_port, is_scheduler_disabled
from vigil.database import close_engine, is_configured
from vigil.errors import VigilValidationError
from vigil.notifications.scheduler import get_scheduler, init_scheduler, shutdown_scheduler

from vigil_api.routes.admin import router as admin_router
from vigil_api.routes.me import router as me_router
from vigil_api.routes.slots import router as slots_router
from vigil_api.routes.webhooks import router as webhooks_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SENTRY_DSN = os.environ.get("SENTRY_DSN")
if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=os.environ.get("ENVIRONMENT", "development"),
        traces_sample_rate=0.1,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager.

    Starts the background scheduler alongside the HTTP server and closes
    database connections on the way out.
    """
    ok, messages = check_required_env_vars()
    for message in messages:
        logger.warning(message)
    if not ok:
        raise RuntimeError("Missing required environment variables")

    if is_scheduler_disabled():
        logger.info("Scheduler disabled (--no-scheduler flag or DISABLE_SCHEDULER=true)")
    else:
        init_scheduler()

    yield

    logger.info("Shutting down peer services...")
    shutdown_scheduler()
    await close_engine()


app = FastAPI(
    title="Slot Coverage API",
    lifespan=lifespan,
)

# CORS configuration
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        FRONTEND_URL,
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(slots_router)
app.include_router(me_router)
app.include_router(admin_router)
app.include_router(webhooks_router)


@app.exception_handler(VigilValidationError)
async def validation_error_handler(request: Request, exc: VigilValidationError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.get("/health")
async def health():
    """Health check endpoint with detailed status."""
    scheduler = get_scheduler()
    return {
        "status": "healthy",
        "database_configured": is_configured(),
        "scheduler_running": bool(scheduler and scheduler.running),
    }


if __name__ == "__main__":
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="Slot Coverage Server")
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Disable background ticks (useful for running multiple dev servers)",
    )
    parser.add_argument(
        "--dev",
        action="store_true",
        help="Development mode: relaxed env checks, non-secure cookies",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=get_api_port(),
        help="Port to run the server on (default: API_PORT or 8000)",
    )
    args = parser.parse_args()

    # Set env vars so they persist across uvicorn reloads
    if args.no_scheduler:
        os.environ["DISABLE_SCHEDULER"] = "true"
    if args.dev:
        os.environ["DEV_MODE"] = "true"

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=args.port,
    )
