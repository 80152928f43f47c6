from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from collabnotes.api import assignment_rules, groups, messages, tasks
from collabnotes.websocket import router as websocket_router
from collabnotes.websocket.manager import manager
from collabnotes.core.config import settings
from collabnotes.core.errors import DomainError, field_errors
from collabnotes.db.database import engine
from collabnotes.db.init_db import init
import os
import logging
import cleanup

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ===== startup =====
    # only one process should run DDL when several workers start together
    if os.environ.get("SKIP_DB_INIT") != "1":
        try:
            init()
        except Exception as e:
            logger.error(f"Database init failed: {e}")
            # keep starting, another worker may have created the tables

    scheduler = None
    if os.environ.get("SKIP_SCHEDULER") != "1":
        scheduler = cleanup.start_scheduler()

    yield
    # ===== shutdown =====
    if scheduler is not None:
        cleanup.shutdown_scheduler(scheduler)


app = FastAPI(
    title="CollabNotes Messaging",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS_LIST,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    body = {"detail": exc.detail, "code": exc.code}
    if exc.errors:
        body["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "Validation failed", "code": "ValidationError", "errors": field_errors(exc.errors())},
    )


# Routers
app.include_router(messages.router, prefix="/api/messages", tags=["Messages"])
app.include_router(groups.router, prefix="/api/groups", tags=["Groups"])
app.include_router(tasks.router, prefix="/api/tasks", tags=["Tasks"])
app.include_router(assignment_rules.router, prefix="/api/assignment-rules", tags=["Assignment rules"])
app.include_router(websocket_router.router, tags=["WebSocket"])


@app.get("/")
def root():
    return {"msg": "CollabNotes messaging service is running"}


@app.get("/health")
def health_check():
    """Health endpoint for monitoring."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "database": "connected",
            "websocket_connections": len(manager.active_connections)
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected", "error": str(e)},
        )
