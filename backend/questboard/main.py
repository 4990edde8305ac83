"""FastAPI application entry point.

This module wires the API routers in front of the transactional core,
configures logging and startup, and translates the core's typed errors
into HTTP responses.
"""

import os
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from questboard.routes import (
    children,
    quests,
    instances,
    ledger,
    rewards,
    invitations,
    admin,
)
from questboard.database import create_db_and_tables
from questboard.errors import ErrorKind, QuestboardError

# The log level can be controlled with an environment variable so
# deployments can adjust verbosity without code changes.
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL))
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.EXPIRED: 410,
    ErrorKind.ALREADY_USED: 409,
    ErrorKind.INSUFFICIENT_BALANCE: 400,
    ErrorKind.TRANSIENT_STORE_FAILURE: 503,
    ErrorKind.DUPLICATE_EFFECT: 409,
}

app = FastAPI(title="Questboard")

# CORS setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup():
    await create_db_and_tables()


app.include_router(children.router)
app.include_router(quests.router)
app.include_router(instances.router)
app.include_router(ledger.router)
app.include_router(rewards.router)
app.include_router(invitations.router)
app.include_router(admin.router)


@app.get("/")
async def read_root():
    return {"message": "Welcome to Questboard API"}


@app.exception_handler(QuestboardError)
async def questboard_error_handler(request: Request, exc: QuestboardError):
    status_code = ERROR_STATUS.get(exc.kind, 400)
    if status_code >= 500:
        logger.warning("%s on %s: %s", exc.kind.value, request.url.path, exc.message)
    content = {"code": exc.kind.value, "message": exc.message}
    current_state = getattr(exc, "current_state", None)
    if current_state is not None:
        content["current_state"] = current_state
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=422,
        content={"code": "invalid_input", "message": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler that logs the stack trace once."""
    logger.exception("Unhandled error during request %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "code": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )
