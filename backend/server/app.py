"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware and directory error handlers
- Initialize shared resources (signaling store, session directory)
- Run the ended-session purge loop for the app's lifetime
- Register routes
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import AppConfig
from directory.errors import (
    DirectoryError,
    HostNotAuthorized,
    JoinRejected,
    RegistrationNotFound,
    SessionNotFound,
    StoreError,
    describe_store_error,
)
from directory.firestore_store import FirestoreDocumentStore
from directory.service import SessionDirectory
from directory.store import DocumentStore, MemoryDocumentStore
from observability.logger import log_event
from signaling.store import MemorySignalingStore
from spec import ENDED_PURGE_INTERVAL_S

from server.routes import register_routes


_STATUS_BY_ERROR: tuple[tuple[type[DirectoryError], int], ...] = (
    (SessionNotFound, 404),
    (RegistrationNotFound, 404),
    (HostNotAuthorized, 403),
    (JoinRejected, 409),
)


def build_document_store(config: AppConfig) -> DocumentStore:
    """Build the directory backend selected by DIRECTORY_BACKEND."""
    if config.directory_backend == "firestore":
        return FirestoreDocumentStore(config.firebase_project_id)
    if config.directory_backend == "memory":
        return MemoryDocumentStore()
    raise ValueError(f"Unknown DIRECTORY_BACKEND: {config.directory_backend}")


async def _purge_loop(directory: SessionDirectory, interval_s: float) -> None:
    while True:
        try:
            await directory.purge_ended()
        except StoreError as exc:
            log_event({
                "event_type": "DIRECTORY_PURGE_FAILED",
                "code": exc.code,
                "message": describe_store_error(exc),
            })
        await asyncio.sleep(interval_s)


async def _directory_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    status_code = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break

    detail = describe_store_error(exc) if isinstance(exc, StoreError) else str(exc)
    if status_code == 500:
        log_event({
            "event_type": "DIRECTORY_REQUEST_FAILED",
            "exception": type(exc).__name__,
            "message": str(exc),
        })
    return JSONResponse(status_code=status_code, content={"detail": detail})


def create_app(config: AppConfig | None = None, *, purge_interval_s: float | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Passing config (and disabling the purge loop with purge_interval_s=0)
    is how tests build isolated apps.
    """
    config = config or AppConfig.load_from_env()
    interval = ENDED_PURGE_INTERVAL_S if purge_interval_s is None else purge_interval_s

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        purge_task = None
        if interval > 0:
            purge_task = asyncio.create_task(_purge_loop(app.state.directory, interval))
        try:
            yield
        finally:
            if purge_task is not None:
                purge_task.cancel()

    app = FastAPI(title="Podcast Signaling API", lifespan=lifespan)

    app.state.config = config
    app.state.signaling_store = MemorySignalingStore()
    app.state.directory = SessionDirectory(build_document_store(config))

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DirectoryError, _directory_error_handler)

    # Routes
    register_routes(app)

    return app
