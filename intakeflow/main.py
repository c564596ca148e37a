# intakeflow/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from intakeflow.api import router as api_router
from intakeflow.config import Settings, get_settings
from intakeflow.db import Database
from intakeflow.errors import IntakeError, InternalServerError
from intakeflow.intake import IntakeStateMachine, MessageDeduplicator
from intakeflow.llm import LLMClient, OpenAILLMClient
from intakeflow.services import (
    AppointmentService,
    ConnectionService,
    IntakeSessionService,
    NotificationDispatcher,
    SessionResetTransaction,
)

logger = logging.getLogger(__name__)


def _default_llm_client(settings: Settings) -> Optional[LLMClient]:
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set; intake turns will use fallback replies")
        return None
    return OpenAILLMClient(timeout=settings.llm_timeout_seconds)


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    llm_client: Optional[LLMClient] = None,
) -> FastAPI:
    settings = settings or get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    database = database or Database(settings.database_url, echo=settings.database_echo)
    if llm_client is None:
        llm_client = _default_llm_client(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting intakeflow API...")
        database.create_all()
        yield
        logger.info("Shutting down intakeflow API...")
        database.dispose()

    app = FastAPI(title="intakeflow API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # for dev; tighten in prod
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    notifier = NotificationDispatcher()
    machine = IntakeStateMachine(
        llm_client,
        timeout=settings.llm_timeout_seconds,
        max_consecutive_errors=settings.max_consecutive_errors,
    )

    app.state.settings = settings
    app.state.database = database
    app.state.intake_service = IntakeSessionService(
        database,
        machine,
        deduplicator=MessageDeduplicator(settings.dedup_window_seconds),
        notifier=notifier,
    )
    app.state.reset_transaction = SessionResetTransaction(database, notifier)
    app.state.connection_service = ConnectionService(database, notifier)
    app.state.appointment_service = AppointmentService(database, notifier)

    @app.exception_handler(IntakeError)
    async def intake_error_handler(request: Request, exc: IntakeError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        error = InternalServerError("An unexpected error occurred.")
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.get("/health")
    def health_check():
        ok = database.health_check()
        return JSONResponse(
            status_code=200 if ok else 503,
            content={
                "status": "ok" if ok else "degraded",
                "service": "intakeflow",
                "dependencies": {
                    "database": "connected" if ok else "error",
                    "llm": "configured" if llm_client is not None else "not configured",
                },
            },
        )

    @app.get("/")
    def root():
        return {"message": "intakeflow API is running"}

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()
