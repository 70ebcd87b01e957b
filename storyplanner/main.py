from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from storyplanner.api.v1.router import api_router
from storyplanner.core.exceptions import (
    AppError,
    BackendError,
    ConfigurationError,
    ContentExtractionError,
    EmptyPlanError,
    EmptySourceError,
    EntityNotFoundError,
    InvalidImageFormatError,
    NoSourceError,
    OversizedInputError,
    UnsupportedFileError,
    WorkflowBusyError,
)
from storyplanner.core.gemini_factory import build_gemini_client
from storyplanner.core.logging import configure_logging
from storyplanner.core.metrics import get_metrics_payload
from storyplanner.core.request_context import reset_request_id, set_request_id
from storyplanner.core.settings import settings
from storyplanner.services.session_store import SessionStore
from storyplanner.services.workflow import Workflow


logger = logging.getLogger("storyplanner")

# First match wins, so subclasses come before their bases.
_STATUS_BY_ERROR: list[tuple[type[AppError], int]] = [
    (EntityNotFoundError, 404),
    (WorkflowBusyError, 409),
    (UnsupportedFileError, 422),
    (NoSourceError, 400),
    (EmptySourceError, 400),
    (OversizedInputError, 400),
    (InvalidImageFormatError, 400),
    (ContentExtractionError, 400),
    (EmptyPlanError, 502),
    (BackendError, 502),
    (ConfigurationError, 500),
]


def status_for_error(exc: AppError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def _is_polling_request(method: str, path: str) -> bool:
    return method == "GET" and path == "/v1/session"


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_file)

    store = SessionStore(settings.state_file)
    workflow = Workflow(store, client_factory=build_gemini_client)
    app.state.workflow = workflow
    logger.info("session store ready", extra={"state_file": settings.state_file})
    try:
        yield
    finally:
        await workflow.shutdown()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    token = set_request_id(request_id)
    start = time.perf_counter()
    try:
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request_failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": duration_ms,
                },
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        request_logger = logger.debug if _is_polling_request(request.method, request.url.path) else logger.info
        request_logger(
            "request_complete",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        response.headers["x-request-id"] = request_id
        return response
    finally:
        reset_request_id(token)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    request_id = getattr(request.state, "request_id", None)
    status_code = status_for_error(exc)
    if status_code >= 500:
        logger.error("request error type=%s message=%s", type(exc).__name__, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.detail, "request_id": request_id},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "request_id": request_id},
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/metrics")
def metrics_endpoint():
    return PlainTextResponse(get_metrics_payload(), media_type="text/plain; version=0.0.4; charset=utf-8")


app.include_router(api_router)
