"""FastAPI server: POST /commands plus health, metrics and job lookup."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from boardpilot import config
from boardpilot.agent.engine import CommandEngine
from boardpilot.agent.provider import GeminiProvider
from boardpilot.api.metrics import RouteMetrics
from boardpilot.api.rate_limit import RateLimiter
from boardpilot.errors import RateLimitedError
from boardpilot.storage.sqlite_store import SqliteStore
from boardpilot.tools.context import Viewport

# Configure logging on import, before anything else logs
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)

MAX_COMMAND_LENGTH = 1000
MAX_SELECTED_IDS = 50

rate_limiter = RateLimiter()
route_metrics = RouteMetrics()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    rate_limiter.start()
    try:
        yield
    finally:
        rate_limiter.stop()


app = FastAPI(title="Boardpilot", description="Command orchestration for a shared canvas", lifespan=lifespan)

# Lazy-initialized store and engine (created on first request)
_store: SqliteStore | None = None
_engine: CommandEngine | None = None


def _get_store() -> SqliteStore:
    global _store
    if _store is None:
        config.DATA_DIR.mkdir(parents=True, exist_ok=True)
        _store = SqliteStore(config.SQLITE_PATH)
        _store.init_db()
        logger.info("SQLite store: %s", config.SQLITE_PATH)
    return _store


def _get_engine() -> CommandEngine:
    global _engine
    if _engine is None:
        logger.info("Initializing command engine...")
        t0 = time.perf_counter()
        _engine = CommandEngine(
            store=_get_store(),
            provider=GeminiProvider(),
            rate_limiter=rate_limiter,
            metrics=route_metrics,
        )
        logger.info("Command engine ready (%.2fs)", time.perf_counter() - t0)
    return _engine


class ViewportModel(BaseModel):
    min_x: float
    min_y: float
    max_x: float
    max_y: float
    center_x: float
    center_y: float
    scale: float


class CommandRequest(BaseModel):
    command: str = Field(min_length=1, max_length=MAX_COMMAND_LENGTH)
    canvas_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    viewport: ViewportModel
    selected_ids: list[str] = Field(default_factory=list, max_length=MAX_SELECTED_IDS)
    job_id: str | None = None


class CommandResponse(BaseModel):
    success: bool
    message: str
    objects_created: list[str]
    objects_updated: list[str]
    objects_deleted: list[str]
    focus: dict[str, float] | None = None
    model: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    tool_calls_count: int
    duration_ms: int
    route_source: str | None = None
    route_confidence: float | None = None
    route_reason: str | None = None


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/commands", response_model=CommandResponse)
def submit_command(req: CommandRequest):
    logger.info("POST /commands canvas=%s user=%s command=%r", req.canvas_id, req.user_id, req.command[:120])
    t0 = time.perf_counter()
    try:
        result = _get_engine().submit_command(
            command=req.command.strip(),
            canvas_id=req.canvas_id,
            user_id=req.user_id,
            viewport=Viewport(**req.viewport.model_dump()),
            selected_ids=req.selected_ids,
            job_id=req.job_id,
        )
    except RateLimitedError as e:
        return JSONResponse(
            status_code=429,
            content={"detail": str(e.error), "retry_after_seconds": e.retry_after_seconds},
            headers={"Retry-After": str(e.retry_after_seconds)},
        )
    except Exception as e:
        logger.exception("Command error after %.2fs", time.perf_counter() - t0)
        raise HTTPException(status_code=500, detail=str(e))
    return CommandResponse(**result.to_dict())


@app.get("/metrics/routes")
def metrics_routes() -> dict[str, Any]:
    return route_metrics.stats()


@app.get("/canvases/{canvas_id}/jobs/{job_id}")
def get_job(canvas_id: str, job_id: str) -> dict[str, Any]:
    job = _get_store().load_job(canvas_id, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    job.pop("plan_json", None)
    job.pop("response_json", None)
    return job


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
