"""FastAPI application wiring for the orchestrator."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from hybridqa.errors import PersistenceError, ValidationError
from hybridqa.models.config import OrchestratorConfig
from hybridqa.orchestrator import Orchestrator

from .routes import router

logger = logging.getLogger(__name__)


def _format_errors(errors) -> str:
    parts = []
    for err in errors:
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


async def _housekeeping(orchestrator: Orchestrator, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await orchestrator.evict_stale_screenshots()
        except Exception:
            logger.exception("Screenshot housekeeping failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    orchestrator: Orchestrator = app.state.orchestrator
    await orchestrator.initialize()
    housekeeping = asyncio.create_task(
        _housekeeping(orchestrator, orchestrator.config.housekeeping_interval_seconds)
    )
    logger.info("Testing system ready")
    try:
        yield
    finally:
        logger.info("Shutting down. Cleaning up...")
        housekeeping.cancel()
        try:
            with contextlib.suppress(asyncio.CancelledError):
                await housekeeping
        finally:
            await orchestrator.cleanup()


def create_app(
    config: OrchestratorConfig | None = None,
    orchestrator: Orchestrator | None = None,
) -> FastAPI:
    """Build the HTTP app around an orchestrator (one is created from config if omitted)."""
    config = config or OrchestratorConfig()
    app = FastAPI(title="Hybrid UI Test Orchestrator", lifespan=lifespan)
    app.state.orchestrator = orchestrator or Orchestrator(config)
    app.include_router(router)

    @app.exception_handler(RequestValidationError)
    async def _request_invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = f"Invalid request body: {_format_errors(exc.errors())}"
        logger.info("Rejected %s %s: %s", request.method, request.url.path, error)
        return JSONResponse(status_code=400, content={"success": False, "error": error})

    @app.exception_handler(PydanticValidationError)
    async def _model_invalid(request: Request, exc: PydanticValidationError) -> JSONResponse:
        error = f"Invalid request body: {_format_errors(exc.errors())}"
        logger.info("Rejected %s %s: %s", request.method, request.url.path, error)
        return JSONResponse(status_code=400, content={"success": False, "error": error})

    @app.exception_handler(json.JSONDecodeError)
    async def _malformed_json(request: Request, exc: json.JSONDecodeError) -> JSONResponse:
        return JSONResponse(status_code=400,
                            content={"success": False, "error": f"Malformed JSON: {exc}"})

    @app.exception_handler(ValidationError)
    async def _invalid(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})

    @app.exception_handler(PersistenceError)
    async def _persistence(request: Request, exc: PersistenceError) -> JSONResponse:
        logger.error("Persistence failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    return app
