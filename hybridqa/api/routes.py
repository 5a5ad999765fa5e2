"""HTTP routes: queue tests, read state, record screenshots, broadcast messages."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from hybridqa.errors import ValidationError
from hybridqa.models.base import WireModel
from hybridqa.models.messages import parse_message
from hybridqa.models.test_case import TestCaseCreate
from hybridqa.models.test_result import Screenshot, ScreenshotMetadata, now_ms
from hybridqa.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["orchestrator"])


def get_orchestrator(request: Request) -> Orchestrator:
    """FastAPI dependency returning the app's orchestrator."""
    return request.app.state.orchestrator


OrchestratorDep = Depends(get_orchestrator)


def _failure(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


class ScreenshotCreate(WireModel):
    test_id: str
    data: str
    metadata: ScreenshotMetadata


@router.post("/test")
async def queue_test(payload: TestCaseCreate, orchestrator: Orchestrator = OrchestratorDep):
    test = payload.with_id()
    logger.info("Queueing test: %s (%s)", test.name, test.id)
    try:
        await orchestrator.queue_test(test)
    except Exception:
        logger.exception("Error queueing test %s", test.id)
        return _failure(500, "Failed to queue test")
    return {"success": True, "testId": test.id}


@router.get("/state")
async def get_state(orchestrator: Orchestrator = OrchestratorDep):
    try:
        snapshot = await orchestrator.get_state()
        return JSONResponse(content=snapshot.to_wire())
    except Exception:
        logger.exception("Error getting state")
        return _failure(500, "Failed to get state")


@router.post("/screenshot")
async def add_screenshot(payload: ScreenshotCreate, orchestrator: Orchestrator = OrchestratorDep):
    screenshot = Screenshot(
        id=str(uuid.uuid4()),
        test_id=payload.test_id,
        data=payload.data,
        timestamp=now_ms(),
        metadata=payload.metadata,
    )
    try:
        await orchestrator.add_screenshot(screenshot)
    except Exception:
        logger.exception("Error adding screenshot for %s", payload.test_id)
        return _failure(500, "Failed to add screenshot")
    return {"success": True, "screenshotId": screenshot.id}


@router.post("/message")
async def broadcast_message(request: Request, orchestrator: Orchestrator = OrchestratorDep):
    body = await request.json()
    if not isinstance(body, dict):
        raise ValidationError("Message body must be a JSON object")
    # Identity and time are always assigned here
    body = {k: v for k, v in body.items() if k not in ("id", "timestamp")}
    message = parse_message(body)
    try:
        await orchestrator.broadcast_message(message)
    except Exception:
        logger.exception("Error broadcasting message %s", message.id)
        return _failure(500, "Failed to broadcast message")
    return {"success": True, "messageId": message.id}
