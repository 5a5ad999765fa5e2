"""System messages: a tagged union over the fixed message types."""

from __future__ import annotations

import time
import uuid
from typing import Annotated, Literal, Optional, Union

from pydantic import Field, TypeAdapter

from hybridqa.models.base import WireModel
from hybridqa.models.test_case import AutomationStep
from hybridqa.models.test_result import StepResult, VisualIssue, VisualScores

MessageType = Literal[
    "TEST_START",
    "VISUAL_ANALYSIS_REQUEST",
    "VISUAL_ANALYSIS_RESULT",
    "AUTOMATION_COMMAND",
    "AUTOMATION_RESULT",
    "ERROR",
    "TEST_COMPLETE",
]


class MessageMetadata(WireModel):
    source: Literal["claude", "automation", "orchestrator"]
    priority: Literal["high", "normal", "low"] = "normal"
    correlation_id: str = ""


# Payloads ------------------------------------------------------------------------

class TestStartPayload(WireModel):
    test_id: str
    name: str = ""


class VisualAnalysisRequestPayload(WireModel):
    test_id: str
    screenshot: str
    instructions: str = ""


class VisualAnalysisResultPayload(WireModel):
    test_id: str
    observations: list[str] = Field(default_factory=list)
    issues: list[VisualIssue] = Field(default_factory=list)
    metrics: VisualScores = Field(default_factory=VisualScores)


class AutomationCommandPayload(WireModel):
    test_id: Optional[str] = None
    step: AutomationStep


class AutomationResultPayload(WireModel):
    test_id: Optional[str] = None
    step: StepResult


class ErrorPayload(WireModel):
    message: str
    test_id: Optional[str] = None


class TestCompletePayload(WireModel):
    test_id: str
    result_id: str
    status: Literal["pass", "fail", "error"]


# Messages ------------------------------------------------------------------------

class _Message(WireModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))
    metadata: MessageMetadata


class TestStartMessage(_Message):
    type: Literal["TEST_START"] = "TEST_START"
    payload: TestStartPayload


class VisualAnalysisRequestMessage(_Message):
    type: Literal["VISUAL_ANALYSIS_REQUEST"] = "VISUAL_ANALYSIS_REQUEST"
    payload: VisualAnalysisRequestPayload


class VisualAnalysisResultMessage(_Message):
    type: Literal["VISUAL_ANALYSIS_RESULT"] = "VISUAL_ANALYSIS_RESULT"
    payload: VisualAnalysisResultPayload


class AutomationCommandMessage(_Message):
    type: Literal["AUTOMATION_COMMAND"] = "AUTOMATION_COMMAND"
    payload: AutomationCommandPayload


class AutomationResultMessage(_Message):
    type: Literal["AUTOMATION_RESULT"] = "AUTOMATION_RESULT"
    payload: AutomationResultPayload


class ErrorMessage(_Message):
    type: Literal["ERROR"] = "ERROR"
    payload: ErrorPayload


class TestCompleteMessage(_Message):
    type: Literal["TEST_COMPLETE"] = "TEST_COMPLETE"
    payload: TestCompletePayload


SystemMessage = Annotated[
    Union[
        TestStartMessage,
        VisualAnalysisRequestMessage,
        VisualAnalysisResultMessage,
        AutomationCommandMessage,
        AutomationResultMessage,
        ErrorMessage,
        TestCompleteMessage,
    ],
    Field(discriminator="type"),
]

system_message_adapter: TypeAdapter[SystemMessage] = TypeAdapter(SystemMessage)


def parse_message(data: dict) -> SystemMessage:
    """Validate a raw message dict into its typed variant."""
    return system_message_adapter.validate_python(data)


def orchestrator_metadata(correlation_id: str, priority: str = "normal") -> MessageMetadata:
    return MessageMetadata(source="orchestrator", priority=priority, correlation_id=correlation_id)
