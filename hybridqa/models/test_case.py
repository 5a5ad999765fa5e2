"""Test definitions accepted by the orchestrator."""

from __future__ import annotations

import uuid
from typing import Literal, Optional

from pydantic import Field

from hybridqa.models.base import WireModel

StepAction = Literal["click", "type", "hover", "scroll", "wait"]


class AutomationStep(WireModel):
    action: StepAction
    target: Optional[str] = None  # CSS selector; required for click/type/hover/scroll
    value: Optional[str] = None  # required for type
    timeout: Optional[int] = None  # ms, used by wait (defaults to 1000)


class Target(WireModel):
    url: str = Field(min_length=1)
    base_url: Optional[str] = None


class Expectations(WireModel):
    layout: list[str]
    design: list[str]
    accessibility: list[str]


class BaselineSpec(WireModel):
    baseline: str = ""
    tolerance: float = Field(default=0.1, ge=0.0, le=1.0)


class VisualSpec(WireModel):
    instructions: str = Field(min_length=1)
    expectations: Expectations
    screenshots: BaselineSpec = Field(default_factory=BaselineSpec)


class Assertions(WireModel):
    visual: bool = False
    functional: bool = False
    performance: bool = False


class AutomationSpec(WireModel):
    steps: list[AutomationStep]
    assertions: Assertions


class TestCaseCreate(WireModel):
    """Request body of ``POST /test``; the server assigns the id."""

    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    target: Target
    visual: VisualSpec
    automation: AutomationSpec

    def with_id(self, test_id: str | None = None) -> "TestCase":
        return TestCase(id=test_id or str(uuid.uuid4()), **self.model_dump())


class TestCase(WireModel):
    """An enqueued test. Treated as immutable once queued."""

    id: str
    name: str
    description: str
    target: Target
    visual: VisualSpec
    automation: AutomationSpec
