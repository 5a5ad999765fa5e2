"""Visual oracle interface consumed by the scheduler."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from hybridqa.models.test_case import Expectations
from hybridqa.models.test_result import ComparisonResult, VisualAnalysis


@runtime_checkable
class VisualOracle(Protocol):
    """Judges screenshots against natural-language expectations.

    Only the shapes are fixed here: scores in the returned analysis are each
    bounded to [0, 100].
    """

    async def initialize(self) -> None: ...

    async def store_screenshot(self, data: str, owner_id: str) -> str: ...

    async def analyze(
        self, screenshot: str, instructions: str, expectations: Expectations,
    ) -> VisualAnalysis: ...

    async def compare(
        self, baseline: str, current: str, tolerance: float,
    ) -> ComparisonResult: ...

    async def evict_stale(self, max_age_seconds: float) -> int: ...

    async def cleanup(self) -> None: ...
