"""Visual oracle backed by Claude's image understanding."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import time
from pathlib import Path
from typing import Any

from hybridqa.ai.client import AIClient
from hybridqa.ai.prompts.visual_analysis import (
    VISUAL_ANALYSIS_SYSTEM_PROMPT,
    build_visual_analysis_prompt,
)
from hybridqa.errors import BackendUnavailableError
from hybridqa.models.test_case import Expectations
from hybridqa.models.test_result import (
    ComparisonResult,
    Coordinates,
    IssueLocation,
    VisualAnalysis,
    VisualIssue,
    VisualScores,
)

from .image_diff import compare_images

logger = logging.getLogger(__name__)

_SEVERITIES = ("critical", "major", "minor")


def _clamp_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(100.0, score))


def _int_or_zero(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_analysis(data: dict[str, Any], screenshot_ref: str) -> VisualAnalysis:
    """Build a VisualAnalysis from the model's JSON, tolerating loose output."""
    issues: list[VisualIssue] = []
    for raw in data.get("issues") or []:
        if not isinstance(raw, dict) or not raw.get("description"):
            continue
        severity = str(raw.get("severity", "minor")).lower()
        if severity not in _SEVERITIES:
            severity = "minor"
        location = raw.get("location") or {}
        coords = location.get("coordinates") or {}
        issues.append(VisualIssue(
            severity=severity,
            description=str(raw["description"]),
            recommendation=str(raw.get("recommendation") or ""),
            location=IssueLocation(
                selector=str(location.get("selector") or ""),
                screenshot=screenshot_ref,
                coordinates=Coordinates(
                    x=_int_or_zero(coords.get("x")), y=_int_or_zero(coords.get("y")),
                ),
            ),
        ))

    metrics = data.get("metrics") or {}
    return VisualAnalysis(
        observations=[str(o) for o in data.get("observations") or []],
        issues=issues,
        metrics=VisualScores(
            accessibility=_clamp_score(metrics.get("accessibility")),
            design_consistency=_clamp_score(metrics.get("designConsistency")),
            layout_accuracy=_clamp_score(metrics.get("layoutAccuracy")),
        ),
    )


class ClaudeVisualOracle:
    """Stores screenshots on disk and asks Claude to review them."""

    def __init__(
        self,
        screenshot_dir: str | Path,
        ai_client: AIClient | None = None,
        retention_seconds: float = 24 * 3600,
    ):
        self.screenshot_dir = Path(screenshot_dir)
        self.ai_client = ai_client
        self.retention_seconds = retention_seconds

    async def initialize(self) -> None:
        self.screenshot_dir.mkdir(parents=True, exist_ok=True)
        if self.ai_client is None:
            logger.warning("No AI client configured; visual analysis requests will fail")

    async def store_screenshot(self, data: str, owner_id: str) -> str:
        """Write a base64 screenshot to disk and return its path."""
        digest = hashlib.md5(data.encode("ascii")).hexdigest()
        path = self.screenshot_dir / f"{owner_id}_{digest}.png"
        image = base64.b64decode(data)
        self.screenshot_dir.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_bytes, image)
        logger.debug("Stored screenshot for %s at %s", owner_id, path)
        return str(path)

    async def analyze(
        self, screenshot: str, instructions: str, expectations: Expectations,
    ) -> VisualAnalysis:
        if self.ai_client is None:
            raise BackendUnavailableError("Visual analysis unavailable: no AI client configured")
        image = await asyncio.to_thread(Path(screenshot).read_bytes)
        image_b64 = base64.b64encode(image).decode("ascii")
        data = await asyncio.to_thread(
            self.ai_client.complete_with_image_json,
            VISUAL_ANALYSIS_SYSTEM_PROMPT,
            build_visual_analysis_prompt(instructions, expectations),
            image_b64,
        )
        analysis = parse_analysis(data, screenshot)
        logger.info("Visual analysis of %s: %d observations, %d issues",
                    Path(screenshot).name, len(analysis.observations), len(analysis.issues))
        return analysis

    async def compare(self, baseline: str, current: str, tolerance: float) -> ComparisonResult:
        baseline_path = Path(baseline)
        if not baseline_path.exists():
            logger.warning("Baseline image missing: %s; treating as match", baseline_path)
            return ComparisonResult(matches=True)
        return await asyncio.to_thread(compare_images, baseline_path, Path(current), tolerance)

    async def evict_stale(self, max_age_seconds: float) -> int:
        """Delete stored screenshots older than ``max_age_seconds``."""
        if not self.screenshot_dir.exists():
            return 0
        now = time.time()
        removed = 0
        for path in self.screenshot_dir.iterdir():
            if not path.is_file():
                continue
            if now - path.stat().st_mtime > max_age_seconds:
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info("Evicted %d stale screenshots from %s", removed, self.screenshot_dir)
        return removed

    async def cleanup(self) -> None:
        await self.evict_stale(self.retention_seconds)
