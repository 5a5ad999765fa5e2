"""Pixel comparison of a screenshot against its baseline."""

from __future__ import annotations

import logging
from pathlib import Path

from PIL import Image, ImageChops

from hybridqa.models.test_result import ComparisonResult, DiffRegion

logger = logging.getLogger(__name__)

# Channel difference above which a pixel counts as changed.
PIXEL_THRESHOLD = 40


def compare_images(
    baseline_path: Path,
    current_path: Path,
    tolerance: float,
    pixel_threshold: int = PIXEL_THRESHOLD,
) -> ComparisonResult:
    """Compare two images; they match when the changed-pixel ratio is within tolerance."""
    with Image.open(baseline_path) as b_img, Image.open(current_path) as c_img:
        baseline = b_img.convert("RGB")
        current = c_img.convert("RGB")

    if current.size != baseline.size:
        current = current.resize(baseline.size)

    total = baseline.width * baseline.height
    if total == 0:
        return ComparisonResult(matches=True)

    diff = ImageChops.difference(baseline, current)
    r, g, b = diff.split()
    strongest = ImageChops.lighter(ImageChops.lighter(r, g), b)
    mask = strongest.point(lambda v: 255 if v > pixel_threshold else 0)
    changed = mask.histogram()[255]

    diff_ratio = changed / total
    differences: list[DiffRegion] = []
    bbox = mask.getbbox()
    if bbox:
        left, top, right, bottom = bbox
        differences.append(DiffRegion(x=left, y=top, width=right - left, height=bottom - top))

    logger.debug("Pixel diff %s vs %s: %.2f%% (tolerance %.2f%%)",
                 baseline_path.name, current_path.name, diff_ratio * 100, tolerance * 100)
    return ComparisonResult(
        matches=diff_ratio <= tolerance,
        differences=differences,
        diff_ratio=round(diff_ratio, 6),
    )
