"""
Context validation for candidate matches
Rejects matches whose size or shape does not fit the element category
"""

import logging
from typing import Optional

import numpy as np

from infrastructure.utils.raster_io import ink_mask
from services.pipeline_contracts import ElementCategory, Match
from services.takeoff_config import ContextBoundsConfig

logger = logging.getLogger(__name__)


class ContextValidator:
    """Size bounds per category plus wall and opening shape checks"""

    def __init__(self, config: Optional[ContextBoundsConfig] = None, ink_luma_threshold: float = 240.0):
        self.config = config or ContextBoundsConfig()
        self.ink_luma_threshold = ink_luma_threshold

    def is_valid(self, match: Match, category, region: Optional[np.ndarray] = None) -> bool:
        """
        Validate a candidate match

        Args:
            match: Candidate box
            category: ElementCategory or its string value
            region: RGB pixels of the match box (shape checks are skipped without it)
        """
        category = ElementCategory.normalize(category)
        if not self.size_in_bounds(match, category):
            return False
        if region is None:
            return True
        if category == ElementCategory.WALL:
            return self.has_consistent_thickness(region)
        if category == ElementCategory.OPENING:
            return self.has_framed_border(region)
        return True

    def size_in_bounds(self, match: Match, category: ElementCategory) -> bool:
        low, high = self.config.bounds_for(category.value)
        return low <= match.width <= high and low <= match.height <= high

    def thickness_variation(self, region: np.ndarray) -> float:
        """
        Coefficient of variation of ink thickness along the run

        A horizontal run (wider than tall) is sliced into columns, a vertical one into rows.
        Thickness of a slice is the span from its first to its last ink pixel, so hatched
        and cross-hatched fills measure the same as solid ones; empty slices are skipped.
        """
        mask = ink_mask(region, self.ink_luma_threshold)
        h, w = mask.shape
        slices = mask.T if w >= h else mask
        slices = slices[slices.any(axis=1)]
        if slices.size == 0:
            return float('inf')

        first = slices.argmax(axis=1)
        last = slices.shape[1] - 1 - slices[:, ::-1].argmax(axis=1)
        thickness = (last - first + 1).astype(np.float64)
        return float(thickness.std() / thickness.mean())

    def has_consistent_thickness(self, region: np.ndarray) -> bool:
        variation = self.thickness_variation(region)
        valid = variation < self.config.max_wall_thickness_variation
        if not valid:
            logger.debug(f"Wall candidate rejected: thickness variation {variation:.3f}")
        return valid

    def has_framed_border(self, region: np.ndarray) -> bool:
        """Openings are framed: enough ink along at least opening_min_sides borders"""
        mask = ink_mask(region, self.ink_luma_threshold)
        h, w = mask.shape
        strip = max(1, min(h, w) // 10)
        sides = (mask[:strip, :], mask[h - strip:, :], mask[:, :strip], mask[:, w - strip:])
        covered = sum(1 for side in sides if side.size and side.mean() >= self.config.opening_side_coverage)
        valid = covered >= self.config.opening_min_sides
        if not valid:
            logger.debug(f"Opening candidate rejected: {covered} framed sides")
        return valid
