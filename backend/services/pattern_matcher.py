"""
Plan-wide pattern matching
Tiles the plan, slides a sample-sized window over each tile on a worker pool,
scores windows against a legend pattern, grows accepted windows to the ink
they touch and merges the matches
"""

import logging
import threading
from typing import List, Optional, Sequence, Tuple
from concurrent.futures import CancelledError, ThreadPoolExecutor

import cv2
import numpy as np

from infrastructure.utils.raster_io import PlanImage, ink_mask
from services.context_validator import ContextValidator
from services.pattern_classifier import LegendPattern
from services.pattern_similarity import compare_features
from services.pipeline_contracts import Match
from services.takeoff_config import TakeoffConfig
from services.texture_features import FeatureDescriptor, extract_features

logger = logging.getLogger(__name__)

Box = Tuple[int, int, int, int]


def tile_origins(length: int, tile_size: int, overlap: int) -> List[int]:
    """Origins stepping by tile - overlap until a tile reaches the far edge"""
    step = max(1, tile_size - overlap)
    origins = [0]
    while origins[-1] + tile_size < length:
        origins.append(origins[-1] + step)
    return origins


def window_positions(length: int, sample_size: int) -> List[int]:
    """Window offsets with step sample_size // 2, always including the last one that fits"""
    if length < sample_size:
        return []
    step = max(1, sample_size // 2)
    positions = list(range(0, length - sample_size + 1, step))
    if positions[-1] != length - sample_size:
        positions.append(length - sample_size)
    return positions


def overlap_ratio(a: Box, b: Box) -> float:
    """Intersection area over the smaller box area"""
    ax, ay, aw, ah = a
    bx, by, bw, bh = b
    ix = max(0, min(ax + aw, bx + bw) - max(ax, bx))
    iy = max(0, min(ay + ah, by + bh) - max(ay, by))
    smaller = min(aw * ah, bw * bh)
    if smaller <= 0:
        return 0.0
    return (ix * iy) / smaller


def deduplicate_matches(matches: Sequence[Match], threshold: float = 0.5) -> List[Match]:
    """
    Greedy overlap suppression

    Matches are visited by confidence (highest first, ties by position); a match
    is kept only if its overlap ratio with every kept match is at most ``threshold``.
    Running it again on its own output changes nothing.
    """
    ordered = sorted(matches, key=lambda m: (-m.confidence, m.y, m.x, m.height, m.width))
    kept: List[Match] = []
    for match in ordered:
        if all(overlap_ratio(match.box, other.box) <= threshold for other in kept):
            kept.append(match)
    return kept


def _point_in_box(px: float, py: float, box: Box) -> bool:
    x, y, w, h = box
    return x <= px <= x + w and y <= py <= y + h


def window_ink_box(mask: np.ndarray, x: int, y: int) -> Box:
    """Bounding box of the ink inside a window mask placed at (x, y)"""
    rows = np.flatnonzero(mask.any(axis=1))
    cols = np.flatnonzero(mask.any(axis=0))
    if rows.size == 0 or cols.size == 0:
        return x, y, mask.shape[1], mask.shape[0]
    return (x + int(cols[0]), y + int(rows[0]),
            int(cols[-1] - cols[0] + 1), int(rows[-1] - rows[0] + 1))


class PatternMatcher:
    """Finds every occurrence of a legend pattern in the plan"""

    def __init__(self, config: Optional[TakeoffConfig] = None,
                 validator: Optional[ContextValidator] = None):
        self.config = config or TakeoffConfig()
        self.validator = validator or ContextValidator(
            self.config.context, self.config.sampling.ink_luma_threshold
        )

    def tiles(self, plan: PlanImage) -> List[Box]:
        scanning = self.config.scanning
        tiles = []
        for y in tile_origins(plan.height, scanning.tile_size, scanning.overlap):
            for x in tile_origins(plan.width, scanning.tile_size, scanning.overlap):
                tiles.append((x, y, min(scanning.tile_size, plan.width - x),
                              min(scanning.tile_size, plan.height - y)))
        return tiles

    def find_pattern(
        self,
        plan: PlanImage,
        pattern: LegendPattern,
        excluded_regions: Sequence[Box] = (),
        cancel_event: Optional[threading.Event] = None
    ) -> List[Match]:
        """
        Search the whole plan for ``pattern``

        Raises:
            CancelledError: cancel_event was set before all tiles finished
        """
        scanning = self.config.scanning
        cancel_event = cancel_event or threading.Event()

        descriptor = pattern.feature_descriptor
        if descriptor is None:
            descriptor = extract_features(pattern.source_image.pixels, self.config.texture)

        tiles = self.tiles(plan)
        logger.info(f"Searching {pattern.element_type} across {len(tiles)} tiles "
                    f"({scanning.max_workers} workers)")

        merged: List[Match] = []
        with ThreadPoolExecutor(max_workers=scanning.max_workers, thread_name_prefix="Tile_Scan") as executor:
            futures = [
                executor.submit(self._scan_tile, plan, tile, pattern, descriptor, excluded_regions, cancel_event)
                for tile in tiles
            ]
            try:
                # Merge in tile order
                for future in futures:
                    merged.extend(future.result())
                    if cancel_event.is_set():
                        raise CancelledError(f"Search for {pattern.element_type} cancelled")
            except CancelledError:
                cancel_event.set()
                for future in futures:
                    future.cancel()
                logger.info(f"Search for {pattern.element_type} cancelled")
                raise

        matches = deduplicate_matches(merged, scanning.dedup_overlap_threshold)
        logger.info(f"{pattern.element_type}: {len(merged)} raw matches, {len(matches)} after deduplication")
        return matches

    def _scan_tile(
        self,
        plan: PlanImage,
        tile: Box,
        pattern: LegendPattern,
        descriptor: FeatureDescriptor,
        excluded_regions: Sequence[Box],
        cancel_event: threading.Event
    ) -> List[Match]:
        sampling = self.config.sampling
        scanning = self.config.scanning
        sample = sampling.sample_size
        tx, ty, tw, th = tile
        matches = []

        for wy in window_positions(th, sample):
            if cancel_event.is_set():
                raise CancelledError(f"Tile {tile} abandoned")
            for wx in window_positions(tw, sample):
                x, y = tx + wx, ty + wy
                cx, cy = x + sample / 2.0, y + sample / 2.0
                if any(_point_in_box(cx, cy, region) for region in excluded_regions):
                    continue

                window = plan.pixels[y:y + sample, x:x + sample]
                mask = ink_mask(window, sampling.ink_luma_threshold)
                if scanning.skip_blank_windows and float(mask.mean()) <= sampling.min_ink_ratio:
                    continue

                breakdown = compare_features(extract_features(window, self.config.texture), descriptor,
                                             self.config.weights)
                if breakdown.overall < scanning.min_similarity:
                    continue
                logger.debug(f"{pattern.element_type} window ({x}, {y}): overall {breakdown.overall:.3f} "
                             f"texture {breakdown.texture:.3f} color {breakdown.color:.3f} "
                             f"context {breakdown.context:.3f}")

                match = self._accepted_match(plan, pattern, mask, x, y, breakdown.overall)
                if match is not None:
                    matches.append(match)

        return matches

    def _accepted_match(self, plan: PlanImage, pattern: LegendPattern, mask: np.ndarray,
                        x: int, y: int, score: float) -> Optional[Match]:
        """
        First candidate box that passes context validation

        With grow_to_ink_components the whole ink components touched by the window
        are tried first, then the ink bounds inside the window.
        """
        sample = self.config.sampling.sample_size
        if self.config.scanning.grow_to_ink_components:
            candidates = [self._component_box(plan, x, y), window_ink_box(mask, x, y)]
        else:
            candidates = [(x, y, sample, sample)]

        for bx, by, bw, bh in dict.fromkeys(candidates):
            match = Match(x=bx, y=by, width=bw, height=bh, confidence=float(score),
                          element_type=pattern.element_type)
            region = plan.pixels[by:by + bh, bx:bx + bw]
            if self.validator.is_valid(match, pattern.category, region):
                return match
        return None

    def _component_box(self, plan: PlanImage, x: int, y: int) -> Box:
        """
        Union box of the ink components touching the window at (x, y)

        Components are labelled inside the window padded by one sample on every
        side, so anything up to one sample across is captured whole.
        """
        sample = self.config.sampling.sample_size
        x0, y0 = max(0, x - sample), max(0, y - sample)
        x1, y1 = min(plan.width, x + 2 * sample), min(plan.height, y + 2 * sample)

        mask = ink_mask(plan.pixels[y0:y1, x0:x1], self.config.sampling.ink_luma_threshold)
        _, labels, stats, _ = cv2.connectedComponentsWithStats(mask.astype(np.uint8), connectivity=8)

        touched = np.unique(labels[y - y0:y - y0 + sample, x - x0:x - x0 + sample])
        touched = touched[touched != 0]
        if touched.size == 0:
            return x, y, sample, sample

        left = int(stats[touched, cv2.CC_STAT_LEFT].min())
        top = int(stats[touched, cv2.CC_STAT_TOP].min())
        right = int((stats[touched, cv2.CC_STAT_LEFT] + stats[touched, cv2.CC_STAT_WIDTH]).max())
        bottom = int((stats[touched, cv2.CC_STAT_TOP] + stats[touched, cv2.CC_STAT_HEIGHT]).max())
        return x0 + left, y0 + top, right - left, bottom - top
