"""
Legend segmentation
Locates the legend block in a plan corner and cuts out its pattern swatches
"""

import logging
from typing import List, Optional, Tuple
from dataclasses import dataclass, field

from infrastructure.utils.raster_io import PlanImage, crop, ink_ratio
from services.takeoff_config import LegendLocationConfig, PatternSamplingConfig, LEGEND_CORNERS
from services.error_types import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LegendSwatch:
    """A pattern sample cut from the legend"""
    id: str
    image: PlanImage
    location: Tuple[int, int]  # legend-local x, y
    plan_location: Tuple[int, int]  # plan x, y


@dataclass(frozen=True)
class LegendSegmentation:
    """Legend block and the swatches found in it"""
    image: PlanImage
    location: str
    bounds: Tuple[int, int, int, int]  # plan x, y, width, height
    swatches: List[LegendSwatch] = field(default_factory=list)


def legend_bounds(plan_width: int, plan_height: int,
                  config: LegendLocationConfig) -> Tuple[int, int, int, int]:
    """
    Plan-pixel box of the legend for the configured corner

    The box is clipped to the plan, so oversized margins on small plans still
    yield a usable region.
    """
    if config.location not in LEGEND_CORNERS:
        raise ConfigurationError(f"Unknown legend location '{config.location}'",
                                 {'allowed': list(LEGEND_CORNERS)})

    width = max(1, int(plan_width * config.width_ratio))
    height = max(1, int(plan_height * config.height_ratio))

    if config.location.endswith("right"):
        x = plan_width - width - config.margin
    else:
        x = config.margin
    if config.location.startswith("bottom"):
        y = plan_height - height - config.margin
    else:
        y = config.margin

    x = min(max(0, x), max(0, plan_width - 1))
    y = min(max(0, y), max(0, plan_height - 1))
    width = min(width, plan_width - x)
    height = min(height, plan_height - y)
    return x, y, width, height


class LegendSegmenter:
    """Extracts the legend area and samples pattern swatches on a grid"""

    def __init__(self, location_config: Optional[LegendLocationConfig] = None,
                 sampling_config: Optional[PatternSamplingConfig] = None):
        self.location_config = location_config or LegendLocationConfig()
        self.sampling = sampling_config or PatternSamplingConfig()

    def segment(self, plan: PlanImage) -> LegendSegmentation:
        bounds = legend_bounds(plan.width, plan.height, self.location_config)
        legend = crop(plan, *bounds)
        swatches = self.extract_swatches(legend, origin=(bounds[0], bounds[1]))
        logger.info(f"Legend at {self.location_config.location} {bounds}: {len(swatches)} swatches")
        return LegendSegmentation(
            image=legend,
            location=self.location_config.location,
            bounds=bounds,
            swatches=swatches
        )

    def has_pattern(self, legend: PlanImage, x: int, y: int) -> bool:
        """True when more than min_ink_ratio of the ink check square at (x, y) is non-white"""
        size = self.sampling.ink_check_size
        window = legend.pixels[y:y + size, x:x + size]
        if window.size == 0:
            return False
        return ink_ratio(window, self.sampling.ink_luma_threshold) > self.sampling.min_ink_ratio

    def extract_swatches(self, legend: PlanImage, origin: Tuple[int, int] = (0, 0)) -> List[LegendSwatch]:
        """
        Scan the left half of the legend on a grid and cut a sample at each inked cell

        After a hit the cursor skips one sample width so a swatch is not sampled
        twice on the same row.
        """
        spacing = self.sampling.grid_spacing
        sample = self.sampling.sample_size
        swatches: List[LegendSwatch] = []

        y = spacing
        while y < legend.height - sample:
            x = spacing
            while x < legend.width / 2:
                if self.has_pattern(legend, x, y):
                    image = crop(legend, x, y, sample, sample)
                    swatches.append(LegendSwatch(
                        id=f"pattern_{len(swatches) + 1}",
                        image=image,
                        location=(x, y),
                        plan_location=(origin[0] + x, origin[1] + y)
                    ))
                    logger.debug(f"Swatch candidate at legend ({x}, {y})")
                    x += sample
                x += spacing
            y += spacing

        return swatches
