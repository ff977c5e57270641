"""
Measurement aggregation
Turns deduplicated matches into per-element quantities and the run summary
"""

import logging
from typing import List, Optional, Tuple

from services.legend_catalog import LegendElementCatalog, legend_catalog
from services.pattern_classifier import LegendPattern
from services.pipeline_contracts import (
    ElementCategory, ElementResult, Match, MeasurementType, ScaleInfo, Summary
)

logger = logging.getLogger(__name__)

UNITS = {
    MeasurementType.AREA: "m²",
    MeasurementType.COUNT: "Stk",
    MeasurementType.NONE: "N/A",
}


def measure(matches: List[Match], measurement_type: MeasurementType, scale: ScaleInfo) -> Tuple[float, str]:
    """
    Quantity and unit for a set of matches

    area: sum of box areas in m² at the calibrated scale
    count: number of matches
    none: always 0
    """
    if measurement_type == MeasurementType.AREA:
        pixel_area = sum(m.area_px for m in matches)
        return pixel_area / (scale.pixels_per_meter ** 2), UNITS[MeasurementType.AREA]
    if measurement_type == MeasurementType.COUNT:
        return float(len(matches)), UNITS[MeasurementType.COUNT]
    return 0.0, UNITS[MeasurementType.NONE]


class MeasurementAggregator:
    """Builds element results and the summary"""

    def __init__(self, catalog: Optional[LegendElementCatalog] = None):
        self.catalog = catalog or legend_catalog

    def element_result(self, pattern: LegendPattern, matches: List[Match], scale: ScaleInfo) -> ElementResult:
        measurement, unit = measure(matches, pattern.measurement_type, scale)
        average_confidence = (sum(m.confidence for m in matches) / len(matches)) if matches else 0.0

        result = ElementResult(
            element=pattern.element_type,
            category=pattern.category,
            measurement_type=pattern.measurement_type,
            measurement=measurement,
            unit=unit,
            locations=list(matches),
            match_count=len(matches),
            average_confidence=min(1.0, average_confidence),
            code=self.catalog.code_for(pattern.element_type)
        )
        logger.info(f"{result.element}: {result.measurement:.2f} {result.unit} "
                    f"from {result.match_count} matches")
        return result

    @staticmethod
    def summarize(results: List[ElementResult]) -> Summary:
        walls = [r for r in results if r.category == ElementCategory.WALL]
        openings = [r for r in results if r.category == ElementCategory.OPENING]
        total_matches = sum(r.match_count for r in results)

        if total_matches:
            average_confidence = sum(r.average_confidence * r.match_count for r in results) / total_matches
        else:
            average_confidence = 0.0

        return Summary(
            total_wall_area=sum(r.measurement for r in walls),
            total_openings=sum(r.measurement for r in openings),
            wall_types=len(walls),
            opening_types=len(openings),
            total_elements=len(results),
            total_matches=total_matches,
            average_confidence=min(1.0, average_confidence)
        )
