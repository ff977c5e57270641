"""
OCR-based scale calibration for architectural plans
Reads metric scale notation (1:N) from the title block regions and converts it to pixels per meter
"""

import re
import logging
from typing import Optional, Tuple

from infrastructure.utils.raster_io import PlanImage, crop, fraction_box
from services.error_types import categorize_exception
from services.external_call import call_with_timeout
from services.legend_segmenter import legend_bounds
from services.ocr_extractor import OCREngine
from services.pipeline_context import RunDiagnostics
from services.pipeline_contracts import ScaleInfo
from services.takeoff_config import LEGEND_REGION, LegendLocationConfig, OCRConfig, ScaleConfig

logger = logging.getLogger(__name__)

# "1:100", "1 : 50", "M 1:200"; a digit directly before the 1 (e.g. "11:5") is not a scale
SCALE_PATTERN = re.compile(r'(?<!\d)1\s*:\s*(\d+)')

OCR_SCALE_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.3


def find_scale_ratio(text: str) -> Optional[int]:
    """Return N of the first valid '1:N' notation in ``text``"""
    if not text:
        return None
    for match in SCALE_PATTERN.finditer(text):
        ratio = int(match.group(1))
        if ratio > 0:
            return ratio
    return None


def scale_info_for_ratio(
    ratio: int,
    scan_dpi: float = 300.0,
    source: str = "ocr",
    is_fallback: bool = False,
    confidence: float = OCR_SCALE_CONFIDENCE
) -> ScaleInfo:
    """
    Build ScaleInfo for a 1:N drawing scanned at ``scan_dpi``.

    One meter of paper spans round(dpi / 0.0254) pixels; at 1:N one real
    meter is 1/N of that.
    """
    if ratio <= 0:
        raise ValueError(f"Scale ratio must be positive, got {ratio}")
    full_scale = float(round(scan_dpi / 0.0254))
    return ScaleInfo(
        notation=f"1:{ratio}",
        ratio=ratio,
        pixels_per_meter=full_scale / ratio,
        is_fallback=is_fallback,
        source=source,
        confidence=confidence
    )


def parse_scale_to_metrics(text: str, scan_dpi: float = 300.0) -> Optional[ScaleInfo]:
    """
    Parse scale notation into metrics

    Returns:
        ScaleInfo, or None if the text holds no valid 1:N notation
    """
    ratio = find_scale_ratio(text)
    if ratio is None:
        return None
    return scale_info_for_ratio(ratio, scan_dpi, source="text")


class ScaleExtractor:
    """
    Scale calibration over title block regions
    Regions are tried in priority order; the first one with a 1:N notation wins
    """

    def __init__(self, ocr_engine: OCREngine, config: Optional[ScaleConfig] = None,
                 ocr_config: Optional[OCRConfig] = None,
                 legend_config: Optional[LegendLocationConfig] = None):
        self.ocr_engine = ocr_engine
        self.config = config or ScaleConfig()
        self.ocr_config = ocr_config or OCRConfig()
        self.legend_config = legend_config or LegendLocationConfig()

    def calibrate(self, plan: PlanImage, diagnostics: Optional[RunDiagnostics] = None) -> ScaleInfo:
        """
        Determine the drawing scale of ``plan``

        OCR failures on a region are recorded and treated as no match for that region.
        Falls back to 1:default_ratio marked ``is_fallback`` when nothing is found.
        """
        for region_name in self.config.region_order:
            box = self._region_box(plan, region_name)
            if box is None:
                continue

            text = self._read_region(plan, region_name, box, diagnostics)
            ratio = find_scale_ratio(text)
            if ratio is not None:
                scale = scale_info_for_ratio(ratio, self.config.scan_dpi, source=region_name)
                logger.info(f"Scale detected in {region_name}: {scale.notation} "
                            f"({scale.pixels_per_meter:.2f} px/m)")
                return scale

        logger.warning(f"No scale notation found, using default 1:{self.config.default_ratio}")
        if diagnostics is not None:
            diagnostics.warning(
                "scale",
                f"No scale notation recognised; using default 1:{self.config.default_ratio}",
                regions=list(self.config.region_order)
            )
        return scale_info_for_ratio(
            self.config.default_ratio,
            self.config.scan_dpi,
            source="default",
            is_fallback=True,
            confidence=FALLBACK_CONFIDENCE
        )

    def _region_box(self, plan: PlanImage, region_name: str) -> Optional[Tuple[int, int, int, int]]:
        if region_name == LEGEND_REGION:
            return legend_bounds(plan.width, plan.height, self.legend_config)
        region = self.config.regions.get(region_name)
        if region is None:
            return None
        return fraction_box(plan, region)

    def _read_region(self, plan: PlanImage, region_name: str, box: Tuple[int, int, int, int],
                     diagnostics: Optional[RunDiagnostics]) -> str:
        x, y, w, h = box
        try:
            sub_image = crop(plan, x, y, w, h)
            result = call_with_timeout(
                lambda: self.ocr_engine.recognize(sub_image.pixels, self.ocr_config.language),
                f"scale_ocr_{region_name}",
                timeout_seconds=self.ocr_config.timeout_seconds,
                retries=self.ocr_config.retries
            )
        except Exception as e:
            error = categorize_exception(e)
            logger.warning(f"Scale OCR failed for {region_name}: {error.message}")
            if diagnostics is not None:
                diagnostics.record_exception("scale", error, region=region_name)
            return ""

        logger.debug(f"Scale OCR {region_name}: {result.text!r}")
        return result.text
