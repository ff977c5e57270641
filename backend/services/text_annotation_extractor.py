"""
Text annotation extraction
OCR over the legend, title block and drawing area, pattern-based classification of
the recognised lines, and correlation of annotations with measured element locations
"""

import re
import math
import logging
from typing import Callable, List, Optional, Tuple
from dataclasses import dataclass

from infrastructure.utils.raster_io import PlanImage, crop, fraction_box
from services.error_types import categorize_exception
from services.external_call import call_with_timeout
from services.legend_catalog import LegendElementCatalog, UTILITY_CODES, legend_catalog
from services.legend_segmenter import legend_bounds
from services.ocr_extractor import OCREngine, OCRLine
from services.pipeline_context import RunDiagnostics
from services.pipeline_contracts import Annotation, AnnotationType, ElementResult, Match
from services.takeoff_config import LEGEND_REGION, AnnotationConfig, LegendLocationConfig, OCRConfig

logger = logging.getLogger(__name__)

NUMBER = r'\d+(?:[.,]\d+)?'

SCALE_RE = re.compile(r'(?<!\d)1\s*:\s*(\d+)')
OPENING_RE = re.compile(r'\b(WD|DD|BD|TD|FD)\s*(' + NUMBER + r')\s*[x×/]\s*(' + NUMBER + r')')
FIRE_RE = re.compile(r'\b(REI|EI|F|T)\s*-?\s*(30|60|90|120|180)\b')
LEVEL_RE = re.compile(
    r'\b(OK|UK)\s*(FFB|RFB|RD|WS|Fertig|Roh)\b(?:\s*(?:=\s*)?([+\-±]?\s*' + NUMBER + r'))?'
)
DIMENSION_RE = re.compile(r'(?<![\w.,])(' + NUMBER + r')\s*(mm|cm|m)\b')
UTILITY_RE = re.compile(r'(?<!\w)([' + ''.join(UTILITY_CODES) + r'])(?!\w)')


@dataclass(frozen=True)
class ParsedAnnotation:
    type: AnnotationType
    value: str
    code: Optional[str]
    confidence: float
    span: Tuple[int, int]


def _overlaps(span: Tuple[int, int], taken: List[Tuple[int, int]]) -> bool:
    return any(span[0] < end and start < span[1] for start, end in taken)


def _scale(m: re.Match) -> Optional[Tuple[str, Optional[str]]]:
    if int(m.group(1)) <= 0:
        return None
    return f"1:{int(m.group(1))}", None


def _opening(m: re.Match) -> Tuple[str, Optional[str]]:
    return f"{m.group(2)} x {m.group(3)}", m.group(1)


def _fire(m: re.Match) -> Tuple[str, Optional[str]]:
    return f"{m.group(1)}{m.group(2)}", m.group(1)


def _level(m: re.Match) -> Tuple[str, Optional[str]]:
    code = f"{m.group(1)} {m.group(2)}"
    height = re.sub(r'\s+', '', m.group(3)) if m.group(3) else None
    return (f"{code} {height}" if height else code), code


def _dimension(m: re.Match) -> Tuple[str, Optional[str]]:
    return f"{m.group(1)} {m.group(2)}", m.group(2)


def _utility(m: re.Match) -> Tuple[str, Optional[str]]:
    return UTILITY_CODES[m.group(1)], m.group(1)


# Applied in order; earlier patterns claim their characters first
ANNOTATION_PATTERNS: Tuple[Tuple[AnnotationType, re.Pattern, float, Callable], ...] = (
    (AnnotationType.SCALE, SCALE_RE, 0.9, _scale),
    (AnnotationType.OPENING, OPENING_RE, 0.85, _opening),
    (AnnotationType.FIRE_PROTECTION, FIRE_RE, 0.9, _fire),
    (AnnotationType.LEVEL, LEVEL_RE, 0.85, _level),
    (AnnotationType.DIMENSION, DIMENSION_RE, 0.85, _dimension),
    (AnnotationType.UTILITY, UTILITY_RE, 0.75, _utility),
)
ABBREVIATION_CONFIDENCE = 0.8


def parse_annotation_text(text: str, catalog: Optional[LegendElementCatalog] = None) -> List[ParsedAnnotation]:
    """Classify every annotation found in one line of text, in reading order"""
    catalog = catalog or legend_catalog
    found: List[ParsedAnnotation] = []
    taken: List[Tuple[int, int]] = []

    for annotation_type, pattern, confidence, build in ANNOTATION_PATTERNS:
        for m in pattern.finditer(text):
            if _overlaps(m.span(), taken):
                continue
            built = build(m)
            if built is None:
                continue
            value, code = built
            found.append(ParsedAnnotation(annotation_type, value, code, confidence, m.span()))
            taken.append(m.span())

    for code, element in catalog.abbreviations().items():
        for m in re.finditer(r'(?<!\w)' + re.escape(code) + r'(?!\w)', text):
            if _overlaps(m.span(), taken):
                continue
            found.append(ParsedAnnotation(AnnotationType.OTHER, element.name, code,
                                          ABBREVIATION_CONFIDENCE, m.span()))
            taken.append(m.span())

    return sorted(found, key=lambda a: a.span[0])


def distance_to_box(px: float, py: float, box: Tuple[int, int, int, int]) -> float:
    """Euclidean distance from a point to a rectangle (0 inside)"""
    x, y, w, h = box
    dx = max(x - px, 0.0, px - (x + w))
    dy = max(y - py, 0.0, py - (y + h))
    return math.hypot(dx, dy)


def annotations_near(location: Match, annotations: List[Annotation], max_distance: float) -> List[Annotation]:
    """Annotations whose centre lies within max_distance of the location, nearest first"""
    scored = []
    for annotation in annotations:
        distance = distance_to_box(annotation.x, annotation.y, location.box)
        if distance <= max_distance:
            scored.append((distance, annotation.y, annotation.x, annotation))
    scored.sort(key=lambda item: item[:3])
    return [item[3] for item in scored]


def correlate_annotations(results: List[ElementResult], annotations: List[Annotation],
                          max_distance: float = 50.0) -> List[ElementResult]:
    """Attach nearby annotations to every location of every result"""
    correlated = []
    for result in results:
        locations = [
            location.model_copy(update={'annotations': annotations_near(location, annotations, max_distance)})
            for location in result.locations
        ]
        correlated.append(result.model_copy(update={'locations': locations}))
    return correlated


class TextAnnotationExtractor:
    """Runs OCR over configured regions and turns recognised lines into annotations"""

    def __init__(self, ocr_engine: OCREngine, config: Optional[AnnotationConfig] = None,
                 ocr_config: Optional[OCRConfig] = None, catalog: Optional[LegendElementCatalog] = None,
                 legend_config: Optional[LegendLocationConfig] = None):
        self.ocr_engine = ocr_engine
        self.config = config or AnnotationConfig()
        self.ocr_config = ocr_config or OCRConfig()
        self.catalog = catalog or legend_catalog
        self.legend_config = legend_config or LegendLocationConfig()

    def region_boxes(self, plan: PlanImage) -> List[Tuple[str, Tuple[int, int, int, int]]]:
        """Plan-pixel boxes to read, the legend box first"""
        boxes = []
        if self.config.include_legend:
            boxes.append((LEGEND_REGION, legend_bounds(plan.width, plan.height, self.legend_config)))
        for region_name, region in self.config.regions.items():
            boxes.append((region_name, fraction_box(plan, region)))
        return boxes

    def extract(self, plan: PlanImage, diagnostics: Optional[RunDiagnostics] = None) -> List[Annotation]:
        annotations: List[Annotation] = []
        boxes = self.region_boxes(plan)
        for region_name, box in boxes:
            lines = self._read_region(plan, region_name, box, diagnostics)
            for line in lines:
                annotations.extend(self._line_annotations(line, region_name, box))

        logger.info(f"Extracted {len(annotations)} text annotations from {len(boxes)} regions")
        return annotations

    def _read_region(self, plan: PlanImage, region_name: str, box: Tuple[int, int, int, int],
                     diagnostics: Optional[RunDiagnostics]) -> List[OCRLine]:
        try:
            sub_image = crop(plan, *box)
            result = call_with_timeout(
                lambda: self.ocr_engine.recognize(sub_image.pixels, self.ocr_config.language),
                f"annotation_ocr_{region_name}",
                timeout_seconds=self.ocr_config.timeout_seconds,
                retries=self.ocr_config.retries
            )
        except Exception as e:
            error = categorize_exception(e)
            logger.warning(f"Annotation OCR failed for {region_name}: {error.message}")
            if diagnostics is not None:
                diagnostics.record_exception("annotations", error, region=region_name)
            return []
        return result.lines(self.ocr_config.min_word_confidence)

    def _line_annotations(self, line: OCRLine, region_name: str,
                          box: Tuple[int, int, int, int]) -> List[Annotation]:
        lx, ly, lw, lh = line.bbox
        cx = box[0] + lx + lw // 2
        cy = box[1] + ly + lh // 2
        annotations = []
        for parsed in parse_annotation_text(line.text, self.catalog):
            annotations.append(Annotation(
                type=parsed.type,
                value=parsed.value,
                code=parsed.code,
                text=line.text,
                confidence=parsed.confidence,
                region=region_name,
                x=cx,
                y=cy,
                width=lw,
                height=lh
            ))
        return annotations
