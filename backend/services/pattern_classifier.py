"""
Legend Pattern Classifier
Uses a vision-language model to name each legend swatch, with a deterministic
keyword classifier when the response carries no structured payload
"""

import re
import base64
import logging
from typing import Any, Callable, List, Optional, Protocol, Tuple
from dataclasses import dataclass

import numpy as np
from openai import OpenAI
from pydantic import AliasChoices, BaseModel, Field, field_validator

from infrastructure.utils.raster_io import PlanImage, crop, encode
from services.error_types import ClassificationError, ConfigurationError, categorize_exception
from services.external_call import call_with_timeout
from services.legend_catalog import LegendElementCatalog, legend_catalog
from services.legend_segmenter import LegendSegmentation, LegendSwatch
from services.ocr_extractor import OCREngine
from services.pipeline_context import RunDiagnostics
from services.pipeline_contracts import ElementCategory, MeasurementType
from services.strict_json_parser import StrictJSONParser
from services.takeoff_config import OCRConfig, VisionLanguageConfig

logger = logging.getLogger(__name__)

KEYWORD_CONFIDENCE = 0.6

CATEGORY_KEYWORDS: Tuple[Tuple[ElementCategory, Tuple[str, ...]], ...] = (
    (ElementCategory.WALL, ("wall", "wand", "beton")),
    (ElementCategory.OPENING, ("opening", "durchbruch", "door", "window", "öffnung")),
    (ElementCategory.REFERENCE, ("reference", "level", "ok", "uk", "höhe")),
)
AREA_KEYWORDS = ("area", "m²", "m2", "fläche")
COUNT_KEYWORDS = ("count", "number", "stück", "anzahl")


class SwatchClassification(BaseModel):
    """Structured answer for one swatch; unknown enum strings normalise instead of failing"""
    element_type: str = Field("unknown", validation_alias=AliasChoices("element_type", "elementType"))
    category: ElementCategory = ElementCategory.UNKNOWN
    measurement_type: MeasurementType = Field(
        MeasurementType.NONE, validation_alias=AliasChoices("measurement_type", "measurementType")
    )
    confidence: float = 0.5

    @field_validator('element_type', mode='before')
    @classmethod
    def normalize_element_type(cls, v):
        text = str(v).strip() if v is not None else ""
        return text or "unknown"

    @field_validator('category', mode='before')
    @classmethod
    def normalize_category(cls, v):
        return ElementCategory.normalize(v)

    @field_validator('measurement_type', mode='before')
    @classmethod
    def normalize_measurement_type(cls, v):
        return MeasurementType.normalize(v)

    @field_validator('confidence', mode='before')
    @classmethod
    def clamp_confidence(cls, v):
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.5
        if np.isnan(value):
            return 0.5
        return min(1.0, max(0.0, value))


@dataclass(frozen=True)
class LegendPattern:
    """A classified legend swatch; read-only once produced"""
    id: str
    element_type: str
    category: ElementCategory
    measurement_type: MeasurementType
    confidence: float
    source_image: PlanImage
    location: Tuple[int, int]
    feature_descriptor: Optional[Any] = None

    @property
    def key(self) -> Tuple[str, ElementCategory]:
        return self.element_type, self.category


class VisionLanguageClassifier(Protocol):
    """Capability interface: describe an image region given a prompt"""

    def classify(self, region: np.ndarray, prompt: str) -> str:
        ...


class OpenAIVisionClassifier:
    """Vision-language collaborator over the OpenAI chat completions API"""

    def __init__(self, config: Optional[VisionLanguageConfig] = None, client: Optional[OpenAI] = None):
        self.config = config or VisionLanguageConfig()
        if client is None and not self.config.api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set; vision-language classification unavailable")
        self.client = client or OpenAI(api_key=self.config.api_key)

    def classify(self, region: np.ndarray, prompt: str) -> str:
        image_base64 = base64.b64encode(encode(region)).decode('ascii')
        response = self.client.chat.completions.create(
            model=self.config.model,
            messages=[
                {
                    "role": "system",
                    "content": "You are a construction plan legend classifier. Answer with JSON only."
                },
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:image/png;base64,{image_base64}",
                                "detail": self.config.image_detail
                            }
                        }
                    ]
                }
            ],
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,  # Low temperature for consistency
            timeout=self.config.timeout_seconds
        )
        return response.choices[0].message.content or ""


def _contains_keyword(text: str, keyword: str) -> bool:
    if len(keyword) <= 3:
        return re.search(r'(?<!\w)' + re.escape(keyword) + r'(?!\w)', text) is not None
    return keyword in text


def keyword_classification(text: str, catalog: Optional[LegendElementCatalog] = None) -> SwatchClassification:
    """
    Fallback classification from free text
    Used when the model answer has no JSON payload or no model is available
    """
    catalog = catalog or legend_catalog
    lower = (text or "").lower()

    category = ElementCategory.UNKNOWN
    for candidate, keywords in CATEGORY_KEYWORDS:
        if any(_contains_keyword(lower, k) for k in keywords):
            category = candidate
            break

    element = catalog.find_in_text(lower)
    element_type = element.name if element else "unknown"
    if category == ElementCategory.UNKNOWN and element is not None:
        category = element.category

    if any(k in lower for k in AREA_KEYWORDS) or category == ElementCategory.WALL:
        measurement_type = MeasurementType.AREA
    elif any(k in lower for k in COUNT_KEYWORDS) or category == ElementCategory.OPENING:
        measurement_type = MeasurementType.COUNT
    else:
        measurement_type = MeasurementType.NONE

    return SwatchClassification(
        element_type=element_type,
        category=category,
        measurement_type=measurement_type,
        confidence=KEYWORD_CONFIDENCE
    )


def parse_classification_response(response: str,
                                  catalog: Optional[LegendElementCatalog] = None) -> SwatchClassification:
    """First JSON object in the response, else keyword classification of the whole text"""
    payload = StrictJSONParser.extract_json(response)
    if payload is not None:
        is_valid, validated, error = StrictJSONParser.validate_against_schema(payload, SwatchClassification)
        if is_valid:
            return validated
        logger.debug(f"Classification payload rejected: {error}")
    return keyword_classification(response, catalog)


def deduplicate_patterns(patterns: List[LegendPattern]) -> List[LegendPattern]:
    """Keep the first pattern for each (element_type, category)"""
    seen = set()
    unique = []
    for pattern in patterns:
        if pattern.key in seen:
            logger.debug(f"Dropping duplicate pattern {pattern.id} ({pattern.element_type})")
            continue
        seen.add(pattern.key)
        unique.append(pattern)
    return unique


class LegendLabelReader:
    """Reads the legend text printed to the right of a swatch"""

    def __init__(self, ocr_engine: OCREngine, legend: LegendSegmentation,
                 ocr_config: Optional[OCRConfig] = None):
        self.ocr_engine = ocr_engine
        self.legend = legend
        self.ocr_config = ocr_config or OCRConfig()

    def __call__(self, swatch: LegendSwatch) -> str:
        x, y = swatch.location
        label_x = x + swatch.image.width
        if label_x >= self.legend.image.width:
            return ""
        strip = crop(self.legend.image, label_x, y, self.legend.image.width - label_x, swatch.image.height)
        result = call_with_timeout(
            lambda: self.ocr_engine.recognize(strip.pixels, self.ocr_config.language),
            f"legend_label_{swatch.id}",
            timeout_seconds=self.ocr_config.timeout_seconds,
            retries=self.ocr_config.retries
        )
        return result.text


class PatternClassifier:
    """Classifies legend swatches into legend patterns"""

    def __init__(
        self,
        vlm: Optional[VisionLanguageClassifier] = None,
        catalog: Optional[LegendElementCatalog] = None,
        config: Optional[VisionLanguageConfig] = None,
        label_reader: Optional[Callable[[LegendSwatch], str]] = None
    ):
        self.vlm = vlm
        self.catalog = catalog or legend_catalog
        self.config = config or VisionLanguageConfig()
        self.label_reader = label_reader
        self.prompt = self.catalog.generate_classification_prompt()

    def classify_swatch(self, swatch: LegendSwatch) -> SwatchClassification:
        """
        Classify one swatch

        Raises:
            ClassificationError: the collaborator failed or timed out
        """
        if self.vlm is None:
            label = self.label_reader(swatch) if self.label_reader else ""
            return keyword_classification(label, self.catalog)

        try:
            response = call_with_timeout(
                lambda: self.vlm.classify(swatch.image.pixels, self.prompt),
                f"classify_{swatch.id}",
                timeout_seconds=self.config.timeout_seconds,
                retries=self.config.retries
            )
        except ConfigurationError:
            raise
        except Exception as e:
            error = categorize_exception(e)
            raise ClassificationError(
                f"Classification of {swatch.id} failed: {error.message}",
                {'swatch': swatch.id, 'error_type': type(e).__name__}
            ) from e

        return parse_classification_response(response, self.catalog)

    def classify_swatches(self, swatches: List[LegendSwatch],
                          diagnostics: Optional[RunDiagnostics] = None) -> List[LegendPattern]:
        """Classify every swatch, skipping failures, then deduplicate"""
        patterns = []
        for swatch in swatches:
            try:
                classification = self.classify_swatch(swatch)
            except ConfigurationError:
                raise
            except Exception as e:
                error = categorize_exception(e)
                logger.warning(f"Skipping {swatch.id}: {error.message}")
                if diagnostics is not None:
                    diagnostics.record_exception("classification", error, swatch=swatch.id)
                continue

            logger.info(f"{swatch.id}: {classification.element_type} "
                        f"({classification.category.value}, {classification.measurement_type.value}, "
                        f"confidence {classification.confidence:.2f})")
            patterns.append(LegendPattern(
                id=swatch.id,
                element_type=classification.element_type,
                category=classification.category,
                measurement_type=classification.measurement_type,
                confidence=classification.confidence,
                source_image=swatch.image,
                location=swatch.plan_location
            ))

        unique = deduplicate_patterns(patterns)
        logger.info(f"Classified {len(patterns)} swatches into {len(unique)} unique patterns")
        return unique
