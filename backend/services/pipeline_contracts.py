"""
Pipeline Contracts - Strict Pydantic models for stage outputs and the final report
Ensures type safety and validation between pipeline stages
"""

import re
from typing import List, Dict, Any, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from datetime import datetime
from enum import Enum

SCALE_NOTATION = re.compile(r"^1:\d+$")


class ElementCategory(str, Enum):
    """Building-element family a legend pattern belongs to"""
    WALL = "wall"
    OPENING = "opening"
    REFERENCE = "reference"
    UNKNOWN = "unknown"

    @classmethod
    def normalize(cls, value: Any) -> "ElementCategory":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class MeasurementType(str, Enum):
    """How matches of a pattern are measured"""
    AREA = "area"
    COUNT = "count"
    NONE = "none"

    @classmethod
    def normalize(cls, value: Any) -> "MeasurementType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NONE


class AnnotationType(str, Enum):
    SCALE = "scale"
    DIMENSION = "dimension"
    LEVEL = "level"
    FIRE_PROTECTION = "fire_protection"
    UTILITY = "utility"
    OPENING = "opening"
    OTHER = "other"


class DiagnosticLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ScaleInfo(BaseModel):
    """Drawing scale for one run"""
    model_config = ConfigDict(frozen=True)

    notation: str = Field(..., description="e.g. '1:100'")
    ratio: int = Field(..., gt=0)
    pixels_per_meter: float = Field(..., gt=0)
    is_fallback: bool = False
    source: str = Field("default", description="Region the notation was read from, or 'default'")
    confidence: float = Field(..., ge=0.0, le=1.0)

    @field_validator('notation')
    @classmethod
    def validate_notation(cls, v):
        if not SCALE_NOTATION.match(v):
            raise ValueError(f"Scale notation must look like '1:N', got '{v}'")
        return v


class Annotation(BaseModel):
    """Text annotation recognised on the plan; x/y is the centre in plan pixels"""
    model_config = ConfigDict(frozen=True)

    type: AnnotationType
    value: str
    code: Optional[str] = None
    text: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    region: str
    x: int
    y: int
    width: int = Field(0, ge=0)
    height: int = Field(0, ge=0)


class Match(BaseModel):
    """A plan region accepted as an instance of a legend pattern"""
    model_config = ConfigDict(frozen=True)

    x: int = Field(..., ge=0)
    y: int = Field(..., ge=0)
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    element_type: str
    annotations: List[Annotation] = Field(default_factory=list)

    @property
    def area_px(self) -> int:
        return self.width * self.height

    @property
    def box(self) -> Tuple[int, int, int, int]:
        return self.x, self.y, self.width, self.height


class ElementResult(BaseModel):
    """Measurement for one legend pattern"""
    model_config = ConfigDict(frozen=True)

    element: str
    category: ElementCategory
    measurement_type: MeasurementType
    measurement: float = Field(..., ge=0)
    unit: str
    match_count: int = Field(..., ge=0)
    locations: List[Match] = Field(default_factory=list)
    average_confidence: float = Field(..., ge=0.0, le=1.0)
    code: Optional[str] = None

    @model_validator(mode='after')
    def validate_count_matches_locations(self):
        if self.match_count != len(self.locations):
            raise ValueError(f"match_count {self.match_count} does not match {len(self.locations)} locations")
        return self


class Summary(BaseModel):
    """Totals across all element results"""
    model_config = ConfigDict(frozen=True)

    total_wall_area: float = Field(0.0, ge=0)
    total_openings: float = Field(0.0, ge=0)
    wall_types: int = Field(0, ge=0)
    opening_types: int = Field(0, ge=0)
    total_elements: int = Field(0, ge=0)
    total_matches: int = Field(0, ge=0)
    average_confidence: float = Field(0.0, ge=0.0, le=1.0)


class Diagnostic(BaseModel):
    """Warning or error recorded during a run"""
    model_config = ConfigDict(frozen=True)

    level: DiagnosticLevel
    stage: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.now)


class TakeoffReport(BaseModel):
    """Complete pipeline result"""
    scale: ScaleInfo
    results: List[ElementResult] = Field(default_factory=list)
    summary: Summary = Field(default_factory=Summary)
    annotations: List[Annotation] = Field(default_factory=list)
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)
    processing_time_seconds: float = Field(0.0, ge=0)
    stage_timings: Dict[str, float] = Field(default_factory=dict)

    # Metadata
    source_file: Optional[str] = None
    legend_bounds: Optional[Tuple[int, int, int, int]] = None
    pipeline_version: str = "1.0.0"

    @property
    def warnings(self) -> List[str]:
        return [d.message for d in self.diagnostics if d.level != DiagnosticLevel.INFO]

    def result_for(self, element: str) -> Optional[ElementResult]:
        for result in self.results:
            if result.element == element:
                return result
        return None
