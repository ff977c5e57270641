"""
Takeoff Configuration - legend position, scanning and model settings
Centralized configuration passed into every pipeline run
"""

import math
import logging
from typing import Dict, List, Tuple
from dataclasses import dataclass, field

from core.environment import get_env_bool, get_env_float, get_env_int, get_env_str
from services.error_types import ConfigurationError

logger = logging.getLogger(__name__)

LEGEND_CORNERS = ("bottom-right", "bottom-left", "top-right", "top-left")
# OCR region resolved from LegendLocationConfig instead of fixed fractions
LEGEND_REGION = "legend"

# (x, y, width, height) as fractions of the plan width/height
Region = Tuple[float, float, float, float]


@dataclass
class LegendLocationConfig:
    """Where the legend sits on the sheet"""
    location: str = field(default_factory=lambda: get_env_str("LEGEND_LOCATION", "bottom-right"))
    width_ratio: float = 0.30
    height_ratio: float = 0.25
    margin: int = 50


@dataclass
class PatternSamplingConfig:
    """Swatch sampling inside the legend; sample_size is shared with the matcher window"""
    sample_size: int = 80
    grid_spacing: int = 40
    ink_check_size: int = 20
    min_ink_ratio: float = 0.10
    ink_luma_threshold: float = 240.0


@dataclass
class ScanningConfig:
    """Plan-wide tiled search"""
    tile_size: int = 500
    overlap: int = 50
    min_similarity: float = field(default_factory=lambda: get_env_float("MIN_SIMILARITY", 0.75))
    dedup_overlap_threshold: float = 0.5
    max_workers: int = field(default_factory=lambda: get_env_int("SCAN_WORKERS", 4))
    skip_blank_windows: bool = True
    grow_to_ink_components: bool = True
    exclude_legend: bool = True


@dataclass
class SimilarityWeights:
    """Weights of the three similarity families; must sum to 1.0"""
    texture: float = 0.5
    color: float = 0.2
    context: float = 0.3

    def total(self) -> float:
        return self.texture + self.color + self.context


@dataclass
class ContextBoundsConfig:
    """Per-category (min, max) match size in pixels"""
    size_bounds: Dict[str, Tuple[int, int]] = field(default_factory=lambda: {
        "wall": (20, 500),
        "opening": (10, 200),
        "reference": (5, 50),
    })
    default_bounds: Tuple[int, int] = (10, 1000)
    max_wall_thickness_variation: float = 0.20
    opening_min_sides: int = 3
    opening_side_coverage: float = 0.30

    def bounds_for(self, category: str) -> Tuple[int, int]:
        return self.size_bounds.get(category, self.default_bounds)


@dataclass
class TextureConfig:
    """Feature extractor parameters"""
    gabor_orientations: Tuple[float, ...] = (0.0, 45.0, 90.0, 135.0)
    gabor_frequencies: Tuple[float, ...] = (0.1, 0.25)
    gabor_kernel_size: int = 15
    lbp_radius: int = 1
    glcm_levels: int = 16
    glcm_distances: Tuple[int, ...] = (1, 2)
    glcm_angles: Tuple[float, ...] = (0.0, 45.0, 90.0, 135.0)
    color_bins: int = 32
    canny_low: int = 50
    canny_high: int = 150
    repetition_peak_threshold: float = 0.3


@dataclass
class ScaleConfig:
    """
    Scale calibration.

    The plan is assumed to be scanned at ``scan_dpi``; one meter on paper is
    then ``scan_dpi / 0.0254`` pixels, rounded to whole pixels (11811 at 300 dpi).
    """
    scan_dpi: float = field(default_factory=lambda: get_env_float("SCAN_DPI", 300.0))
    default_ratio: int = 100
    regions: Dict[str, Region] = field(default_factory=lambda: {
        "footer": (0.0, 0.90, 1.0, 0.10),
        "header": (0.0, 0.00, 1.0, 0.10),
    })
    region_order: Tuple[str, ...] = ("footer", "header", LEGEND_REGION)

    @property
    def pixels_per_meter_at_full_scale(self) -> float:
        return float(round(self.scan_dpi / 0.0254))


@dataclass
class OCRConfig:
    """OCR engine selection and filtering"""
    engine: str = field(default_factory=lambda: get_env_str("OCR_ENGINE", "tesseract"))
    language: str = "deu+eng"
    char_allowlist: str = (
        "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
        "ÄÖÜäöüß0123456789:.,+-±x×/()"
    )
    min_word_confidence: float = 0.6
    timeout_seconds: float = field(default_factory=lambda: get_env_float("OCR_TIMEOUT", 30.0))
    retries: int = 1


@dataclass
class VisionLanguageConfig:
    """Vision-language classification service"""
    enabled: bool = field(default_factory=lambda: get_env_bool("VLM_ENABLED", True))
    api_key: str = field(default_factory=lambda: get_env_str("OPENAI_API_KEY", ""))
    model: str = field(default_factory=lambda: get_env_str("VLM_MODEL", "gpt-4o-2024-11-20"))
    temperature: float = 0.1  # Low temperature for consistent results
    max_tokens: int = 500
    timeout_seconds: float = field(default_factory=lambda: get_env_float("VLM_TIMEOUT", 30.0))
    retries: int = 1
    image_detail: str = "low"


@dataclass
class AnnotationConfig:
    """Text annotation extraction and correlation"""
    include_legend: bool = True  # read the legend box before the fraction regions
    regions: Dict[str, Region] = field(default_factory=lambda: {
        "header": (0.0, 0.00, 1.0, 0.10),
        "footer": (0.0, 0.90, 1.0, 0.10),
        "main": (0.05, 0.10, 0.90, 0.80),
    })
    max_distance: float = 50.0


@dataclass
class OutputConfig:
    output_dir: str = field(default_factory=lambda: get_env_str("OUTPUT_DIR", "takeoff_output"))
    overlay_alpha: float = 0.3
    legend_rows: int = 10


@dataclass
class TakeoffConfig:
    """Central configuration for one pipeline run"""

    legend: LegendLocationConfig = field(default_factory=LegendLocationConfig)
    sampling: PatternSamplingConfig = field(default_factory=PatternSamplingConfig)
    scanning: ScanningConfig = field(default_factory=ScanningConfig)
    weights: SimilarityWeights = field(default_factory=SimilarityWeights)
    context: ContextBoundsConfig = field(default_factory=ContextBoundsConfig)
    texture: TextureConfig = field(default_factory=TextureConfig)
    scale: ScaleConfig = field(default_factory=ScaleConfig)
    ocr: OCRConfig = field(default_factory=OCRConfig)
    vlm: VisionLanguageConfig = field(default_factory=VisionLanguageConfig)
    annotations: AnnotationConfig = field(default_factory=AnnotationConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    def validate(self) -> bool:
        """Validate configuration"""
        if self.legend.location not in LEGEND_CORNERS:
            raise ConfigurationError(
                f"Unknown legend location '{self.legend.location}'",
                {'allowed': list(LEGEND_CORNERS)}
            )

        if not math.isclose(self.weights.total(), 1.0, abs_tol=1e-6):
            raise ConfigurationError(
                f"Similarity weights must sum to 1.0, got {self.weights.total():.3f}",
                {'texture': self.weights.texture, 'color': self.weights.color,
                 'context': self.weights.context}
            )

        for name, value in (
            ("sampling.sample_size", self.sampling.sample_size),
            ("sampling.grid_spacing", self.sampling.grid_spacing),
            ("scanning.tile_size", self.scanning.tile_size),
            ("scale.scan_dpi", self.scale.scan_dpi),
        ):
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")

        if self.scanning.overlap < 0 or self.scanning.overlap >= self.scanning.tile_size:
            raise ConfigurationError(
                f"scanning.overlap must be in [0, tile_size), got {self.scanning.overlap}"
            )

        if self.sampling.sample_size > self.scanning.tile_size:
            raise ConfigurationError("sampling.sample_size cannot exceed scanning.tile_size")

        for note in self.advisories():
            logger.warning(note)
        return True

    def advisories(self) -> List[str]:
        """
        Non-fatal conflicts between settings

        The stock defaults (50px overlap, 80px sample) raise the overlap note.
        """
        notes = []
        if self.scanning.overlap < self.sampling.sample_size:
            notes.append(
                f"Tile overlap {self.scanning.overlap}px is smaller than the sample size "
                f"{self.sampling.sample_size}px; patterns straddling tile seams may be missed"
            )
        return notes
