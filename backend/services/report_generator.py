"""
Takeoff Report Generator
Writes the JSON report and an annotated plan raster with colour-coded match
overlays, a legend panel and a statistics panel
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np

from infrastructure.utils.raster_io import Overlay, PlanImage, compose, encode
from services.pipeline_contracts import ElementResult, TakeoffReport
from services.takeoff_config import OutputConfig
from utils.json_utils import dumps, safe_dict
from utils.logging_utils import timed_stage

logger = logging.getLogger(__name__)

# Element family -> RGB; matched as a substring of the element name or code
COLOR_MAP: Tuple[Tuple[str, Tuple[int, int, int]], ...] = (
    ("Stahlbeton", (255, 0, 0)),
    ("MW KS", (0, 255, 0)),
    ("Mauerwerk", (0, 255, 0)),
    ("Dämmung", (0, 0, 255)),
    ("Trockenbau", (255, 0, 255)),
    ("Holz", (139, 69, 19)),
    ("Metall", (128, 128, 128)),
    ("WD", (255, 215, 0)),
    ("DD", (255, 165, 0)),
    ("BD", (255, 99, 71)),
)
DEFAULT_COLOR = (255, 255, 0)

FONT = cv2.FONT_HERSHEY_SIMPLEX
TRANSLITERATION = str.maketrans({"ä": "ae", "ö": "oe", "ü": "ue", "Ä": "Ae", "Ö": "Oe", "Ü": "Ue",
                                 "ß": "ss", "²": "2", "³": "3"})


def color_for(result: ElementResult) -> Tuple[int, int, int]:
    for key, color in COLOR_MAP:
        if key in result.element or (result.code and key == result.code):
            return color
    return DEFAULT_COLOR


def _ascii(text: str) -> str:
    """Hershey fonts only cover ASCII"""
    return text.translate(TRANSLITERATION).encode("ascii", "replace").decode("ascii")


class ReportGenerator:
    """Serialises takeoff reports and renders the annotated plan"""

    def __init__(self, config: Optional[OutputConfig] = None):
        self.config = config or OutputConfig()

    @staticmethod
    def report_dict(report: TakeoffReport) -> Dict[str, Any]:
        return safe_dict(report)

    def write_json(self, report: TakeoffReport, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(dumps(self.report_dict(report)), encoding="utf-8")
        logger.info(f"Report written: {path}")
        return path

    def render(self, plan: PlanImage, report: TakeoffReport) -> PlanImage:
        """Annotated copy of the plan; the input plan is never modified"""
        overlays: List[Overlay] = []
        for result in report.results:
            color = color_for(result)
            for location in result.locations:
                overlays.append(Overlay(location.x, location.y, location.width, location.height,
                                        color, self.config.overlay_alpha))

        canvas = np.array(compose(plan, overlays).pixels)
        for result in report.results:
            color = color_for(result)
            for location in result.locations:
                cv2.rectangle(canvas, (location.x, location.y),
                              (location.x + location.width - 1, location.y + location.height - 1),
                              color, 1)

        y = self._draw_legend_panel(canvas, report)
        self._draw_statistics_panel(canvas, report, y + 10)
        return PlanImage(canvas)

    def _panel(self, canvas: np.ndarray, x: int, y: int, width: int, height: int):
        x1 = min(canvas.shape[1] - 1, x + width)
        y1 = min(canvas.shape[0] - 1, y + height)
        cv2.rectangle(canvas, (x, y), (x1, y1), (255, 255, 255), -1)
        cv2.rectangle(canvas, (x, y), (x1, y1), (0, 0, 0), 1)

    def _draw_legend_panel(self, canvas: np.ndarray, report: TakeoffReport) -> int:
        """Colour key of the first legend_rows results; returns the panel's bottom edge"""
        rows = report.results[:self.config.legend_rows]
        x, y = 10, 10
        height = 30 + 22 * len(rows)
        self._panel(canvas, x, y, 320, height)
        cv2.putText(canvas, "Legend", (x + 10, y + 20), FONT, 0.5, (0, 0, 0), 1, cv2.LINE_AA)

        for i, result in enumerate(rows):
            row_y = y + 30 + 22 * i
            cv2.rectangle(canvas, (x + 10, row_y), (x + 26, row_y + 14), color_for(result), -1)
            label = f"{result.element}: {result.measurement:.2f} {result.unit}"
            cv2.putText(canvas, _ascii(label), (x + 34, row_y + 12), FONT, 0.4, (0, 0, 0), 1, cv2.LINE_AA)
        return y + height

    def _draw_statistics_panel(self, canvas: np.ndarray, report: TakeoffReport, y: int):
        summary = report.summary
        scale_note = " (default)" if report.scale.is_fallback else ""
        lines = [
            f"Scale: {report.scale.notation}{scale_note}",
            f"Total wall area: {summary.total_wall_area:.2f} m2",
            f"Total openings: {summary.total_openings:.0f}",
            f"Elements: {summary.total_elements}  Matches: {summary.total_matches}",
            f"Average confidence: {summary.average_confidence * 100:.1f}%",
        ]
        x = 10
        self._panel(canvas, x, y, 320, 20 + 18 * len(lines))
        for i, line in enumerate(lines):
            cv2.putText(canvas, _ascii(line), (x + 10, y + 18 + 18 * i), FONT, 0.4, (0, 0, 0), 1, cv2.LINE_AA)

    def write_png(self, image: PlanImage, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(encode(image))
        logger.info(f"Annotated plan written: {path}")
        return path

    @timed_stage("report")
    def save(self, report: TakeoffReport, plan: PlanImage, stem: str,
             output_dir: Optional[Path] = None) -> Tuple[Path, Path]:
        """Write <stem>_takeoff.json and <stem>_takeoff.png"""
        output_dir = Path(output_dir or self.config.output_dir)
        json_path = self.write_json(report, output_dir / f"{stem}_takeoff.json")
        png_path = self.write_png(self.render(plan, report), output_dir / f"{stem}_takeoff.png")
        return json_path, png_path
