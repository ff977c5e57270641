"""
Pytest configuration and fixtures
"""
import json
import threading
from typing import List, Optional

import numpy as np
import pytest

from infrastructure.utils.raster_io import PlanImage
from services.ocr_extractor import OCRResult, OCRWord
from services.takeoff_config import TakeoffConfig

WALL_RESPONSE = json.dumps({
    "element_type": "Stahlbeton",
    "category": "wall",
    "measurement_type": "area",
    "confidence": 0.9
})

# Plan-pixel top-left corners of the solid squares drawn on the synthetic plan
SQUARE_ORIGINS = ((100, 100), (300, 600), (600, 250))
# Same scene off the 40px window grid of the stock 80px sample
OFFSET_SQUARE_ORIGINS = ((117, 116), (292, 283), (486, 475))
SQUARE_SIZE = 50


class FakeOCREngine:
    """Returns the same text for every region, one word per token on one line"""

    def __init__(self, text: str = "", confidence: float = 0.95):
        self.text = text
        self.confidence = confidence
        self.calls = 0
        self._lock = threading.Lock()

    def recognize(self, region: np.ndarray, language: str) -> OCRResult:
        with self._lock:
            self.calls += 1
        words = []
        x = 5
        for token in self.text.split():
            width = 10 * len(token)
            words.append(OCRWord(token, (x, 5, width, 12), self.confidence, 0))
            x += width + 6
        return OCRResult(text=self.text, words=words)


class FailingOCREngine:
    """Raises on every call"""

    def __init__(self):
        self.calls = 0

    def recognize(self, region: np.ndarray, language: str) -> OCRResult:
        self.calls += 1
        raise RuntimeError("tesseract exploded")


class FakeVLM:
    """Vision-language stand-in with a canned answer"""

    def __init__(self, response: str = WALL_RESPONSE, fail_on: Optional[List[int]] = None):
        self.response = response
        self.fail_on = set(fail_on or [])
        self.prompts: List[str] = []

    def classify(self, region: np.ndarray, prompt: str) -> str:
        call_index = len(self.prompts)
        self.prompts.append(prompt)
        if call_index in self.fail_on:
            raise RuntimeError("service unavailable")
        return self.response


def blank_plan(width: int = 1000, height: int = 1000) -> np.ndarray:
    return np.full((height, width, 3), 255, dtype=np.uint8)


def draw_box(pixels: np.ndarray, x: int, y: int, width: int, height: int, value: int = 0):
    pixels[y:y + height, x:x + width] = value


def squares_plan(origins) -> PlanImage:
    """1000x1000 plan with solid squares at ``origins`` and one swatch at legend (40, 40)"""
    pixels = blank_plan()
    for x, y in origins:
        draw_box(pixels, x, y, SQUARE_SIZE, SQUARE_SIZE)
    draw_box(pixels, 690, 740, SQUARE_SIZE, SQUARE_SIZE)
    return PlanImage(pixels)


@pytest.fixture
def config() -> TakeoffConfig:
    """Small, fast configuration for synthetic plans"""
    cfg = TakeoffConfig()
    cfg.sampling.sample_size = 50
    cfg.scanning.tile_size = 500
    cfg.scanning.overlap = 50
    cfg.scanning.max_workers = 2
    cfg.scanning.min_similarity = 0.75
    cfg.legend.location = "bottom-right"
    cfg.ocr.timeout_seconds = 5.0
    cfg.ocr.retries = 0
    cfg.vlm.enabled = True
    cfg.vlm.timeout_seconds = 5.0
    cfg.vlm.retries = 0
    cfg.scale.scan_dpi = 300.0
    return cfg


@pytest.fixture
def default_config() -> TakeoffConfig:
    """Stock sampling and scanning; only workers and service timeouts are shortened"""
    cfg = TakeoffConfig()
    cfg.scanning.max_workers = 2
    cfg.scanning.min_similarity = 0.75
    cfg.legend.location = "bottom-right"
    cfg.ocr.timeout_seconds = 5.0
    cfg.ocr.retries = 0
    cfg.vlm.enabled = True
    cfg.vlm.timeout_seconds = 5.0
    cfg.vlm.retries = 0
    cfg.scale.scan_dpi = 300.0
    return cfg


@pytest.fixture
def square_plan() -> PlanImage:
    """
    1000x1000 plan with three solid 50px squares and one legend swatch

    The legend block of the default bottom-right layout is (650, 700, 300, 250);
    its swatch sits at legend (40, 40).
    """
    return squares_plan(SQUARE_ORIGINS)


@pytest.fixture
def offset_square_plan() -> PlanImage:
    return squares_plan(OFFSET_SQUARE_ORIGINS)


@pytest.fixture
def scale_ocr() -> FakeOCREngine:
    return FakeOCREngine("M 1:100")


@pytest.fixture
def wall_vlm() -> FakeVLM:
    return FakeVLM()
