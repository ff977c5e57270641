"""
Raster I/O Utilities
Loads plan scans into immutable RGB rasters and crops, composes and encodes them
"""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple, Union

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from services.error_types import PlanLoadError

logger = logging.getLogger(__name__)

# Architectural scans routinely exceed PIL's decompression-bomb guard
Image.MAX_IMAGE_PIXELS = None

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


@dataclass(frozen=True, eq=False)
class PlanImage:
    """Read-only RGB raster (H x W x 3, uint8)"""
    pixels: np.ndarray

    def __post_init__(self):
        pixels = np.ascontiguousarray(self.pixels, dtype=np.uint8)
        if pixels.ndim == 2:
            pixels = np.stack([pixels] * 3, axis=-1)
        if pixels.ndim != 3 or pixels.shape[2] != 3:
            raise ValueError(f"Expected an RGB raster, got shape {self.pixels.shape}")
        if pixels is self.pixels:
            pixels = pixels.copy()
        pixels.setflags(write=False)
        object.__setattr__(self, 'pixels', pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width


@dataclass(frozen=True)
class Overlay:
    """A filled rectangle drawn over a plan"""
    x: int
    y: int
    width: int
    height: int
    color: Tuple[int, int, int]  # RGB
    alpha: float = 0.3


def load_plan(path: Union[str, Path]) -> PlanImage:
    """
    Load a plan scan from disk.

    Raises:
        PlanLoadError: file missing or not a decodable image
    """
    path = Path(path)
    if not path.is_file():
        raise PlanLoadError(str(path), "file not found")

    try:
        with Image.open(path) as img:
            rgb = img.convert("RGB")
            pixels = np.asarray(rgb, dtype=np.uint8)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise PlanLoadError(str(path), str(e)) from e

    plan = PlanImage(pixels)
    logger.info(f"Plan loaded: {plan.width}x{plan.height} pixels from {path.name}")
    return plan


def decode_plan(data: bytes, name: str = "<bytes>") -> PlanImage:
    """Decode an encoded image buffer (PNG, JPEG, TIFF...) into a PlanImage"""
    try:
        with Image.open(io.BytesIO(data)) as img:
            pixels = np.asarray(img.convert("RGB"), dtype=np.uint8)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise PlanLoadError(name, str(e)) from e
    return PlanImage(pixels)


def crop(image: PlanImage, x: int, y: int, width: int, height: int) -> PlanImage:
    """Copy a sub-region, clipped to the image bounds"""
    x0 = max(0, int(x))
    y0 = max(0, int(y))
    x1 = min(image.width, int(x) + int(width))
    y1 = min(image.height, int(y) + int(height))
    if x1 <= x0 or y1 <= y0:
        raise ValueError(f"Crop ({x}, {y}, {width}, {height}) lies outside a {image.width}x{image.height} image")
    return PlanImage(image.pixels[y0:y1, x0:x1].copy())


def fraction_box(image: PlanImage, region: Tuple[float, float, float, float]) -> Tuple[int, int, int, int]:
    """Convert an (x, y, w, h) fraction box into a clipped pixel box"""
    fx, fy, fw, fh = region
    x = int(round(fx * image.width))
    y = int(round(fy * image.height))
    w = max(1, int(round(fw * image.width)))
    h = max(1, int(round(fh * image.height)))
    w = min(w, image.width - x)
    h = min(h, image.height - y)
    return x, y, w, h


def compose(base: PlanImage, overlays: List[Overlay]) -> PlanImage:
    """Alpha-blend filled rectangles onto a copy of ``base``"""
    canvas = base.pixels.astype(np.float32)
    for overlay in overlays:
        x0 = max(0, overlay.x)
        y0 = max(0, overlay.y)
        x1 = min(base.width, overlay.x + overlay.width)
        y1 = min(base.height, overlay.y + overlay.height)
        if x1 <= x0 or y1 <= y0:
            continue
        color = np.array(overlay.color, dtype=np.float32)
        region = canvas[y0:y1, x0:x1]
        canvas[y0:y1, x0:x1] = region * (1.0 - overlay.alpha) + color * overlay.alpha
    return PlanImage(np.clip(canvas, 0, 255).astype(np.uint8))


def encode(image: Union[PlanImage, np.ndarray]) -> bytes:
    """Encode an RGB raster as PNG bytes"""
    pixels = image.pixels if isinstance(image, PlanImage) else image
    ok, buffer = cv2.imencode(".png", cv2.cvtColor(np.ascontiguousarray(pixels), cv2.COLOR_RGB2BGR))
    if not ok:
        raise ValueError("PNG encoding failed")
    return buffer.tobytes()


def to_luma(pixels: np.ndarray) -> np.ndarray:
    """Luma (0-255, float64) using 0.299/0.587/0.114 weights"""
    if pixels.ndim == 2:
        return pixels.astype(np.float64)
    return pixels[..., :3].astype(np.float64) @ LUMA_WEIGHTS


def ink_mask(pixels: np.ndarray, luma_threshold: float = 240.0) -> np.ndarray:
    """True where a pixel is darker than paper"""
    return to_luma(pixels) < luma_threshold


def ink_ratio(pixels: np.ndarray, luma_threshold: float = 240.0) -> float:
    if pixels.size == 0:
        return 0.0
    return float(np.mean(ink_mask(pixels, luma_threshold)))
