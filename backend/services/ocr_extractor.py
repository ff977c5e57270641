"""
OCR Extraction Module for Plan Analysis
Word-level text recognition with Tesseract (default) or PaddleOCR
"""

import os
import logging
from typing import List, Dict, Tuple, Optional, Protocol
from dataclasses import dataclass, field

import numpy as np
import pytesseract
from PIL import Image

from services.error_types import ConfigurationError, OCRError
from services.takeoff_config import OCRConfig

logger = logging.getLogger(__name__)

# Tesseract language codes to PaddleOCR model names
PADDLE_LANGUAGES = {
    "deu": "german",
    "eng": "en",
    "fra": "fr",
}


@dataclass(frozen=True)
class OCRWord:
    """Recognised word with its box (x, y, width, height) in region pixels"""
    text: str
    bbox: Tuple[int, int, int, int]
    confidence: float  # 0.0 - 1.0
    line_id: int


@dataclass(frozen=True)
class OCRLine:
    text: str
    bbox: Tuple[int, int, int, int]
    confidence: float
    line_id: int


@dataclass(frozen=True)
class OCRResult:
    """Text recognised in one image region"""
    text: str
    words: List[OCRWord] = field(default_factory=list)

    def lines(self, min_confidence: float = 0.0) -> List[OCRLine]:
        """
        Group words into lines, keeping only words at or above ``min_confidence``

        Lines come back in first-seen order; words keep their reading order.
        """
        grouped: Dict[int, List[OCRWord]] = {}
        for word in self.words:
            if word.confidence < min_confidence or not word.text.strip():
                continue
            grouped.setdefault(word.line_id, []).append(word)

        lines = []
        for line_id, words in grouped.items():
            x0 = min(w.bbox[0] for w in words)
            y0 = min(w.bbox[1] for w in words)
            x1 = max(w.bbox[0] + w.bbox[2] for w in words)
            y1 = max(w.bbox[1] + w.bbox[3] for w in words)
            lines.append(OCRLine(
                text=" ".join(w.text.strip() for w in words),
                bbox=(x0, y0, x1 - x0, y1 - y0),
                confidence=float(np.mean([w.confidence for w in words])),
                line_id=line_id
            ))
        return lines


class OCREngine(Protocol):
    """Capability interface for text recognition"""

    def recognize(self, region: np.ndarray, language: str) -> OCRResult:
        ...


class TesseractOCREngine:
    """Word-level OCR through pytesseract"""

    def __init__(self, char_allowlist: Optional[str] = None, page_segmentation_mode: int = 6):
        self.char_allowlist = char_allowlist
        self.page_segmentation_mode = page_segmentation_mode

    def _tesseract_config(self) -> str:
        config = f"--psm {self.page_segmentation_mode}"
        if self.char_allowlist:
            config += f" -c tessedit_char_whitelist={self.char_allowlist}"
        return config

    def recognize(self, region: np.ndarray, language: str) -> OCRResult:
        """
        Recognise words in an RGB region

        Raises:
            OCRError: Tesseract is missing or failed on this region
        """
        pil_image = Image.fromarray(np.ascontiguousarray(region))
        try:
            ocr_data = pytesseract.image_to_data(
                pil_image,
                lang=language,
                config=self._tesseract_config(),
                output_type=pytesseract.Output.DICT
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError) as e:
            raise OCRError(f"Tesseract recognition failed: {str(e)}", {'language': language}) from e

        words = []
        line_ids: Dict[Tuple[int, int, int], int] = {}
        n_boxes = len(ocr_data['text'])

        for i in range(n_boxes):
            text = str(ocr_data['text'][i]).strip()
            confidence = float(ocr_data['conf'][i])
            # Non-word levels come back with conf -1 and no text
            if not text or confidence < 0:
                continue

            line_key = (int(ocr_data['block_num'][i]), int(ocr_data['par_num'][i]), int(ocr_data['line_num'][i]))
            line_id = line_ids.setdefault(line_key, len(line_ids))

            words.append(OCRWord(
                text=text,
                bbox=(int(ocr_data['left'][i]), int(ocr_data['top'][i]),
                      int(ocr_data['width'][i]), int(ocr_data['height'][i])),
                confidence=confidence / 100.0,
                line_id=line_id
            ))

        full_text = "\n".join(line.text for line in OCRResult("", words).lines())
        logger.debug(f"Tesseract extracted {len(words)} words in {len(line_ids)} lines")
        return OCRResult(text=full_text, words=words)


class PaddleOCREngine:
    """Line-level OCR through PaddleOCR; each detected line becomes one word"""

    def __init__(self, language: str = "deu+eng"):
        # Limit thread usage for predictable performance in containers
        os.environ.setdefault("OMP_NUM_THREADS", "1")
        os.environ.setdefault("MKL_NUM_THREADS", "1")

        try:
            from paddleocr import PaddleOCR
        except ImportError as e:
            raise ConfigurationError(
                "PaddleOCR engine requested but paddleocr is not installed",
                {'install': 'pip install legend-takeoff[paddle]'}
            ) from e

        primary = language.split("+")[0]
        paddle_lang = PADDLE_LANGUAGES.get(primary, "en")
        try:
            self.ocr = PaddleOCR(
                lang=paddle_lang,
                use_textline_orientation=True,
                use_doc_orientation_classify=False,
                use_doc_unwarping=False
            )
        except (TypeError, ValueError) as e:
            # Pre-3.0 releases reject the new keyword arguments
            logger.warning(f"PaddleOCR full initialization failed, using minimal config: {str(e)}")
            self.ocr = PaddleOCR(lang=paddle_lang)
        logger.info(f"PaddleOCR initialized (lang={paddle_lang})")

    def recognize(self, region: np.ndarray, language: str) -> OCRResult:
        try:
            if hasattr(self.ocr, 'predict'):
                detections = self._predict(region)
            else:
                detections = self._legacy_ocr(region)
        except Exception as e:
            raise OCRError(f"PaddleOCR recognition failed: {str(e)}") from e

        words = []
        for line_id, (points, text, confidence) in enumerate(detections):
            if not text.strip():
                continue
            xs = [p[0] for p in points]
            ys = [p[1] for p in points]
            x0, y0 = int(min(xs)), int(min(ys))
            words.append(OCRWord(
                text=text.strip(),
                bbox=(x0, y0, int(max(xs)) - x0, int(max(ys)) - y0),
                confidence=float(confidence),
                line_id=line_id
            ))

        logger.debug(f"PaddleOCR extracted {len(words)} text lines")
        return OCRResult(text="\n".join(w.text for w in words), words=words)

    def _predict(self, region: np.ndarray) -> List[Tuple[List, str, float]]:
        """PaddleOCR 3.x result objects"""
        detections = []
        for res in self.ocr.predict(region) or []:
            texts = res['rec_texts']
            scores = res['rec_scores']
            polys = res['rec_polys']
            for poly, text, score in zip(polys, texts, scores):
                detections.append((np.asarray(poly).tolist(), text, score))
        return detections

    def _legacy_ocr(self, region: np.ndarray) -> List[Tuple[List, str, float]]:
        result = self.ocr.ocr(region, cls=True)
        if not result or not result[0]:
            return []
        return [(line[0], line[1][0], line[1][1]) for line in result[0]]


def create_ocr_engine(config: OCRConfig) -> OCREngine:
    """Build the OCR engine named in the configuration"""
    engine = config.engine.lower()
    if engine == "tesseract":
        return TesseractOCREngine(char_allowlist=config.char_allowlist)
    if engine in ("paddle", "paddleocr"):
        return PaddleOCREngine(language=config.language)
    raise ConfigurationError(f"Unknown OCR engine '{config.engine}'", {'allowed': ['tesseract', 'paddle']})
