"""
Tests for OCR engines with mocked backends
"""

from unittest.mock import Mock, patch

import numpy as np
import pytest
import pytesseract

from services.error_types import ConfigurationError, OCRError
from services.ocr_extractor import (
    OCRResult, OCRWord, PaddleOCREngine, TesseractOCREngine, create_ocr_engine
)
from services.takeoff_config import OCRConfig


def tesseract_data():
    return {
        'text': ['', 'M', '1:100', '', 'Grundriss'],
        'conf': [-1, 91, 88, -1, 40],
        'left': [0, 10, 30, 0, 10],
        'top': [0, 5, 5, 0, 40],
        'width': [0, 12, 40, 0, 80],
        'height': [0, 14, 14, 0, 14],
        'block_num': [1, 1, 1, 1, 1],
        'par_num': [1, 1, 1, 1, 1],
        'line_num': [0, 1, 1, 2, 2],
    }


class TestOCRResult:
    """Test line grouping"""

    def test_lines_group_by_line_id(self):
        """Test that words are grouped into lines by line id"""
        result = OCRResult("", [
            OCRWord("WD", (10, 10, 20, 10), 0.9, 0),
            OCRWord("30x40", (35, 12, 40, 10), 0.8, 0),
            OCRWord("F90", (10, 40, 30, 10), 0.9, 1),
        ])
        lines = result.lines()
        assert [line.text for line in lines] == ["WD 30x40", "F90"]
        assert lines[0].bbox == (10, 10, 65, 12)
        assert lines[0].confidence == pytest.approx(0.85)

    def test_low_confidence_words_are_filtered(self):
        """Test that lines drop words below the confidence floor"""
        result = OCRResult("", [OCRWord("WD", (0, 0, 1, 1), 0.9, 0), OCRWord("x", (2, 0, 1, 1), 0.2, 0)])
        assert [line.text for line in result.lines(0.6)] == ["WD"]


class TestTesseractOCREngine:
    """Test the pytesseract adapter"""

    @patch('services.ocr_extractor.pytesseract.image_to_data')
    def test_words_and_lines(self, mock_image_to_data):
        """Test Tesseract output conversion to words and lines"""
        mock_image_to_data.return_value = tesseract_data()
        engine = TesseractOCREngine(char_allowlist="0123456789:")

        result = engine.recognize(np.full((60, 120, 3), 255, dtype=np.uint8), "deu")

        assert [w.text for w in result.words] == ["M", "1:100", "Grundriss"]
        assert [w.line_id for w in result.words] == [0, 0, 1]
        assert result.words[0].confidence == pytest.approx(0.91)
        assert result.words[1].bbox == (30, 5, 40, 14)
        assert result.text == "M 1:100\nGrundriss"

        kwargs = mock_image_to_data.call_args.kwargs
        assert kwargs['lang'] == "deu"
        assert "--psm 6" in kwargs['config']
        assert "tessedit_char_whitelist=0123456789:" in kwargs['config']

    @patch('services.ocr_extractor.pytesseract.image_to_data')
    def test_missing_tesseract_raises_ocr_error(self, mock_image_to_data):
        """Test that a missing Tesseract binary raises OCRError"""
        mock_image_to_data.side_effect = pytesseract.TesseractNotFoundError()
        with pytest.raises(OCRError):
            TesseractOCREngine().recognize(np.zeros((10, 10, 3), dtype=np.uint8), "eng")


class TestPaddleOCREngine:
    """Test the PaddleOCR adapter without loading models"""

    def engine_with(self, ocr) -> PaddleOCREngine:
        engine = PaddleOCREngine.__new__(PaddleOCREngine)
        engine.ocr = ocr
        return engine

    def test_predict_api(self):
        """Test reading results from the PaddleOCR predict API"""
        ocr = Mock(spec=['predict'])
        ocr.predict.return_value = [{
            'rec_texts': ['1:50', ' '],
            'rec_scores': [0.97, 0.5],
            'rec_polys': [np.array([[10, 5], [60, 5], [60, 20], [10, 20]]), np.zeros((4, 2))],
        }]
        result = self.engine_with(ocr).recognize(np.zeros((30, 80, 3), dtype=np.uint8), "deu")

        assert [w.text for w in result.words] == ["1:50"]
        assert result.words[0].bbox == (10, 5, 50, 15)
        assert result.words[0].confidence == pytest.approx(0.97)

    def test_legacy_api(self):
        """Test reading results from the legacy PaddleOCR ocr API"""
        ocr = Mock(spec=['ocr'])
        ocr.ocr.return_value = [[
            ([[0, 0], [20, 0], [20, 10], [0, 10]], ("F90", 0.9)),
        ]]
        result = self.engine_with(ocr).recognize(np.zeros((30, 80, 3), dtype=np.uint8), "deu")
        assert result.text == "F90"

    def test_backend_failure_raises_ocr_error(self):
        """Test that a PaddleOCR failure raises OCRError"""
        ocr = Mock(spec=['predict'])
        ocr.predict.side_effect = RuntimeError("model crashed")
        with pytest.raises(OCRError):
            self.engine_with(ocr).recognize(np.zeros((10, 10, 3), dtype=np.uint8), "deu")


class TestCreateOCREngine:
    """Test engine selection"""

    def test_tesseract_by_default(self):
        """Test that Tesseract is the default engine"""
        engine = create_ocr_engine(OCRConfig(engine="tesseract"))
        assert isinstance(engine, TesseractOCREngine)
        assert engine.char_allowlist == OCRConfig().char_allowlist

    def test_unknown_engine(self):
        """Test that an unknown engine name is a configuration error"""
        with pytest.raises(ConfigurationError):
            create_ocr_engine(OCRConfig(engine="abbyy"))
