"""
Tests for legend swatch classification with mocked vision-language responses
"""

import json
from unittest.mock import Mock

import numpy as np
import pytest

from conftest import FakeOCREngine, FakeVLM, WALL_RESPONSE
from infrastructure.utils.raster_io import PlanImage
from services.error_types import ConfigurationError
from services.legend_segmenter import LegendSegmentation, LegendSwatch
from services.pattern_classifier import (
    LegendLabelReader, LegendPattern, OpenAIVisionClassifier, PatternClassifier, SwatchClassification,
    deduplicate_patterns, keyword_classification, parse_classification_response
)
from services.pipeline_context import RunDiagnostics
from services.pipeline_contracts import ElementCategory, MeasurementType
from services.strict_json_parser import StrictJSONParser
from services.takeoff_config import OCRConfig, VisionLanguageConfig


def make_swatch(index: int = 1, value: int = 0) -> LegendSwatch:
    image = PlanImage(np.full((20, 20, 3), value, dtype=np.uint8))
    return LegendSwatch(id=f"pattern_{index}", image=image, location=(40, 40 * index),
                        plan_location=(690, 700 + 40 * index))


def make_pattern(pattern_id: str, element_type: str, category=ElementCategory.WALL) -> LegendPattern:
    return LegendPattern(
        id=pattern_id,
        element_type=element_type,
        category=category,
        measurement_type=MeasurementType.AREA,
        confidence=0.9,
        source_image=PlanImage(np.zeros((4, 4, 3), dtype=np.uint8)),
        location=(0, 0)
    )


def vlm_config() -> VisionLanguageConfig:
    return VisionLanguageConfig(api_key="test-key", timeout_seconds=5.0, retries=0)


class TestStrictJSONParser:
    """Test JSON extraction from free-form responses"""

    def test_plain_json(self):
        """Test parsing a bare JSON object"""
        assert StrictJSONParser.extract_json('{"a": 1}') == {"a": 1}

    def test_markdown_fence(self):
        """Test parsing JSON inside a markdown fence"""
        content = 'Here you go:\n```json\n{"element_type": "Holz"}\n```'
        assert StrictJSONParser.extract_json(content) == {"element_type": "Holz"}

    def test_object_inside_prose(self):
        """Test parsing a JSON object embedded in prose"""
        content = 'The swatch is {"element_type": "Metall", "note": "braces } in text"} I think.'
        assert StrictJSONParser.extract_json(content) == {"element_type": "Metall", "note": "braces } in text"}

    def test_no_object(self):
        """Test that text without an object gives None"""
        assert StrictJSONParser.extract_json("no json at all") is None
        assert StrictJSONParser.extract_json("") is None


class TestSwatchClassification:
    """Test normalisation of model payloads"""

    def test_camel_case_aliases(self):
        """Test camelCase field names"""
        parsed = SwatchClassification.model_validate(
            {"elementType": "Trockenbau", "category": "WALL", "measurementType": "Area", "confidence": 0.7}
        )
        assert parsed.element_type == "Trockenbau"
        assert parsed.category == ElementCategory.WALL
        assert parsed.measurement_type == MeasurementType.AREA

    def test_unknown_values_normalise(self):
        """Test that unknown values fall back to the unknown members"""
        parsed = SwatchClassification.model_validate(
            {"element_type": "", "category": "roof", "measurement_type": "volume", "confidence": 3}
        )
        assert parsed.element_type == "unknown"
        assert parsed.category == ElementCategory.UNKNOWN
        assert parsed.measurement_type == MeasurementType.NONE
        assert parsed.confidence == 1.0

    def test_bad_confidence_defaults(self):
        """Test that a non-numeric confidence defaults to 0.5"""
        parsed = SwatchClassification.model_validate({"element_type": "Holz", "confidence": "high"})
        assert parsed.confidence == 0.5


class TestKeywordClassification:
    """Test the deterministic fallback classifier"""

    def test_wall_from_material_name(self):
        """Test keyword classification of a wall material"""
        result = keyword_classification("Stahlbeton 24 cm")
        assert result.element_type == "Stahlbeton"
        assert result.category == ElementCategory.WALL
        assert result.measurement_type == MeasurementType.AREA
        assert result.confidence == pytest.approx(0.6)

    def test_opening_from_english_text(self):
        """Test keyword classification of an opening in English"""
        result = keyword_classification("This looks like a door opening symbol")
        assert result.category == ElementCategory.OPENING
        assert result.measurement_type == MeasurementType.COUNT

    def test_nothing_recognised(self):
        """Test that unrecognised text is unknown"""
        result = keyword_classification("lorem ipsum")
        assert result.element_type == "unknown"
        assert result.category == ElementCategory.UNKNOWN
        assert result.measurement_type == MeasurementType.NONE

    def test_response_without_json_uses_keywords(self):
        """Test that a reply without JSON is classified by keywords"""
        result = parse_classification_response("I believe this hatch is Mauerwerk (masonry wall).")
        assert result.element_type == "Mauerwerk KS"
        assert result.category == ElementCategory.WALL
        assert result.confidence == pytest.approx(0.6)

    def test_response_with_json(self):
        """Test that a fenced JSON reply is parsed"""
        result = parse_classification_response(f"```json\n{WALL_RESPONSE}\n```")
        assert result.element_type == "Stahlbeton"
        assert result.confidence == pytest.approx(0.9)


class TestDeduplicatePatterns:
    """Test first-wins deduplication"""

    def test_keeps_first_per_element_and_category(self):
        """Test that the first pattern per element and category is kept"""
        patterns = [
            make_pattern("pattern_1", "Stahlbeton"),
            make_pattern("pattern_2", "Holz"),
            make_pattern("pattern_3", "Stahlbeton"),
            make_pattern("pattern_4", "Stahlbeton", ElementCategory.UNKNOWN),
        ]
        unique = deduplicate_patterns(patterns)
        assert [p.id for p in unique] == ["pattern_1", "pattern_2", "pattern_4"]

    def test_is_idempotent(self):
        """Test that deduplicating twice changes nothing"""
        patterns = [make_pattern("pattern_1", "Holz"), make_pattern("pattern_2", "Holz")]
        once = deduplicate_patterns(patterns)
        assert deduplicate_patterns(once) == once


class TestPatternClassifier:
    """Test swatch classification with a fake vision-language collaborator"""

    def test_classifies_and_deduplicates(self):
        """Test classification of several swatches of one element"""
        classifier = PatternClassifier(FakeVLM(), config=vlm_config())
        patterns = classifier.classify_swatches([make_swatch(1), make_swatch(2)])

        assert len(patterns) == 1
        pattern = patterns[0]
        assert pattern.id == "pattern_1"
        assert pattern.element_type == "Stahlbeton"
        assert pattern.category == ElementCategory.WALL
        assert pattern.location == (690, 740)

    def test_prompt_lists_catalog(self):
        """Test that the prompt lists catalog elements and asks for JSON"""
        vlm = FakeVLM()
        PatternClassifier(vlm, config=vlm_config()).classify_swatch(make_swatch())
        assert "Stahlbeton" in vlm.prompts[0]
        assert "JSON" in vlm.prompts[0]

    def test_failed_swatch_is_skipped_and_recorded(self):
        """Test that a failed model call skips the swatch with a warning"""
        diagnostics = RunDiagnostics()
        vlm = FakeVLM(fail_on=[0])
        classifier = PatternClassifier(vlm, config=vlm_config())

        patterns = classifier.classify_swatches([make_swatch(1), make_swatch(2)], diagnostics)

        assert [p.id for p in patterns] == ["pattern_2"]
        assert [d.stage for d in diagnostics.warnings()] == ["classification"]
        assert diagnostics.warnings()[0].details['swatch'] == "pattern_1"

    def test_label_reader_without_vlm(self):
        """Test label keywords when no model is configured"""
        classifier = PatternClassifier(None, label_reader=lambda swatch: "Trockenbau GK 12,5")
        patterns = classifier.classify_swatches([make_swatch()])
        assert patterns[0].element_type == "Trockenbau"
        assert patterns[0].measurement_type == MeasurementType.AREA

    def test_no_vlm_and_no_label_gives_unknown(self):
        """Test that a swatch without model or label is unknown"""
        patterns = PatternClassifier(None).classify_swatches([make_swatch()])
        assert patterns[0].element_type == "unknown"
        assert patterns[0].category == ElementCategory.UNKNOWN


class TestLegendLabelReader:
    """Test OCR of the label beside a swatch"""

    def test_reads_strip_right_of_swatch(self):
        """Test that the label is read right of the swatch"""
        seen = []

        class RecordingEngine(FakeOCREngine):
            def recognize(self, region, language):
                seen.append(region.shape)
                return super().recognize(region, language)

        legend_image = PlanImage(np.full((200, 300, 3), 255, dtype=np.uint8))
        legend = LegendSegmentation(image=legend_image, location="bottom-right", bounds=(0, 0, 300, 200))
        reader = LegendLabelReader(RecordingEngine("Holz"), legend, OCRConfig(retries=0))

        assert reader(make_swatch(1)) == "Holz"
        # swatch at (40, 40) is 20px wide, so the strip starts at x=60
        assert seen == [(20, 240, 3)]


class TestOpenAIVisionClassifier:
    """Test the OpenAI chat completions adapter with a mocked client"""

    def test_requires_api_key(self):
        """Test that the OpenAI client needs an API key"""
        with pytest.raises(ConfigurationError):
            OpenAIVisionClassifier(VisionLanguageConfig(api_key=""))

    def test_sends_image_and_returns_content(self):
        """Test the image request sent to the chat completions API"""
        client = Mock()
        client.chat.completions.create.return_value = Mock(
            choices=[Mock(message=Mock(content=WALL_RESPONSE))]
        )
        classifier = OpenAIVisionClassifier(VisionLanguageConfig(api_key="", model="gpt-4o"), client=client)

        response = classifier.classify(np.zeros((10, 10, 3), dtype=np.uint8), "classify this")

        assert json.loads(response)["element_type"] == "Stahlbeton"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        content = kwargs["messages"][1]["content"]
        assert content[0]["text"] == "classify this"
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
