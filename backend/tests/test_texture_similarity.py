"""
Tests for texture feature extraction and pattern similarity
"""

import numpy as np
import pytest

from services.pattern_similarity import (
    bray_curtis_similarity, compare_features, edge_similarity, histogram_intersection,
    repetition_similarity, similarity
)
from services.takeoff_config import SimilarityWeights, TextureConfig
from services.texture_features import (
    EdgeStats, RepetitionStats, extract_features, glcm_features, lbp_features, repetition_features
)


def hatch(size: int = 64, period: int = 8, thickness: int = 2) -> np.ndarray:
    """Vertical black stripes on white"""
    pixels = np.full((size, size, 3), 255, dtype=np.uint8)
    for x in range(0, size, period):
        pixels[:, x:x + thickness] = 0
    return pixels


def solid(size: int = 64, value: int = 0) -> np.ndarray:
    return np.full((size, size, 3), value, dtype=np.uint8)


class TestFeatureExtraction:
    """Test the individual feature families"""

    def test_descriptor_is_deterministic(self):
        """Test that features of equal input are equal"""
        a = extract_features(hatch())
        b = extract_features(hatch())
        assert np.array_equal(a.gabor.vector(), b.gabor.vector())
        assert np.array_equal(a.lbp.histogram, b.lbp.histogram)
        assert a.glcm == b.glcm
        assert a.edges == b.edges
        assert a.repetition == b.repetition

    def test_descriptor_size(self):
        """Test descriptor size and Gabor vector length"""
        descriptor = extract_features(np.full((30, 40, 3), 255, dtype=np.uint8))
        assert descriptor.size == (40, 30)
        assert len(descriptor.gabor.vector()) == 3 * 4 * 2

    def test_empty_region_raises(self):
        """Test that an empty region raises"""
        with pytest.raises(ValueError):
            extract_features(np.zeros((0, 10, 3), dtype=np.uint8))

    def test_lbp_histogram_is_normalised(self):
        """Test that the LBP histogram sums to one"""
        stats = lbp_features(hatch()[..., 0])
        assert stats.histogram.sum() == pytest.approx(1.0)
        assert 0.0 < stats.uniformity <= 1.0

    def test_uniform_region_lbp(self):
        """Test LBP codes of a flat region"""
        stats = lbp_features(np.zeros((10, 10), dtype=np.uint8))
        # every neighbour equals the centre, so every code is 255
        assert stats.histogram[255] == pytest.approx(1.0)
        assert stats.entropy == pytest.approx(0.0)

    def test_glcm_uniform_region(self):
        """Test GLCM statistics of a flat region"""
        stats = glcm_features(np.full((16, 16), 128, dtype=np.uint8), TextureConfig())
        assert stats.contrast == pytest.approx(0.0)
        assert stats.homogeneity == pytest.approx(1.0)
        assert stats.energy == pytest.approx(1.0)

    def test_glcm_hatch_has_contrast(self):
        """Test that hatching has GLCM contrast"""
        stats = glcm_features(hatch()[..., 0], TextureConfig())
        assert stats.contrast > 0.0
        assert stats.homogeneity < 1.0

    def test_solid_region_has_no_edges(self):
        """Test that a solid region has no edges"""
        descriptor = extract_features(solid())
        assert descriptor.edges.density == 0.0

    def test_hatch_edges_are_vertical(self):
        """Test the edge orientation of vertical hatching"""
        edges = extract_features(hatch()).edges
        assert edges.density > 0.0
        # gradient of vertical stripes points along x
        assert edges.orientation == pytest.approx(5.0) or edges.orientation == pytest.approx(175.0)
        assert edges.straightness > 0.9

    def test_repetition_detects_period(self):
        """Test that hatching has a repetition period"""
        ink = 1.0 - hatch(period=8)[..., 0].astype(np.float32) / 255.0
        stats = repetition_features(ink)
        assert stats.has_repetition is True
        assert stats.periods[0] == 8
        assert stats.periods[1] == 0
        assert stats.regularity > 0.5

    def test_uniform_region_has_no_repetition(self):
        """Test that a flat region has no repetition"""
        stats = repetition_features(np.ones((32, 32), dtype=np.float32))
        assert stats.has_repetition is False
        assert stats.periods == (0, 0, 0)


class TestSimilarityPrimitives:
    """Test the building blocks of the similarity score"""

    def test_bray_curtis(self):
        """Test Bray-Curtis similarity"""
        assert bray_curtis_similarity(np.array([1.0, 2.0]), np.array([1.0, 2.0])) == pytest.approx(1.0)
        assert bray_curtis_similarity(np.array([1.0, 0.0]), np.array([0.0, 1.0])) == pytest.approx(0.0)
        assert bray_curtis_similarity(np.zeros(3), np.zeros(3)) == 1.0

    def test_histogram_intersection(self):
        """Test histogram intersection"""
        a = np.array([0.5, 0.5, 0.0])
        b = np.array([0.0, 0.5, 0.5])
        assert histogram_intersection(a, b) == pytest.approx(0.5)
        assert histogram_intersection(np.zeros(3), np.zeros(3)) == 1.0

    def test_edge_similarity_one_sided(self):
        """Test edge similarity when one side has no edges"""
        empty = EdgeStats(0.0, 0.0, 0.0, 0.0)
        present = EdgeStats(0.2, 90.0, 0.8, 0.7)
        assert edge_similarity(empty, empty) == 1.0
        assert edge_similarity(empty, present) == 0.0
        assert edge_similarity(present, present) == pytest.approx(1.0)

    def test_edge_orientation_wraps(self):
        """Test that edge orientation wraps at 180 degrees"""
        a = EdgeStats(0.2, 5.0, 0.8, 0.7)
        b = EdgeStats(0.2, 175.0, 0.8, 0.7)
        # 5 and 175 degrees are 10 degrees apart
        assert edge_similarity(a, b) == pytest.approx((1.0 + (1.0 - 10.0 / 90.0) + 1.0 + 1.0) / 4.0)

    def test_repetition_similarity(self):
        """Test repetition similarity"""
        none = RepetitionStats((0, 0, 0), 0.0, False)
        periodic = RepetitionStats((8, 0, 8), 0.9, True)
        assert repetition_similarity(none, none) == 1.0
        assert repetition_similarity(none, periodic) == pytest.approx(0.2)
        assert repetition_similarity(periodic, periodic) == pytest.approx(1.0)


class TestSimilarity:
    """Test the overall score"""

    @pytest.mark.parametrize("pixels", [hatch(), solid(), solid(value=255), hatch(period=12, thickness=4)])
    def test_identical_regions_score_one(self, pixels):
        """Test that a region scores one against itself"""
        descriptor = extract_features(pixels)
        assert similarity(descriptor, descriptor) == pytest.approx(1.0)

    def test_score_is_symmetric(self):
        """Test that similarity is symmetric"""
        a = extract_features(hatch())
        b = extract_features(hatch(period=12, thickness=4))
        assert similarity(a, b) == pytest.approx(similarity(b, a))

    def test_score_is_bounded(self):
        """Test that similarity lies in [0, 1]"""
        a = extract_features(hatch())
        b = extract_features(solid(value=255))
        score = similarity(a, b)
        assert 0.0 <= score <= 1.0

    def test_different_patterns_score_lower(self):
        """Test that a different pattern scores lower than the same one"""
        reference = extract_features(hatch())
        same = extract_features(hatch())
        other = extract_features(solid())
        assert similarity(reference, same) > similarity(reference, other)

    def test_breakdown_matches_weights(self):
        """Test that the breakdown combines to the weighted overall score"""
        weights = SimilarityWeights(texture=0.6, color=0.1, context=0.3)
        a = extract_features(hatch())
        b = extract_features(hatch(period=12, thickness=4))
        breakdown = compare_features(a, b, weights)
        expected = 0.6 * breakdown.texture + 0.1 * breakdown.color + 0.3 * breakdown.context
        assert breakdown.overall == pytest.approx(expected)
