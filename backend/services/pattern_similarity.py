"""
Pattern similarity between two feature descriptors

overall = texture * avg(gabor, lbp, glcm) + color * color_sim + context * avg(edge, repetition)
with weights from SimilarityWeights (0.5 / 0.2 / 0.3 by default). Every term is in [0, 1].
"""

import logging
from typing import Optional
from dataclasses import dataclass

import numpy as np

from services.takeoff_config import SimilarityWeights
from services.texture_features import (
    ColorHistograms, EdgeStats, FeatureDescriptor, GaborStats, GLCMStats, RepetitionStats
)

logger = logging.getLogger(__name__)

ONE_SIDED_REPETITION = 0.2


@dataclass(frozen=True)
class SimilarityBreakdown:
    gabor: float
    lbp: float
    glcm: float
    color: float
    edge: float
    repetition: float
    overall: float

    @property
    def texture(self) -> float:
        return (self.gabor + self.lbp + self.glcm) / 3.0

    @property
    def context(self) -> float:
        return (self.edge + self.repetition) / 2.0


def _clip(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


def bray_curtis_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """1 - sum|a-b| / sum(a+b) for non-negative vectors; identical zeros are fully similar"""
    total = float(np.sum(a) + np.sum(b))
    if total <= 0:
        return 1.0
    return _clip(1.0 - float(np.sum(np.abs(a - b))) / total)


def histogram_intersection(a: np.ndarray, b: np.ndarray) -> float:
    if not np.any(a) and not np.any(b):
        return 1.0
    return _clip(float(np.sum(np.minimum(a, b))))


def scalar_ratio_similarity(a: float, b: float) -> float:
    if a + b <= 0:
        return 1.0
    return _clip(1.0 - abs(a - b) / (a + b))


def gabor_similarity(a: GaborStats, b: GaborStats) -> float:
    return bray_curtis_similarity(a.vector(), b.vector())


def glcm_similarity(a: GLCMStats, b: GLCMStats) -> float:
    contrast = 1.0 - abs(a.contrast - b.contrast) / (a.contrast + b.contrast + 1.0)
    homogeneity = 1.0 - abs(a.homogeneity - b.homogeneity)
    energy = 1.0 - abs(a.energy - b.energy)
    correlation = 1.0 - abs(a.correlation - b.correlation) / 2.0
    return _clip((contrast + homogeneity + energy + correlation) / 4.0)


def color_similarity(a: ColorHistograms, b: ColorHistograms) -> float:
    scores = [histogram_intersection(x, y) for x, y in zip(a.channels(), b.channels())]
    return float(np.mean(scores))


def edge_similarity(a: EdgeStats, b: EdgeStats) -> float:
    a_empty = a.density == 0
    b_empty = b.density == 0
    if a_empty and b_empty:
        return 1.0
    if a_empty or b_empty:
        return 0.0

    angle = abs(a.orientation - b.orientation) % 180.0
    angle = min(angle, 180.0 - angle)
    scores = (
        scalar_ratio_similarity(a.density, b.density),
        1.0 - angle / 90.0,
        1.0 - abs(a.straightness - b.straightness),
        1.0 - abs(a.continuity - b.continuity),
    )
    return _clip(float(np.mean(scores)))


def _period_similarity(a: int, b: int) -> float:
    if a == 0 and b == 0:
        return 1.0
    if a == 0 or b == 0:
        return 0.0
    return min(a, b) / max(a, b)


def repetition_similarity(a: RepetitionStats, b: RepetitionStats) -> float:
    if not a.has_repetition and not b.has_repetition:
        return 1.0
    if a.has_repetition != b.has_repetition:
        return ONE_SIDED_REPETITION

    periods = np.mean([_period_similarity(x, y) for x, y in zip(a.periods, b.periods)])
    regularity = 1.0 - abs(a.regularity - b.regularity)
    return _clip((float(periods) + regularity) / 2.0)


def compare_features(
    a: FeatureDescriptor,
    b: FeatureDescriptor,
    weights: Optional[SimilarityWeights] = None
) -> SimilarityBreakdown:
    """Full breakdown of the similarity between two descriptors"""
    weights = weights or SimilarityWeights()

    gabor = gabor_similarity(a.gabor, b.gabor)
    lbp = histogram_intersection(a.lbp.histogram, b.lbp.histogram)
    glcm = glcm_similarity(a.glcm, b.glcm)
    color = color_similarity(a.color, b.color)
    edge = edge_similarity(a.edges, b.edges)
    repetition = repetition_similarity(a.repetition, b.repetition)

    texture = (gabor + lbp + glcm) / 3.0
    context = (edge + repetition) / 2.0
    overall = _clip(weights.texture * texture + weights.color * color + weights.context * context)

    return SimilarityBreakdown(gabor, lbp, glcm, color, edge, repetition, overall)


def similarity(a: FeatureDescriptor, b: FeatureDescriptor,
               weights: Optional[SimilarityWeights] = None) -> float:
    return compare_features(a, b, weights).overall
