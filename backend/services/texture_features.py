"""
Texture feature extraction for legend patterns and plan windows
Gabor energy, local binary patterns, co-occurrence statistics, colour histograms,
edge statistics and repetition analysis; pure functions over RGB arrays
"""

import logging
from typing import List, Optional, Tuple
from dataclasses import dataclass

import cv2
import numpy as np

from infrastructure.utils.raster_io import to_luma
from services.takeoff_config import TextureConfig

logger = logging.getLogger(__name__)

EPSILON = 1e-12
PEAK_TOLERANCE = 1e-6
# Harmonics within this fraction of the strongest peak count as the same period
FUNDAMENTAL_RATIO = 0.9

# 8-neighbourhood in clockwise order starting top-left
LBP_OFFSETS = ((-1, -1), (-1, 0), (-1, 1), (0, 1), (1, 1), (1, 0), (1, -1), (0, -1))
ORIENTATION_BIN_DEGREES = 10


def _frozen(values) -> np.ndarray:
    array = np.asarray(values, dtype=np.float64)
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class GaborStats:
    """Per (orientation, frequency) pair, orientation-major"""
    mean: np.ndarray
    variance: np.ndarray
    energy: np.ndarray

    def vector(self) -> np.ndarray:
        return np.concatenate([self.mean, self.variance, self.energy])


@dataclass(frozen=True, eq=False)
class LBPStats:
    histogram: np.ndarray
    uniformity: float
    entropy: float


@dataclass(frozen=True)
class GLCMStats:
    contrast: float
    homogeneity: float
    energy: float
    correlation: float


@dataclass(frozen=True, eq=False)
class ColorHistograms:
    red: np.ndarray
    green: np.ndarray
    blue: np.ndarray
    gray: np.ndarray

    def channels(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        return self.red, self.green, self.blue, self.gray


@dataclass(frozen=True)
class EdgeStats:
    density: float
    orientation: float  # degrees, 0-180
    straightness: float
    continuity: float


@dataclass(frozen=True)
class RepetitionStats:
    periods: Tuple[int, int, int]  # horizontal, vertical, diagonal lag in pixels
    regularity: float
    has_repetition: bool


@dataclass(frozen=True, eq=False)
class FeatureDescriptor:
    """Texture fingerprint of one image region"""
    gabor: GaborStats
    lbp: LBPStats
    glcm: GLCMStats
    color: ColorHistograms
    edges: EdgeStats
    repetition: RepetitionStats
    size: Tuple[int, int]  # width, height


def _gray_u8(region: np.ndarray) -> np.ndarray:
    return np.clip(np.rint(to_luma(region)), 0, 255).astype(np.uint8)


def gabor_features(ink: np.ndarray, config: TextureConfig) -> GaborStats:
    """Gabor filter bank over ink intensity (0 = paper, 1 = full ink)"""
    ksize = config.gabor_kernel_size | 1
    means, variances, energies = [], [], []
    for orientation in config.gabor_orientations:
        theta = np.deg2rad(orientation)
        for frequency in config.gabor_frequencies:
            wavelength = 1.0 / frequency
            kernel = cv2.getGaborKernel(
                (ksize, ksize), 0.56 * wavelength, theta, wavelength, 0.5, 0, ktype=cv2.CV_32F
            )
            response = cv2.filter2D(ink, cv2.CV_32F, kernel, borderType=cv2.BORDER_REFLECT)
            magnitude = np.abs(response.astype(np.float64))
            means.append(float(magnitude.mean()))
            variances.append(float(magnitude.var()))
            energies.append(float(np.mean(magnitude ** 2)))
    return GaborStats(_frozen(means), _frozen(variances), _frozen(energies))


def lbp_features(gray: np.ndarray, radius: int = 1) -> LBPStats:
    """Local binary patterns over interior pixels; a neighbour sets its bit when >= centre"""
    h, w = gray.shape
    if h <= 2 * radius or w <= 2 * radius:
        return LBPStats(_frozen(np.zeros(256)), 0.0, 0.0)

    values = gray.astype(np.int16)
    center = values[radius:h - radius, radius:w - radius]
    codes = np.zeros(center.shape, dtype=np.int32)
    for bit, (dy, dx) in enumerate(LBP_OFFSETS):
        neighbour = values[radius + dy * radius:h - radius + dy * radius,
                           radius + dx * radius:w - radius + dx * radius]
        codes |= (neighbour >= center).astype(np.int32) << bit

    histogram = np.bincount(codes.ravel(), minlength=256).astype(np.float64)
    histogram /= histogram.sum()
    nonzero = histogram[histogram > 0]
    uniformity = float(np.sum(histogram ** 2))
    entropy = float(-np.sum(nonzero * np.log2(nonzero)))
    return LBPStats(_frozen(histogram), uniformity, entropy)


def _glcm_offset(distance: int, angle: float) -> Tuple[int, int]:
    theta = np.deg2rad(angle)
    return int(round(-np.sin(theta))) * distance, int(round(np.cos(theta))) * distance


def glcm_features(gray: np.ndarray, config: TextureConfig) -> GLCMStats:
    """Symmetric normalised co-occurrence statistics averaged over all offsets"""
    levels = config.glcm_levels
    quantized = (gray.astype(np.int32) * levels) // 256
    h, w = quantized.shape
    i_idx, j_idx = np.meshgrid(np.arange(levels), np.arange(levels), indexing='ij')

    stats: List[Tuple[float, float, float, float]] = []
    for distance in config.glcm_distances:
        for angle in config.glcm_angles:
            dy, dx = _glcm_offset(distance, angle)
            y0, y1 = max(0, -dy), min(h, h - dy)
            x0, x1 = max(0, -dx), min(w, w - dx)
            if y1 <= y0 or x1 <= x0:
                continue
            a = quantized[y0:y1, x0:x1]
            b = quantized[y0 + dy:y1 + dy, x0 + dx:x1 + dx]
            matrix = np.bincount((a * levels + b).ravel(), minlength=levels * levels)
            matrix = matrix.reshape(levels, levels).astype(np.float64)
            matrix = matrix + matrix.T
            total = matrix.sum()
            if total <= 0:
                continue
            p = matrix / total

            diff = (i_idx - j_idx).astype(np.float64)
            contrast = float(np.sum(p * diff ** 2))
            homogeneity = float(np.sum(p / (1.0 + diff ** 2)))
            energy = float(np.sqrt(np.sum(p ** 2)))
            mu = float(np.sum(i_idx * p))
            variance = float(np.sum(p * (i_idx - mu) ** 2))
            if variance < EPSILON:
                correlation = 1.0
            else:
                correlation = float(np.sum(p * (i_idx - mu) * (j_idx - mu)) / variance)
            stats.append((contrast, homogeneity, energy, correlation))

    if not stats:
        return GLCMStats(0.0, 1.0, 1.0, 1.0)
    averaged = np.mean(np.array(stats), axis=0)
    return GLCMStats(*(float(v) for v in averaged))


def color_features(region: np.ndarray, gray: np.ndarray, bins: int = 32) -> ColorHistograms:
    def histogram(channel: np.ndarray) -> np.ndarray:
        counts, _ = np.histogram(channel, bins=bins, range=(0, 256))
        total = counts.sum()
        return _frozen(counts / total if total else counts)

    return ColorHistograms(
        red=histogram(region[..., 0]),
        green=histogram(region[..., 1]),
        blue=histogram(region[..., 2]),
        gray=histogram(gray),
    )


def edge_features(gray: np.ndarray, config: TextureConfig) -> EdgeStats:
    edges = cv2.Canny(gray, config.canny_low, config.canny_high) > 0
    edge_count = int(edges.sum())
    if edge_count == 0:
        return EdgeStats(0.0, 0.0, 0.0, 0.0)

    density = edge_count / edges.size

    gx = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=3)
    gy = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=3)
    angles = np.mod(np.degrees(np.arctan2(gy[edges], gx[edges])), 180.0)
    n_bins = 180 // ORIENTATION_BIN_DEGREES
    bin_index = np.minimum((angles // ORIENTATION_BIN_DEGREES).astype(int), n_bins - 1)
    counts = np.bincount(bin_index, minlength=n_bins)
    dominant = int(np.argmax(counts))
    orientation = (dominant + 0.5) * ORIENTATION_BIN_DEGREES
    near = [(dominant - 1) % n_bins, dominant, (dominant + 1) % n_bins]
    straightness = float(counts[near].sum() / edge_count)

    neighbours = cv2.filter2D(edges.astype(np.float32), -1, np.ones((3, 3), np.float32),
                              borderType=cv2.BORDER_CONSTANT) - edges.astype(np.float32)
    continuity = float(np.sum(neighbours[edges] >= 2) / edge_count)

    return EdgeStats(float(density), float(orientation), straightness, continuity)


def _profile_peaks(profile: np.ndarray, threshold: float) -> List[Tuple[int, float]]:
    peaks = []
    for lag in range(1, len(profile) - 1):
        value = profile[lag]
        if value >= threshold and value > profile[lag - 1] + PEAK_TOLERANCE and value >= profile[lag + 1]:
            peaks.append((lag, float(value)))
    return peaks


def repetition_features(ink: np.ndarray, threshold: float = 0.3) -> RepetitionStats:
    """
    Autocorrelation of zero-mean ink intensity along horizontal, vertical and diagonal lags

    Each lag is normalised by its overlap so periodic hatching keeps its peak height.
    """
    h, w = ink.shape
    centered = ink.astype(np.float64) - ink.mean()
    zero_lag = float(np.sum(centered ** 2))
    max_lag = min(h, w) // 2
    if zero_lag < EPSILON or max_lag < 3:
        return RepetitionStats((0, 0, 0), 0.0, False)

    spectrum = np.fft.rfft2(centered, s=(2 * h, 2 * w))
    autocorr = np.fft.irfft2(np.abs(spectrum) ** 2, s=(2 * h, 2 * w))[:h, :w]
    overlap = np.outer(h - np.arange(h), w - np.arange(w)).astype(np.float64)
    normalized = (autocorr / overlap) / (zero_lag / (h * w))

    lags = np.arange(max_lag + 1)
    profiles = (
        normalized[0, lags],
        normalized[lags, 0],
        normalized[lags, lags],
    )

    periods = []
    heights = []
    for profile in profiles:
        peaks = _profile_peaks(profile, threshold)
        if peaks:
            strongest = max(v for _, v in peaks)
            lag = next(p for p, v in peaks if v >= FUNDAMENTAL_RATIO * strongest)
            periods.append(lag)
            heights.extend(v for _, v in peaks)
        else:
            periods.append(0)

    regularity = float(np.clip(np.mean(heights), 0.0, 1.0)) if heights else 0.0
    return RepetitionStats(tuple(periods), regularity, bool(heights))


def extract_features(region: np.ndarray, config: Optional[TextureConfig] = None) -> FeatureDescriptor:
    """
    Compute the feature descriptor of an RGB region

    Deterministic: the same pixels always give the same descriptor.
    """
    config = config or TextureConfig()
    if region.ndim == 2:
        region = np.stack([region] * 3, axis=-1)
    if region.shape[0] == 0 or region.shape[1] == 0:
        raise ValueError("Cannot extract features from an empty region")

    gray = _gray_u8(region)
    ink = (1.0 - gray.astype(np.float32) / 255.0).astype(np.float32)

    return FeatureDescriptor(
        gabor=gabor_features(ink, config),
        lbp=lbp_features(gray, config.lbp_radius),
        glcm=glcm_features(gray, config),
        color=color_features(region, gray, config.color_bins),
        edges=edge_features(gray, config),
        repetition=repetition_features(ink, config.repetition_peak_threshold),
        size=(int(region.shape[1]), int(region.shape[0])),
    )
