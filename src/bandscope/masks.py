"""
Frequency and coefficient-domain masks.

Masks are real planes in [0, 1] of the same size as the plane they filter.
Centered masks (Fourier spectra) measure distance from the plane's midpoint
and use half the minor dimension as their characteristic radius; origin masks
(DCT / wavelet coefficient planes) measure distance from the DC corner and use
the plane's diagonal.
"""

import logging
from typing import Optional

import numpy as np

from .states import FilterSpec, MASK_MODES, Size

logger = logging.getLogger("bandscope.masks")

CENTERED = 'centered'
ORIGIN = 'origin'


def distance_grid(size: Size, anchor: str = CENTERED) -> np.ndarray:
    """Distance of every pixel from the anchor point."""
    y, x = np.ogrid[:size.height, :size.width]
    if anchor == ORIGIN:
        return np.sqrt(x.astype(np.float64) ** 2 + y.astype(np.float64) ** 2)
    cy, cx = size.height // 2, size.width // 2
    return np.sqrt((x - cx).astype(np.float64) ** 2 + (y - cy).astype(np.float64) ** 2)


def characteristic_radius(size: Size, anchor: str = CENTERED) -> float:
    if anchor == ORIGIN:
        return float(np.hypot(size.width, size.height))
    return min(size.width, size.height) / 2.0


def _cutoff(ratio: float, max_r: float) -> float:
    # a ratio at its cap reaches every pixel of the plane
    if ratio >= 1.0:
        return np.inf
    return ratio * max_r


def _ideal_lowpass(distance, cutoff):
    return (distance <= cutoff).astype(np.float64)


def _gaussian_lowpass(distance, sigma):
    if np.isinf(sigma):
        return np.ones_like(distance)
    if sigma <= 0:
        return (distance <= 0).astype(np.float64)
    return np.exp(-(distance ** 2) / (2.0 * sigma ** 2))


def build_mask(spec: Optional[FilterSpec], size: Size, anchor: str = CENTERED) -> Optional[np.ndarray]:
    """
    Build the mask for a normalized filter spec.

    Args:
        spec: Normalized FilterSpec (None means no filtering)
        size: Plane size
        anchor: 'centered' or 'origin'

    Returns:
        A float64 mask, or None when the filter mode is not a radial mask
    """
    if spec is None or spec.mode not in MASK_MODES:
        return None

    distance = distance_grid(size, anchor)
    max_r = characteristic_radius(size, anchor)
    inner_ratio = max(0.0, spec.radius - spec.bandwidth / 2.0)
    outer_ratio = spec.radius + spec.bandwidth / 2.0

    if spec.shape == 'gaussian':
        if spec.mode in ('lowpass', 'highpass'):
            sigma = _cutoff(spec.sigma if spec.sigma > 0 else spec.radius, max_r)
            low = _gaussian_lowpass(distance, sigma)
            mask = low if spec.mode == 'lowpass' else 1.0 - low
        else:
            outer = _gaussian_lowpass(distance, _cutoff(outer_ratio, max_r))
            inner = _gaussian_lowpass(distance, _cutoff(inner_ratio, max_r))
            band = np.clip(outer - inner, 0.0, 1.0)
            mask = band if spec.mode == 'bandpass' else 1.0 - band
    else:
        if spec.mode in ('lowpass', 'highpass'):
            low = _ideal_lowpass(distance, _cutoff(spec.radius, max_r))
            mask = low if spec.mode == 'lowpass' else 1.0 - low
        else:
            inner = inner_ratio * max_r
            outer = _cutoff(outer_ratio, max_r)
            band = ((distance >= inner) & (distance <= outer)).astype(np.float64)
            mask = band if spec.mode == 'bandpass' else 1.0 - band

    logger.debug(f"Built {spec.shape} {spec.mode} mask ({anchor}) for {size.width}x{size.height}")
    return mask


def build_dct_mask(spec: Optional[FilterSpec], size: Size) -> Optional[np.ndarray]:
    """Origin-anchored mask for DCT coefficient planes."""
    return build_mask(spec, size, anchor=ORIGIN)
