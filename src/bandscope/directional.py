"""
Experimental directional filter bank.

A Gaussian low-pass is split off the image; the remaining high-pass residual
is convolved with six fixed 3x3 oriented kernels (0, 30, ... 150 degrees).
Each kernel is ``delta / 6`` plus a zero-mean steerable second-derivative
term, and the six oriented terms cancel, so the kernels sum to the identity.

Reconstruction is the pixel-wise sum of the direction responses plus the
low-pass residual. That is exact only while no direction has been altered.
Once responses are zeroed or thresholded the sum is a lossy, non-orthogonal
approximation; it is not a dual-tree complex wavelet synthesis.
"""

import logging
from typing import List

import numpy as np

from . import core
from .states import Direction

logger = logging.getLogger("bandscope.directional")

ANGLES = (0, 30, 60, 90, 120, 150)
DEFAULT_SIGMA = 1.5

_DELTA = np.array([[0.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 0.0]])
_DXX = np.array([[0.0, 0.0, 0.0], [1.0, -2.0, 1.0], [0.0, 0.0, 0.0]])
_DYY = _DXX.T
_DXY = 0.25 * np.array([[1.0, 0.0, -1.0], [0.0, 0.0, 0.0], [-1.0, 0.0, 1.0]])


def _oriented_kernel(angle_degrees):
    theta = np.deg2rad(angle_degrees)
    oriented = 0.5 * np.cos(2 * theta) * (_DXX - _DYY) + np.sin(2 * theta) * _DXY
    kernel = _DELTA / len(ANGLES) + oriented
    # snap float noise (cos(90deg) etc.) so the bank is exact constants
    return np.round(kernel, 12)


KERNELS = {angle: _oriented_kernel(angle) for angle in ANGLES}


def direction_id(angle):
    return f"d{angle}"


def decompose(plane: np.ndarray, sigma: float = DEFAULT_SIGMA):
    """
    Split a plane into six direction responses and a low-pass residual.

    Returns:
        (directions, lowpass)
    """
    plane = np.asarray(plane, dtype=np.float64)
    lowpass = core.gaussian_blur(plane, sigma)
    residual = plane - lowpass
    directions = [
        Direction(id=direction_id(angle), label=f"{angle}°",
                  angle_degrees=float(angle), data=core.convolve(residual, KERNELS[angle]))
        for angle in ANGLES
    ]
    return directions, lowpass


def reconstruct(directions: List[Direction], lowpass: np.ndarray) -> np.ndarray:
    """Approximate inverse: sum of the direction responses plus the low-pass."""
    out = np.array(lowpass, dtype=np.float64, copy=True)
    for direction in directions:
        out += direction.data
    return out


def mosaic(directions: List[Direction], columns: int = 3) -> np.ndarray:
    """
    Tile per-direction log magnitudes into one plane, each tile normalized.
    """
    if not directions:
        return np.zeros((0, 0))
    height, width = directions[0].data.shape
    rows = -(-len(directions) // columns)
    out = np.zeros((rows * height, columns * width), dtype=np.float64)
    for i, direction in enumerate(directions):
        tile = core.log_magnitude(direction.data)
        peak = tile.max()
        if peak > 0:
            tile = tile / peak
        r, c = divmod(i, columns)
        out[r * height:(r + 1) * height, c * width:(c + 1) * width] = tile
    return out
