"""
Orthogonal wavelet kernels with periodic boundaries.

The 1D transform is a circular convolution-decimation: for a length-N signal
``lo[k] = sum_j a[j] * x[(2k + j) % N]`` (and likewise for ``hi`` with ``b``),
where ``a``/``b`` are the reconstruction filters. Because the filters are
orthonormal, the inverse is the transpose: each coefficient is upsampled and
accumulated back with the same taps. N must be even.

2D coefficient planes use the nested quadrant layout::

    +------+------+
    | LL   | HL   |   HL: horizontal high-pass, vertical low-pass
    +------+------+   LH: horizontal low-pass, vertical high-pass
    | LH   | HH   |
    +------+------+

with the next level written into the LL quadrant.
"""

import logging
from typing import Dict, List, NamedTuple, Tuple

import numpy as np

logger = logging.getLogger("bandscope.wavelets")

_S = 1.0 / np.sqrt(2.0)


class Wavelet(NamedTuple):
    name: str
    rec_lo: np.ndarray
    rec_hi: np.ndarray

    @property
    def taps(self) -> int:
        return len(self.rec_lo)


def _from_rec_lo(name, rec_lo):
    rec_lo = np.asarray(rec_lo, dtype=np.float64)
    n = len(rec_lo)
    # quadrature mirror: rec_hi[j] = (-1)**j * rec_lo[n-1-j]
    rec_hi = np.array([(-1) ** j * rec_lo[n - 1 - j] for j in range(n)])
    return Wavelet(name, rec_lo, rec_hi)


WAVELETS: Dict[str, Wavelet] = {
    'haar': _from_rec_lo('haar', [_S, _S]),
    'db2': _from_rec_lo('db2', [
        0.48296291314469025,
        0.836516303737469,
        0.22414386804185735,
        -0.12940952255092145,
    ]),
}

DEFAULT_WAVELET = 'haar'


def get_wavelet(name) -> Wavelet:
    """Look up a wavelet by name, falling back to Haar for unknown names."""
    key = str(name or DEFAULT_WAVELET).lower()
    wavelet = WAVELETS.get(key)
    if wavelet is None:
        logger.warning(f"Unknown wavelet {name!r}, falling back to {DEFAULT_WAVELET}")
        wavelet = WAVELETS[DEFAULT_WAVELET]
    return wavelet


def resolve_wavelet_name(name) -> str:
    """Name of the wavelet get_wavelet(name) would return."""
    key = str(name or DEFAULT_WAVELET).lower()
    return key if key in WAVELETS else DEFAULT_WAVELET


# ----------------------------------------------------------------------------------
# 1D
# ----------------------------------------------------------------------------------

def dwt1d(x: np.ndarray, wavelet: Wavelet, axis: int = -1) -> Tuple[np.ndarray, np.ndarray]:
    """
    One level of periodic analysis along an axis.

    Returns:
        (lo, hi), each half the length of x along axis
    """
    x = np.moveaxis(np.asarray(x, dtype=np.float64), axis, -1)
    n = x.shape[-1]
    if n % 2:
        raise ValueError(f"Signal length must be even, got {n}")
    half = n // 2
    base = 2 * np.arange(half)

    lo = np.zeros(x.shape[:-1] + (half,))
    hi = np.zeros(x.shape[:-1] + (half,))
    for j in range(wavelet.taps):
        taken = x[..., (base + j) % n]
        lo += wavelet.rec_lo[j] * taken
        hi += wavelet.rec_hi[j] * taken
    return np.moveaxis(lo, -1, axis), np.moveaxis(hi, -1, axis)


def idwt1d(lo: np.ndarray, hi: np.ndarray, wavelet: Wavelet, axis: int = -1) -> np.ndarray:
    """Invert dwt1d along an axis."""
    lo = np.moveaxis(np.asarray(lo, dtype=np.float64), axis, -1)
    hi = np.moveaxis(np.asarray(hi, dtype=np.float64), axis, -1)
    half = lo.shape[-1]
    n = 2 * half
    base = 2 * np.arange(half)

    out = np.zeros(lo.shape[:-1] + (n,))
    for j in range(wavelet.taps):
        # (base + j) % n hits distinct positions for a fixed tap
        out[..., (base + j) % n] += wavelet.rec_lo[j] * lo + wavelet.rec_hi[j] * hi
    return np.moveaxis(out, -1, axis)


# ----------------------------------------------------------------------------------
# 2D
# ----------------------------------------------------------------------------------

def dwt2_single(plane: np.ndarray, wavelet: Wavelet) -> np.ndarray:
    """One 2D level: row pass then column pass, written as four quadrants."""
    lo, hi = dwt1d(plane, wavelet, axis=1)
    rows = np.concatenate([lo, hi], axis=1)
    lo, hi = dwt1d(rows, wavelet, axis=0)
    return np.concatenate([lo, hi], axis=0)


def idwt2_single(plane: np.ndarray, wavelet: Wavelet) -> np.ndarray:
    """Invert dwt2_single: column pass then row pass."""
    h, w = plane.shape
    cols = idwt1d(plane[:h // 2], plane[h // 2:], wavelet, axis=0)
    return idwt1d(cols[:, :w // 2], cols[:, w // 2:], wavelet, axis=1)


def split_quadrants(plane: np.ndarray) -> Dict[str, np.ndarray]:
    """Split a single-level plane into its LL, LH, HL and HH subbands."""
    h, w = plane.shape
    hh, hw = h // 2, w // 2
    return {
        'LL': plane[:hh, :hw],
        'LH': plane[hh:, :hw],
        'HL': plane[:hh, hw:],
        'HH': plane[hh:, hw:],
    }


def merge_quadrants(quads: Dict[str, np.ndarray]) -> np.ndarray:
    """Inverse of split_quadrants."""
    top = np.concatenate([quads['LL'], quads['HL']], axis=1)
    bottom = np.concatenate([quads['LH'], quads['HH']], axis=1)
    return np.concatenate([top, bottom], axis=0)


def dwt2(plane: np.ndarray, wavelet: Wavelet, levels: int) -> np.ndarray:
    """
    Multi-level 2D DWT recursing into the LL quadrant.

    Both dimensions must be multiples of 2**levels.
    """
    out = np.array(plane, dtype=np.float64, copy=True)
    h, w = out.shape
    for _ in range(levels):
        out[:h, :w] = dwt2_single(out[:h, :w], wavelet)
        h //= 2
        w //= 2
    return out


def idwt2(coeffs: np.ndarray, wavelet: Wavelet, levels: int) -> np.ndarray:
    """Invert dwt2, coarsest level first."""
    out = np.array(coeffs, dtype=np.float64, copy=True)
    height, width = out.shape
    for level in range(levels, 0, -1):
        h = height >> (level - 1)
        w = width >> (level - 1)
        out[:h, :w] = idwt2_single(out[:h, :w], wavelet)
    return out


def subband_slices(shape: Tuple[int, int], levels: int) -> List[Tuple[str, int, Tuple[slice, slice]]]:
    """
    Regions of every subband in a dwt2 plane.

    Returns:
        [(label, level, (row_slice, col_slice))], coarsest LL first, then
        detail bands from coarsest to finest level.
    """
    height, width = shape
    regions = []
    ll_h = height >> levels
    ll_w = width >> levels
    regions.append((f'LL{levels}', levels, (slice(0, ll_h), slice(0, ll_w))))
    for level in range(levels, 0, -1):
        h = height >> level
        w = width >> level
        regions.append((f'HL{level}', level, (slice(0, h), slice(w, 2 * w))))
        regions.append((f'LH{level}', level, (slice(h, 2 * h), slice(0, w))))
        regions.append((f'HH{level}', level, (slice(h, 2 * h), slice(w, 2 * w))))
    return regions


def detail_mask(shape: Tuple[int, int], levels: int) -> np.ndarray:
    """Boolean plane marking every detail coefficient (everything but the coarsest LL)."""
    mask = np.ones(shape, dtype=bool)
    mask[:shape[0] >> levels, :shape[1] >> levels] = False
    return mask


def apply_threshold(data: np.ndarray, mode: str, value: float) -> np.ndarray:
    """
    Sign-preserving hard or soft thresholding.

    hard keeps coefficients with |x| >= value; soft additionally shrinks their
    magnitude by value. A mode of 'none' or a non-positive value returns data
    unchanged (same object).
    """
    if mode not in ('hard', 'soft') or value <= 0:
        return data
    magnitude = np.abs(data)
    keep = magnitude >= value
    if mode == 'hard':
        return np.where(keep, data, 0.0)
    return np.where(keep, np.sign(data) * (magnitude - value), 0.0)
