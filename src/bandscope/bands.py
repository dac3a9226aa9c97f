"""
Radial band-energy statistics.

A plane is partitioned into radial bands expressed as fractions of the
anchor-to-farthest-corner radius. The partition is turned into an integer
band-index map once per (size, bands, anchor) and reused, after which
accumulating the power of a plane is a single weighted bincount.

Always feed raw magnitudes or coefficients here, never display buffers.
"""

import threading
import logging
from typing import Dict, Sequence, Tuple

import numpy as np

from .masks import CENTERED, ORIGIN, distance_grid
from .states import BandStats, Size, make_band_stats

logger = logging.getLogger("bandscope.bands")

DEFAULT_BANDS = ((0.0, 0.3), (0.3, 0.7), (0.7, 1.0))
MAX_INDEX_MAPS = 16

_index_maps: Dict[Tuple, np.ndarray] = {}
_index_lock = threading.RLock()  # maps are built from worker threads


def _normalize_bands(bands) -> Tuple[Tuple[float, float], ...]:
    normalized = []
    for band in bands:
        if isinstance(band, dict):
            lo, hi = band['min'], band['max']
        else:
            lo, hi = band
        normalized.append((float(lo), float(hi)))
    return tuple(normalized)


def max_radius(size: Size, anchor: str) -> float:
    """Distance from the anchor to the farthest corner."""
    if anchor == ORIGIN:
        return float(np.hypot(size.width - 1, size.height - 1))
    cy, cx = size.height // 2, size.width // 2
    return float(np.hypot(max(cx, size.width - 1 - cx), max(cy, size.height - 1 - cy)))


def band_index_map(size: Size, bands: Sequence, anchor: str = CENTERED) -> np.ndarray:
    """
    Integer map assigning every pixel to a band (-1 when in none).

    Bands are half-open [min, max) except the last, which includes its max.
    """
    bands = _normalize_bands(bands)
    key = (tuple(size), bands, anchor)
    with _index_lock:
        cached = _index_maps.get(key)
        if cached is not None:
            return cached

        r_max = max_radius(size, anchor)
        if r_max > 0:
            # the farthest pixel defines r_max; keep rounding from pushing it past 1
            fraction = np.minimum(distance_grid(size, anchor) / r_max, 1.0)
        else:
            fraction = np.zeros((size.height, size.width))
        index = np.full((size.height, size.width), -1, dtype=np.int32)
        last = len(bands) - 1
        for i, (lo, hi) in enumerate(bands):
            if i == last:
                inside = (fraction >= lo) & (fraction <= hi)
            else:
                inside = (fraction >= lo) & (fraction < hi)
            index[inside & (index < 0)] = i
        index.setflags(write=False)

        if len(_index_maps) >= MAX_INDEX_MAPS:
            _index_maps.pop(next(iter(_index_maps)))
        _index_maps[key] = index
        logger.debug(f"Built band index map for {size.width}x{size.height} ({anchor})")
        return index


def clear_cache():
    """Forget every cached band index map."""
    with _index_lock:
        _index_maps.clear()


def power(values: np.ndarray) -> np.ndarray:
    """re^2 + im^2 for complex planes, value^2 for real ones."""
    if np.iscomplexobj(values):
        return values.real ** 2 + values.imag ** 2
    return np.square(values, dtype=np.float64)


def compute_band_energy(values: np.ndarray, bands: Sequence = DEFAULT_BANDS,
                        anchor: str = CENTERED) -> BandStats:
    """
    Accumulate per-band power of a raw plane.

    Ratios are percentages of the power of the whole plane, so pixels outside
    every band still count toward the total.
    """
    bands = _normalize_bands(bands)
    height, width = values.shape
    index = band_index_map(Size(width, height), bands, anchor)
    pixel_power = power(values)
    inside = index >= 0
    sums = np.bincount(index[inside], weights=pixel_power[inside], minlength=len(bands))
    total = float(pixel_power.sum())
    energies = {f"{lo:g}-{hi:g}": float(sums[i]) for i, (lo, hi) in enumerate(bands)}
    return make_band_stats(energies, total_energy=total, ranges=bands,
                           details={'anchor': anchor})
