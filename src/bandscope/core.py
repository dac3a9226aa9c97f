"""
Matrix primitives used by the transform backends.

this module is the numeric collaborator of the engine: FFTW-planned 2D
Fourier transforms with a process-wide plan cache, the orthonormal 2D DCT,
spectrum shifting, convolution and the helpers that turn raw planes into
display intensities.
"""

import time
import threading
import numpy as np
import pyfftw
import pyfftw.builders
import scipy.fft
import scipy.ndimage
import logging
from typing import Dict, Tuple, Any

logger = logging.getLogger("bandscope.core")

# configuration constants with smart defaults
DEFAULT_THREADS = 1
DEFAULT_PLANNER = 'FFTW_ESTIMATE'
VALID_PLANNERS = ('FFTW_ESTIMATE', 'FFTW_MEASURE', 'FFTW_PATIENT', 'FFTW_EXHAUSTIVE')
AUTO_ALIGN = True
MULTI_THREAD_THRESHOLD = 1024 * 1024  # elements before extra threads are worth it
MAX_PLAN_CACHE_SIZE = 64

_cache_lock = threading.RLock()  # plans are shared by every worker thread


class PlannedFFT:
    """
    2D FFT with cached FFTW plans.

    Plans are keyed by direction, shape and dtype. FFTW objects reuse their
    output buffer, so every result is copied out before the lock is released.
    """
    _plan_cache: Dict[Tuple, Any] = {}
    _call_count: Dict[Tuple, int] = {}
    _last_used: Dict[Tuple, float] = {}

    _performance_metrics = {
        'calls': 0,
        'cache_hits': 0,
        'cache_misses': 0,
        'execution_time': 0.0,
        'planning_time': 0.0,
    }

    @classmethod
    def clear_cache(cls):
        """Drop every cached plan."""
        with _cache_lock:
            cls._plan_cache.clear()
            cls._call_count.clear()
            cls._last_used.clear()

    @classmethod
    def _get_cache_key(cls, array: np.ndarray, direction: str) -> Tuple:
        return (direction, array.shape, array.dtype)

    @classmethod
    def _select_threads(cls, array: np.ndarray) -> int:
        if array.size < MULTI_THREAD_THRESHOLD:
            return 1
        return max(1, DEFAULT_THREADS)

    @classmethod
    def _evict_if_full(cls):
        if len(cls._plan_cache) < MAX_PLAN_CACHE_SIZE:
            return
        oldest = min(cls._last_used, key=cls._last_used.get)
        for cache_dict in (cls._plan_cache, cls._call_count, cls._last_used):
            cache_dict.pop(oldest, None)
        logger.debug(f"Evicted FFTW plan {oldest[0]} {oldest[1]}")

    @classmethod
    def _create_plan(cls, array: np.ndarray, direction: str):
        builder = pyfftw.builders.fft2 if direction == 'fft2' else pyfftw.builders.ifft2
        start = time.time()
        plan = builder(
            array,
            axes=(-2, -1),
            threads=cls._select_threads(array),
            planner_effort=DEFAULT_PLANNER,
            auto_align_input=AUTO_ALIGN,
            auto_contiguous=True,
            overwrite_input=False,
        )
        cls._performance_metrics['planning_time'] += time.time() - start
        logger.debug(f"Created {DEFAULT_PLANNER} plan for {direction} {array.shape}")
        return plan

    @classmethod
    def _execute(cls, array: np.ndarray, direction: str) -> np.ndarray:
        array = np.ascontiguousarray(array, dtype=np.complex128)
        key = cls._get_cache_key(array, direction)
        with _cache_lock:
            cls._performance_metrics['calls'] += 1
            cls._call_count[key] = cls._call_count.get(key, 0) + 1
            cls._last_used[key] = time.time()

            plan = cls._plan_cache.get(key)
            if plan is None:
                cls._performance_metrics['cache_misses'] += 1
                cls._evict_if_full()
                plan = cls._create_plan(array, direction)
                cls._plan_cache[key] = plan
                cls._call_count[key] = 1
                cls._last_used[key] = time.time()
            else:
                cls._performance_metrics['cache_hits'] += 1

            start = time.time()
            result = plan(array)
            cls._performance_metrics['execution_time'] += time.time() - start
            # the plan owns its output buffer
            return np.array(result, copy=True)

    @classmethod
    def fft2(cls, array: np.ndarray) -> np.ndarray:
        """Forward 2D DFT (unnormalized)."""
        return cls._execute(array, 'fft2')

    @classmethod
    def ifft2(cls, array: np.ndarray) -> np.ndarray:
        """Inverse 2D DFT scaled by 1/N like numpy.fft.ifft2."""
        return cls._execute(array, 'ifft2')

    @classmethod
    def get_stats(cls) -> Dict:
        """Statistics about the plan cache."""
        with _cache_lock:
            stats = cls._performance_metrics.copy()
            stats['total_plans'] = len(cls._plan_cache)
            stats['total_calls'] = sum(cls._call_count.values())
            if stats['calls'] > 0:
                stats['cache_hit_rate'] = stats['cache_hits'] / stats['calls']
            return stats


def set_num_threads(threads):
    """Set the thread count used for large transforms."""
    global DEFAULT_THREADS
    DEFAULT_THREADS = max(1, int(threads))


def set_planner_effort(planner):
    """Set the FFTW planning strategy used for new plans."""
    global DEFAULT_PLANNER
    if planner not in VALID_PLANNERS:
        raise ValueError(f"Invalid planner: {planner}")
    DEFAULT_PLANNER = planner


def fft2(array):
    """2D FFT through the shared plan cache."""
    return PlannedFFT.fft2(array)


def ifft2(array):
    """2D inverse FFT through the shared plan cache."""
    return PlannedFFT.ifft2(array)


def get_stats():
    return PlannedFFT.get_stats()


def clear_cache():
    """Clear the FFTW plan cache."""
    PlannedFFT.clear_cache()


# ----------------------------------------------------------------------------------
# Other primitives
# ----------------------------------------------------------------------------------

def fft_shift(array: np.ndarray) -> np.ndarray:
    """Move the zero-frequency term to the center of the plane."""
    return np.fft.fftshift(array, axes=(-2, -1))


def ifft_shift(array: np.ndarray) -> np.ndarray:
    """Undo fft_shift, also for odd-sized planes."""
    return np.fft.ifftshift(array, axes=(-2, -1))


def dct2(array: np.ndarray) -> np.ndarray:
    """Orthonormal type-II 2D DCT."""
    return scipy.fft.dctn(np.asarray(array, dtype=np.float64), type=2, norm='ortho')


def idct2(array: np.ndarray) -> np.ndarray:
    """Inverse of dct2."""
    return scipy.fft.idctn(np.asarray(array, dtype=np.float64), type=2, norm='ortho')


def convolve(array: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    """2D convolution with reflected borders."""
    return scipy.ndimage.convolve(array, kernel, mode='reflect')


def gaussian_blur(array: np.ndarray, sigma: float) -> np.ndarray:
    """Gaussian low-pass with reflected borders."""
    if sigma <= 0:
        return np.array(array, dtype=np.float64, copy=True)
    return scipy.ndimage.gaussian_filter(np.asarray(array, dtype=np.float64), sigma=sigma, mode='reflect')


def pad_plane(array: np.ndarray, shape: Tuple[int, int]) -> np.ndarray:
    """Zero-pad a plane at the bottom and right edges to shape."""
    height, width = array.shape
    out = np.zeros(shape, dtype=np.result_type(array.dtype, np.float64))
    out[:height, :width] = array
    return out


def log_magnitude(array: np.ndarray) -> np.ndarray:
    """log(1 + |x|) for real or complex planes."""
    return np.log1p(np.abs(array))


def normalize_to_display(array: np.ndarray) -> np.ndarray:
    """
    Min-max normalize a plane to the 0..255 display range.

    A constant plane maps to zeros.
    """
    array = np.asarray(array, dtype=np.float64)
    if array.size == 0:
        return np.zeros(array.shape, dtype=np.uint8)
    lo = float(array.min())
    hi = float(array.max())
    if hi - lo <= 0 or not np.isfinite(hi - lo):
        return np.zeros(array.shape, dtype=np.uint8)
    scaled = (array - lo) * (255.0 / (hi - lo))
    return np.clip(np.rint(scaled), 0, 255).astype(np.uint8)


def mask_to_display(mask: np.ndarray) -> np.ndarray:
    """Render a [0, 1] mask as 8-bit intensities."""
    return np.clip(np.rint(np.asarray(mask) * 255.0), 0, 255).astype(np.uint8)
