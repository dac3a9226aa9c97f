"""
Size planning for the transform kernels.

this module decides how big the working plane of each transform is: the
padded DFT size (sizes with only small prime factors are fast for FFTW), the
padded wavelet plane and the clamped decomposition depth. it also inspects the
host to pick a sensible worker count for the compute executor.
"""

import os
import math
import platform
import psutil
import logging
from typing import Dict, Tuple, Any

# set up logging
logger = logging.getLogger("bandscope.planning")

# Small primes that FFTW (and OpenCV's getOptimalDFTSize) handle efficiently
FAST_PRIMES = (2, 3, 5)

# Cache for system info to avoid repeated calls
_system_info_cache = {}
_dft_size_cache = {}


def get_system_info() -> Dict[str, Any]:
    """
    Get information about the system that's relevant for planning.

    Returns:
        Dict with system information like CPU count, memory, etc.
    """
    # use cached info if available
    if _system_info_cache:
        return _system_info_cache

    info = {
        'cpu_count': os.cpu_count() or 1,
        'physical_cores': psutil.cpu_count(logical=False) or 1,
        'total_memory_gb': psutil.virtual_memory().total / (1024**3),
        'available_memory_gb': psutil.virtual_memory().available / (1024**3),
        'platform': platform.system(),
        'python_bits': 64 if platform.architecture()[0] == '64bit' else 32,
    }

    _system_info_cache.update(info)

    return info


def clear_cache():
    """Clear cached information to force re-calculation."""
    _system_info_cache.clear()
    _dft_size_cache.clear()


def get_optimal_workers() -> int:
    """
    Determine how many compute workers the engine should use.

    A pipeline only ever has a handful of stages in flight, so this never
    goes beyond four even on large machines.
    """
    sys_info = get_system_info()
    return max(1, min(sys_info['physical_cores'], 4))


def get_process_memory_mb() -> float:
    """Resident memory of the current process in MB."""
    return psutil.Process(os.getpid()).memory_info().rss / (1024 * 1024)


def _has_only_fast_primes(n: int) -> bool:
    for p in FAST_PRIMES:
        while n % p == 0:
            n //= p
    return n == 1


def optimal_dft_size(target_size: int) -> int:
    """
    Find the smallest size >= target_size whose prime factors are 2, 3 and 5.

    Args:
        target_size: Length of the signal along one axis

    Returns:
        Padded length for the transform
    """
    if target_size <= 1:
        return 1
    if target_size in _dft_size_cache:
        return _dft_size_cache[target_size]

    size = target_size
    while not _has_only_fast_primes(size):
        size += 1

    _dft_size_cache[target_size] = size
    return size


def optimal_dft_shape(height: int, width: int) -> Tuple[int, int]:
    """Padded (height, width) for a 2D DFT."""
    return optimal_dft_size(height), optimal_dft_size(width)


def clamp_wavelet_levels(height: int, width: int, requested: int) -> int:
    """
    Clamp a requested decomposition depth to what the plane supports.

    The depth is never less than 1 and never more than
    floor(log2(min(height, width))).
    """
    requested = int(requested or 1)
    smallest = max(1, min(height, width))
    max_levels = int(math.floor(math.log2(smallest)))
    levels = max(1, min(requested, max_levels))
    if levels != requested:
        logger.debug(f"Clamped wavelet levels from {requested} to {levels} for {width}x{height}")
    return levels


def wavelet_padded_shape(height: int, width: int, levels: int) -> Tuple[int, int]:
    """
    Smallest (height, width) that are multiples of 2**levels and cover the plane.
    """
    block = 2 ** levels
    padded_h = max(block, -(-height // block) * block)
    padded_w = max(block, -(-width // block) * block)
    return padded_h, padded_w


def plan_wavelet(height: int, width: int, requested_levels: int) -> Tuple[int, Tuple[int, int]]:
    """
    Plan a wavelet decomposition.

    Returns:
        (levels, (padded_height, padded_width))
    """
    levels = clamp_wavelet_levels(height, width, requested_levels)
    return levels, wavelet_padded_shape(height, width, levels)
