"""
bandscope: frequency and sub-band inspection of images.

this package decomposes an image with one of five transforms (Fourier,
Cosine, Wavelet, Wavelet-Packet and an experimental directional filter
bank), applies a frequency-selective filter, reconstructs the filtered image
and reports how the signal energy is distributed across bands.

Basic usage:
    import asyncio
    import bandscope

    engine = bandscope.TransformEngine()
    result = asyncio.run(engine.run_transform(
        transform_type='DFT',
        image_id='lena',
        image_source='lena.png',
        filter_spec={'mode': 'lowpass', 'shape': 'ideal', 'radius': 0.2},
    ))
    result.metrics.ratios()   # {'0-0.3': 97.1, '0.3-0.7': 2.4, '0.7-1': 0.5}

Direct backend access:
    backend = bandscope.get_transform_backend('DWT')
    state = backend.forward(image, {'wavelet': 'db2', 'level': 3})
    filtered = backend.apply_filter(state, {'mode': 'll-only'})
    image = backend.inverse(filtered)
"""

import os
import logging


__version__ = '0.1.0'

from . import core
from . import bands
from . import planning
from . import cache
from . import engine
from . import backends
from . import directional

from .exceptions import (
    BandscopeError, DecodeError, UnsupportedTransformError, InvalidFilterSpec
)

from .states import (
    Size, FilterSpec, normalize_filter_spec,
    FourierState, CosineState, WaveletState, WaveletPacketState, DirectionalState,
    Node, Direction, Rendering, BandStats, BandEnergy
)

from .backends import (
    get_transform_backend, BACKENDS,
    DFTBackend, DCTBackend, DWTBackend, WPTBackend, DTCWTBackend
)

from .engine import TransformEngine, TransformRequest, TransformResult
from .cache import LRUCache, CacheEntry
from .masks import build_mask, build_dct_mask
from .bands import compute_band_energy, band_index_map
from .imaging import decode_image, to_grayscale
from .wavelets import get_wavelet, dwt2, idwt2

# Configuration system
_config = {
    'cache': {
        'forward_size': 4,
        'filter_size': 6,
    },
    'planning': {
        'default_strategy': 'FFTW_ESTIMATE',
        'threads': 1,
        'max_plans': 64,
        'optimal_dft_size': True,
    },
    'engine': {
        'max_workers': None,  # None = derived from physical cores
    },
    'directional': {
        'sigma': 1.5,
    },
    'logging': {
        'level': 'WARNING',
    }
}


def _update_nested_dict(d, u):
    """Update nested dictionary recursively."""
    for k, v in u.items():
        if isinstance(v, dict) and k in d and isinstance(d[k], dict):
            _update_nested_dict(d[k], v)
        else:
            d[k] = v


def configure(config_dict=None, **kwargs):
    """
    Configure bandscope global settings.

    Cache sizes apply to engines created afterwards.

    Args:
        config_dict: Dictionary with configuration settings
        **kwargs: Configuration settings as flattened keyword arguments

    Examples:
        # Configure with a dictionary
        bandscope.configure({
            'cache': {'forward_size': 8},
            'planning': {'default_strategy': 'FFTW_MEASURE'}
        })

        # Or with keyword arguments
        bandscope.configure(cache_filter_size=12, logging_level='DEBUG')
    """
    if config_dict:
        _update_nested_dict(_config, config_dict)

    # Process kwargs (flattened config)
    for key, value in kwargs.items():
        if '_' in key:
            section, _, name = key.partition('_')
            if section in _config and name in _config[section]:
                _config[section][name] = value
            else:
                logging.getLogger("bandscope").warning(f"Unknown configuration key: {key}")
        elif key in _config:
            _config[key] = value

    _apply_configuration()

    return {k: dict(v) for k, v in _config.items()}


def _apply_configuration():
    """Apply configuration settings to module components."""
    cache.FORWARD_CACHE_SIZE = int(_config['cache']['forward_size'])
    cache.FILTER_CACHE_SIZE = int(_config['cache']['filter_size'])

    core.set_planner_effort(_config['planning']['default_strategy'])
    core.set_num_threads(_config['planning']['threads'])
    core.MAX_PLAN_CACHE_SIZE = int(_config['planning']['max_plans'])
    backends.USE_OPTIMAL_DFT_SIZE = bool(_config['planning']['optimal_dft_size'])

    engine.MAX_WORKERS = _config['engine']['max_workers']
    directional.DEFAULT_SIGMA = float(_config['directional']['sigma'])

    logging.getLogger("bandscope").setLevel(getattr(logging, str(_config['logging']['level']).upper()))


def _load_env_config():
    """Load configuration from environment variables."""
    # Environment variable prefix
    prefix = "BANDSCOPE_"

    for key, value in os.environ.items():
        if key.startswith(prefix):
            config_key = key[len(prefix):].lower()

            # Try to convert value to appropriate type
            if value.isdigit():
                value = int(value)
            elif value.lower() in ('true', 'yes', 'on'):
                value = True
            elif value.lower() in ('false', 'no', 'off'):
                value = False
            elif value.replace('.', '', 1).isdigit():
                value = float(value)

            configure(**{config_key: value})


def _setup_logging():
    """Set up default logging configuration."""
    logger = logging.getLogger("bandscope")
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(getattr(logging, _config['logging']['level']))
        # Don't propagate to root logger
        logger.propagate = False


_setup_logging()

# Load environment config at startup
_load_env_config()


def clear_caches():
    """Clear the process-wide FFT plan and band-map caches."""
    core.clear_cache()
    bands.clear_cache()
    planning.clear_cache()
