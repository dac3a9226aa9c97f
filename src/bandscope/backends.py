"""
Transform backends.

Every transform family implements the same operation set::

    get_cache_key(image_id, options, filter_spec) -> str
    forward(image_source, options)               -> state
    apply_filter(state, filter_spec)             -> state
    reconstruct(state)                           -> float plane
    inverse(state)                               -> uint8 plane
    get_display(state)                           -> Rendering
    compute_metrics(state)                       -> BandStats
    dispose(state)

Backends are stateless singletons selected by ``get_transform_backend``. The
operations are synchronous and safe to run from worker threads; they never
mutate the state they are given.
"""

import json
import logging
from typing import Any, Dict, Optional

import numpy as np

from . import core
from . import bands
from . import directional
from . import packets
from . import planning
from . import wavelets
from .exceptions import UnsupportedTransformError
from .imaging import crop, load_grayscale
from .masks import CENTERED, ORIGIN, build_mask
from .states import (CosineState, Direction, DirectionalState,
                     FourierState, MASK_MODES, Rendering, Size, TransformState,
                     WaveletPacketState, WaveletState, BandStats, make_band_stats,
                     normalize_filter_spec)

logger = logging.getLogger("bandscope.backends")

# padded Fourier planes use sizes with only 2, 3 and 5 as prime factors
USE_OPTIMAL_DFT_SIZE = True


def _int_option(value, default):
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid integer option {value!r}, using {default}")
        return default


def _float_option(value, default):
    try:
        value = float(value) if value is not None else default
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid float option {value!r}, using {default}")
        return default
    return value if np.isfinite(value) and value >= 0 else default


class TransformBackend:
    """Shared behavior of the transform backends."""
    id = ''
    key_prefix = ''

    def options(self, raw: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Canonical backend options with defaults filled in."""
        return {}

    def get_cache_key(self, image_id, options=None, filter_spec=None) -> str:
        """
        Deterministic cache key namespaced by backend.

        The filter segment is present only for an active filter spec.
        """
        parts = [image_id, self.options(options)]
        spec = normalize_filter_spec(filter_spec)
        if spec is not None:
            parts.append(json.loads(spec.canonical()))
        return f"{self.key_prefix}:{json.dumps(parts, sort_keys=True, separators=(',', ':'), default=str)}"

    def forward(self, image_source, options=None) -> TransformState:
        raise NotImplementedError

    def apply_filter(self, state, filter_spec) -> TransformState:
        raise NotImplementedError

    def reconstruct(self, state) -> np.ndarray:
        raise NotImplementedError

    def get_display(self, state) -> Rendering:
        raise NotImplementedError

    def compute_metrics(self, state) -> BandStats:
        raise NotImplementedError

    def inverse(self, state) -> np.ndarray:
        """Reconstruct and normalize to the 0..255 display range."""
        return core.normalize_to_display(self.reconstruct(state))

    def dispose(self, state):
        """Release the buffers of a state. None and disposed states are ignored."""
        if state is None:
            return
        state.dispose()


class FourierBackend(TransformBackend):
    id = 'DFT'
    key_prefix = 'dft'

    def forward(self, image_source, options=None) -> FourierState:
        gray, size = load_grayscale(image_source)
        if USE_OPTIMAL_DFT_SIZE:
            padded_h, padded_w = planning.optimal_dft_shape(size.height, size.width)
        else:
            padded_h, padded_w = size.height, size.width
        plane = core.pad_plane(gray, (padded_h, padded_w))
        spectrum = core.fft_shift(core.fft2(plane))
        meta = {'original_size': size, 'padded_size': Size(padded_w, padded_h)}
        return FourierState(spectrum=spectrum, meta=meta)

    def apply_filter(self, state, filter_spec):
        spec = normalize_filter_spec(filter_spec)
        if spec is None:
            return state
        mask = build_mask(spec, state.meta['padded_size'], CENTERED)
        if mask is None:
            logger.debug(f"Filter mode {spec.mode!r} has no effect on {self.id}")
            return state
        return FourierState(spectrum=state.spectrum * mask, meta=dict(state.meta), mask=mask)

    def reconstruct(self, state) -> np.ndarray:
        plane = core.ifft2(core.ifft_shift(state.spectrum)).real
        return crop(plane, state.meta['original_size'])

    def get_display(self, state) -> Rendering:
        display = core.normalize_to_display(core.log_magnitude(state.spectrum))
        mask_display = core.mask_to_display(state.mask) if state.mask is not None else None
        return Rendering(display=display, mask_display=mask_display)

    def compute_metrics(self, state) -> BandStats:
        return bands.compute_band_energy(state.spectrum, bands.DEFAULT_BANDS, CENTERED)


class CosineBackend(TransformBackend):
    id = 'DCT'
    key_prefix = 'dct'

    def forward(self, image_source, options=None) -> CosineState:
        gray, size = load_grayscale(image_source)
        return CosineState(coefficients=core.dct2(gray), meta={'original_size': size})

    def apply_filter(self, state, filter_spec):
        spec = normalize_filter_spec(filter_spec)
        if spec is None:
            return state
        height, width = state.coefficients.shape
        mask = build_mask(spec, Size(width, height), ORIGIN)
        if mask is None:
            logger.debug(f"Filter mode {spec.mode!r} has no effect on {self.id}")
            return state
        return CosineState(coefficients=state.coefficients * mask, meta=dict(state.meta), mask=mask)

    def reconstruct(self, state) -> np.ndarray:
        return crop(core.idct2(state.coefficients), state.meta['original_size'])

    def get_display(self, state) -> Rendering:
        display = core.normalize_to_display(core.log_magnitude(state.coefficients))
        mask_display = core.mask_to_display(state.mask) if state.mask is not None else None
        return Rendering(display=display, mask_display=mask_display)

    def compute_metrics(self, state) -> BandStats:
        return bands.compute_band_energy(state.coefficients, bands.DEFAULT_BANDS, ORIGIN)


def _wavelet_options(raw, default_level):
    raw = raw or {}
    return {
        'wavelet': wavelets.resolve_wavelet_name(raw.get('wavelet')),
        'level': max(1, _int_option(raw.get('level'), default_level)),
    }


def _wavelet_plane(gray, size, opts):
    """Pad a grayscale plane for a wavelet decomposition and describe it."""
    levels, (padded_h, padded_w) = planning.plan_wavelet(size.height, size.width, opts['level'])
    plane = core.pad_plane(gray, (padded_h, padded_w))
    meta = {
        'original_size': size,
        'padded_size': Size(padded_w, padded_h),
        'level_count': levels,
        'wavelet': opts['wavelet'],
    }
    return plane, meta


class WaveletBackend(TransformBackend):
    id = 'DWT'
    key_prefix = 'dwt'
    default_level = 1

    def options(self, raw=None):
        return _wavelet_options(raw, self.default_level)

    def forward(self, image_source, options=None) -> WaveletState:
        gray, size = load_grayscale(image_source)
        plane, meta = _wavelet_plane(gray, size, self.options(options))
        wavelet = wavelets.get_wavelet(meta['wavelet'])
        return WaveletState(coefficients=wavelets.dwt2(plane, wavelet, meta['level_count']), meta=meta)

    def apply_filter(self, state, filter_spec):
        spec = normalize_filter_spec(filter_spec)
        if spec is None:
            return state
        coeffs = state.coefficients
        levels = state.meta['level_count']

        if spec.mode in MASK_MODES:
            height, width = coeffs.shape
            filtered = coeffs * build_mask(spec, Size(width, height), ORIGIN)
        elif spec.mode == 'll-only':
            filtered = np.where(wavelets.detail_mask(coeffs.shape, levels), 0.0, coeffs)
        elif spec.mode == 'suppress-high':
            filtered = coeffs.copy()
            for label, level, region in wavelets.subband_slices(coeffs.shape, levels):
                if level == 1 and not label.startswith('LL'):
                    filtered[region] *= spec.detail_gain
        else:
            # threshold
            mode = spec.threshold_mode if spec.threshold_mode != 'none' else 'hard'
            details = wavelets.detail_mask(coeffs.shape, levels)
            filtered = np.where(details, wavelets.apply_threshold(coeffs, mode, spec.threshold), coeffs)

        return WaveletState(coefficients=filtered, meta=dict(state.meta))

    def reconstruct(self, state) -> np.ndarray:
        wavelet = wavelets.get_wavelet(state.meta['wavelet'])
        plane = wavelets.idwt2(state.coefficients, wavelet, state.meta['level_count'])
        return crop(plane, state.meta['original_size'])

    def get_display(self, state) -> Rendering:
        return Rendering(display=core.normalize_to_display(core.log_magnitude(state.coefficients)))

    def compute_metrics(self, state) -> BandStats:
        coeffs = state.coefficients
        levels = state.meta['level_count']
        energies = {}
        detail_by_level = {}
        for label, level, region in wavelets.subband_slices(coeffs.shape, levels):
            band_energy = float(np.sum(np.square(coeffs[region])))
            energies[label] = band_energy
            if not label.startswith('LL'):
                detail_by_level[level] = detail_by_level.get(level, 0.0) + band_energy
        total = float(sum(energies.values()))
        level_ratios = {level: (100.0 * e / total if total > 0 else 0.0)
                        for level, e in sorted(detail_by_level.items())}
        return make_band_stats(energies, total_energy=total,
                               details={'detail_level_ratios': level_ratios})


class WaveletPacketBackend(TransformBackend):
    id = 'WPT'
    key_prefix = 'wpt'
    default_level = 3

    def options(self, raw=None):
        return _wavelet_options(raw, self.default_level)

    def forward(self, image_source, options=None) -> WaveletPacketState:
        gray, size = load_grayscale(image_source)
        plane, meta = _wavelet_plane(gray, size, self.options(options))
        wavelet = wavelets.get_wavelet(meta['wavelet'])
        nodes = packets.decompose(plane, wavelet, meta['level_count'])
        meta['total_energy'] = nodes[0].energy
        return WaveletPacketState(nodes=nodes, meta=meta)

    def apply_filter(self, state, filter_spec):
        spec = normalize_filter_spec(filter_spec)
        if spec is None:
            return state
        nodes = packets.filter_leaves(state.nodes, spec.selected_nodes,
                                      spec.threshold_mode, spec.lambda_)
        return WaveletPacketState(nodes=nodes, meta=dict(state.meta))

    def reconstruct(self, state) -> np.ndarray:
        wavelet = wavelets.get_wavelet(state.meta['wavelet'])
        return crop(packets.reconstruct(state.nodes, wavelet), state.meta['original_size'])

    def get_display(self, state) -> Rendering:
        padded = state.meta['padded_size']
        tiled = packets.tile_leaves(state.nodes, (padded.height, padded.width))
        return Rendering(display=core.normalize_to_display(core.log_magnitude(tiled)))

    def compute_metrics(self, state) -> BandStats:
        node_energies = packets.propagate_energies(state.nodes)
        total = node_energies.get('', 0.0)
        level_ratios = {level: (100.0 * e / total if total > 0 else 0.0)
                        for level, e in packets.level_energies(state.nodes).items()}
        top_level = {label: node_energies.get(label, 0.0) for label in packets.LABELS}
        return make_band_stats(top_level, total_energy=total, details={
            'node_energies': node_energies,
            'level_ratios': level_ratios,
        })


class DirectionalBackend(TransformBackend):
    id = 'DT-CWT'
    key_prefix = 'dtcwt'

    def options(self, raw=None):
        raw = raw or {}
        return {'sigma': _float_option(raw.get('sigma'), directional.DEFAULT_SIGMA)}

    def forward(self, image_source, options=None) -> DirectionalState:
        gray, size = load_grayscale(image_source)
        sigma = self.options(options)['sigma']
        directions, lowpass = directional.decompose(gray, sigma)
        meta = {'original_size': size, 'size': size, 'sigma': sigma}
        return DirectionalState(directions=directions, lowpass=lowpass, meta=meta)

    def apply_filter(self, state, filter_spec):
        spec = normalize_filter_spec(filter_spec)
        if spec is None:
            return state
        selected = spec.selected_directions
        filtered = []
        for direction in state.directions:
            keep = direction.id in selected if selected else True
            if keep:
                data = wavelets.apply_threshold(direction.data, spec.threshold_mode, spec.lambda_)
            else:
                data = np.zeros_like(direction.data)
            filtered.append(Direction(id=direction.id, label=direction.label,
                                      angle_degrees=direction.angle_degrees, data=data))
        return DirectionalState(directions=filtered, lowpass=state.lowpass, meta=dict(state.meta))

    def reconstruct(self, state) -> np.ndarray:
        return crop(directional.reconstruct(state.directions, state.lowpass), state.meta['original_size'])

    def get_display(self, state) -> Rendering:
        return Rendering(display=core.normalize_to_display(directional.mosaic(state.directions)))

    def compute_metrics(self, state) -> BandStats:
        energies = {d.id: float(np.sum(np.square(d.data))) for d in state.directions}
        lowpass_energy = float(np.sum(np.square(state.lowpass)))
        directional_total = float(sum(energies.values()))
        overall = directional_total + lowpass_energy
        return make_band_stats(energies, total_energy=directional_total, details={
            'lowpass_energy': lowpass_energy,
            'lowpass_ratio': 100.0 * lowpass_energy / overall if overall > 0 else 0.0,
        })


DFTBackend = FourierBackend()
DCTBackend = CosineBackend()
DWTBackend = WaveletBackend()
WPTBackend = WaveletPacketBackend()
DTCWTBackend = DirectionalBackend()

BACKENDS = {backend.id: backend for backend in
            (DFTBackend, DCTBackend, DWTBackend, WPTBackend, DTCWTBackend)}


def get_transform_backend(transform_type) -> TransformBackend:
    """
    Look up the backend for a transform type tag.

    Raises:
        UnsupportedTransformError: for unknown tags
    """
    backend = BACKENDS.get(transform_type)
    if backend is None:
        raise UnsupportedTransformError(transform_type)
    return backend
