"""
Data model shared by the transform backends and the engine.

Transform states own the heavy numeric buffers of one decomposition. They are
released explicitly with ``dispose()``; a state that has been disposed keeps
its metadata but no longer references any buffer.
"""

import json
import logging
from dataclasses import dataclass, field, replace, asdict
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

import numpy as np

from .exceptions import InvalidFilterSpec

logger = logging.getLogger("bandscope.states")

FILTER_MODES = ('none', 'lowpass', 'highpass', 'bandpass', 'bandstop',
                'll-only', 'suppress-high', 'threshold')
MASK_MODES = ('lowpass', 'highpass', 'bandpass', 'bandstop')
MASK_SHAPES = ('ideal', 'gaussian')
THRESHOLD_MODES = ('none', 'hard', 'soft')

# camelCase keys accepted from callers that speak the UI's vocabulary
_KEY_ALIASES = {
    'detailGain': 'detail_gain',
    'thresholdMode': 'threshold_mode',
    'lambda': 'lambda_',
    'selectedNodes': 'selected_nodes',
    'selectedDirections': 'selected_directions',
}


class Size(NamedTuple):
    width: int
    height: int


def _clamp(value, lo, hi=None):
    try:
        value = float(value)
    except (TypeError, ValueError):
        return lo
    if np.isnan(value):
        return lo
    if np.isinf(value):
        return lo if value < 0 or hi is None else hi
    value = max(lo, value)
    if hi is not None:
        value = min(hi, value)
    return value


@dataclass(frozen=True)
class FilterSpec:
    """
    A frequency-selective filter request.

    Ratios (radius, bandwidth, sigma) are fractions of the plane's
    characteristic radius. ``lambda_`` is the shrinkage threshold used by the
    wavelet-packet and directional backends; ``threshold`` is the one used by
    the wavelet backend.
    """
    mode: str = 'none'
    shape: str = 'ideal'
    radius: float = 0.3
    bandwidth: float = 0.1
    sigma: float = 0.0
    threshold: float = 0.0
    detail_gain: float = 0.0
    threshold_mode: str = 'none'
    lambda_: float = 0.0
    selected_nodes: Tuple[str, ...] = ()
    selected_directions: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FilterSpec':
        """Build a spec from a mapping, ignoring unknown keys."""
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {}
        for key, value in data.items():
            key = _KEY_ALIASES.get(key, key)
            if key in known:
                kwargs[key] = value
        for key in ('selected_nodes', 'selected_directions'):
            if key in kwargs:
                value = kwargs[key] or ()
                if isinstance(value, str):
                    value = (value,)
                kwargs[key] = tuple(str(v) for v in value)
        return cls(**kwargs)

    @property
    def is_active(self) -> bool:
        return self.mode != 'none'

    def clamped(self) -> 'FilterSpec':
        """Return a copy with every numeric field forced into its valid range."""
        shape = self.shape if self.shape in MASK_SHAPES else 'ideal'
        threshold_mode = self.threshold_mode if self.threshold_mode in THRESHOLD_MODES else 'none'
        if threshold_mode != self.threshold_mode:
            logger.warning(f"Unknown threshold mode {self.threshold_mode!r}, using 'none'")
        return replace(
            self,
            shape=shape,
            radius=_clamp(self.radius, 0.0, 1.0),
            bandwidth=_clamp(self.bandwidth, 0.0, 1.0),
            sigma=_clamp(self.sigma, 0.0, 1.0),
            threshold=_clamp(self.threshold, 0.0),
            detail_gain=_clamp(self.detail_gain, 0.0, 1.0),
            threshold_mode=threshold_mode,
            lambda_=_clamp(self.lambda_, 0.0),
            selected_nodes=tuple(sorted(set(self.selected_nodes))),
            selected_directions=tuple(sorted(set(self.selected_directions))),
        )

    def canonical(self) -> str:
        """Stable serialization used in cache keys."""
        data = asdict(self)
        data['selected_nodes'] = list(self.selected_nodes)
        data['selected_directions'] = list(self.selected_directions)
        return json.dumps(data, sort_keys=True, separators=(',', ':'))


def normalize_filter_spec(spec) -> Optional[FilterSpec]:
    """
    Normalize a filter request.

    Absent specs, ``mode == 'none'`` and unknown modes all mean "no
    filtering" and yield None. Anything else is clamped rather than rejected.

    Raises:
        InvalidFilterSpec: if spec is neither a mapping nor a FilterSpec
    """
    if spec is None:
        return None
    if isinstance(spec, dict):
        spec = FilterSpec.from_dict(spec)
    elif not isinstance(spec, FilterSpec):
        raise InvalidFilterSpec(f"Cannot interpret filter spec of type {type(spec).__name__}")

    if spec.mode not in FILTER_MODES:
        logger.warning(f"Unknown filter mode {spec.mode!r}, treating as 'none'")
        return None
    if not spec.is_active:
        return None
    return spec.clamped()


# ----------------------------------------------------------------------------------
# Transform states
# ----------------------------------------------------------------------------------

class TransformState:
    """Base for all transform states."""
    kind = ''
    _buffers: Tuple[str, ...] = ()

    @property
    def disposed(self) -> bool:
        return getattr(self, '_disposed', False)

    def dispose(self):
        """Drop every buffer reference held by this state. Safe to call twice."""
        if self.disposed:
            return
        for name in self._buffers:
            setattr(self, name, None)
        object.__setattr__(self, '_disposed', True)


@dataclass(eq=False)
class FourierState(TransformState):
    spectrum: Optional[np.ndarray]
    meta: Dict[str, Any]
    mask: Optional[np.ndarray] = None

    kind = 'DFT'
    _buffers = ('spectrum', 'mask')


@dataclass(eq=False)
class CosineState(TransformState):
    coefficients: Optional[np.ndarray]
    meta: Dict[str, Any]
    mask: Optional[np.ndarray] = None

    kind = 'DCT'
    _buffers = ('coefficients', 'mask')


@dataclass(eq=False)
class WaveletState(TransformState):
    coefficients: Optional[np.ndarray]
    meta: Dict[str, Any]

    kind = 'DWT'
    _buffers = ('coefficients',)


@dataclass(eq=False)
class Node:
    """One subband of a wavelet-packet tree."""
    path: str
    level: int
    width: int
    height: int
    data: np.ndarray
    energy: float
    is_leaf: bool

    @property
    def parent_path(self) -> Optional[str]:
        if not self.path:
            return None
        head, _, _ = self.path.rpartition('/')
        return head


@dataclass(eq=False)
class WaveletPacketState(TransformState):
    nodes: Optional[List[Node]]
    meta: Dict[str, Any]

    kind = 'WPT'
    _buffers = ('nodes',)


@dataclass(eq=False)
class Direction:
    id: str
    label: str
    angle_degrees: float
    data: np.ndarray


@dataclass(eq=False)
class DirectionalState(TransformState):
    directions: Optional[List[Direction]]
    lowpass: Optional[np.ndarray]
    meta: Dict[str, Any]

    kind = 'DT-CWT'
    _buffers = ('directions', 'lowpass')


# ----------------------------------------------------------------------------------
# Outputs
# ----------------------------------------------------------------------------------

@dataclass(eq=False)
class Rendering:
    """Display planes derived from a state."""
    display: Optional[np.ndarray]
    mask_display: Optional[np.ndarray] = None
    disposed: bool = False

    def dispose(self):
        self.display = None
        self.mask_display = None
        self.disposed = True


@dataclass
class BandEnergy:
    label: str
    energy: float
    ratio: float  # percent of the total
    min: Optional[float] = None
    max: Optional[float] = None


@dataclass
class BandStats:
    """Energy per band computed from raw (non-display) data."""
    bands: List[BandEnergy]
    total_energy: float
    details: Dict[str, Any] = field(default_factory=dict)

    def ratios(self) -> Dict[str, float]:
        return {band.label: band.ratio for band in self.bands}

    def band(self, label: str) -> BandEnergy:
        for band in self.bands:
            if band.label == label:
                return band
        raise KeyError(label)


def make_band_stats(energies, total_energy=None, details=None, ranges=None) -> BandStats:
    """
    Build BandStats from an ordered {label: energy} mapping.

    Ratios are percentages of total_energy (defaults to the sum of energies).
    """
    if total_energy is None:
        total_energy = float(sum(energies.values()))
    bands = []
    for i, (label, energy) in enumerate(energies.items()):
        ratio = 100.0 * energy / total_energy if total_energy > 0 else 0.0
        lo, hi = ranges[i] if ranges else (None, None)
        bands.append(BandEnergy(label=label, energy=float(energy), ratio=ratio, min=lo, max=hi))
    return BandStats(bands=bands, total_energy=float(total_energy), details=details or {})
