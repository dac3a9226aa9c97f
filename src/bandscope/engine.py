"""
Pipeline orchestration.

this module runs forward transform -> filter -> display -> metrics -> inverse
for one request at a time, memoizing forward and filtered states in two LRU
caches. Numeric work runs on a shared thread pool; every await is a point
where a newer request may have superseded the current one, which is detected
with a monotonically increasing task token. A superseded request discards the
outputs it produced and returns a cancelled result. It never inserts into or
disposes cache entries, since those may already be in use by the newer request.
"""

import asyncio
import atexit
import functools
import threading
import concurrent.futures
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from . import cache
from . import core
from . import planning
from .backends import get_transform_backend
from .cache import LRUCache
from .exceptions import UnsupportedTransformError
from .states import BandStats, Rendering, normalize_filter_spec

logger = logging.getLogger("bandscope.engine")

MAX_WORKERS = None  # None = planning.get_optimal_workers()

_executor = None
_executor_lock = threading.Lock()


def _get_executor() -> concurrent.futures.ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            workers = MAX_WORKERS or planning.get_optimal_workers()
            _executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=workers,
                thread_name_prefix="bandscope_compute"
            )
            logger.debug(f"Started compute executor with {workers} workers")
        return _executor


def _exit_handler():
    """Shut down the compute executor when exiting."""
    try:
        if _executor is not None:
            _executor.shutdown(wait=False)
    except Exception as e:
        logger.warning(f"Exit handler error: {str(e)}")


atexit.register(_exit_handler)


@dataclass
class TransformRequest:
    transform_type: str
    image_id: Any = None
    image_source: Any = None
    options: Dict[str, Any] = field(default_factory=dict)
    filter_spec: Any = None


@dataclass
class TransformResult:
    cancelled: bool
    token: int
    display: Optional[Rendering] = None
    metrics: Optional[BandStats] = None
    reconstructed: Optional[np.ndarray] = None
    meta: Optional[Dict[str, Any]] = None

    @classmethod
    def cancelled_result(cls, token):
        return cls(cancelled=True, token=token)


class TransformEngine:
    """
    Runs transform pipelines with cached forward and filtered states.

    Only one caller should drive an engine; overlapping calls are allowed but
    every call except the most recent one ends cancelled.
    """

    def __init__(self, forward_cache_size: Optional[int] = None,
                 filter_cache_size: Optional[int] = None,
                 executor: Optional[concurrent.futures.Executor] = None):
        self.forward_cache = LRUCache(forward_cache_size or cache.FORWARD_CACHE_SIZE, 'forward')
        self.filter_cache = LRUCache(filter_cache_size or cache.FILTER_CACHE_SIZE, 'filter')
        self._executor = executor
        self._token = 0
        self._metrics = {
            'runs': 0,
            'completed': 0,
            'cancelled': 0,
            'unsupported': 0,
        }

    @property
    def token(self) -> int:
        return self._token

    def _is_stale(self, token: int) -> bool:
        return token != self._token

    async def _compute(self, func, *args):
        loop = asyncio.get_running_loop()
        executor = self._executor or _get_executor()
        return await loop.run_in_executor(executor, functools.partial(func, *args))

    def _cancelled(self, token, rendering=None):
        if rendering is not None:
            rendering.dispose()
        self._metrics['cancelled'] += 1
        logger.debug(f"Request {token} superseded by {self._token}")
        return TransformResult.cancelled_result(token)

    async def run_transform(self, request: Optional[TransformRequest] = None, **kwargs) -> TransformResult:
        """
        Run one pipeline.

        Accepts a TransformRequest, or its fields as keyword arguments.

        Returns:
            TransformResult; ``cancelled`` is True when the request was
            superseded or names an unsupported transform

        Raises:
            DecodeError: if the image source cannot be decoded
        """
        if request is None:
            request = TransformRequest(**kwargs)
        self._token += 1
        token = self._token
        self._metrics['runs'] += 1

        try:
            backend = get_transform_backend(request.transform_type)
        except UnsupportedTransformError as e:
            self._metrics['unsupported'] += 1
            logger.warning(str(e))
            return TransformResult.cancelled_result(token)

        options = request.options or {}
        pins = []
        try:
            forward_key = backend.get_cache_key(request.image_id, options)
            forward_entry = self.forward_cache.get(forward_key)
            if forward_entry is None:
                state = await self._compute(backend.forward, request.image_source, options)
                # a superseded request must not touch the caches
                if self._is_stale(token):
                    backend.dispose(state)
                    return self._cancelled(token)
                forward_entry = self.forward_cache.set(forward_key, state, backend.dispose)
            self.forward_cache.pin(forward_entry)
            pins.append((self.forward_cache, forward_entry))

            if self._is_stale(token):
                return self._cancelled(token)

            spec = normalize_filter_spec(request.filter_spec)
            filtered_state = forward_entry.state
            if spec is not None:
                filter_key = backend.get_cache_key(request.image_id, options, spec)
                filtered_entry = self.filter_cache.get(filter_key)
                if filtered_entry is None:
                    state = await self._compute(backend.apply_filter, forward_entry.state, spec)
                    if self._is_stale(token):
                        if state is not forward_entry.state:
                            backend.dispose(state)
                        return self._cancelled(token)
                    # an unchanged state is owned by the forward entry already
                    if state is not forward_entry.state:
                        filtered_entry = self.filter_cache.set(filter_key, state, backend.dispose)
                if filtered_entry is not None:
                    self.filter_cache.pin(filtered_entry)
                    pins.append((self.filter_cache, filtered_entry))
                    filtered_state = filtered_entry.state

            if self._is_stale(token):
                return self._cancelled(token)

            rendering = await self._compute(backend.get_display, filtered_state)
            if self._is_stale(token):
                return self._cancelled(token, rendering)

            metrics = await self._compute(backend.compute_metrics, filtered_state)
            if self._is_stale(token):
                return self._cancelled(token, rendering)

            reconstructed = await self._compute(backend.inverse, filtered_state)
            if self._is_stale(token):
                return self._cancelled(token, rendering)

            self._metrics['completed'] += 1
            return TransformResult(
                cancelled=False,
                token=token,
                display=rendering,
                metrics=metrics,
                reconstructed=reconstructed,
                meta=dict(filtered_state.meta),
            )
        finally:
            for owner, entry in pins:
                owner.unpin(entry)

    def cancel(self):
        """Invalidate every in-flight request."""
        self._token += 1

    def clear_cache(self):
        """Dispose and empty both caches."""
        self.forward_cache.clear()
        self.filter_cache.clear()

    def get_stats(self) -> Dict:
        """Engine, cache and FFT plan statistics."""
        stats = self._metrics.copy()
        stats['token'] = self._token
        stats['forward_cache'] = self.forward_cache.get_stats()
        stats['filter_cache'] = self.filter_cache.get_stats()
        stats['fft_plans'] = core.get_stats()
        stats['process_memory_mb'] = planning.get_process_memory_mb()
        return stats
