"""
Full wavelet-packet quad-tree.

Unlike the pyramid DWT, every subband is split again at every level, so a
tree of depth L has 4**L leaves of size (H / 2**L, W / 2**L). Nodes are kept
in breadth-first order: the root, then level 1 in LL, LH, HL, HH order, and
so on. Child paths are ``parent/LABEL`` (``LL``, ``LL/HH``, ...).
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Sequence

import numpy as np

from .states import Node
from .wavelets import (Wavelet, dwt2_single, idwt2_single, split_quadrants,
                       merge_quadrants, apply_threshold)

logger = logging.getLogger("bandscope.packets")

LABELS = ('LL', 'LH', 'HL', 'HH')


def child_path(parent: str, label: str) -> str:
    return f"{parent}/{label}" if parent else label


def energy(data: np.ndarray) -> float:
    return float(np.sum(np.square(data, dtype=np.float64)))


def decompose(plane: np.ndarray, wavelet: Wavelet, levels: int) -> List[Node]:
    """
    Build the complete packet tree of a plane.

    Both dimensions of plane must be multiples of 2**levels.
    """
    plane = np.asarray(plane, dtype=np.float64)
    height, width = plane.shape
    root = Node(path='', level=0, width=width, height=height, data=plane,
                energy=energy(plane), is_leaf=levels == 0)
    nodes = [root]
    frontier = [root]
    for level in range(1, levels + 1):
        next_frontier = []
        for parent in frontier:
            quads = split_quadrants(dwt2_single(parent.data, wavelet))
            for label in LABELS:
                data = np.ascontiguousarray(quads[label])
                child = Node(path=child_path(parent.path, label), level=level,
                             width=data.shape[1], height=data.shape[0], data=data,
                             energy=energy(data), is_leaf=level == levels)
                next_frontier.append(child)
        nodes.extend(next_frontier)
        frontier = next_frontier
    return nodes


def reconstruct(nodes: Sequence[Node], wavelet: Wavelet) -> np.ndarray:
    """
    Rebuild the root plane bottom-up from the leaves.

    Non-leaf data is ignored: every internal node is the inverse transform of
    its four children.
    """
    by_path = {node.path: node for node in nodes}

    def build(path):
        node = by_path[path]
        if node.is_leaf:
            return node.data
        quads = {label: build(child_path(path, label)) for label in LABELS}
        return idwt2_single(merge_quadrants(quads), wavelet)

    return build('')


def is_selected(path: str, selected: Iterable[str]) -> bool:
    """True if path equals or descends from one of the selected prefixes."""
    return any(path == sel or path.startswith(f"{sel}/") for sel in selected)


def filter_leaves(nodes: Sequence[Node], selected: Sequence[str],
                  threshold_mode: str = 'none', lam: float = 0.0) -> List[Node]:
    """
    Keep the selected leaves, zero the others, optionally threshold the kept ones.

    An empty selection keeps every leaf. Internal nodes are passed through
    untouched (the same objects); the input nodes are never modified.
    """
    filtered = []
    for node in nodes:
        if not node.is_leaf:
            filtered.append(node)
            continue
        keep = is_selected(node.path, selected) if selected else True
        if keep:
            data = apply_threshold(node.data, threshold_mode, lam)
        else:
            data = np.zeros_like(node.data)
        filtered.append(Node(path=node.path, level=node.level, width=node.width,
                             height=node.height, data=data, energy=energy(data),
                             is_leaf=True))
    return filtered


def propagate_energies(nodes: Sequence[Node]) -> Dict[str, float]:
    """
    Energy of every node as the sum of its descendant leaves.

    The root entry ('') is the total energy of the tree.
    """
    totals = defaultdict(float)
    for node in nodes:
        if not node.is_leaf:
            continue
        path = node.path
        totals[path] += node.energy
        while path:
            path, _, _ = path.rpartition('/')
            totals[path] += node.energy
    for node in nodes:
        totals.setdefault(node.path, 0.0)
    return dict(totals)


def level_energies(nodes: Sequence[Node]) -> Dict[int, float]:
    """Sum of leaf energies grouped by leaf level."""
    buckets = defaultdict(float)
    for node in nodes:
        if node.is_leaf:
            buckets[node.level] += node.energy
    return dict(sorted(buckets.items()))


def tile_leaves(nodes: Sequence[Node], shape) -> np.ndarray:
    """
    Lay out the leaves in one plane using the nested quadrant layout.
    """
    out = np.zeros(shape, dtype=np.float64)
    offsets = {'LL': (0, 0), 'HL': (0, 1), 'LH': (1, 0), 'HH': (1, 1)}
    for node in nodes:
        if not node.is_leaf:
            continue
        row = col = 0
        height, width = shape
        for label in node.path.split('/') if node.path else ():
            height //= 2
            width //= 2
            dr, dc = offsets[label]
            row += dr * height
            col += dc * width
        out[row:row + node.height, col:col + node.width] = node.data
    return out
