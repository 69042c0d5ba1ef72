"""
Graph clustering of the affinity graph.

Segments are grouped with a union-find based graph segmentation
(Felzenszwalb & Huttenlocher style): edges are processed from the most to
the least similar, and two components are merged as long as the edge
dissimilarity does not exceed their internal difference plus a
size-dependent slack ``c / |C|``.

An optional diffusion pass can smooth the affinities beforehand; it runs on
torch and is only used when its device is available.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List

import numpy as np
import torch

from .affinity import AffinityEdge


logger = logging.getLogger(__name__)


class UnionFind:
    """Disjoint sets stored as parent/rank/size arrays."""

    def __init__(self, num_elements: int):
        self.parent = np.arange(num_elements, dtype=np.int64)
        self.rank = np.zeros(num_elements, dtype=np.int64)
        self.size = np.ones(num_elements, dtype=np.int64)
        self.num_sets = num_elements

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]

        # path compression
        while self.parent[x] != root:
            nxt = self.parent[x]
            self.parent[x] = root
            x = nxt

        return int(root)

    def join(self, x: int, y: int) -> int:
        """Merge the sets of two roots; returns the new root."""
        if x == y:
            return x

        if self.rank[x] > self.rank[y]:
            self.parent[y] = x
            self.size[x] += self.size[y]
            root = x
        else:
            self.parent[x] = y
            self.size[y] += self.size[x]
            if self.rank[x] == self.rank[y]:
                self.rank[y] += 1
            root = y

        self.num_sets -= 1
        return int(root)

    def set_size(self, x: int) -> int:
        return int(self.size[x])


def perform_clustering(edges: List[AffinityEdge], num_nodes: int, c: float = 3.0) -> UnionFind:
    """
    Segment the affinity graph.

    Args:
        edges: Weighted edges with affinities in [0, 1]
        num_nodes: Number of graph nodes
        c: Scale constant, larger values favour larger clusters

    Returns:
        Union-find structure over the node ids
    """
    u = UnionFind(num_nodes)
    threshold = np.full(num_nodes, c, dtype=np.float64)

    # most similar first (stable for equal weights)
    for e in sorted(edges, key=lambda e: e.w, reverse=True):
        a = u.find(e.i)
        b = u.find(e.j)
        if a == b:
            continue

        dissimilarity = 1.0 - e.w
        if dissimilarity <= threshold[a] and dissimilarity <= threshold[b]:
            root = u.join(a, b)
            threshold[root] = dissimilarity + c / u.set_size(root)

    return u


class DiffusionBackend(ABC):
    """Interface for optional affinity smoothing before clustering."""

    name = "none"

    def is_available(self) -> bool:
        return False

    @abstractmethod
    def diffuse(self, edges: List[AffinityEdge], num_nodes: int) -> List[AffinityEdge]:
        """Return the smoothed edge list over ``num_nodes`` nodes."""


class TorchReplicatorDiffusion(DiffusionBackend):
    """
    Replicator dynamics diffusion of the affinity matrix.

    Every row of the affinity matrix is treated as a distribution over the
    node's neighbours and evolved with ``x <- x * (W x) / (x^T W x)``;
    the result is symmetrized with ``min(w_ij, w_ji)``.
    """

    name = "replicator_dynamics"

    def __init__(self, device: str = 'cuda', iterations: int = 10,
                 max_nodes: int = 20000):
        self.device = device
        self.iterations = iterations
        self.max_nodes = max_nodes

    def is_available(self) -> bool:
        if str(self.device).startswith('cuda'):
            return torch.cuda.is_available()
        return True

    @torch.no_grad()
    def diffuse(self, edges: List[AffinityEdge], num_nodes: int) -> List[AffinityEdge]:
        if len(edges) == 0 or num_nodes == 0:
            return edges

        if num_nodes > self.max_nodes:
            logger.warning("diffusion skipped: %d nodes exceed the limit of %d",
                           num_nodes, self.max_nodes)
            return edges

        rows = torch.tensor([e.i for e in edges], dtype=torch.long)
        cols = torch.tensor([e.j for e in edges], dtype=torch.long)
        vals = torch.tensor([e.w for e in edges], dtype=torch.float32)

        W = torch.zeros((num_nodes, num_nodes), dtype=torch.float32, device=self.device)
        W[rows.to(self.device), cols.to(self.device)] = vals.to(self.device)
        mask = W > 0

        X = W / W.sum(dim=1, keepdim=True).clamp_min(1e-12)
        for _ in range(self.iterations):
            fitness = X @ W
            X = X * fitness * mask
            X = X / X.sum(dim=1, keepdim=True).clamp_min(1e-12)

        # rescale each row to the original maximum affinity
        row_max = X.max(dim=1, keepdim=True).values.clamp_min(1e-12)
        X = X / row_max * W.max(dim=1, keepdim=True).values
        X = torch.minimum(X, X.T) * mask

        idx = torch.nonzero(X > 0, as_tuple=False).cpu().numpy()
        weights = X[X > 0].cpu().numpy()

        return [AffinityEdge(int(i), int(j), float(w)) for (i, j), w in zip(idx, weights)]


def group_clusters(u: UnionFind, local2global: Dict[int, object]) -> Dict[int, List[object]]:
    """Collect the members of every cluster, in local id order."""
    clusters: Dict[int, List[object]] = {}
    for lid in sorted(local2global):
        clusters.setdefault(u.find(lid), []).append(local2global[lid])
    return clusters
