"""
Basic geometric types shared by the reconstruction stages.

Segments are identified by ``Segment2D(view_id, seg_id)``; 3D hypotheses are
plain ``Segment3D`` values that get recomputed whenever they are needed.
"""

import math
from dataclasses import dataclass, replace
from typing import List, NamedTuple, Optional

import numpy as np


EPS = 1e-12
# dot-product tolerance (px^2) when testing if a point lies on a 2D segment
POINT_ON_SEGMENT_TOL = 1e-6


class Segment2D(NamedTuple):
    """Identity of a detected 2D segment: (view id, local segment index)."""
    view_id: int
    seg_id: int


class Segment3D:
    """A 3D line segment between two points."""

    def __init__(self,
                 p1: Optional[np.ndarray] = None,
                 p2: Optional[np.ndarray] = None):
        self.P1 = np.zeros(3) if p1 is None else np.asarray(p1, dtype=np.float64).reshape(3)
        self.P2 = np.zeros(3) if p2 is None else np.asarray(p2, dtype=np.float64).reshape(3)

        self.length = float(np.linalg.norm(self.P2 - self.P1))
        if self.length > EPS:
            self.dir = (self.P2 - self.P1) / self.length
        else:
            self.dir = np.zeros(3)

    @property
    def midpoint(self) -> np.ndarray:
        return 0.5 * (self.P1 + self.P2)

    def distance_point_to_line(self, X: np.ndarray) -> float:
        """Distance of ``X`` to the infinite line through this segment."""
        if self.length < EPS:
            return float(np.linalg.norm(X - self.P1))
        w = X - self.P1
        return float(np.linalg.norm(np.cross(w, self.dir)))

    def __repr__(self):
        return f"Segment3D({self.P1.tolist()}, {self.P2.tolist()})"


@dataclass
class Match:
    """
    Directed correspondence between a source and a target 2D segment.

    ``depth_p1``/``depth_p2`` are the triangulated depths of the source
    endpoints along their (normalized) source rays, ``depth_q1``/``depth_q2``
    those of the target endpoints along the target rays.
    """
    src_view: int
    src_seg: int
    tgt_view: int
    tgt_seg: int
    overlap_score: float
    score3d: float = 0.0
    depth_p1: float = 0.0
    depth_p2: float = 0.0
    depth_q1: float = 0.0
    depth_q2: float = 0.0

    @property
    def source(self) -> Segment2D:
        return Segment2D(self.src_view, self.src_seg)

    @property
    def target(self) -> Segment2D:
        return Segment2D(self.tgt_view, self.tgt_seg)

    def inverse(self) -> 'Match':
        """Geometric reverse of this match, with the score reset."""
        return replace(self,
                       src_view=self.tgt_view, src_seg=self.tgt_seg,
                       tgt_view=self.src_view, tgt_seg=self.src_seg,
                       depth_p1=self.depth_q1, depth_p2=self.depth_q2,
                       depth_q1=self.depth_p1, depth_q2=self.depth_p2,
                       score3d=0.0)


@dataclass
class Thresholds:
    """Internal acceptance thresholds of the matching and clustering stages."""
    min_similarity_3d: float = 0.25
    min_affinity: float = 0.25
    min_score_3d: float = 0.5
    min_best_score_3d: float = 0.75
    min_line_length_factor: float = 0.005
    clustering_scale: float = 3.0


@dataclass
class EstimatedPosition:
    """Best-supported 3D hypothesis of one 2D segment."""
    seg3d: Segment3D
    match: Match


@dataclass
class LineCluster3D:
    """A fitted 3D line with its representative and residual 2D segments."""
    seg3d: Segment3D
    corresponding_seg2d: Segment2D
    residuals: List[Segment2D]

    def __len__(self):
        return len(self.residuals)


@dataclass
class FinalLine3D:
    """Disjoint collinear 3D segments plus the cluster they come from."""
    collinear_segments: List[Segment3D]
    underlying_cluster: LineCluster3D


def to_homogeneous(p) -> np.ndarray:
    return np.array([p[0], p[1], 1.0], dtype=np.float64)


def angle_between_segments(s1: Segment3D, s2: Segment3D, undirected: bool = True) -> float:
    """Angle between two 3D segments in degrees (folded to [0, 90] if undirected)."""
    dot_p = float(np.dot(s1.dir, s2.dir))
    angle = math.degrees(math.acos(max(min(dot_p, 1.0), -1.0)))

    if undirected and angle > 90.0:
        angle = 180.0 - angle

    return angle


def gaussian(d: float, sigma: float) -> float:
    """exp(-d^2 / (2 sigma^2)) with a zero-width kernel treated as a delta."""
    reg = 2.0 * sigma * sigma
    if reg < EPS:
        return 1.0 if abs(d) < EPS else 0.0
    return math.exp(-d * d / reg)


def point_on_segment(x: np.ndarray, p1: np.ndarray, p2: np.ndarray) -> bool:
    """True if the (collinear) point ``x`` lies between ``p1`` and ``p2``."""
    v1 = p1[:2] - x[:2]
    v2 = p2[:2] - x[:2]
    return float(np.dot(v1, v2)) < POINT_ON_SEGMENT_TOL


def mutual_overlap(collinear_points: List[np.ndarray]) -> float:
    """
    Overlap of two collinear 2D segments given as four points.

    The first two points form one segment, the last two the other. The score
    is the span of the two inner points divided by the span of the two outer
    points, and 0 if the segments do not overlap or the outer span is below
    one pixel.

    Args:
        collinear_points: [p1, p2, q1, q2], homogeneous or 2D

    Returns:
        Overlap score in [0, 1]
    """
    if len(collinear_points) != 4:
        return 0.0

    pts = [np.asarray(p, dtype=np.float64)[:2] for p in collinear_points]
    p1, p2, q1, q2 = pts

    if not (point_on_segment(p1, q1, q2) or point_on_segment(p2, q1, q2) or
            point_on_segment(q1, p1, p2) or point_on_segment(q2, p1, p2)):
        return 0.0

    # find outer distance and inner points
    max_dist = 0.0
    outer = (0, 1)
    for i in range(3):
        for j in range(i + 1, 4):
            dist = float(np.linalg.norm(pts[i] - pts[j]))
            if dist > max_dist:
                max_dist = dist
                outer = (i, j)

    if max_dist < 1.0:
        return 0.0

    inner1, inner2 = [i for i in range(4) if i not in outer]
    overlap = float(np.linalg.norm(pts[inner1] - pts[inner2])) / max_dist

    return min(max(overlap, 0.0), 1.0)
