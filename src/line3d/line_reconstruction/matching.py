"""
Pairwise line segment matching via epipolar geometry.

Every source segment is compared to all target segments: the epipolar lines
of the source endpoints are intersected with the target segment's line, the
mutual overlap of the resulting collinear points is measured, and candidates
whose triangulated depths are all positive are kept (optionally only the
k best by overlap).
"""

import heapq
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Tuple

import numpy as np

from .geometry import EPS, Match, mutual_overlap, to_homogeneous
from .view import View


logger = logging.getLogger(__name__)


def skew(t: np.ndarray) -> np.ndarray:
    return np.array([
        [0.0, -t[2], t[1]],
        [t[2], 0.0, -t[0]],
        [-t[1], t[0], 0.0]
    ])


def compute_fundamental_matrix(src: View, tgt: View) -> np.ndarray:
    """F with x_tgt^T F x_src = 0, from relative pose and calibration."""
    R = tgt.R @ src.R.T
    t = tgt.t - R @ src.t

    E = skew(t) @ R
    return np.linalg.inv(tgt.K).T @ E @ np.linalg.inv(src.K)


class FundamentalMatrixCache:
    """Memoizes fundamental matrices per view pair; (B, A) reuses (A, B)^T."""

    def __init__(self):
        self._cache: Dict[Tuple[int, int], np.ndarray] = {}
        self._lock = threading.Lock()
        self.num_computed = 0

    def clear(self):
        with self._lock:
            self._cache.clear()
            self.num_computed = 0

    def get(self, src: View, tgt: View) -> np.ndarray:
        with self._lock:
            F = self._cache.get((src.id, tgt.id))
            if F is not None:
                return F

            F = self._cache.get((tgt.id, src.id))
            if F is not None:
                return F.T

            F = compute_fundamental_matrix(src, tgt)
            self._cache[(src.id, tgt.id)] = F
            self.num_computed += 1

        return F


def triangulation_depths(src: View, p1: np.ndarray, p2: np.ndarray,
                         tgt: View, q1: np.ndarray, q2: np.ndarray) -> Tuple[float, float]:
    """
    Depths along the source rays through ``p1``/``p2`` at which they hit the
    plane spanned by the target rays through ``q1``/``q2``.

    Returns:
        (d1, d2), or (-1, -1) if a ray is parallel to the plane
    """
    ray_p1 = src.get_normalized_ray(p1)
    ray_p2 = src.get_normalized_ray(p2)

    ray_q1 = tgt.get_normalized_ray(q1)
    ray_q2 = tgt.get_normalized_ray(q2)
    n = np.cross(ray_q1, ray_q2)
    norm = np.linalg.norm(n)
    if norm < EPS:
        return -1.0, -1.0
    n = n / norm

    dot1 = float(np.dot(n, ray_p1))
    dot2 = float(np.dot(n, ray_p2))
    if abs(dot1) < EPS or abs(dot2) < EPS:
        return -1.0, -1.0

    offset = float(np.dot(tgt.C, n) - np.dot(n, src.C))
    return offset / dot1, offset / dot2


class PairwiseMatcher:
    """Finds candidate segment correspondences between two views."""

    def __init__(self,
                 epipolar_overlap: float = 0.25,
                 knn: int = 10,
                 num_threads: int = 4):
        """
        Initialize matcher.

        Args:
            epipolar_overlap: Minimum mutual overlap in (0, 1)
            knn: Keep at most this many matches per source segment (0 = all)
            num_threads: Worker threads for per-segment matching
        """
        self.epipolar_overlap = epipolar_overlap
        self.knn = knn
        self.num_threads = max(int(num_threads), 1)

    def match_segment(self, src: View, tgt: View, F: np.ndarray, r: int) -> List[Match]:
        """Candidate matches of source segment ``r`` in the target view."""
        p1 = to_homogeneous(src.segments[r, :2])
        p2 = to_homogeneous(src.segments[r, 2:])

        # epipolar lines
        epi_p1 = F @ p1
        epi_p2 = F @ p2

        candidates = []
        for c in range(tgt.num_lines):
            q1 = to_homogeneous(tgt.segments[c, :2])
            q2 = to_homogeneous(tgt.segments[c, 2:])
            l2 = np.cross(q1, q2)

            # intersect
            p1_proj = np.cross(l2, epi_p1)
            p2_proj = np.cross(l2, epi_p2)

            if abs(p1_proj[2]) <= EPS or abs(p2_proj[2]) <= EPS:
                continue

            p1_proj = p1_proj / p1_proj[2]
            p2_proj = p2_proj / p2_proj[2]

            score = mutual_overlap([p1_proj, p2_proj, q1, q2])
            if score <= self.epipolar_overlap:
                continue

            depths_src = triangulation_depths(src, p1, p2, tgt, q1, q2)
            depths_tgt = triangulation_depths(tgt, q1, q2, src, p1, p2)

            if min(depths_src + depths_tgt) <= EPS:
                continue

            candidates.append(Match(
                src_view=src.id, src_seg=r,
                tgt_view=tgt.id, tgt_seg=c,
                overlap_score=score,
                depth_p1=depths_src[0], depth_p2=depths_src[1],
                depth_q1=depths_tgt[0], depth_q2=depths_tgt[1]
            ))

        if self.knn > 0 and len(candidates) > self.knn:
            # ties on overlap go to the lower target segment id
            candidates = heapq.nsmallest(
                self.knn, candidates, key=lambda m: (-m.overlap_score, m.tgt_seg)
            )

        return candidates

    def match(self,
              src: View,
              tgt: View,
              F: np.ndarray,
              matches: List[List[Match]],
              lock: threading.Lock) -> int:
        """
        Match all segments of ``src`` against ``tgt``.

        New matches are appended to ``matches[seg_id]`` of the source view,
        guarded by ``lock``.

        Returns:
            Number of new matches
        """
        def work(r: int) -> int:
            found = self.match_segment(src, tgt, F, r)
            if found:
                with lock:
                    matches[r].extend(found)
            return len(found)

        if self.num_threads == 1 or src.num_lines < 2:
            return sum(work(r) for r in range(src.num_lines))

        with ThreadPoolExecutor(max_workers=self.num_threads) as executor:
            return sum(executor.map(work, range(src.num_lines)))
